"""
Database configuration and session management
"""

from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session
import structlog

from asset_tracker.core.config import get_settings

logger = structlog.get_logger(__name__)


@lru_cache()
def get_engine() -> Engine:
    """Create the engine lazily so tests can point DATABASE_URL elsewhere first"""
    settings = get_settings()
    connect_args = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def init_db(engine: Engine = None) -> None:
    """Initialize database tables"""
    # Register every table on the metadata before create_all
    import asset_tracker.models  # noqa: F401

    SQLModel.metadata.create_all(engine or get_engine())
    logger.info("Database tables created")


def get_session() -> Generator[Session, None, None]:
    """Dependency to get database session"""
    with Session(get_engine(), expire_on_commit=False) as session:
        yield session
