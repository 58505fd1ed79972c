"""
Password hashing
"""

from functools import lru_cache
from typing import Optional

from passlib.context import CryptContext
import structlog

from asset_tracker.core.config import get_settings

logger = structlog.get_logger(__name__)


@lru_cache()
def get_password_context() -> CryptContext:
    settings = get_settings()
    return CryptContext(schemes=settings.PASSWORD_HASH_SCHEMES, deprecated="auto")


def hash_password(password: str) -> str:
    return get_password_context().hash(password)


def verify_password(plain_password: str, password_hash: Optional[str]) -> bool:
    """
    Check a password against a stored hash.

    ``None`` stands for an unknown account and still costs one hash check.
    A stored hash the context cannot read counts as a mismatch.
    """
    context = get_password_context()
    if password_hash is None:
        context.dummy_verify()
        return False
    try:
        return context.verify(plain_password, password_hash)
    except ValueError as e:
        logger.warning(f"Unreadable password hash: {e}")
        return False
