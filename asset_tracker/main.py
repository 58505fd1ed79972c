"""
Asset Tracker - Main Application Entry Point
Multi-tenant NFC asset lifecycle tracking
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import structlog

from asset_tracker import __version__
from asset_tracker.core.config import get_settings
from asset_tracker.core.database import init_db
from asset_tracker.core.exceptions import AssetTrackerError, ValidationFailed
from asset_tracker.api import (
    action_logs, assignments, items, maintenance, nfc, tenants, users, users_auth
)


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging"""
    logging.basicConfig(format="%(message)s", level=log_level.upper())

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


settings = get_settings()
configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Initializing Asset Tracker backend", environment=settings.ENVIRONMENT)
    if settings.AUTO_CREATE_TABLES:
        init_db()

    yield

    # Shutdown
    logger.info("Shutting down Asset Tracker backend")


async def asset_tracker_error_handler(request: Request, exc: AssetTrackerError) -> JSONResponse:
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI's own body/query validation in the same shape as ValidationFailed"""
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error["loc"]]
        if loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        errors.append({
            "field": ".".join(loc) or "body",
            "message": error["msg"],
            "type": error["type"],
        })
    return await asset_tracker_error_handler(request, ValidationFailed(errors))


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Multi-tenant NFC asset tracking with assignment and maintenance lifecycle",
        version=__version__,
        lifespan=lifespan,
    )

    # Configure middleware stack
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AssetTrackerError, asset_tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    # Include routers
    prefix = settings.API_V1_PREFIX
    app.include_router(users_auth.router, prefix=f"{prefix}/auth", tags=["auth"])
    app.include_router(tenants.router, prefix=f"{prefix}/tenants", tags=["tenants"])
    app.include_router(users.router, prefix=f"{prefix}/users", tags=["users"])
    app.include_router(items.router, prefix=f"{prefix}/items", tags=["items"])
    app.include_router(nfc.router, prefix=f"{prefix}/nfc", tags=["nfc"])
    app.include_router(assignments.router, prefix=f"{prefix}/assignments", tags=["assignments"])
    app.include_router(maintenance.router, prefix=f"{prefix}/maintenance", tags=["maintenance"])
    app.include_router(action_logs.router, prefix=f"{prefix}/action-logs", tags=["action-logs"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "asset-tracker-api"}

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": f"{settings.APP_NAME} API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "asset_tracker.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
