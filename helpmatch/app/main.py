"""
FastAPI Application Entry Point.

This is the main application file for the helpmatch matching service.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from helpmatch.app.core.config import settings
from helpmatch.app.core.observability import ObservabilityMiddleware, configure_logging
from helpmatch.app.core.redis_client import ping_redis
from helpmatch.app.api.v1.router import router as api_v1_router
from helpmatch.app.db.session import engine, Base
from helpmatch.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from helpmatch.app.services.match_confirmation import wait_for_notifications

# Import models to ensure they are registered with Base
from helpmatch.app.models.help_offer import HelpOffer  # before requests for the FK
from helpmatch.app.models.help_request import HelpRequest
from helpmatch.app.models.audit_log import AuditLog
from helpmatch.app.models.notification import Notification

configure_logging(settings.debug)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Lets pending match notifications finish on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await wait_for_notifications()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Matching engine pairing flight companion and airport pickup requests with helper offers",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis only carries real-time match events, so an outage there is
    reported as degraded rather than unhealthy.
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
