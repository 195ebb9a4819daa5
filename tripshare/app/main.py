"""
FastAPI Application Entry Point.

This is the main application file for the Trip Sharing Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from tripshare.app.core.config import settings
from tripshare.app.api.v1.router import router as api_v1_router
from tripshare.app.core.observability import ObservabilityMiddleware
from tripshare.app.core.redis_client import build_redis_client, ping_redis
from tripshare.app.db.session import engine, Base
from tripshare.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from tripshare.app.models.user import User
from tripshare.app.models.audit_log import AuditLog
from tripshare.app.models.optimization_group import OptimizationGroup
from tripshare.app.models.trip import Trip
from tripshare.app.models.join_request import JoinRequest
from tripshare.app.models.dlq import DeadLetterQueue

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tripshare")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Opens the shared Redis client and closes it on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.redis = build_redis_client(settings)
    logger.info("%s started", settings.app_name)
    yield
    await app.state.redis.aclose()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Business trip approval and ride consolidation",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint.

    Redis only backs the used-link ledger, so an unreachable Redis degrades
    the service rather than failing it.
    """
    redis_ok = await ping_redis(request.app.state.redis)
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "ok" if redis_ok else "unavailable",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Trip Sharing Backend API",
        "docs": "/docs",
        "health": "/health",
    }
