# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the main application factory for the ClassPulse API.

Example:
    uvicorn classpulse.api.app:create_app --factory --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classpulse import __version__
from classpulse.api.routes import health
from classpulse.api.v1 import router as v1_router
from classpulse.core.config import get_settings
from classpulse.domains.batch.runtime import build_runtime
from classpulse.infrastructure.background import (
    setup_dramatiq,
    shutdown_dramatiq,
    start_scheduler,
    stop_scheduler,
)
from classpulse.infrastructure.cache import close_redis, get_redis, init_redis
from classpulse.infrastructure.database.connection import (
    close_database,
    get_sessionmaker,
    init_database,
)
from classpulse.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Initializes and cleans up:
    - Database connection pool
    - Redis client (run lease)
    - Dramatiq broker
    - BatchRuntime
    - APScheduler for the fixed run times

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings = get_settings()
    setup_logging(settings)
    logger.info(
        "Starting ClassPulse API (environment=%s, debug=%s)",
        settings.environment,
        settings.debug,
    )
    app.state.runtime = None

    # =========================================================================
    # Startup
    # =========================================================================

    try:
        await init_database(settings)
        logger.info("Database connection initialized")
    except Exception as e:
        logger.warning("Failed to initialize database connection: %s", str(e))

    redis = None
    try:
        await init_redis(settings)
        redis = get_redis()
        logger.info("Redis connection initialized")
    except Exception as e:
        logger.warning("Failed to initialize Redis: %s", str(e))

    try:
        setup_dramatiq()
        logger.info("Dramatiq broker initialized")
    except Exception as e:
        logger.warning("Failed to setup Dramatiq: %s", str(e))

    try:
        app.state.runtime = build_runtime(settings, get_sessionmaker(), redis=redis)
        logger.info("Batch runtime initialized")
    except Exception as e:
        logger.warning("Failed to build batch runtime: %s", str(e))

    if settings.scheduler.enabled:
        try:
            await start_scheduler(settings.scheduler)
            logger.info("Scheduler started")
        except Exception as e:
            logger.warning("Failed to start scheduler: %s", str(e))

    yield

    # =========================================================================
    # Shutdown
    # =========================================================================

    # Stop scheduler first so no run is queued during shutdown
    try:
        await stop_scheduler()
        logger.info("Scheduler stopped")
    except Exception as e:
        logger.warning("Error stopping scheduler: %s", str(e))

    if app.state.runtime is not None:
        try:
            await app.state.runtime.close()
        except Exception as e:
            logger.warning("Error closing batch runtime: %s", str(e))
        app.state.runtime = None

    try:
        shutdown_dramatiq()
        logger.info("Dramatiq broker shutdown")
    except Exception as e:
        logger.warning("Error shutting down Dramatiq: %s", str(e))

    try:
        await close_redis()
        logger.info("Redis connection closed")
    except Exception as e:
        logger.warning("Error closing Redis: %s", str(e))

    try:
        await close_database()
        logger.info("Database connection closed")
    except Exception as e:
        logger.warning("Error closing database connection: %s", str(e))

    logger.info("Shutting down ClassPulse API")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="ClassPulse API",
        description="Batch sync and analysis pipeline for LMS course activity",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    # =========================================================================
    # Middleware
    # =========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Routes
    # =========================================================================
    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app
