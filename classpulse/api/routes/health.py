# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides health and readiness endpoints for the API.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from classpulse import __version__
from classpulse.core.config import Settings, get_settings
from classpulse.infrastructure.background.scheduler import get_scheduler
from classpulse.infrastructure.cache import RedisError, get_redis
from classpulse.infrastructure.database.connection import check_database_connection

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class ComponentHealth(BaseModel):
    """Individual component health status."""

    status: str = Field(description="Component status")
    latency_ms: float | None = Field(None, description="Response latency in ms")
    message: str | None = Field(None, description="Additional status message")


class ComponentsHealth(BaseModel):
    """All components health status."""

    database: ComponentHealth | None = None
    redis: ComponentHealth | None = None
    scheduler: ComponentHealth | None = None


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(description="Overall health status")
    version: str = Field(description="Service version")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    checked_at: datetime = Field(description="When health was checked")
    components: ComponentsHealth = Field(default_factory=ComponentsHealth)


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool = Field(description="Whether the service is ready")
    checks: dict[str, Any] = Field(description="Individual check results")


async def check_database() -> ComponentHealth:
    """Check the relational store."""
    start = time.time()
    if not await check_database_connection():
        return ComponentHealth(status="unhealthy", message="Database unreachable")
    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


async def check_redis(settings: Settings) -> ComponentHealth:
    """Check Redis, which only matters with the redis lease backend."""
    required = settings.batch.lease_backend == "redis"
    try:
        client = get_redis()
    except RedisError:
        if required:
            return ComponentHealth(status="unhealthy", message="Redis not initialized")
        return ComponentHealth(status="disabled", message="Redis not initialized")

    start = time.time()
    if not await client.ping():
        return ComponentHealth(
            status="unhealthy" if required else "degraded",
            message="Redis ping failed",
        )
    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


def check_scheduler(settings: Settings) -> ComponentHealth:
    """Report whether the in-process scheduler is running."""
    if not settings.scheduler.enabled:
        return ComponentHealth(status="disabled")

    scheduler = get_scheduler()
    if scheduler is None or not scheduler.is_running:
        return ComponentHealth(status="degraded", message="Scheduler not running")

    stats = scheduler.get_stats()
    return ComponentHealth(status="healthy", message=f"next run {stats['next_run']}")


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """Check if the API is healthy with component details.

    Returns:
        HealthResponse with detailed status.
    """
    now = datetime.now(timezone.utc)
    uptime = int(time.time() - _server_start_time)

    db_health = await check_database()
    redis_health = await check_redis(settings)
    scheduler_health = check_scheduler(settings)

    component_statuses = [db_health.status, redis_health.status, scheduler_health.status]
    if "unhealthy" in component_statuses:
        overall_status = "unhealthy"
    elif all(s in ("healthy", "disabled") for s in component_statuses):
        overall_status = "healthy"
    else:
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=__version__,
        environment=settings.environment,
        uptime_seconds=uptime,
        checked_at=now,
        components=ComponentsHealth(
            database=db_health,
            redis=redis_health,
            scheduler=scheduler_health,
        ),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(settings: Settings = Depends(get_settings)) -> ReadinessResponse:
    """Check if the API is ready to accept traffic.

    Returns:
        ReadinessResponse with individual check results.
    """
    checks: dict[str, Any] = {}
    all_ready = True

    db_health = await check_database()
    checks["database"] = {"status": db_health.status, "latency_ms": db_health.latency_ms}
    if db_health.status != "healthy":
        all_ready = False

    redis_health = await check_redis(settings)
    checks["redis"] = {"status": redis_health.status, "latency_ms": redis_health.latency_ms}
    if redis_health.status == "unhealthy":
        all_ready = False

    return ReadinessResponse(ready=all_ready, checks=checks)
