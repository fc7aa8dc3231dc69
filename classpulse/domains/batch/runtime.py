# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Assembly of the batch pipeline from settings.

The API process and the Dramatiq workers build the same object graph;
this module is the single place where that happens.

Example:
    >>> runtime = build_runtime(settings, get_sessionmaker(), redis=get_redis())
    >>> result = await runtime.orchestrator.start_run(JobTrigger.MANUAL)
    >>> await runtime.close()
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpulse.core.config.settings import Settings
from classpulse.core.intelligence.llm import LLMClient
from classpulse.domains.analysis.generator import AnalysisGenerator
from classpulse.domains.analysis.staleness import StalenessEvaluator
from classpulse.domains.analysis.store import AnalysisStore
from classpulse.domains.batch.jobs import JobRepository
from classpulse.domains.batch.lease import LocalRunLease, RedisRunLease, RunLease
from classpulse.domains.batch.orchestrator import JobOrchestrator
from classpulse.domains.batch.schedule import ScheduleWindow
from classpulse.domains.credentials.resolver import CredentialResolver
from classpulse.domains.inventory.fetcher import InventoryFetcher
from classpulse.domains.tenants.service import TenantService
from classpulse.infrastructure.cache.redis_client import RedisClient

logger = logging.getLogger(__name__)


@dataclass
class BatchRuntime:
    """Everything a process needs to start runs and report on them.

    Attributes:
        orchestrator: Pipeline entry point.
        jobs: Job repository shared with the orchestrator.
        store: Analysis cache.
        window: Schedule used to validate CRON triggers.
        http_client: Pooled client for LMS calls, owned by the runtime.
    """

    orchestrator: JobOrchestrator
    jobs: JobRepository
    store: AnalysisStore
    window: ScheduleWindow
    http_client: httpx.AsyncClient

    async def close(self) -> None:
        await self.http_client.aclose()


def build_lease(settings: Settings, redis: Optional[RedisClient] = None) -> RunLease:
    """Pick the run lease backend.

    A Redis lease needs a connected client; without one the process
    falls back to the in-process lease and logs it.
    """
    if settings.batch.lease_backend == "redis":
        if redis is not None:
            return RedisRunLease(redis, ttl_seconds=settings.batch.lease_ttl_seconds)
        logger.warning("Redis lease requested but Redis is unavailable, using local lease")
    return LocalRunLease()


def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    redis: Optional[RedisClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    llm_client: Optional[LLMClient] = None,
) -> BatchRuntime:
    """Build the orchestrator and its collaborators.

    Args:
        settings: Application settings.
        session_factory: Sessionmaker of the relational store.
        redis: Connected Redis client, required for the redis lease.
        http_client: HTTP client for LMS calls. Created if None.
        llm_client: Model client. Created from settings if None.

    Returns:
        Ready-to-use BatchRuntime.
    """
    http_client = http_client or httpx.AsyncClient(timeout=settings.lms.timeout)
    # Failed generations are retried on the next run, never within one
    llm_client = llm_client or LLMClient(max_retries=0, llm_settings=settings.llm)

    jobs = JobRepository(session_factory, settings.batch)
    store = AnalysisStore(session_factory)
    resolver = CredentialResolver(session_factory, settings.lms)

    orchestrator = JobOrchestrator(
        jobs=jobs,
        tenants=TenantService(session_factory),
        resolver=resolver,
        fetcher=InventoryFetcher(resolver, http_client=http_client, lms_settings=settings.lms),
        staleness=StalenessEvaluator(store),
        generator=AnalysisGenerator(llm_client, settings.analysis),
        store=store,
        lease=build_lease(settings, redis),
        batch_settings=settings.batch,
        analysis_settings=settings.analysis,
        principal=settings.lms.batch_principal,
    )

    return BatchRuntime(
        orchestrator=orchestrator,
        jobs=jobs,
        store=store,
        window=ScheduleWindow.from_settings(settings.scheduler),
        http_client=http_client,
    )
