# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Job orchestrator for the batch sync and analysis pipeline.

A run goes through three steps, recorded on a BatchJob row:

1. Inventory sync: enumerate active tenants in priority order, resolve a
   credential for each, fetch its inventory and keep the eligible
   activities. Progress is persisted after every tenant.
2. Analysis generation: for every eligible activity whose cached
   analysis is stale, generate a new one and store it as latest.
3. Cache cleanup: delete expired rows that are no longer latest.

Failures below the run level are collected as ScopeError values and
reported with the result. Anything else (tenant enumeration failing,
the run timing out, the job table being unreachable) fails the job,
keeping whatever analyses were already committed.

Example:
    >>> result = await orchestrator.start_run(JobTrigger.MANUAL)
    >>> result.outcome, result.analyses_generated
    (<RunOutcome.COMPLETED: 'COMPLETED'>, 42)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from classpulse.core.config.settings import AnalysisSettings, BatchSettings
from classpulse.domains.analysis.generator import AnalysisGenerator
from classpulse.domains.analysis.parser import AnalysisGenerationError, AnalysisParseError
from classpulse.domains.analysis.schemas import AnalysisPolicy
from classpulse.domains.analysis.staleness import StalenessEvaluator
from classpulse.domains.analysis.store import AnalysisStore
from classpulse.domains.batch.jobs import JobRepository
from classpulse.domains.batch.lease import RunLease
from classpulse.domains.batch.schemas import (
    STEP_ANALYSIS,
    STEP_CLEANUP,
    STEP_INVENTORY_SYNC,
    JobProgress,
    RunOutcome,
    RunResult,
)
from classpulse.domains.credentials.resolver import CredentialResolver, NoCredentialError
from classpulse.domains.errors import ErrorKind, ScopeError
from classpulse.domains.inventory.eligibility import filter_eligible
from classpulse.domains.inventory.fetcher import InventoryFetcher
from classpulse.domains.inventory.schemas import ActivityInventory, CourseInventory
from classpulse.domains.tenants.service import TenantService
from classpulse.infrastructure.database.connection import DatabaseError
from classpulse.infrastructure.database.models import JobTrigger, Tenant
from classpulse.utils.datetime import elapsed_ms, utc_now
from classpulse.utils.logging import bind_context, clear_context

logger = logging.getLogger(__name__)


@dataclass
class _TenantWork:
    """Eligible activities of one tenant awaiting analysis."""

    tenant: Tenant
    items: list[tuple[ActivityInventory, CourseInventory]] = field(default_factory=list)


@dataclass
class _RunState:
    """Counters and errors accumulated during a run."""

    total_tenants: int = 0
    tenants_synced: int = 0
    tenants_analyzed: int = 0
    courses: int = 0
    activities_fetched: int = 0
    activities: int = 0
    generated: int = 0
    fresh: int = 0
    failed_analyses: int = 0
    cleaned_up: int = 0
    errors: list[ScopeError] = field(default_factory=list)
    work: list[_TenantWork] = field(default_factory=list)

    def counters(self) -> dict[str, Any]:
        return {
            "total_tenants": self.total_tenants,
            "processed_tenants": self.tenants_synced,
            "processed_courses": self.courses,
            "processed_activities": self.activities,
            "generated_analyses": self.generated,
            "success_count": self.generated,
        }

    def summary(self, trigger: JobTrigger, force_refresh: bool) -> dict[str, Any]:
        return {
            "sync": {
                "tenants": self.tenants_synced,
                "courses": self.courses,
                "activities_fetched": self.activities_fetched,
                "eligible_activities": self.activities,
            },
            "analysis": {
                "tenants": self.tenants_analyzed,
                "generated": self.generated,
                "fresh": self.fresh,
                "failed": self.failed_analyses,
            },
            "cleanup": {"deleted": self.cleaned_up},
            "trigger": trigger.value,
            "force_refresh": force_refresh,
        }


class JobOrchestrator:
    """Run the pipeline as a tracked, serialized job.

    Collaborators are injected so the orchestrator can be driven in tests
    with an in-memory database and a fake model client.

    Attributes:
        _jobs: BatchJob repository handling admission and transitions.
        _lease: Run-level mutual exclusion.
        _principal: Principal whose personal token is tried first.
    """

    def __init__(
        self,
        *,
        jobs: JobRepository,
        tenants: TenantService,
        resolver: CredentialResolver,
        fetcher: InventoryFetcher,
        staleness: StalenessEvaluator,
        generator: AnalysisGenerator,
        store: AnalysisStore,
        lease: RunLease,
        batch_settings: BatchSettings,
        analysis_settings: AnalysisSettings,
        principal: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._jobs = jobs
        self._tenants = tenants
        self._resolver = resolver
        self._fetcher = fetcher
        self._staleness = staleness
        self._generator = generator
        self._store = store
        self._lease = lease
        self._batch = batch_settings
        self._analysis = analysis_settings
        self._principal = principal
        self._sleep = sleep
        self._clock = clock

    @property
    def jobs(self) -> JobRepository:
        return self._jobs

    async def start_run(
        self,
        trigger: JobTrigger,
        *,
        force_refresh: bool = False,
        scheduled_for: Optional[datetime] = None,
    ) -> RunResult:
        """Start a run unless another one is active or just happened.

        Args:
            trigger: CRON or MANUAL.
            force_refresh: Regenerate every eligible analysis.
            scheduled_for: Planned time of a scheduled run.

        Returns:
            RunResult describing the outcome. Skips and failures are
            reported through the outcome, never raised.
        """
        started = self._clock()

        async with self._lease.hold() as acquired:
            if not acquired:
                logger.info("Run lease is held, skipping %s trigger", trigger.value)
                return RunResult(
                    outcome=RunOutcome.SKIPPED_BUSY,
                    trigger=trigger,
                    message="Another run is in progress",
                )

            admission = await self._jobs.admit(trigger, scheduled_for, now=started)
            if not admission.admitted:
                message = (
                    "Another run is in progress"
                    if admission.refused == RunOutcome.SKIPPED_BUSY
                    else f"A run started less than {self._batch.dedup_window_minutes} minutes ago"
                )
                return RunResult(
                    outcome=admission.refused,
                    trigger=trigger,
                    message=message,
                    blocking_job_id=admission.blocking_job_id,
                )

            job_id = admission.job.id
            bind_context(job_id=job_id, trigger=trigger.value)
            try:
                return await self._run_job(job_id, trigger, force_refresh, started)
            finally:
                clear_context()

    async def _run_job(
        self,
        job_id: str,
        trigger: JobTrigger,
        force_refresh: bool,
        started: datetime,
    ) -> RunResult:
        state = _RunState()
        policy = AnalysisPolicy(force_refresh=force_refresh)

        try:
            await asyncio.wait_for(
                self._execute(job_id, state, policy),
                timeout=self._batch.run_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"Run timeout: exceeded {self._batch.run_timeout_seconds:.0f} seconds"
            return await self._record_failure(job_id, trigger, state, started, error, force_refresh)
        except Exception as e:
            logger.exception("Batch job %s failed", job_id)
            error = f"{e.__class__.__name__}: {e}"
            return await self._record_failure(job_id, trigger, state, started, error, force_refresh)

        await self._jobs.complete(
            job_id,
            summary=state.summary(trigger, force_refresh),
            errors=state.errors,
            current_tenant=None,
            **state.counters(),
        )

        outcome = RunOutcome.PARTIAL if state.errors else RunOutcome.COMPLETED
        result = self._result(job_id, trigger, state, started, outcome)
        result.message = (
            f"Processed {state.tenants_synced} tenants, generated {state.generated} analyses"
            + (f" with {len(state.errors)} errors" if state.errors else "")
        )
        logger.info(
            "Batch job %s %s: tenants=%d, courses=%d, activities=%d, generated=%d, errors=%d",
            job_id,
            outcome.value,
            state.tenants_synced,
            state.courses,
            state.activities,
            state.generated,
            len(state.errors),
        )
        return result

    async def _record_failure(
        self,
        job_id: str,
        trigger: JobTrigger,
        state: _RunState,
        started: datetime,
        error: str,
        force_refresh: bool,
    ) -> RunResult:
        try:
            await self._jobs.fail(
                job_id,
                last_error=error,
                errors=state.errors,
                summary=state.summary(trigger, force_refresh),
                **state.counters(),
            )
        except Exception as e:
            logger.error("Could not record failure of batch job %s: %s", job_id, str(e))

        result = self._result(job_id, trigger, state, started, RunOutcome.FAILED)
        result.message = error
        return result

    def _result(
        self,
        job_id: str,
        trigger: JobTrigger,
        state: _RunState,
        started: datetime,
        outcome: RunOutcome,
    ) -> RunResult:
        return RunResult(
            outcome=outcome,
            trigger=trigger,
            job_id=job_id,
            tenants_processed=state.tenants_synced,
            courses=state.courses,
            activities=state.activities,
            analyses_generated=state.generated,
            cleaned_up=state.cleaned_up,
            errors=list(state.errors),
            duration_ms=elapsed_ms(started, self._clock()),
        )

    async def _execute(self, job_id: str, state: _RunState, policy: AnalysisPolicy) -> None:
        await self._sync_step(job_id, state)
        await self._analysis_step(job_id, state, policy)
        await self._cleanup_step(job_id, state)

    # ========== Step 1: inventory sync ==========

    async def _sync_step(self, job_id: str, state: _RunState) -> None:
        await self._jobs.update_progress(
            job_id, current_step=1, current_step_name=STEP_INVENTORY_SYNC
        )

        tenants = await self._tenants.list_active_tenants()
        state.total_tenants = len(tenants)
        await self._jobs.update_progress(job_id, total_tenants=len(tenants), processed_tenants=0)
        logger.info("Syncing inventory of %d tenants", len(tenants))

        for index, tenant in enumerate(tenants):
            if index > 0 and self._batch.tenant_delay_seconds > 0:
                await self._sleep(self._batch.tenant_delay_seconds)

            await self._sync_tenant(tenant, state)
            state.tenants_synced += 1
            await self._jobs.update_progress(
                job_id,
                current_tenant=tenant.id,
                processed_tenants=state.tenants_synced,
                processed_courses=state.courses,
                processed_activities=state.activities,
                error_count=len(state.errors),
            )

    async def _sync_tenant(self, tenant: Tenant, state: _RunState) -> None:
        scope = f"tenant:{tenant.id}"
        try:
            credential = await self._resolver.resolve(tenant, self._principal)
        except NoCredentialError as e:
            state.errors.append(ScopeError.from_exception(scope, ErrorKind.CREDENTIAL, e))
            logger.warning("No credential for tenant %s, skipping", tenant.id)
            return
        except SQLAlchemyError as e:
            state.errors.append(ScopeError.from_exception(scope, ErrorKind.STORE, e))
            logger.error("Credential lookup failed for tenant %s: %s", tenant.id, str(e))
            return

        try:
            inventory = await self._fetcher.fetch_inventory(tenant, credential)
        except Exception as e:
            # A broken tenant must not stop the others
            state.errors.append(ScopeError.from_exception(scope, ErrorKind.TRANSPORT, e))
            logger.error("Inventory fetch failed for tenant %s: %s", tenant.id, str(e))
            return
        state.errors.extend(inventory.errors)

        work = _TenantWork(tenant=tenant)
        now = self._clock()
        show_all = self._batch.show_all_tenants_list
        for course in inventory.courses:
            for activity in filter_eligible(course.activities, show_all, now):
                work.items.append((activity, course))

        state.courses += len(inventory.courses)
        state.activities_fetched += inventory.activity_count
        state.activities += len(work.items)
        state.work.append(work)

        logger.info(
            "Tenant %s: %d courses, %d activities, %d eligible, %d errors",
            tenant.id,
            len(inventory.courses),
            inventory.activity_count,
            len(work.items),
            len(inventory.errors),
        )

    # ========== Step 2: analysis generation ==========

    async def _analysis_step(self, job_id: str, state: _RunState, policy: AnalysisPolicy) -> None:
        await self._jobs.update_progress(
            job_id,
            current_step=2,
            current_step_name=STEP_ANALYSIS,
            processed_tenants=0,
        )

        for work in state.work:
            ttl = self._ttl_for(work.tenant)
            for activity, course in work.items:
                await self._analyze_activity(activity, course, policy, ttl, state)

            state.tenants_analyzed += 1
            await self._jobs.update_progress(
                job_id,
                current_tenant=work.tenant.id,
                processed_tenants=state.tenants_analyzed,
                generated_analyses=state.generated,
                success_count=state.generated,
                error_count=len(state.errors),
            )

    def _ttl_for(self, tenant: Tenant) -> timedelta:
        hours = tenant.analysis_ttl_hours or self._analysis.ttl_hours
        return timedelta(hours=hours)

    async def _analyze_activity(
        self,
        activity: ActivityInventory,
        course: CourseInventory,
        policy: AnalysisPolicy,
        ttl: timedelta,
        state: _RunState,
    ) -> None:
        scope = f"activity:{activity.key}"
        try:
            if not await self._staleness.needs_analysis(activity.key, policy):
                state.fresh += 1
                return

            context = self._generator.build_context(activity, course)
            generated = await self._generator.generate(activity, context)
            await self._store.save_latest(activity.key, generated, ttl=ttl)
            state.generated += 1
        except AnalysisParseError as e:
            state.failed_analyses += 1
            state.errors.append(ScopeError.from_exception(scope, ErrorKind.VALIDATION, e))
        except AnalysisGenerationError as e:
            state.failed_analyses += 1
            state.errors.append(ScopeError.from_exception(scope, ErrorKind.GENERATION, e))
            logger.warning("Analysis failed for %s: %s", activity.key, str(e))
        except DatabaseError as e:
            state.failed_analyses += 1
            state.errors.append(ScopeError.from_exception(scope, ErrorKind.STORE, e))
            logger.error("Could not store analysis for %s: %s", activity.key, str(e))

    # ========== Step 3: cache cleanup ==========

    async def _cleanup_step(self, job_id: str, state: _RunState) -> None:
        await self._jobs.update_progress(
            job_id,
            current_step=3,
            current_step_name=STEP_CLEANUP,
            current_tenant=None,
        )
        try:
            state.cleaned_up = await self._store.sweep_expired(self._clock())
        except DatabaseError as e:
            state.errors.append(ScopeError.from_exception("run:cleanup", ErrorKind.STORE, e))

    # ========== Status ==========

    async def get_progress(self, job_id: Optional[str] = None) -> Optional[JobProgress]:
        """Progress of a job, or of the running/most recent job."""
        job = await self._jobs.get(job_id) if job_id else await self._jobs.get_latest()
        if job is None:
            return None
        return JobProgress.from_job(job, self._clock())
