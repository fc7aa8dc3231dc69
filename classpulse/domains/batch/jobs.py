# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""BatchJob persistence and state transitions.

Admission runs in one transaction:

1. A RUNNING job older than the stuck-job timeout is marked FAILED.
2. A younger RUNNING job blocks the new run (SKIPPED_BUSY).
3. A COMPLETED or FAILED job started inside the de-duplication window
   blocks the new run (SKIPPED_RECENT).
4. Otherwise a job is created PENDING and moved to RUNNING.

The partial unique index on RUNNING rows decides between concurrent
admissions that both found no RUNNING job; the loser is refused with
SKIPPED_BUSY.

Terminal jobs are immutable; any further transition raises JobStateError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpulse.core.config.settings import BatchSettings
from classpulse.domains.batch.schemas import RUN_STEPS, RunOutcome
from classpulse.domains.errors import ScopeError
from classpulse.infrastructure.database.connection import DatabaseError, session_scope
from classpulse.infrastructure.database.models import (
    JOB_SCOPE_ALL_TENANTS,
    JOB_TYPE_FULL_SYNC,
    BatchJob,
    JobStatus,
    JobTrigger,
)
from classpulse.utils.datetime import elapsed_ms, ensure_utc, minutes_ago, utc_now

logger = logging.getLogger(__name__)

PROGRESS_FIELDS = frozenset(
    {
        "current_step",
        "current_step_name",
        "current_tenant",
        "total_tenants",
        "processed_tenants",
        "processed_courses",
        "processed_activities",
        "generated_analyses",
        "success_count",
        "error_count",
    }
)


class JobStateError(Exception):
    """Raised on an illegal BatchJob transition.

    Attributes:
        job_id: The job involved.
        status: Its status at the time, None if it does not exist.
    """

    def __init__(self, job_id: str, status: Optional[str], message: str) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.status = status
        self.message = message


@dataclass
class Admission:
    """Outcome of JobRepository.admit.

    Attributes:
        job: The new RUNNING job, None when refused.
        refused: SKIPPED_BUSY or SKIPPED_RECENT when refused.
        blocking_job_id: Job that caused the refusal.
        reclaimed_job_id: Stuck job that was marked FAILED first.
    """

    job: Optional[BatchJob] = None
    refused: Optional[RunOutcome] = None
    blocking_job_id: Optional[str] = None
    reclaimed_job_id: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.job is not None


class JobRepository:
    """Create, update and query BatchJob rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_settings: BatchSettings,
    ) -> None:
        self._session_factory = session_factory
        self._settings = batch_settings

    @property
    def stuck_timeout_message(self) -> str:
        return f"Job timeout: exceeded {self._settings.stuck_job_timeout_minutes} minutes"

    async def admit(
        self,
        trigger: JobTrigger,
        scheduled_for: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Admission:
        """Decide whether a run may start and create its job.

        Args:
            trigger: CRON or MANUAL.
            scheduled_for: Planned start of a scheduled run.
            now: Reference time, defaults to the current UTC time.

        Returns:
            Admission with the RUNNING job or the refusal reason.

        Raises:
            DatabaseError: If the store fails for another reason.
        """
        now = now or utc_now()
        try:
            admission = await self._admit(trigger, scheduled_for, now)
        except DatabaseError as e:
            if not isinstance(e.original_error, IntegrityError):
                raise
            logger.info("Another batch job was admitted concurrently, skipping")
            return Admission(refused=RunOutcome.SKIPPED_BUSY)

        if admission.job is not None:
            logger.info("Started batch job %s (trigger=%s)", admission.job.id, trigger.value)
        return admission

    async def _admit(
        self,
        trigger: JobTrigger,
        scheduled_for: Optional[datetime],
        now: datetime,
    ) -> Admission:
        admission = Admission()

        async with session_scope(self._session_factory) as session:
            running = await session.execute(
                select(BatchJob)
                .where(BatchJob.status == JobStatus.RUNNING.value)
                .order_by(BatchJob.started_at.desc())
                .with_for_update()
            )
            stuck_before = minutes_ago(self._settings.stuck_job_timeout_minutes, now)

            for job in running.scalars():
                started = ensure_utc(job.started_at) or ensure_utc(job.created_at)
                if started is not None and started < stuck_before:
                    job.status = JobStatus.FAILED.value
                    job.last_error = self.stuck_timeout_message
                    job.completed_at = now
                    job.duration_ms = elapsed_ms(started, now)
                    admission.reclaimed_job_id = job.id
                    logger.warning("Reclaimed stuck batch job %s started at %s", job.id, started)
                else:
                    admission.refused = RunOutcome.SKIPPED_BUSY
                    admission.blocking_job_id = job.id
                    logger.info("Batch job %s is still running, skipping", job.id)
                    return admission
            await session.flush()

            recent = await session.execute(
                select(BatchJob)
                .where(
                    BatchJob.status.in_([JobStatus.COMPLETED.value, JobStatus.FAILED.value]),
                    BatchJob.started_at >= minutes_ago(self._settings.dedup_window_minutes, now),
                )
                .order_by(BatchJob.started_at.desc())
                .limit(1)
            )
            recent_job = recent.scalar_one_or_none()
            if recent_job is not None:
                admission.refused = RunOutcome.SKIPPED_RECENT
                admission.blocking_job_id = recent_job.id
                logger.info("Batch job %s started recently, skipping", recent_job.id)
                return admission

            job = BatchJob(
                job_type=JOB_TYPE_FULL_SYNC,
                scope=JOB_SCOPE_ALL_TENANTS,
                status=JobStatus.PENDING.value,
                priority=self._settings.job_priority,
                triggered_by=trigger.value,
                scheduled_for=scheduled_for,
                total_steps=len(RUN_STEPS),
            )
            session.add(job)
            await session.flush()

            job.status = JobStatus.RUNNING.value
            job.started_at = now
            await session.flush()
            admission.job = job

        return admission

    async def _load_mutable(self, session: AsyncSession, job_id: str) -> BatchJob:
        job = await session.get(BatchJob, job_id, with_for_update=True)
        if job is None:
            raise JobStateError(job_id, None, f"Batch job {job_id} does not exist")
        if JobStatus(job.status).is_terminal:
            raise JobStateError(job_id, job.status, f"Batch job {job_id} is already {job.status}")
        return job

    async def update_progress(self, job_id: str, **fields: Any) -> None:
        """Persist progress counters of a running job.

        Raises:
            JobStateError: If the job is missing or terminal.
            ValueError: If a field is not a progress field.
        """
        unknown = set(fields) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Not progress fields: {sorted(unknown)}")

        async with session_scope(self._session_factory) as session:
            job = await self._load_mutable(session, job_id)
            for name, value in fields.items():
                setattr(job, name, value)

    async def complete(
        self,
        job_id: str,
        *,
        summary: dict[str, Any],
        errors: list[ScopeError],
        **counters: Any,
    ) -> BatchJob:
        """Mark a job COMPLETED with its final counters.

        Raises:
            JobStateError: If the job is missing or terminal.
        """
        return await self._finish(
            job_id, JobStatus.COMPLETED, summary=summary, errors=errors, **counters
        )

    async def fail(
        self,
        job_id: str,
        *,
        last_error: str,
        errors: list[ScopeError],
        summary: Optional[dict[str, Any]] = None,
        **counters: Any,
    ) -> BatchJob:
        """Mark a job FAILED, keeping the counters gathered so far.

        Raises:
            JobStateError: If the job is missing or terminal.
        """
        return await self._finish(
            job_id,
            JobStatus.FAILED,
            summary=summary,
            errors=errors,
            last_error=last_error,
            **counters,
        )

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        summary: Optional[dict[str, Any]],
        errors: list[ScopeError],
        last_error: Optional[str] = None,
        **counters: Any,
    ) -> BatchJob:
        unknown = set(counters) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Not progress fields: {sorted(unknown)}")

        now = utc_now()
        async with session_scope(self._session_factory) as session:
            job = await self._load_mutable(session, job_id)
            for name, value in counters.items():
                setattr(job, name, value)
            job.status = status.value
            job.completed_at = now
            job.duration_ms = elapsed_ms(ensure_utc(job.started_at) or now, now)
            job.summary = summary
            job.errors = [e.to_dict() for e in errors]
            job.error_count = len(errors)
            if last_error is not None:
                job.last_error = last_error

        logger.info("Batch job %s finished with status %s", job_id, status.value)
        return job

    # ========== Queries ==========

    async def get(self, job_id: str) -> Optional[BatchJob]:
        """Get a job by id."""
        async with self._session_factory() as session:
            return await session.get(BatchJob, job_id)

    async def get_running(self) -> Optional[BatchJob]:
        """Get the running job, if any."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(BatchJob)
                .where(BatchJob.status == JobStatus.RUNNING.value)
                .order_by(BatchJob.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_latest(self) -> Optional[BatchJob]:
        """Get the running job, or else the most recently created one."""
        running = await self.get_running()
        if running is not None:
            return running
        async with self._session_factory() as session:
            result = await session.execute(
                select(BatchJob).order_by(BatchJob.created_at.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    async def list_recent(
        self,
        limit: int = 20,
        status: Optional[JobStatus] = None,
    ) -> list[BatchJob]:
        """List recent jobs, newest first."""
        stmt = select(BatchJob).order_by(BatchJob.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(BatchJob.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
