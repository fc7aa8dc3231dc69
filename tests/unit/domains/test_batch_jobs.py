# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for batch job admission and transitions."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine

from classpulse.domains.batch.jobs import JobRepository, JobStateError
from classpulse.domains.batch.schemas import JobProgress, RunOutcome
from classpulse.domains.errors import ErrorKind, ScopeError
from classpulse.infrastructure.database.connection import (
    DatabaseError,
    create_schema,
    create_session_factory,
)
from classpulse.infrastructure.database.models import BatchJob, JobStatus, JobTrigger


@pytest.fixture
def jobs(session_factory, batch_settings):
    return JobRepository(session_factory, batch_settings)


class TestAdmit:
    """Tests for JobRepository.admit."""

    @pytest.mark.asyncio
    async def test_first_run_admitted(self, jobs, now):
        admission = await jobs.admit(JobTrigger.MANUAL, now=now)

        assert admission.admitted
        assert admission.job.status == JobStatus.RUNNING.value
        assert admission.job.triggered_by == "MANUAL"
        assert admission.job.total_steps == 3
        assert admission.job.started_at == now

    @pytest.mark.asyncio
    async def test_running_job_blocks(self, jobs, now):
        """Test a second admission while a job runs is refused as busy."""
        first = await jobs.admit(JobTrigger.CRON, now=now)

        second = await jobs.admit(JobTrigger.MANUAL, now=now + timedelta(minutes=5))

        assert not second.admitted
        assert second.refused == RunOutcome.SKIPPED_BUSY
        assert second.blocking_job_id == first.job.id

    @pytest.mark.asyncio
    async def test_stuck_job_reclaimed(self, jobs, add_rows, now):
        """Test a RUNNING job older than the timeout is failed and a new run starts."""
        stuck = BatchJob(
            status=JobStatus.RUNNING.value,
            triggered_by=JobTrigger.CRON.value,
            started_at=now - timedelta(minutes=31),
        )
        await add_rows(stuck)

        admission = await jobs.admit(JobTrigger.MANUAL, now=now)

        assert admission.admitted
        assert admission.reclaimed_job_id == stuck.id
        reclaimed = await jobs.get(stuck.id)
        assert reclaimed.status == JobStatus.FAILED.value
        assert reclaimed.last_error == "Job timeout: exceeded 30 minutes"
        assert reclaimed.completed_at == now

    @pytest.mark.asyncio
    async def test_young_running_job_not_reclaimed(self, jobs, add_rows, now):
        running = BatchJob(
            status=JobStatus.RUNNING.value,
            triggered_by=JobTrigger.CRON.value,
            started_at=now - timedelta(minutes=29),
        )
        await add_rows(running)

        admission = await jobs.admit(JobTrigger.MANUAL, now=now)

        assert admission.refused == RunOutcome.SKIPPED_BUSY
        assert (await jobs.get(running.id)).status == JobStatus.RUNNING.value

    @pytest.mark.asyncio
    async def test_recent_job_blocks(self, jobs, now):
        """Test a job finished inside the dedup window blocks a new run."""
        first = await jobs.admit(JobTrigger.MANUAL, now=now)
        await jobs.complete(first.job.id, summary={}, errors=[])

        refused = await jobs.admit(JobTrigger.MANUAL, now=now + timedelta(minutes=9))
        admitted = await jobs.admit(JobTrigger.MANUAL, now=now + timedelta(minutes=11))

        assert refused.refused == RunOutcome.SKIPPED_RECENT
        assert refused.blocking_job_id == first.job.id
        assert admitted.admitted

    @pytest.mark.asyncio
    async def test_recent_failed_job_blocks(self, jobs, now):
        first = await jobs.admit(JobTrigger.CRON, now=now)
        await jobs.fail(first.job.id, last_error="boom", errors=[])

        refused = await jobs.admit(JobTrigger.CRON, now=now + timedelta(minutes=1))

        assert refused.refused == RunOutcome.SKIPPED_RECENT


class TestTransitions:
    """Tests for progress updates and terminal states."""

    @pytest.mark.asyncio
    async def test_update_progress(self, jobs):
        admission = await jobs.admit(JobTrigger.MANUAL)

        await jobs.update_progress(
            admission.job.id, current_step=1, total_tenants=4, processed_tenants=2
        )

        job = await jobs.get(admission.job.id)
        assert (job.current_step, job.total_tenants, job.processed_tenants) == (1, 4, 2)

    @pytest.mark.asyncio
    async def test_unknown_progress_field(self, jobs):
        admission = await jobs.admit(JobTrigger.MANUAL)

        with pytest.raises(ValueError):
            await jobs.update_progress(admission.job.id, status="COMPLETED")

    @pytest.mark.asyncio
    async def test_complete_records_errors(self, jobs):
        admission = await jobs.admit(JobTrigger.MANUAL)
        errors = [ScopeError("tenant:101", ErrorKind.CREDENTIAL, "No usable LMS credential")]

        job = await jobs.complete(
            admission.job.id, summary={"analysis": {"generated": 3}}, errors=errors
        )

        assert job.status == JobStatus.COMPLETED.value
        assert job.error_count == 1
        assert job.errors == [
            {"scope": "tenant:101", "kind": "credential", "message": "No usable LMS credential"}
        ]
        assert job.duration_ms is not None

    @pytest.mark.asyncio
    async def test_terminal_job_is_immutable(self, jobs):
        """Test no transition is allowed once a job is terminal."""
        admission = await jobs.admit(JobTrigger.MANUAL)
        await jobs.fail(admission.job.id, last_error="boom", errors=[])

        with pytest.raises(JobStateError):
            await jobs.update_progress(admission.job.id, current_step=2)
        with pytest.raises(JobStateError):
            await jobs.complete(admission.job.id, summary={}, errors=[])

    @pytest.mark.asyncio
    async def test_missing_job(self, jobs):
        with pytest.raises(JobStateError) as exc_info:
            await jobs.update_progress("missing", current_step=1)

        assert exc_info.value.status is None


class TestQueries:
    """Tests for job queries."""

    @pytest.mark.asyncio
    async def test_get_latest_prefers_running(self, jobs, now):
        old = await jobs.admit(JobTrigger.CRON, now=now - timedelta(hours=2))
        await jobs.complete(old.job.id, summary={}, errors=[])
        running = await jobs.admit(JobTrigger.MANUAL, now=now)

        assert (await jobs.get_latest()).id == running.job.id
        assert (await jobs.get_running()).id == running.job.id

    @pytest.mark.asyncio
    async def test_list_recent_by_status(self, jobs, now):
        first = await jobs.admit(JobTrigger.CRON, now=now - timedelta(hours=2))
        await jobs.complete(first.job.id, summary={}, errors=[])
        await jobs.admit(JobTrigger.MANUAL, now=now)

        assert len(await jobs.list_recent()) == 2
        completed = await jobs.list_recent(status=JobStatus.COMPLETED)
        assert [j.id for j in completed] == [first.job.id]


class TestJobProgress:
    """Tests for the progress view."""

    def test_running_progress_and_eta(self, now):
        job = BatchJob(
            id="job-1",
            status=JobStatus.RUNNING.value,
            triggered_by="CRON",
            current_step=1,
            total_steps=3,
            total_tenants=2,
            processed_tenants=1,
            processed_courses=0,
            processed_activities=0,
            generated_analyses=0,
            error_count=0,
            started_at=now - timedelta(seconds=100),
        )

        progress = JobProgress.from_job(job, now)

        assert progress.percent == 16.7
        assert progress.eta_seconds == pytest.approx(100 / 16.7 * 83.3, rel=1e-3)

    def test_completed_progress(self, now):
        job = BatchJob(
            id="job-2",
            status=JobStatus.COMPLETED.value,
            triggered_by="MANUAL",
            current_step=3,
            total_steps=3,
            total_tenants=2,
            processed_tenants=2,
            processed_courses=5,
            processed_activities=9,
            generated_analyses=9,
            error_count=0,
            started_at=now - timedelta(minutes=3),
            completed_at=now,
        )

        progress = JobProgress.from_job(job, now)

        assert progress.percent == 100.0
        assert progress.eta_seconds == 0.0
        assert progress.completed_at is not None


class TestConcurrentAdmission:
    """Admissions racing from separate processes or worker threads."""

    @pytest.fixture
    async def file_session_factory(self, tmp_path):
        """Sessions on separate connections to one SQLite file."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
        await create_schema(engine)
        yield create_session_factory(engine)
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_only_one_of_two_racing_admissions_runs(self, file_session_factory, batch_settings):
        """Test two repositories admitting at once leave a single RUNNING job."""
        api = JobRepository(file_session_factory, batch_settings)
        worker = JobRepository(file_session_factory, batch_settings)

        results = await asyncio.gather(
            api.admit(JobTrigger.MANUAL),
            worker.admit(JobTrigger.CRON),
        )

        assert sum(result.admitted for result in results) == 1
        assert [r.refused for r in results if not r.admitted] == [RunOutcome.SKIPPED_BUSY]
        async with file_session_factory() as session:
            running = await session.execute(
                select(func.count())
                .select_from(BatchJob)
                .where(BatchJob.status == JobStatus.RUNNING.value)
            )
            assert running.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_unique_violation_reported_as_busy(self, jobs):
        conflict = DatabaseError(
            "Database operation failed",
            IntegrityError("UPDATE batch_jobs", {}, Exception("UNIQUE constraint failed")),
        )

        with patch.object(jobs, "_admit", AsyncMock(side_effect=conflict)):
            admission = await jobs.admit(JobTrigger.CRON)

        assert not admission.admitted
        assert admission.refused == RunOutcome.SKIPPED_BUSY

    @pytest.mark.asyncio
    async def test_other_store_errors_propagate(self, jobs):
        failure = DatabaseError(
            "Database operation failed",
            OperationalError("SELECT", {}, Exception("disk I/O error")),
        )

        with patch.object(jobs, "_admit", AsyncMock(side_effect=failure)):
            with pytest.raises(DatabaseError):
                await jobs.admit(JobTrigger.CRON)
