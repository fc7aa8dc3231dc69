# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the batch scheduler and the batch sync actor."""

import asyncio
from datetime import datetime, time, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from classpulse.core.config.settings import SchedulerSettings
from classpulse.domains.batch.schemas import RunOutcome, RunResult
from classpulse.infrastructure.background.scheduler import BatchScheduler
from classpulse.infrastructure.background.tasks import batch_sync
from classpulse.infrastructure.database.models import JobTrigger

PLANNED_RUN = datetime(2025, 3, 4, 14, 0, tzinfo=timezone.utc)


class TestBatchScheduler:
    """Tests for BatchScheduler."""

    @pytest.mark.asyncio
    async def test_start_registers_run_times(self):
        """Test one cron job is registered per configured run time."""
        scheduler = BatchScheduler(SchedulerSettings(run_times="16:00,08:00"))

        await scheduler.start()
        try:
            tasks = scheduler.list_tasks()
            assert [t.run_time for t in tasks] == [time(8, 0), time(16, 0)]
            jobs = scheduler._scheduler.get_jobs()
            assert len(jobs) == 2
            assert all(job.misfire_grace_time == 120 for job in jobs)
            assert scheduler.get_stats()["next_run"] is not None
        finally:
            await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.list_tasks() == []

    @pytest.mark.asyncio
    async def test_execute_sends_cron_run(self):
        scheduler = BatchScheduler(SchedulerSettings())
        task = scheduler.add_cron_task("Batch sync 08:00", time(8, 0))
        actor = MagicMock()

        with patch.object(scheduler, "_get_actor", return_value=actor):
            await scheduler._execute_task(task.id)

        kwargs = actor.send.call_args.kwargs
        assert kwargs["trigger"] == "CRON"
        assert datetime.fromisoformat(kwargs["scheduled_for"]).tzinfo is not None
        assert task.run_count == 1

    @pytest.mark.asyncio
    async def test_execute_unknown_actor(self):
        scheduler = BatchScheduler(SchedulerSettings())
        task = scheduler.add_cron_task("Broken", time(8, 0), actor_name="missing_actor")

        with patch.object(scheduler, "_get_actor", return_value=None):
            await scheduler._execute_task(task.id)

        assert task.error_count == 1
        assert task.run_count == 0


class TestRunBatchSyncJob:
    """Tests for the run_batch_sync_job actor body."""

    @pytest.fixture
    def runtime(self):
        runtime = MagicMock()
        runtime.orchestrator.start_run = AsyncMock(
            return_value=RunResult(
                outcome=RunOutcome.COMPLETED, trigger=JobTrigger.MANUAL, job_id="job-1"
            )
        )
        runtime.window.is_due = MagicMock(return_value=True)
        runtime.window.next_run = MagicMock(return_value=None)
        return runtime

    @pytest.fixture
    def worker(self, runtime):
        """Run the actor synchronously against the mocked runtime."""
        with (
            patch.object(batch_sync, "get_worker_runtime", AsyncMock(return_value=runtime)),
            patch.object(batch_sync, "run_async", side_effect=asyncio.run),
        ):
            yield batch_sync.run_batch_sync_job

    def test_manual_run(self, worker, runtime):
        result = worker(trigger="MANUAL", force_refresh=True)

        assert result["outcome"] == "COMPLETED"
        runtime.orchestrator.start_run.assert_awaited_once_with(
            JobTrigger.MANUAL, force_refresh=True, scheduled_for=None
        )

    def test_cron_run_due(self, worker, runtime):
        worker(trigger="CRON", scheduled_for=PLANNED_RUN.isoformat())

        runtime.window.is_due.assert_called_once_with(PLANNED_RUN)
        assert runtime.orchestrator.start_run.call_args.kwargs["scheduled_for"] == PLANNED_RUN

    def test_cron_run_outside_window(self, worker, runtime):
        """Test a late cron message does not start a run."""
        runtime.window.is_due.return_value = False

        result = worker(trigger="CRON", scheduled_for=PLANNED_RUN.isoformat())

        assert result["status"] == "not_scheduled"
        runtime.orchestrator.start_run.assert_not_awaited()

    def test_crash_reported(self, runtime):
        failing = AsyncMock(side_effect=RuntimeError("database unreachable"))
        with (
            patch.object(batch_sync, "get_worker_runtime", failing),
            patch.object(batch_sync, "run_async", side_effect=asyncio.run),
        ):
            result = batch_sync.run_batch_sync_job(trigger="MANUAL")

        assert result["status"] == "failed"
        assert "database unreachable" in result["error"]
