# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for the fixed-time batch runs.

Uses APScheduler cron triggers in the configured timezone. Each firing
sends the run_batch_sync_job actor with trigger="CRON" and the planned
fire time; the run itself happens in a Dramatiq worker.

Example:
    from classpulse.infrastructure.background.scheduler import start_scheduler

    scheduler = await start_scheduler(settings.scheduler)
    scheduler.get_stats()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Callable
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from classpulse.core.config.settings import SchedulerSettings
from classpulse.domains.batch.schedule import ScheduleWindow
from classpulse.infrastructure.database.models import JobTrigger
from classpulse.utils.datetime import format_iso, utc_now

logger = logging.getLogger(__name__)

BATCH_ACTOR_NAME = "run_batch_sync_job"


@dataclass
class ScheduledTask:
    """Configuration for a scheduled Dramatiq task.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        actor_name: Name of the Dramatiq actor to call.
        run_time: Local wall-clock time of the run.
        kwargs: Keyword arguments for the actor.
        enabled: Whether the task is enabled.
        last_run: Last run timestamp.
        run_count: Total number of runs.
        error_count: Number of failed sends.
    """

    name: str
    actor_name: str
    run_time: time
    kwargs: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "run_time": self.run_time.strftime("%H:%M"),
            "enabled": self.enabled,
            "last_run": format_iso(self.last_run),
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


class BatchScheduler:
    """APScheduler wrapper sending batch runs at fixed local times.

    Attributes:
        _settings: Run times, timezone and tolerance.
        _scheduler: APScheduler instance, created on start().
        _tasks: Scheduled tasks by id.
        _running: Whether scheduler is running.
    """

    def __init__(self, settings: SchedulerSettings) -> None:
        self._settings = settings
        self._window = ScheduleWindow.from_settings(settings)
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def window(self) -> ScheduleWindow:
        return self._window

    def _get_actor(self, actor_name: str) -> Callable[..., Any] | None:
        # Imported late: declaring actors requires a configured broker
        from classpulse.infrastructure.background import tasks

        return getattr(tasks, actor_name, None)

    def add_cron_task(
        self,
        name: str,
        run_time: time,
        actor_name: str = BATCH_ACTOR_NAME,
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Register a daily task at a local wall-clock time.

        Misfires are tolerated for the schedule tolerance; a later firing
        would be rejected by the worker anyway.

        Args:
            name: Task name.
            run_time: Local time of day.
            actor_name: Dramatiq actor to call.
            kwargs: Extra actor keyword arguments.

        Returns:
            Created ScheduledTask.
        """
        task = ScheduledTask(
            name=name,
            actor_name=actor_name,
            run_time=run_time,
            kwargs=kwargs or {},
        )
        self._tasks[task.id] = task

        if self._scheduler is not None:
            trigger = CronTrigger(
                hour=run_time.hour,
                minute=run_time.minute,
                timezone=self._window.zone,
            )
            self._scheduler.add_job(
                self._execute_task,
                trigger=trigger,
                args=[task.id],
                id=task.id,
                name=name,
                misfire_grace_time=int(self._window.tolerance.total_seconds()),
                coalesce=True,
                max_instances=1,
            )

        logger.info(
            "Added cron task: %s (%s %s)",
            name,
            run_time.strftime("%H:%M"),
            self._settings.timezone,
        )
        return task

    async def _execute_task(self, task_id: str) -> None:
        """Send the actor of a scheduled task to its queue."""
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return

        now = utc_now()
        planned = self._window.matching_run(now) or now

        try:
            actor = self._get_actor(task.actor_name)
            if actor is None:
                raise ValueError(f"Actor not found: {task.actor_name}")

            actor.send(
                trigger=JobTrigger.CRON.value,
                scheduled_for=planned.astimezone(timezone.utc).isoformat(),
                **task.kwargs,
            )

            task.last_run = now
            task.run_count += 1
            logger.info("Scheduled task %s sent to queue", task.name)

        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, str(e))

    def list_tasks(self) -> list[ScheduledTask]:
        """List all scheduled tasks."""
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start the scheduler and register one task per run time."""
        if self._running:
            return

        self._scheduler = AsyncIOScheduler(timezone=self._window.zone)
        self._scheduler.start()
        self._running = True

        for run_time in self._window.run_times:
            self.add_cron_task(
                name=f"Batch sync {run_time.strftime('%H:%M')}",
                run_time=run_time,
            )

        logger.info("Batch scheduler started with %d run times", len(self._tasks))

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._tasks.clear()
        self._running = False
        logger.info("Batch scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        next_run = self._window.next_run(utc_now())
        return {
            "is_running": self._running,
            "timezone": self._settings.timezone,
            "next_run": format_iso(next_run),
            "task_count": len(self._tasks),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


# Singleton instance
_scheduler: BatchScheduler | None = None


def get_scheduler() -> BatchScheduler | None:
    """Get the running scheduler, if any."""
    return _scheduler


async def start_scheduler(settings: SchedulerSettings) -> BatchScheduler:
    """Create and start the scheduler.

    Returns:
        Started scheduler instance.
    """
    global _scheduler
    if _scheduler is None:
        _scheduler = BatchScheduler(settings)
    await _scheduler.start()
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
