# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Batch sync background task.

Tasks:
    - run_batch_sync_job: Run the inventory sync and analysis pipeline once

Scheduled runs arrive with trigger="CRON" and the planned fire time.
They are dropped when that time is outside the schedule window, so a
message that waited too long in the queue does not start a late run.

Example:
    >>> from classpulse.infrastructure.background.tasks import run_batch_sync_job
    >>> run_batch_sync_job.send(trigger="MANUAL", force_refresh=True)
"""

import logging
from datetime import datetime
from typing import Any

import dramatiq

from classpulse.domains.batch.schemas import RunOutcome
from classpulse.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from classpulse.infrastructure.background.tasks.base import get_worker_runtime, run_async
from classpulse.infrastructure.database.models import JobTrigger
from classpulse.utils.datetime import format_iso, utc_now

setup_dramatiq()

logger = logging.getLogger(__name__)


@dramatiq.actor(
    queue_name=Queues.BATCH,
    max_retries=0,
    time_limit=1800000,  # 30 minutes, above the run timeout
    priority=Priority.NORMAL,
)
def run_batch_sync_job(
    trigger: str = JobTrigger.MANUAL.value,
    scheduled_for: str | None = None,
    force_refresh: bool = False,
) -> dict[str, Any]:
    """Run the batch pipeline once.

    Retries are disabled: a failed run is recorded on its job row and the
    next scheduled run starts from a clean state.

    Args:
        trigger: "CRON" or "MANUAL".
        scheduled_for: ISO timestamp of the planned run (CRON only).
        force_refresh: Regenerate every eligible analysis.

    Returns:
        RunResult as a dict, or a not_scheduled skip.
    """
    job_trigger = JobTrigger(trigger)
    planned = datetime.fromisoformat(scheduled_for) if scheduled_for else None

    logger.info(
        "Starting batch sync job: trigger=%s, scheduled_for=%s, force_refresh=%s",
        job_trigger.value,
        scheduled_for,
        force_refresh,
    )

    async def _run() -> dict[str, Any]:
        runtime = await get_worker_runtime()

        if job_trigger == JobTrigger.CRON:
            reference = planned or utc_now()
            if not runtime.window.is_due(reference):
                next_run = runtime.window.next_run(utc_now())
                logger.info("Cron trigger at %s is outside the schedule window", reference)
                return {
                    "status": "not_scheduled",
                    "trigger": job_trigger.value,
                    "next_run": format_iso(next_run),
                }

        result = await runtime.orchestrator.start_run(
            job_trigger,
            force_refresh=force_refresh,
            scheduled_for=planned,
        )
        return result.to_dict()

    try:
        result = run_async(_run())
        if result.get("outcome") == RunOutcome.FAILED.value:
            logger.error("Batch sync job failed: %s", result.get("message"))
        else:
            logger.info("Batch sync job finished: %s", result.get("outcome") or result.get("status"))
        return result
    except Exception as e:
        logger.exception("Batch sync job crashed: %s", str(e))
        return {
            "status": "failed",
            "trigger": trigger,
            "error": str(e),
        }

