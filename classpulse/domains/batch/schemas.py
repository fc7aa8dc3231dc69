# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Run outcomes and result types of the batch pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from classpulse.domains.errors import ScopeError
from classpulse.infrastructure.database.models import BatchJob, JobStatus, JobTrigger
from classpulse.utils.datetime import ensure_utc, format_iso, utc_now

STEP_INVENTORY_SYNC = "inventory_sync"
STEP_ANALYSIS = "analysis_generation"
STEP_CLEANUP = "cache_cleanup"
RUN_STEPS = (STEP_INVENTORY_SYNC, STEP_ANALYSIS, STEP_CLEANUP)


class RunOutcome(str, Enum):
    """How a start_run call ended."""

    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    SKIPPED_BUSY = "SKIPPED_BUSY"
    SKIPPED_RECENT = "SKIPPED_RECENT"
    FAILED = "FAILED"

    @property
    def http_status(self) -> int:
        """HTTP status code returned by the trigger endpoints."""
        return _HTTP_STATUS[self]

    @property
    def exit_code(self) -> int:
        """Process exit code for command-line runs."""
        return _EXIT_CODE[self]


_HTTP_STATUS = {
    RunOutcome.COMPLETED: 200,
    RunOutcome.PARTIAL: 207,
    RunOutcome.SKIPPED_BUSY: 409,
    RunOutcome.SKIPPED_RECENT: 409,
    RunOutcome.FAILED: 500,
}

_EXIT_CODE = {
    RunOutcome.COMPLETED: 0,
    RunOutcome.PARTIAL: 2,
    RunOutcome.SKIPPED_BUSY: 3,
    RunOutcome.SKIPPED_RECENT: 3,
    RunOutcome.FAILED: 1,
}


@dataclass
class RunResult:
    """Result of one start_run call.

    Attributes:
        outcome: How the run ended.
        job_id: BatchJob id, None when the run was skipped before admission.
        trigger: CRON or MANUAL.
        tenants_processed: Tenants that went through inventory sync.
        courses: Courses fetched.
        activities: Eligible activities considered for analysis.
        analyses_generated: Analyses written to the store.
        cleaned_up: Rows removed by the expiry sweep.
        errors: Per-scope failures.
        duration_ms: Wall time of the run.
        message: Human-readable explanation.
        blocking_job_id: Job that caused a skip, if any.
    """

    outcome: RunOutcome
    trigger: JobTrigger
    job_id: Optional[str] = None
    tenants_processed: int = 0
    courses: int = 0
    activities: int = 0
    analyses_generated: int = 0
    cleaned_up: int = 0
    errors: list[ScopeError] = field(default_factory=list)
    duration_ms: int = 0
    message: str = ""
    blocking_job_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "outcome": self.outcome.value,
            "job_id": self.job_id,
            "trigger": self.trigger.value,
            "tenants_processed": self.tenants_processed,
            "courses": self.courses,
            "activities": self.activities,
            "analyses_generated": self.analyses_generated,
            "cleaned_up": self.cleaned_up,
            "errors": [e.to_dict() for e in self.errors],
            "duration_ms": self.duration_ms,
            "message": self.message,
            "blocking_job_id": self.blocking_job_id,
        }


@dataclass
class JobProgress:
    """Progress view of a job with percentage and time estimate.

    Attributes:
        percent: Overall completion, 0 to 100.
        eta_seconds: Estimated remaining seconds, None when unknown.
    """

    job_id: str
    status: str
    trigger: str
    current_step: int
    total_steps: int
    current_step_name: Optional[str]
    current_tenant: Optional[str]
    total_tenants: int
    processed_tenants: int
    processed_courses: int
    processed_activities: int
    generated_analyses: int
    error_count: int
    percent: float
    eta_seconds: Optional[float]
    started_at: Optional[str]
    completed_at: Optional[str]
    last_error: Optional[str]

    @classmethod
    def from_job(cls, job: BatchJob, now: Optional[datetime] = None) -> "JobProgress":
        """Compute progress of a job.

        Steps one and two advance per tenant; step three counts as a
        single unit. The estimate extrapolates elapsed time linearly.
        """
        now = now or utc_now()
        status = JobStatus(job.status)

        if status == JobStatus.COMPLETED:
            percent = 100.0
        else:
            steps_done = max(job.current_step - 1, 0)
            fraction = 0.0
            if job.current_step in (1, 2) and job.total_tenants:
                fraction = min(job.processed_tenants / job.total_tenants, 1.0)
            percent = round(100.0 * (steps_done + fraction) / max(job.total_steps, 1), 1)

        eta_seconds: Optional[float] = None
        if status == JobStatus.RUNNING and job.started_at is not None and percent > 0:
            elapsed = (now - ensure_utc(job.started_at)).total_seconds()
            eta_seconds = round(elapsed / percent * (100.0 - percent), 1)
        elif status.is_terminal:
            eta_seconds = 0.0

        return cls(
            job_id=job.id,
            status=job.status,
            trigger=job.triggered_by,
            current_step=job.current_step,
            total_steps=job.total_steps,
            current_step_name=job.current_step_name,
            current_tenant=job.current_tenant,
            total_tenants=job.total_tenants,
            processed_tenants=job.processed_tenants,
            processed_courses=job.processed_courses,
            processed_activities=job.processed_activities,
            generated_analyses=job.generated_analyses,
            error_count=job.error_count,
            percent=percent,
            eta_seconds=eta_seconds,
            started_at=format_iso(job.started_at),
            completed_at=format_iso(job.completed_at),
            last_error=job.last_error,
        )
