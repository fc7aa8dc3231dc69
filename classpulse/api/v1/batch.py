# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Batch pipeline API endpoints.

- POST /trigger - Start a manual run (or queue it with background=true)
- POST /cron - Start a scheduled run if the schedule window is due
- GET /status - Progress of the running or most recent job
- GET /jobs - Recent job history
- GET /jobs/{job_id} - One job

The HTTP status of a run reflects its outcome: 200 completed, 207
completed with errors, 409 skipped (busy or recent), 500 failed.

Authentication:
    Trigger endpoints require the X-Batch-Secret header when a secret is
    configured.

Example:
    POST /api/v1/batch/trigger?force_refresh=true
    Headers:
        X-Batch-Secret: <secret>
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from classpulse.api.dependencies import get_runtime, require_trigger_secret
from classpulse.domains.batch.runtime import BatchRuntime
from classpulse.domains.batch.schemas import JobProgress, RunResult
from classpulse.infrastructure.database.models import BatchJob, JobStatus, JobTrigger
from classpulse.utils.datetime import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Response DTOs
# =============================================================================


class ScopeErrorResponse(BaseModel):
    """One failure below the run level."""

    scope: str = Field(description="Failed unit, e.g. tenant:av10 or course:av10-55")
    kind: str = Field(description="Error kind")
    message: str = Field(description="Error message")


class RunResultResponse(BaseModel):
    """Summary of one run."""

    outcome: str = Field(description="COMPLETED, PARTIAL, SKIPPED_BUSY, SKIPPED_RECENT or FAILED")
    job_id: str | None = Field(default=None, description="Batch job id")
    trigger: str = Field(description="CRON or MANUAL")
    tenants_processed: int = 0
    courses: int = 0
    activities: int = 0
    analyses_generated: int = 0
    cleaned_up: int = 0
    errors: list[ScopeErrorResponse] = Field(default_factory=list)
    duration_ms: int = 0
    message: str = ""
    blocking_job_id: str | None = Field(default=None, description="Job that caused a skip")

    @classmethod
    def from_result(cls, result: RunResult) -> "RunResultResponse":
        return cls.model_validate(result.to_dict())


class QueuedRunResponse(BaseModel):
    """Run handed to a background worker."""

    status: str = Field(default="queued")
    trigger: str
    message_id: str = Field(description="Dramatiq message id")
    message: str


class NotScheduledResponse(BaseModel):
    """Cron call outside the schedule window."""

    outcome: str = Field(default="NOT_SCHEDULED")
    trigger: str = Field(default=JobTrigger.CRON.value)
    message: str
    next_run: datetime | None = Field(default=None, description="Next scheduled run (UTC)")


class JobProgressResponse(BaseModel):
    """Progress of a job."""

    job_id: str
    status: str
    trigger: str
    current_step: int
    total_steps: int
    current_step_name: str | None = None
    current_tenant: str | None = None
    total_tenants: int
    processed_tenants: int
    processed_courses: int
    processed_activities: int
    generated_analyses: int
    error_count: int
    percent: float = Field(description="Overall completion, 0 to 100")
    eta_seconds: float | None = Field(default=None, description="Estimated remaining seconds")
    started_at: str | None = None
    completed_at: str | None = None
    last_error: str | None = None

    @classmethod
    def from_progress(cls, progress: JobProgress) -> "JobProgressResponse":
        return cls(**asdict(progress))


class JobResponse(BaseModel):
    """Persisted job record."""

    id: str
    status: str
    trigger: str
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    total_tenants: int
    processed_tenants: int
    processed_courses: int
    processed_activities: int
    generated_analyses: int
    success_count: int
    error_count: int
    last_error: str | None = None
    summary: dict[str, Any] | None = None
    errors: list[dict[str, Any]] | None = None

    @classmethod
    def from_job(cls, job: BatchJob) -> "JobResponse":
        return cls(
            id=job.id,
            status=job.status,
            trigger=job.triggered_by,
            scheduled_for=job.scheduled_for,
            started_at=job.started_at,
            completed_at=job.completed_at,
            duration_ms=job.duration_ms,
            total_tenants=job.total_tenants,
            processed_tenants=job.processed_tenants,
            processed_courses=job.processed_courses,
            processed_activities=job.processed_activities,
            generated_analyses=job.generated_analyses,
            success_count=job.success_count,
            error_count=job.error_count,
            last_error=job.last_error,
            summary=job.summary,
            errors=job.errors,
        )


class JobListResponse(BaseModel):
    """Recent jobs, newest first."""

    jobs: list[JobResponse]
    total: int = Field(description="Number of jobs returned")


# =============================================================================
# Helpers
# =============================================================================


def _result_response(result: RunResult) -> JSONResponse:
    return JSONResponse(
        status_code=result.outcome.http_status,
        content=RunResultResponse.from_result(result).model_dump(mode="json"),
    )


def _enqueue(
    trigger: JobTrigger,
    force_refresh: bool,
    scheduled_for: datetime | None = None,
) -> JSONResponse:
    # Importing the actor module declares the actor on the configured broker
    from classpulse.infrastructure.background.tasks import run_batch_sync_job

    message = run_batch_sync_job.send(
        trigger=trigger.value,
        scheduled_for=scheduled_for.isoformat() if scheduled_for else None,
        force_refresh=force_refresh,
    )
    logger.info("Queued %s batch run: message_id=%s", trigger.value, message.message_id)

    body = QueuedRunResponse(
        trigger=trigger.value,
        message_id=message.message_id,
        message="Run queued for a background worker",
    )
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json"))


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "/trigger",
    response_model=RunResultResponse,
    summary="Trigger a manual run",
    responses={
        202: {"model": QueuedRunResponse},
        207: {"model": RunResultResponse},
        409: {"model": RunResultResponse},
        500: {"model": RunResultResponse},
    },
)
async def trigger_run(
    force_refresh: bool = Query(False, description="Regenerate every eligible analysis"),
    background: bool = Query(False, description="Run in a background worker"),
    runtime: BatchRuntime = Depends(get_runtime),
    _: None = Depends(require_trigger_secret),
) -> JSONResponse:
    """Run the pipeline now with trigger MANUAL.

    Args:
        force_refresh: Ignore cached analyses.
        background: Return 202 immediately and let a worker run it.
        runtime: Batch runtime.

    Returns:
        The run result with the outcome's status code, or 202.
    """
    if background:
        return _enqueue(JobTrigger.MANUAL, force_refresh)

    result = await runtime.orchestrator.start_run(JobTrigger.MANUAL, force_refresh=force_refresh)
    return _result_response(result)


@router.post(
    "/cron",
    response_model=RunResultResponse,
    summary="Trigger a scheduled run",
    responses={
        202: {"model": QueuedRunResponse},
        409: {"model": RunResultResponse},
    },
)
async def cron_run(
    background: bool = Query(False, description="Run in a background worker"),
    runtime: BatchRuntime = Depends(get_runtime),
    _: None = Depends(require_trigger_secret),
) -> JSONResponse:
    """Run the pipeline with trigger CRON if a run time is due.

    Outside the schedule window nothing is started and the response
    carries the next run time.
    """
    now = utc_now()
    planned = runtime.window.matching_run(now)
    if planned is None:
        body = NotScheduledResponse(
            message="No scheduled run is due",
            next_run=runtime.window.next_run(now),
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))

    if background:
        return _enqueue(JobTrigger.CRON, False, planned)

    result = await runtime.orchestrator.start_run(JobTrigger.CRON, scheduled_for=planned)
    return _result_response(result)


@router.get(
    "/status",
    response_model=JobProgressResponse,
    summary="Progress of the current or last job",
)
async def get_status(
    runtime: BatchRuntime = Depends(get_runtime),
) -> JobProgressResponse:
    """Get progress of the running job, or of the most recent one.

    Raises:
        HTTPException: 404 if no job was ever recorded.
    """
    progress = await runtime.orchestrator.get_progress()
    if progress is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No batch jobs found")
    return JobProgressResponse.from_progress(progress)


@router.get(
    "/jobs",
    response_model=JobListResponse,
    summary="Recent jobs",
)
async def list_jobs(
    limit: int = Query(20, ge=1, le=100, description="Maximum jobs to return"),
    job_status: JobStatus | None = Query(None, alias="status", description="Filter by status"),
    runtime: BatchRuntime = Depends(get_runtime),
) -> JobListResponse:
    """List recent jobs, newest first."""
    jobs = await runtime.jobs.list_recent(limit=limit, status=job_status)
    return JobListResponse(jobs=[JobResponse.from_job(job) for job in jobs], total=len(jobs))


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="One job",
)
async def get_job(
    job_id: str,
    runtime: BatchRuntime = Depends(get_runtime),
) -> JobResponse:
    """Get a job by id.

    Raises:
        HTTPException: 404 if the job does not exist.
    """
    job = await runtime.jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job not found: {job_id}")
    return JobResponse.from_job(job)
