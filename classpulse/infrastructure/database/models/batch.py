# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Batch job model.

One BatchJob row is written per pipeline run. At most one row may be
RUNNING at a time; COMPLETED and FAILED are terminal.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from classpulse.infrastructure.database.models.base import Base, TimestampMixin, UTCDateTime


class JobStatus(str, Enum):
    """Lifecycle states of a batch job."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobTrigger(str, Enum):
    """What started a run."""

    CRON = "CRON"
    MANUAL = "MANUAL"


JOB_TYPE_FULL_SYNC = "FULL_SYNC"
JOB_SCOPE_ALL_TENANTS = "ALL_TENANTS"


class BatchJob(Base, TimestampMixin):
    """Persistent record of one pipeline run.

    Attributes:
        status: PENDING, RUNNING, COMPLETED or FAILED.
        triggered_by: CRON or MANUAL.
        current_step: 1-based index of the step in progress.
        total_steps: Fixed at 3 (inventory sync, analysis, cleanup).
        summary: Per-stage results written on completion.
        errors: Scope errors collected during the run.
    """

    __tablename__ = "batch_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED')",
            name="valid_batch_job_status",
        ),
        CheckConstraint(
            "triggered_by IN ('CRON', 'MANUAL')",
            name="valid_batch_job_trigger",
        ),
        Index("ix_batch_jobs_status_started", "status", "started_at"),
        Index(
            "uq_batch_jobs_single_running",
            "status",
            unique=True,
            postgresql_where=text("status = 'RUNNING'"),
            sqlite_where=text("status = 'RUNNING'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    job_type: Mapped[str] = mapped_column(String(50), default=JOB_TYPE_FULL_SYNC, nullable=False)
    scope: Mapped[str] = mapped_column(String(50), default=JOB_SCOPE_ALL_TENANTS, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING.value, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(20), nullable=False)

    scheduled_for: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    current_step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_steps: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    current_step_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    current_tenant: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    total_tenants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_tenants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_courses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_activities: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    generated_analyses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    errors: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    def __repr__(self) -> str:
        return f"<BatchJob(id={self.id!r}, status={self.status}, trigger={self.triggered_by})>"
