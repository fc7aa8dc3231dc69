# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cached activity analysis model.

Rows are keyed by (course_key, activity_id, activity_type). Several rows may
exist per key (one per source fingerprint) but exactly one carries
is_latest = true. The partial unique index below backs that invariant on
both PostgreSQL and SQLite.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from classpulse.infrastructure.database.models.base import Base, UTCDateTime
from classpulse.utils.datetime import utc_now


class ActivityAnalysis(Base):
    """Structured analysis of one forum or assignment.

    Attributes:
        course_key: Tenant-scoped course key, "{tenant_id}-{course_id}".
        activity_id: LMS activity identifier.
        activity_type: "forum" or "assign".
        positives: Up to three positive observations.
        alerts: Up to three alerts.
        insights: Up to three insights.
        full_analysis: Raw model response text.
        source_fingerprint: Hash of the context sent to the model.
        is_valid: False once invalidated, forcing regeneration.
        is_latest: True for the single current row of a key.
    """

    __tablename__ = "activity_analyses"
    __table_args__ = (
        UniqueConstraint(
            "course_key",
            "activity_id",
            "activity_type",
            "source_fingerprint",
            name="uq_activity_analyses_key_fingerprint",
        ),
        Index(
            "uq_activity_analyses_latest",
            "course_key",
            "activity_id",
            "activity_type",
            unique=True,
            postgresql_where=text("is_latest"),
            sqlite_where=text("is_latest = 1"),
        ),
        Index("ix_activity_analyses_expires_at", "expires_at"),
        Index("ix_activity_analyses_tenant", "tenant_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)
    course_key: Mapped[str] = mapped_column(String(100), nullable=False)
    lms_course_id: Mapped[str] = mapped_column(String(50), nullable=False)
    activity_id: Mapped[str] = mapped_column(String(50), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    activity_name: Mapped[str] = mapped_column(String(500), nullable=False)

    summary: Mapped[str] = mapped_column(Text, nullable=False)
    positives: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    alerts: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    insights: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    recommendation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    full_analysis: Mapped[str] = mapped_column(Text, nullable=False)
    response_format: Mapped[str] = mapped_column(String(20), nullable=False)
    llm_response: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    activity_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    source_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_latest: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ActivityAnalysis(course_key={self.course_key!r}, "
            f"activity={self.activity_type}:{self.activity_id}, latest={self.is_latest})>"
        )
