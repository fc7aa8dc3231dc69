# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-03-01

This migration creates:
- tenants: LMS tenant registry
- personal_tokens / service_tokens: LMS credentials
- batch_jobs: one row per pipeline run
- activity_analyses: cached analyses with the single-latest index
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create all tables."""
    # ==========================================================================
    # 1. tenants
    # ==========================================================================
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("base_url", sa.String(500), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("analysis_ttl_hours", sa.Float, nullable=True),
        *_timestamps(),
    )

    # ==========================================================================
    # 2. Credentials
    # ==========================================================================
    op.create_table(
        "personal_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(50),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("principal", sa.String(255), nullable=False),
        sa.Column("token_encrypted", sa.Text, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "principal", name="uq_personal_tokens_tenant_principal"),
    )

    op.create_table(
        "service_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(50),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token", sa.Text, nullable=False),
        sa.Column("principal", sa.String(255), nullable=False),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_service_tokens_tenant_created", "service_tokens", ["tenant_id", "created_at"])

    # ==========================================================================
    # 3. batch_jobs
    # ==========================================================================
    op.create_table(
        "batch_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("scope", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("triggered_by", sa.String(20), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        # Progress
        sa.Column("current_step", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_steps", sa.Integer, nullable=False, server_default="3"),
        sa.Column("current_step_name", sa.String(100), nullable=True),
        sa.Column("current_tenant", sa.String(50), nullable=True),
        # Counters
        sa.Column("total_tenants", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_tenants", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_courses", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_activities", sa.Integer, nullable=False, server_default="0"),
        sa.Column("generated_analyses", sa.Integer, nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer, nullable=False, server_default="0"),
        # Results
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("summary", sa.JSON, nullable=True),
        sa.Column("errors", sa.JSON, nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED')",
            name="valid_batch_job_status",
        ),
        sa.CheckConstraint(
            "triggered_by IN ('CRON', 'MANUAL')",
            name="valid_batch_job_trigger",
        ),
    )
    op.create_index("ix_batch_jobs_status_started", "batch_jobs", ["status", "started_at"])
    op.create_index(
        "uq_batch_jobs_single_running",
        "batch_jobs",
        ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'RUNNING'"),
        sqlite_where=sa.text("status = 'RUNNING'"),
    )

    # ==========================================================================
    # 4. activity_analyses
    # ==========================================================================
    op.create_table(
        "activity_analyses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(50), nullable=False),
        sa.Column("course_key", sa.String(100), nullable=False),
        sa.Column("lms_course_id", sa.String(50), nullable=False),
        sa.Column("activity_id", sa.String(50), nullable=False),
        sa.Column("activity_type", sa.String(30), nullable=False),
        sa.Column("activity_name", sa.String(500), nullable=False),
        # Structured analysis
        sa.Column("summary", sa.Text, nullable=False),
        sa.Column("positives", sa.JSON, nullable=False),
        sa.Column("alerts", sa.JSON, nullable=False),
        sa.Column("insights", sa.JSON, nullable=False),
        sa.Column("recommendation", sa.Text, nullable=False, server_default=""),
        sa.Column("full_analysis", sa.Text, nullable=False),
        sa.Column("response_format", sa.String(20), nullable=False),
        sa.Column("llm_response", sa.JSON, nullable=True),
        sa.Column("activity_data", sa.JSON, nullable=True),
        sa.Column("source_fingerprint", sa.String(64), nullable=False),
        # Cache state
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_valid", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_latest", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "course_key",
            "activity_id",
            "activity_type",
            "source_fingerprint",
            name="uq_activity_analyses_key_fingerprint",
        ),
    )
    op.create_index(
        "uq_activity_analyses_latest",
        "activity_analyses",
        ["course_key", "activity_id", "activity_type"],
        unique=True,
        postgresql_where=sa.text("is_latest"),
        sqlite_where=sa.text("is_latest = 1"),
    )
    op.create_index("ix_activity_analyses_expires_at", "activity_analyses", ["expires_at"])
    op.create_index("ix_activity_analyses_tenant", "activity_analyses", ["tenant_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("ix_activity_analyses_tenant", table_name="activity_analyses")
    op.drop_index("ix_activity_analyses_expires_at", table_name="activity_analyses")
    op.drop_index("uq_activity_analyses_latest", table_name="activity_analyses")
    op.drop_table("activity_analyses")

    op.drop_index("uq_batch_jobs_single_running", table_name="batch_jobs")
    op.drop_index("ix_batch_jobs_status_started", table_name="batch_jobs")
    op.drop_table("batch_jobs")

    op.drop_index("ix_service_tokens_tenant_created", table_name="service_tokens")
    op.drop_table("service_tokens")
    op.drop_table("personal_tokens")

    op.drop_table("tenants")
