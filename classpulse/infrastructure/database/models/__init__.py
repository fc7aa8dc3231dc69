# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for ClassPulse.

Importing this package registers every table on Base.metadata.
"""

from classpulse.infrastructure.database.models.analysis import ActivityAnalysis
from classpulse.infrastructure.database.models.base import Base, TimestampMixin, UTCDateTime
from classpulse.infrastructure.database.models.batch import (
    JOB_SCOPE_ALL_TENANTS,
    JOB_TYPE_FULL_SYNC,
    BatchJob,
    JobStatus,
    JobTrigger,
)
from classpulse.infrastructure.database.models.credentials import PersonalToken, ServiceToken
from classpulse.infrastructure.database.models.tenant import Tenant

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "Tenant",
    "PersonalToken",
    "ServiceToken",
    "BatchJob",
    "JobStatus",
    "JobTrigger",
    "JOB_TYPE_FULL_SYNC",
    "JOB_SCOPE_ALL_TENANTS",
    "ActivityAnalysis",
]
