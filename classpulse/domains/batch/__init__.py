# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Batch pipeline domain.

- JobOrchestrator: runs sync, analysis and cleanup as one tracked job
- JobRepository: admission control and BatchJob transitions
- RunLease: serializes runs within a process or through Redis
- ScheduleWindow: fixed wall-clock run times
- BatchRuntime: wires the collaborators from settings
"""

from classpulse.domains.batch.jobs import Admission, JobRepository, JobStateError
from classpulse.domains.batch.lease import LEASE_KEY, LocalRunLease, RedisRunLease, RunLease
from classpulse.domains.batch.orchestrator import JobOrchestrator
from classpulse.domains.batch.runtime import BatchRuntime, build_runtime
from classpulse.domains.batch.schedule import ScheduleWindow
from classpulse.domains.batch.schemas import (
    RUN_STEPS,
    STEP_ANALYSIS,
    STEP_CLEANUP,
    STEP_INVENTORY_SYNC,
    JobProgress,
    RunOutcome,
    RunResult,
)

__all__ = [
    "Admission",
    "BatchRuntime",
    "JobOrchestrator",
    "JobProgress",
    "JobRepository",
    "JobStateError",
    "LEASE_KEY",
    "LocalRunLease",
    "RUN_STEPS",
    "RedisRunLease",
    "RunLease",
    "RunOutcome",
    "RunResult",
    "STEP_ANALYSIS",
    "STEP_CLEANUP",
    "STEP_INVENTORY_SYNC",
    "ScheduleWindow",
    "build_runtime",
]
