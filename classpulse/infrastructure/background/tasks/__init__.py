# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors for ClassPulse.

Usage:
    from classpulse.infrastructure.background.tasks import run_batch_sync_job

    run_batch_sync_job.send(trigger="MANUAL")

Running Workers:
    dramatiq classpulse.infrastructure.background.tasks --processes 1 --threads 2
"""

from classpulse.infrastructure.background.tasks.batch_sync import run_batch_sync_job
from classpulse.infrastructure.background.tasks.base import get_worker_runtime, run_async

__all__ = [
    "get_worker_runtime",
    "run_async",
    "run_batch_sync_job",
]
