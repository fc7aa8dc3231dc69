# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task infrastructure for ClassPulse.

- Redis broker for run messages
- run_batch_sync_job actor executing the pipeline in workers
- APScheduler cron triggers at the fixed run times

Quick Start:
    from classpulse.infrastructure.background import setup_dramatiq
    setup_dramatiq()

Running Workers:
    dramatiq classpulse.infrastructure.background.tasks --processes 1 --threads 2
"""

from classpulse.infrastructure.background.broker import (
    BrokerManager,
    Priority,
    Queues,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)
from classpulse.infrastructure.background.scheduler import (
    BatchScheduler,
    ScheduledTask,
    get_scheduler,
    start_scheduler,
    stop_scheduler,
)

# Task actors are imported lazily: declaring them requires a broker.
# Use: from classpulse.infrastructure.background.tasks import run_batch_sync_job

__all__ = [
    # Broker
    "BrokerManager",
    "Priority",
    "Queues",
    "get_broker",
    "get_broker_manager",
    "setup_dramatiq",
    "shutdown_dramatiq",
    # Scheduler
    "BatchScheduler",
    "ScheduledTask",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
]
