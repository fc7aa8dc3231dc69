# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers for ClassPulse.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations
"""

from classpulse.utils.datetime import (
    elapsed_ms,
    ensure_utc,
    format_iso,
    is_expired,
    minutes_ago,
    utc_from_timestamp,
    utc_now,
)
from classpulse.utils.logging import bind_context, clear_context, setup_logging

__all__ = [
    # Logging
    "setup_logging",
    "bind_context",
    "clear_context",
    # Datetime
    "utc_now",
    "utc_from_timestamp",
    "ensure_utc",
    "minutes_ago",
    "is_expired",
    "elapsed_ms",
    "format_iso",
]
