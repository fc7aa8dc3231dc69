# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LMS web service boundary."""

from classpulse.infrastructure.lms.client import (
    LMSClient,
    LMSError,
    LMSNotFoundError,
    LMSPermissionError,
    LMSTransportError,
    flatten_params,
)

__all__ = [
    "LMSClient",
    "LMSError",
    "LMSNotFoundError",
    "LMSPermissionError",
    "LMSTransportError",
    "flatten_params",
]
