# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    batch: Run triggers, progress and job history.
"""

from fastapi import APIRouter

from classpulse.api.v1 import batch

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(batch.router, prefix="/batch", tags=["Batch"])

__all__ = ["router"]
