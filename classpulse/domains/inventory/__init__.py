# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant inventory domain: LMS snapshot, statistics and eligibility."""

from classpulse.domains.inventory.eligibility import filter_eligible, is_eligible, is_open
from classpulse.domains.inventory.fetcher import InventoryFetcher
from classpulse.domains.inventory.schemas import (
    ActivityInventory,
    CourseInventory,
    DiscussionContent,
    PostContent,
    SubmissionContent,
    TenantInventory,
)

__all__ = [
    "ActivityInventory",
    "CourseInventory",
    "DiscussionContent",
    "InventoryFetcher",
    "PostContent",
    "SubmissionContent",
    "TenantInventory",
    "filter_eligible",
    "is_eligible",
    "is_open",
]
