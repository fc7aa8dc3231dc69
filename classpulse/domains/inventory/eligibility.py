# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Which fetched activities are worth analyzing.

An activity is analyzed when its tenant is on the show-all allow-list,
when it is open right now, or when it already has participation.
Eligibility only narrows the candidate set; the staleness check still
decides whether a cached analysis is reused.
"""

from collections.abc import Collection
from datetime import datetime
from typing import Any, Optional

from classpulse.domains.inventory.schemas import ActivityInventory
from classpulse.utils.datetime import utc_from_timestamp, utc_now


def availability_window(
    raw: dict[str, Any],
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Extract the open and close dates of an LMS activity.

    Moodle uses 0 for unset dates.

    Args:
        raw: Forum or assignment record as returned by the LMS.

    Returns:
        (opens_at, closes_at), each None when unset.
    """
    opens_at = utc_from_timestamp(raw.get("allowsubmissionsfromdate")) or utc_from_timestamp(
        raw.get("timeopen")
    )
    closes_at = (
        utc_from_timestamp(raw.get("cutoffdate"))
        or utc_from_timestamp(raw.get("duedate"))
        or utc_from_timestamp(raw.get("timeclose"))
    )
    return opens_at, closes_at


def is_open(activity: ActivityInventory, now: Optional[datetime] = None) -> bool:
    """Whether the activity accepts participation at ``now``."""
    now = now or utc_now()
    if activity.opens_at is not None and activity.opens_at > now:
        return False
    if activity.closes_at is not None and activity.closes_at <= now:
        return False
    return True


def is_eligible(
    activity: ActivityInventory,
    show_all_tenants: Collection[str] = (),
    now: Optional[datetime] = None,
) -> bool:
    """Decide whether an activity should go through analysis.

    Args:
        activity: Fetched activity.
        show_all_tenants: Tenants whose activities are always analyzed.
        now: Reference time, defaults to the current UTC time.

    Returns:
        True if the activity should be analyzed.
    """
    if activity.tenant_id in show_all_tenants:
        return True
    return is_open(activity, now) or activity.has_content


def filter_eligible(
    activities: list[ActivityInventory],
    show_all_tenants: Collection[str] = (),
    now: Optional[datetime] = None,
) -> list[ActivityInventory]:
    """Keep the eligible activities, preserving order."""
    now = now or utc_now()
    return [a for a in activities if is_eligible(a, show_all_tenants, now)]
