# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity of cached analyses, shared by inventory and analysis."""

from dataclasses import dataclass


def make_course_key(tenant_id: str, course_id: int | str) -> str:
    """Build the tenant-scoped course key.

    Example:
        >>> make_course_key("101", 55)
        '101-55'
    """
    return f"{tenant_id}-{course_id}"


@dataclass(frozen=True)
class AnalysisKey:
    """Identity of one cached analysis.

    Attributes:
        course_key: "{tenant_id}-{course_id}".
        activity_id: LMS activity id as a string.
        activity_type: LMS module name ("forum" or "assign").
    """

    course_key: str
    activity_id: str
    activity_type: str

    def __str__(self) -> str:
        return f"{self.course_key}/{self.activity_type}/{self.activity_id}"
