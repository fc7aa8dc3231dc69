# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Inventory value types.

An inventory is a snapshot of a tenant's courses and their forum and
assignment activities, with the participation statistics and content
the analysis generator needs. Nothing here is persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from classpulse.domains.keys import AnalysisKey, make_course_key
from classpulse.domains.errors import ScopeError
from classpulse.utils.datetime import format_iso

ACTIVITY_TYPE_FORUM = "forum"
ACTIVITY_TYPE_ASSIGN = "assign"


@dataclass
class PostContent:
    """One forum post."""

    post_id: int
    author_id: Optional[int]
    author_name: str
    subject: str
    message: str
    created_at: Optional[datetime] = None


@dataclass
class DiscussionContent:
    """One forum discussion and the posts that could be fetched."""

    discussion_id: int
    title: str
    posts: list[PostContent] = field(default_factory=list)


@dataclass
class SubmissionContent:
    """One assignment submission."""

    user_id: Optional[int]
    status: str
    grade: Optional[float] = None
    submitted_at: Optional[datetime] = None
    text: str = ""


@dataclass
class ActivityInventory:
    """A forum or assignment with its participation statistics.

    Counters default to zero so a partially fetched activity is still
    usable.

    Attributes:
        tenant_id: Owning tenant.
        course_id: LMS course id.
        activity_id: LMS instance id of the forum or assignment.
        activity_type: "forum" or "assign".
        name: Display name.
        intro: Description text.
        opens_at: allowsubmissionsfromdate or timeopen.
        closes_at: cutoffdate, else duedate, else timeclose.
        discussion_count: Forum discussions fetched.
        total_posts: Forum posts across discussions.
        unique_participants: Distinct post authors.
        last_post_at: Most recent post time.
        first_discussion_id: Id of the first discussion, if any.
        submission_count: Assignment submissions.
        graded_count: Submissions with a grade >= 0.
    """

    tenant_id: str
    course_id: int
    activity_id: int
    activity_type: str
    name: str
    intro: str = ""
    opens_at: Optional[datetime] = None
    closes_at: Optional[datetime] = None
    discussion_count: int = 0
    total_posts: int = 0
    unique_participants: int = 0
    last_post_at: Optional[datetime] = None
    first_discussion_id: Optional[int] = None
    submission_count: int = 0
    graded_count: int = 0
    discussions: list[DiscussionContent] = field(default_factory=list, repr=False)
    submissions: list[SubmissionContent] = field(default_factory=list, repr=False)

    @property
    def course_key(self) -> str:
        return make_course_key(self.tenant_id, self.course_id)

    @property
    def key(self) -> AnalysisKey:
        """Cache key of this activity's analysis."""
        return AnalysisKey(
            course_key=self.course_key,
            activity_id=str(self.activity_id),
            activity_type=self.activity_type,
        )

    @property
    def has_content(self) -> bool:
        """Whether anyone has participated yet."""
        return self.submission_count > 0 or self.discussion_count > 0 or self.total_posts > 0

    def stats(self) -> dict[str, Any]:
        """Participation statistics in a JSON-serializable form."""
        data: dict[str, Any] = {
            "activity_type": self.activity_type,
            "opens_at": format_iso(self.opens_at),
            "closes_at": format_iso(self.closes_at),
        }
        if self.activity_type == ACTIVITY_TYPE_FORUM:
            data.update(
                discussion_count=self.discussion_count,
                total_posts=self.total_posts,
                unique_participants=self.unique_participants,
                last_post_at=format_iso(self.last_post_at),
                first_discussion_id=self.first_discussion_id,
            )
        else:
            data.update(
                submission_count=self.submission_count,
                graded_count=self.graded_count,
            )
        return data


@dataclass
class CourseInventory:
    """A course and its eligible-or-not activities."""

    tenant_id: str
    course_id: int
    name: str
    short_name: str = ""
    section_count: int = 0
    enrolled_count: int = 0
    activities: list[ActivityInventory] = field(default_factory=list)

    @property
    def course_key(self) -> str:
        return make_course_key(self.tenant_id, self.course_id)


@dataclass
class TenantInventory:
    """Best-effort snapshot of one tenant.

    Attributes:
        tenant_id: Tenant identifier.
        courses: Courses that could be fetched.
        errors: Failures recorded at their smallest scope.
        credential_kind: Kind of token the fetch started with.
    """

    tenant_id: str
    courses: list[CourseInventory] = field(default_factory=list)
    errors: list[ScopeError] = field(default_factory=list)
    credential_kind: Optional[str] = None

    @property
    def activities(self) -> list[ActivityInventory]:
        return [activity for course in self.courses for activity in course.activities]

    @property
    def activity_count(self) -> int:
        return sum(len(course.activities) for course in self.courses)
