# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant inventory fetcher.

Pulls courses, forums (with discussions and posts) and assignments
(with submissions) from a tenant's LMS. Every web service call is
isolated: a failure is recorded as a ScopeError at the smallest scope it
affects and the fetch moves on.

Failure handling per call:
- course listing fails: empty inventory with a tenant-scope error
- course contents or activity listing fails: course-scope error
- discussions of a forum fail: the forum is skipped
- posts of a discussion fail: the discussion is skipped
- submissions of an assignment fail: the assignment is kept with zero counts
- enrolled users fail: the count is left at 0

A permission error raised while using a personal token is retried once
with the tenant's service token.

Example:
    >>> fetcher = InventoryFetcher(resolver, http_client, settings.lms)
    >>> inventory = await fetcher.fetch_inventory(tenant, credential)
    >>> len(inventory.courses), len(inventory.errors)
    (12, 1)
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

import httpx

from classpulse.core.config.settings import LMSSettings
from classpulse.domains.credentials.resolver import (
    CredentialResolution,
    CredentialResolver,
    NoCredentialError,
)
from classpulse.domains.errors import ErrorKind, ScopeError
from classpulse.domains.inventory.eligibility import availability_window
from classpulse.domains.inventory.schemas import (
    ACTIVITY_TYPE_ASSIGN,
    ACTIVITY_TYPE_FORUM,
    ActivityInventory,
    CourseInventory,
    DiscussionContent,
    PostContent,
    SubmissionContent,
    TenantInventory,
)
from classpulse.infrastructure.database.models import Tenant
from classpulse.infrastructure.lms.client import (
    LMSClient,
    LMSError,
    LMSNotFoundError,
    LMSPermissionError,
)
from classpulse.utils.datetime import utc_from_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[str, str], LMSClient]

# Raised by converters on malformed LMS payloads
PAYLOAD_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


def error_kind(error: Exception) -> str:
    """Map an exception to a ScopeError kind."""
    if isinstance(error, LMSPermissionError):
        return ErrorKind.PERMISSION
    if isinstance(error, LMSNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, NoCredentialError):
        return ErrorKind.CREDENTIAL
    if isinstance(error, PAYLOAD_ERRORS):
        return ErrorKind.VALIDATION
    return ErrorKind.TRANSPORT


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class _TenantSession:
    """Clients and collected errors for one tenant fetch."""

    def __init__(
        self,
        fetcher: "InventoryFetcher",
        tenant: Tenant,
        credential: CredentialResolution,
    ) -> None:
        self.fetcher = fetcher
        self.tenant = tenant
        self.credential = credential
        self.client = fetcher._client_factory(tenant.base_url, credential.token)
        self.errors: list[ScopeError] = []
        self._fallback: Optional[LMSClient] = None
        self._fallback_resolved = False

    def record(self, scope: str, error: Exception) -> None:
        scope_error = ScopeError.from_exception(scope, error_kind(error), error)
        logger.warning(
            "Inventory error: tenant=%s scope=%s kind=%s error=%s",
            self.tenant.id,
            scope,
            scope_error.kind,
            scope_error.message,
        )
        self.errors.append(scope_error)

    async def _fallback_client(self) -> Optional[LMSClient]:
        if not self._fallback_resolved:
            self._fallback_resolved = True
            try:
                service = await self.fetcher._resolver.resolve_service(self.tenant)
            except NoCredentialError:
                logger.info("No service token to fall back to for tenant=%s", self.tenant.id)
            else:
                if service.token != self.credential.token:
                    self._fallback = self.fetcher._client_factory(
                        self.tenant.base_url, service.token
                    )
        return self._fallback

    async def call(self, operation: Callable[[LMSClient], Awaitable[T]]) -> T:
        """Run one LMS call, retrying once with the service token.

        Raises:
            LMSError: If the call (and its retry, when attempted) fails.
        """
        try:
            return await operation(self.client)
        except LMSPermissionError:
            if not self.credential.is_personal:
                raise
            fallback = await self._fallback_client()
            if fallback is None:
                raise
            logger.info("Permission denied with personal token, retrying with service token")
            return await operation(fallback)


class InventoryFetcher:
    """Fetch a best-effort inventory for a tenant.

    Attributes:
        _resolver: Used for the service-token retry.
        _client_factory: Builds an LMSClient for (base_url, token).
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        http_client: Optional[httpx.AsyncClient] = None,
        lms_settings: Optional[LMSSettings] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._resolver = resolver
        settings = lms_settings or LMSSettings()

        if client_factory is None:

            def client_factory(base_url: str, token: str) -> LMSClient:
                return LMSClient(
                    base_url,
                    token,
                    http_client=http_client,
                    api_path=settings.api_path,
                    timeout=settings.timeout,
                )

        self._client_factory = client_factory

    async def fetch_inventory(
        self,
        tenant: Tenant,
        credential: CredentialResolution,
    ) -> TenantInventory:
        """Fetch courses and activities of one tenant.

        Args:
            tenant: Tenant to fetch.
            credential: Token to start with.

        Returns:
            TenantInventory with whatever could be fetched and the errors.
        """
        session = _TenantSession(self, tenant, credential)
        inventory = TenantInventory(tenant_id=tenant.id, credential_kind=credential.kind)

        try:
            raw_courses = await session.call(lambda c: c.get_courses())
        except LMSError as e:
            session.record(f"tenant:{tenant.id}", e)
            inventory.errors = session.errors
            return inventory

        logger.info("Fetched %d courses for tenant=%s", len(raw_courses), tenant.id)

        for raw_course in raw_courses:
            course_id = _to_int(raw_course.get("id"))
            if course_id is None or raw_course.get("format") == "site":
                continue
            try:
                inventory.courses.append(await self._fetch_course(session, raw_course, course_id))
            except Exception as e:
                # Keep the remaining courses whatever went wrong with this one
                session.record(f"course:{tenant.id}-{course_id}", e)

        inventory.errors = session.errors
        return inventory

    # ========== Courses ==========

    async def _fetch_course(
        self,
        session: _TenantSession,
        raw_course: dict[str, Any],
        course_id: int,
    ) -> CourseInventory:
        course = CourseInventory(
            tenant_id=session.tenant.id,
            course_id=course_id,
            name=str(raw_course.get("fullname") or raw_course.get("name") or course_id),
            short_name=str(raw_course.get("shortname") or ""),
        )
        scope = f"course:{course.course_key}"

        try:
            sections = await session.call(lambda c: c.get_course_contents(course_id))
            course.section_count = len(sections)
        except LMSError as e:
            session.record(scope, e)

        try:
            users = await session.call(lambda c: c.get_enrolled_users(course_id))
            course.enrolled_count = len(users)
        except LMSError as e:
            logger.debug("Enrolled users unavailable for %s: %s", scope, str(e))

        try:
            forums = await session.call(lambda c: c.get_forums(course_id))
        except LMSError as e:
            session.record(scope, e)
            forums = []

        for raw_forum in forums:
            activity = await self._fetch_forum(session, course, raw_forum)
            if activity is not None:
                course.activities.append(activity)

        try:
            assignments = await session.call(lambda c: c.get_assignments(course_id))
        except LMSError as e:
            session.record(scope, e)
            assignments = []

        for raw_assignment in assignments:
            activity = await self._fetch_assignment(session, course, raw_assignment)
            if activity is not None:
                course.activities.append(activity)

        return course

    def _new_activity(
        self,
        session: _TenantSession,
        course: CourseInventory,
        raw: dict[str, Any],
        activity_type: str,
    ) -> Optional[ActivityInventory]:
        activity_id = _to_int(raw.get("id"))
        name = str(raw.get("name") or "").strip()
        if activity_id is None or not name:
            session.record(
                f"activity:{course.course_key}/{activity_type}/{raw.get('id')}",
                ValueError("Activity is missing its id or name"),
            )
            return None

        opens_at, closes_at = availability_window(raw)
        return ActivityInventory(
            tenant_id=session.tenant.id,
            course_id=course.course_id,
            activity_id=activity_id,
            activity_type=activity_type,
            name=name,
            intro=str(raw.get("intro") or ""),
            opens_at=opens_at,
            closes_at=closes_at,
        )

    # ========== Forums ==========

    async def _fetch_forum(
        self,
        session: _TenantSession,
        course: CourseInventory,
        raw_forum: dict[str, Any],
    ) -> Optional[ActivityInventory]:
        activity = self._new_activity(session, course, raw_forum, ACTIVITY_TYPE_FORUM)
        if activity is None:
            return None

        forum_scope = f"forum:{course.course_key}/{activity.activity_id}"
        forum_id = activity.activity_id
        try:
            raw_discussions = await session.call(lambda c: c.get_forum_discussions(forum_id))
        except LMSError as e:
            session.record(forum_scope, e)
            return None

        participants: set[int] = set()
        for raw_discussion in raw_discussions:
            if not isinstance(raw_discussion, dict):
                session.record(forum_scope, TypeError("Discussion entry is not an object"))
                continue
            discussion_id = _to_int(raw_discussion.get("discussion") or raw_discussion.get("id"))
            if discussion_id is None:
                continue
            discussion_scope = f"discussion:{course.course_key}/{forum_id}/{discussion_id}"
            try:
                raw_posts = await session.call(lambda c: c.get_discussion_posts(discussion_id))
                discussion = DiscussionContent(
                    discussion_id=discussion_id,
                    title=str(raw_discussion.get("name") or raw_discussion.get("subject") or ""),
                    posts=[self._to_post(raw_post) for raw_post in raw_posts],
                )
            except (LMSError, *PAYLOAD_ERRORS) as e:
                session.record(discussion_scope, e)
                continue

            activity.discussions.append(discussion)

            for post in discussion.posts:
                if post.author_id is not None:
                    participants.add(post.author_id)
                if post.created_at and (
                    activity.last_post_at is None or post.created_at > activity.last_post_at
                ):
                    activity.last_post_at = post.created_at

        activity.discussion_count = len(activity.discussions)
        activity.total_posts = sum(len(d.posts) for d in activity.discussions)
        activity.unique_participants = len(participants)
        if activity.discussions:
            activity.first_discussion_id = activity.discussions[0].discussion_id
        return activity

    @staticmethod
    def _to_post(raw: dict[str, Any]) -> PostContent:
        author = raw.get("author") or {}
        return PostContent(
            post_id=_to_int(raw.get("id")) or 0,
            author_id=_to_int(raw.get("userid") or author.get("id")),
            author_name=str(raw.get("userfullname") or author.get("fullname") or ""),
            subject=str(raw.get("subject") or ""),
            message=str(raw.get("message") or ""),
            created_at=utc_from_timestamp(raw.get("created") or raw.get("timecreated")),
        )

    # ========== Assignments ==========

    async def _fetch_assignment(
        self,
        session: _TenantSession,
        course: CourseInventory,
        raw_assignment: dict[str, Any],
    ) -> Optional[ActivityInventory]:
        activity = self._new_activity(session, course, raw_assignment, ACTIVITY_TYPE_ASSIGN)
        if activity is None:
            return None

        assignment_id = activity.activity_id
        try:
            raw_submissions = await session.call(lambda c: c.get_submissions(assignment_id))
            submissions = [self._to_submission(raw) for raw in raw_submissions]
        except (LMSError, *PAYLOAD_ERRORS) as e:
            session.record(f"activity:{activity.key}", e)
            return activity

        activity.submissions = submissions
        activity.submission_count = len(activity.submissions)
        activity.graded_count = sum(
            1 for s in activity.submissions if s.grade is not None and s.grade >= 0
        )
        return activity

    @staticmethod
    def _to_submission(raw: dict[str, Any]) -> SubmissionContent:
        texts: list[str] = []
        for plugin in raw.get("plugins") or []:
            for editor_field in plugin.get("editorfields") or []:
                if editor_field.get("text"):
                    texts.append(str(editor_field["text"]))
        return SubmissionContent(
            user_id=_to_int(raw.get("userid")),
            status=str(raw.get("status") or ""),
            grade=_to_float(raw.get("grade")),
            submitted_at=utc_from_timestamp(raw.get("timemodified")),
            text="\n".join(texts),
        )
