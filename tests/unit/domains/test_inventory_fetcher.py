# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the tenant inventory fetcher."""

from unittest.mock import AsyncMock

import pytest

from classpulse.domains.credentials.resolver import CredentialResolution, NoCredentialError
from classpulse.domains.errors import ErrorKind
from classpulse.domains.inventory.fetcher import InventoryFetcher
from classpulse.infrastructure.lms.client import LMSNotFoundError, LMSPermissionError
from helpers import FakeLMSClient, make_tenant, one_course_site, service_only, transport_error

PERSONAL = CredentialResolution(token="tok", kind="personal", tenant_id="101", principal="profe")
SERVICE = CredentialResolution(token="service-token", kind="service", tenant_id="101")


@pytest.fixture
def tenant():
    return make_tenant("101")


@pytest.fixture
def resolver():
    resolver = AsyncMock()
    resolver.resolve_service = AsyncMock(return_value=SERVICE)
    return resolver


def make_fetcher(resolver, data):
    """Fetcher whose clients all read from the same fake site."""
    clients: list[FakeLMSClient] = []

    def factory(base_url: str, token: str) -> FakeLMSClient:
        client = FakeLMSClient(data, token=token)
        clients.append(client)
        return client

    return InventoryFetcher(resolver, client_factory=factory), clients


def with_second_forum(data):
    """Add forum 13 with one discussion and one post to course 55."""
    data[("get_forums", 55)] = data[("get_forums", 55)] + [{"id": 13, "name": "Foro de dudas"}]
    data[("get_forum_discussions", 13)] = [{"discussion": 301, "name": "Dudas del ensayo"}]
    data[("get_discussion_posts", 301)] = [
        {
            "id": 3,
            "userid": 9,
            "subject": "Extensión",
            "message": "¿Hay prórroga?",
            "created": 1700003000,
        },
    ]
    return data


class TestFetchInventory:
    """Tests for InventoryFetcher.fetch_inventory."""

    @pytest.mark.asyncio
    async def test_full_inventory(self, resolver, tenant):
        """Test a healthy site yields courses, activities and statistics."""
        fetcher, _ = make_fetcher(resolver, one_course_site())

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert inventory.errors == []
        assert inventory.credential_kind == "personal"
        assert [c.course_id for c in inventory.courses] == [55]

        course = inventory.courses[0]
        assert course.course_key == "101-55"
        assert course.section_count == 2
        assert course.enrolled_count == 3

        forum, assignment = course.activities
        assert forum.activity_type == "forum"
        assert forum.discussion_count == 1
        assert forum.total_posts == 2
        assert forum.unique_participants == 2
        assert forum.first_discussion_id == 300
        assert forum.last_post_at is not None
        assert forum.last_post_at.timestamp() == 1700000500

        assert assignment.activity_type == "assign"
        assert assignment.submission_count == 2
        assert assignment.graded_count == 1
        assert assignment.closes_at is None

    @pytest.mark.asyncio
    async def test_course_listing_failure(self, resolver, tenant):
        """Test a failed course listing gives an empty inventory and a tenant error."""
        fetcher, _ = make_fetcher(resolver, {("get_courses", None): transport_error()})

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert inventory.courses == []
        assert len(inventory.errors) == 1
        assert inventory.errors[0].scope == "tenant:101"
        assert inventory.errors[0].kind == ErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_discussion_posts_failure_skips_discussion(self, resolver, tenant):
        """Test a discussion whose posts fail is skipped, the forum kept."""
        data = one_course_site()
        data[("get_discussion_posts", 300)] = transport_error()
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        forum = inventory.courses[0].activities[0]
        assert forum.discussion_count == 0
        assert forum.total_posts == 0
        assert [e.scope for e in inventory.errors] == ["discussion:101-55/12/300"]

    @pytest.mark.asyncio
    async def test_forum_discussions_failure_skips_forum(self, resolver, tenant):
        """Test a forum whose discussions fail is left out, its siblings kept."""
        data = with_second_forum(one_course_site())
        data[("get_forum_discussions", 12)] = LMSNotFoundError("Forum not found")
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        activities = inventory.courses[0].activities
        assert [(a.activity_type, a.activity_id) for a in activities] == [
            ("forum", 13),
            ("assign", 40),
        ]
        assert activities[0].total_posts == 1
        assert len(inventory.errors) == 1
        assert inventory.errors[0].scope == "forum:101-55/12"
        assert inventory.errors[0].kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_submissions_failure_keeps_assignment(self, resolver, tenant):
        """Test an assignment keeps zero counts when submissions fail."""
        data = one_course_site()
        data[("get_submissions", 40)] = transport_error()
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assignment = inventory.courses[0].activities[1]
        assert assignment.submission_count == 0
        assert assignment.graded_count == 0
        assert inventory.errors[0].scope == "activity:101-55/assign/40"

    @pytest.mark.asyncio
    async def test_enrolled_users_failure_is_silent(self, resolver, tenant):
        """Test the enrolled count falls back to zero without an error."""
        data = one_course_site()
        data[("get_enrolled_users", 55)] = transport_error()
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert inventory.courses[0].enrolled_count == 0
        assert inventory.errors == []

    @pytest.mark.asyncio
    async def test_activity_without_name_recorded(self, resolver, tenant):
        """Test an activity missing its name is dropped with a validation error."""
        data = one_course_site()
        data[("get_forums", 55)] = [{"id": 13, "name": "  "}]
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert [a.activity_type for a in inventory.courses[0].activities] == ["assign"]
        assert inventory.errors[0].kind == ErrorKind.VALIDATION


class TestPermissionFallback:
    """Tests for the service-token retry on permission errors."""

    @pytest.mark.asyncio
    async def test_personal_token_retried_with_service_token(self, resolver, tenant):
        """Test a permission error with a personal token is retried once."""
        data = one_course_site()
        data[("get_submissions", 40)] = service_only(data[("get_submissions", 40)])
        fetcher, clients = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert inventory.errors == []
        assert inventory.courses[0].activities[1].submission_count == 2
        assert [c.token for c in clients] == ["tok", "service-token"]
        resolver.resolve_service.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_service_token_not_retried(self, resolver, tenant):
        """Test a permission error with the service token is recorded."""
        data = one_course_site()
        data[("get_forums", 55)] = LMSPermissionError("Sin permisos", error_code="nopermissions")
        fetcher, clients = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, SERVICE)

        assert len(clients) == 1
        assert inventory.errors[0].scope == "course:101-55"
        assert inventory.errors[0].kind == ErrorKind.PERMISSION
        resolver.resolve_service.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_service_token_to_fall_back_to(self, resolver, tenant):
        """Test the original permission error is kept when no fallback exists."""
        resolver.resolve_service = AsyncMock(side_effect=NoCredentialError("101"))
        data = one_course_site()
        data[("get_course_contents", 55)] = LMSPermissionError("Sin permisos")
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert inventory.errors[0].kind == ErrorKind.PERMISSION
        assert inventory.courses[0].section_count == 0


class TestMalformedPayloads:
    """Bad detail records stay inside the smallest scope."""

    @pytest.mark.asyncio
    async def test_unparseable_post_date_kept_as_unset(self, resolver, tenant):
        data = one_course_site()
        data[("get_discussion_posts", 300)][0]["created"] = "n/a"
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        assert inventory.errors == []
        forum, assignment = inventory.courses[0].activities
        assert forum.total_posts == 2
        assert forum.discussions[0].posts[0].created_at is None
        assert forum.last_post_at.timestamp() == 1700000500
        assert assignment.submission_count == 2

    @pytest.mark.asyncio
    async def test_malformed_post_skips_only_its_discussion(self, resolver, tenant):
        """Test a broken post record drops its discussion, not the course."""
        data = with_second_forum(one_course_site())
        data[("get_discussion_posts", 300)].append("not-a-post")
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        first_forum, second_forum, assignment = inventory.courses[0].activities
        assert first_forum.discussion_count == 0
        assert second_forum.total_posts == 1
        assert assignment.submission_count == 2
        assert [(e.scope, e.kind) for e in inventory.errors] == [
            ("discussion:101-55/12/300", ErrorKind.VALIDATION)
        ]

    @pytest.mark.asyncio
    async def test_malformed_submission_keeps_assignment(self, resolver, tenant):
        data = one_course_site()
        data[("get_submissions", 40)].append({"userid": 9, "plugins": "broken"})
        fetcher, _ = make_fetcher(resolver, data)

        inventory = await fetcher.fetch_inventory(tenant, PERSONAL)

        forum, assignment = inventory.courses[0].activities
        assert forum.total_posts == 2
        assert assignment.submission_count == 0
        assert [(e.scope, e.kind) for e in inventory.errors] == [
            ("activity:101-55/assign/40", ErrorKind.VALIDATION)
        ]
