# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Moodle REST web service client.

Each tenant runs its own Moodle site. Calls go to
``{base_url}/webservice/rest/server.php`` as form posts carrying the
token, the web service function name and ``moodlewsrestformat=json``.
List parameters are flattened the way Moodle expects
(``courseids[0]=5&courseids[1]=7``).

Moodle reports most failures with HTTP 200 and an exception body, so
every response is inspected and mapped onto the LMSError hierarchy.

Example:
    >>> async with httpx.AsyncClient(timeout=30) as http:
    ...     client = LMSClient("https://aula101.example.edu", token, http)
    ...     courses = await client.get_courses()
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_PATH = "/webservice/rest/server.php"

PERMISSION_ERROR_CODES = frozenset(
    {
        "nopermission",
        "nopermissions",
        "invalidtoken",
        "accessexception",
        "requireloginerror",
        "forbiddenwsuser",
        "servicenotavailable",
        "webservicenotavailable",
    }
)

NOT_FOUND_ERROR_CODES = frozenset(
    {
        "invalidrecord",
        "invalidrecordunknown",
        "invalidcourseid",
        "invalidforumid",
        "invaliddiscussionid",
        "invalidparameter",
    }
)


# =============================================================================
# Exceptions
# =============================================================================


class LMSError(Exception):
    """Base exception for LMS web service calls.

    Attributes:
        message: Human-readable error description.
        wsfunction: Web service function that failed.
        error_code: Moodle errorcode or HTTP status, if known.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        wsfunction: Optional[str] = None,
        error_code: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.wsfunction = wsfunction
        self.error_code = error_code
        self.original_error = original_error

    def __str__(self) -> str:
        prefix = f"{self.wsfunction}: " if self.wsfunction else ""
        if self.error_code:
            return f"{prefix}{self.message} ({self.error_code})"
        return f"{prefix}{self.message}"


class LMSPermissionError(LMSError):
    """The token is invalid or lacks the capability for this call."""


class LMSNotFoundError(LMSError):
    """The requested course, forum or record does not exist."""


class LMSTransportError(LMSError):
    """Network failure, timeout, bad status or unreadable body."""


def classify_moodle_error(payload: dict[str, Any], wsfunction: str) -> LMSError:
    """Map a Moodle exception body onto the LMSError hierarchy.

    Args:
        payload: Decoded response with ``exception``/``errorcode``/``message``.
        wsfunction: Function that produced the error.

    Returns:
        The matching LMSError subclass instance.
    """
    code = str(payload.get("errorcode") or "").lower()
    message = str(payload.get("message") or payload.get("exception") or "Moodle error")

    if code in PERMISSION_ERROR_CODES or "required_capability" in str(payload.get("exception", "")):
        return LMSPermissionError(message, wsfunction=wsfunction, error_code=code or None)
    if code in NOT_FOUND_ERROR_CODES:
        return LMSNotFoundError(message, wsfunction=wsfunction, error_code=code)
    return LMSTransportError(message, wsfunction=wsfunction, error_code=code or None)


def flatten_params(params: dict[str, Any]) -> dict[str, str]:
    """Flatten list parameters into Moodle's indexed form fields.

    Example:
        >>> flatten_params({"courseids": [5, 7], "courseid": 3})
        {'courseids[0]': '5', 'courseids[1]': '7', 'courseid': '3'}
    """
    flat: dict[str, str] = {}
    for key, value in params.items():
        if isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                flat[f"{key}[{index}]"] = str(item)
        elif isinstance(value, bool):
            flat[key] = "1" if value else "0"
        elif value is not None:
            flat[key] = str(value)
    return flat


# =============================================================================
# Client
# =============================================================================


class LMSClient:
    """Client for one tenant's Moodle web services.

    The HTTP client is injected so one connection pool can be shared
    across tenants in a run. When none is given the client creates and
    owns its own.

    Attributes:
        base_url: Tenant site root.
        token: Web service token used for every call.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        api_path: str = DEFAULT_API_PATH,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Tenant site root, with or without trailing slash.
            token: Web service token.
            http_client: Shared httpx client. One is created if None.
            api_path: REST endpoint path.
            timeout: Timeout for an owned http client.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._api_path = api_path
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def endpoint(self) -> str:
        """Full REST endpoint URL."""
        return f"{self.base_url}{self._api_path}"

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def call(self, wsfunction: str, **params: Any) -> Any:
        """Invoke a web service function.

        Args:
            wsfunction: Moodle function name.
            **params: Function parameters; lists are flattened.

        Returns:
            The decoded JSON body.

        Raises:
            LMSPermissionError: On HTTP 401/403 or a permission errorcode.
            LMSNotFoundError: On HTTP 404 or a missing-record errorcode.
            LMSTransportError: On network, timeout, status or decode errors.
        """
        data = {
            "wstoken": self.token,
            "wsfunction": wsfunction,
            "moodlewsrestformat": "json",
            **flatten_params(params),
        }

        logger.debug("Calling %s on %s", wsfunction, self.base_url)

        try:
            response = await self._http.post(self.endpoint, data=data)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                raise LMSPermissionError(
                    "Access denied", wsfunction=wsfunction, error_code=str(status), original_error=e
                ) from e
            if status == 404:
                raise LMSNotFoundError(
                    "Not found", wsfunction=wsfunction, error_code=str(status), original_error=e
                ) from e
            raise LMSTransportError(
                f"HTTP {status}", wsfunction=wsfunction, error_code=str(status), original_error=e
            ) from e
        except httpx.HTTPError as e:
            raise LMSTransportError(
                f"Request failed: {e.__class__.__name__}", wsfunction=wsfunction, original_error=e
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise LMSTransportError(
                "Response is not valid JSON", wsfunction=wsfunction, original_error=e
            ) from e

        if isinstance(payload, dict) and payload.get("exception"):
            raise classify_moodle_error(payload, wsfunction)

        return payload

    # ========== Courses ==========

    async def get_courses(self) -> list[dict[str, Any]]:
        """List the site's active courses.

        The local plugin answers either with a bare list or with
        ``{"courses": [...]}``.
        """
        payload = await self.call("local_get_active_courses_get_courses")
        if isinstance(payload, dict):
            payload = payload.get("courses", [])
        return list(payload or [])

    async def get_course_contents(self, course_id: int) -> list[dict[str, Any]]:
        """Get the sections of a course with their modules."""
        payload = await self.call("core_course_get_contents", courseid=course_id)
        return list(payload or [])

    async def get_enrolled_users(self, course_id: int) -> list[dict[str, Any]]:
        """List users enrolled in a course."""
        payload = await self.call("core_enrol_get_enrolled_users", courseid=course_id)
        return list(payload or [])

    # ========== Forums ==========

    async def get_forums(self, course_id: int) -> list[dict[str, Any]]:
        """List forums of a course."""
        payload = await self.call("mod_forum_get_forums_by_courses", courseids=[course_id])
        return list(payload or [])

    async def get_forum_discussions(self, forum_id: int) -> list[dict[str, Any]]:
        """List discussions of a forum."""
        payload = await self.call("mod_forum_get_forum_discussions", forumid=forum_id)
        if isinstance(payload, dict):
            return list(payload.get("discussions", []))
        return list(payload or [])

    async def get_discussion_posts(self, discussion_id: int) -> list[dict[str, Any]]:
        """List posts of a discussion."""
        payload = await self.call(
            "mod_forum_get_forum_discussion_posts", discussionid=discussion_id
        )
        if isinstance(payload, dict):
            return list(payload.get("posts", []))
        return list(payload or [])

    # ========== Assignments ==========

    async def get_assignments(self, course_id: int) -> list[dict[str, Any]]:
        """List assignments of a course."""
        payload = await self.call("mod_assign_get_assignments", courseids=[course_id])
        assignments: list[dict[str, Any]] = []
        for course in (payload or {}).get("courses", []):
            assignments.extend(course.get("assignments", []))
        return assignments

    async def get_submissions(self, assignment_id: int) -> list[dict[str, Any]]:
        """List submissions of an assignment."""
        payload = await self.call("mod_assign_get_submissions", assignmentids=[assignment_id])
        submissions: list[dict[str, Any]] = []
        for assignment in (payload or {}).get("assignments", []):
            submissions.extend(assignment.get("submissions", []))
        return submissions

