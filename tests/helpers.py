# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Factories and fakes shared by the unit tests."""

from datetime import datetime
from typing import Any, Optional

from classpulse.domains.analysis.schemas import GeneratedAnalysis, StructuredAnalysis
from classpulse.domains.credentials.tokens import TokenCipher
from classpulse.domains.inventory.schemas import ActivityInventory
from classpulse.infrastructure.database.models import PersonalToken, ServiceToken, Tenant
from classpulse.infrastructure.lms.client import LMSPermissionError, LMSTransportError
from classpulse.utils.datetime import utc_now

MARKDOWN_ANALYSIS = """El foro muestra una participación constante durante la semana, con \
aportes que retoman las lecturas del curso y preguntas abiertas entre compañeros.

#### Fortalezas
* Los estudiantes citan las lecturas obligatorias en sus respuestas.
* Varias respuestas construyen sobre el aporte de otro compañero.

#### Riesgos
* Cinco estudiantes inscritos todavía no han publicado ningún aporte.

**Acción sugerida:** Enviar un recordatorio personalizado a quienes no han participado.
"""

TOKEN_ENCRYPTION_KEY = "test-token-encryption-key"


# =============================================================================
# Model Factories
# =============================================================================


def make_tenant(tenant_id: str, **kwargs: Any) -> Tenant:
    """Build an active tenant pointing at a fake LMS host."""
    return Tenant(
        id=tenant_id,
        name=kwargs.pop("name", f"Aula {tenant_id}"),
        base_url=kwargs.pop("base_url", f"https://aula{tenant_id}.example.edu"),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )


def make_personal_token(
    tenant_id: str,
    principal: str,
    token: str,
    expires_at: Optional[datetime] = None,
) -> PersonalToken:
    """Build a personal token encrypted with the test key."""
    return PersonalToken(
        tenant_id=tenant_id,
        principal=principal,
        token_encrypted=TokenCipher(TOKEN_ENCRYPTION_KEY).encrypt(token),
        expires_at=expires_at,
    )


def make_service_token(
    tenant_id: str,
    token: str,
    expires_at: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
) -> ServiceToken:
    return ServiceToken(
        tenant_id=tenant_id,
        token=token,
        principal="t_assistant",
        service_name="WS t_dash",
        expires_at=expires_at,
        created_at=created_at or utc_now(),
    )


# =============================================================================
# Domain Factories
# =============================================================================


def make_activity(
    tenant_id: str = "101",
    course_id: int = 55,
    activity_id: int = 12,
    activity_type: str = "forum",
    **kwargs: Any,
) -> ActivityInventory:
    return ActivityInventory(
        tenant_id=tenant_id,
        course_id=course_id,
        activity_id=activity_id,
        activity_type=activity_type,
        name=kwargs.pop("name", f"Actividad {activity_id}"),
        **kwargs,
    )


def make_generated(
    fingerprint: str = "f" * 64,
    summary: str = "Participación constante en el foro.",
    tenant_id: str = "101",
) -> GeneratedAnalysis:
    return GeneratedAnalysis(
        tenant_id=tenant_id,
        lms_course_id="55",
        activity_name="Foro de presentación",
        structured=StructuredAnalysis(
            summary=summary,
            positives=["Buena participación"],
            alerts=[],
            insights=["Los estudiantes citan las lecturas"],
            recommendation="Mantener el ritmo",
        ),
        full_analysis=summary,
        llm_response={"model": "test-model", "total_tokens": 10},
        activity_data={"activity_type": "forum"},
        source_fingerprint=fingerprint,
    )


# =============================================================================
# Fake LMS
# =============================================================================


class FakeLMSClient:
    """In-memory stand-in for LMSClient.

    Every method looks its answer up in ``data``; a value that is an
    exception instance is raised instead. Calls are recorded as
    (method, argument) pairs.
    """

    def __init__(self, data: dict[tuple[str, Any], Any], token: str = "tok") -> None:
        self.data = data
        self.token = token
        self.calls: list[tuple[str, Any]] = []

    async def _answer(self, method: str, arg: Any = None) -> Any:
        self.calls.append((method, arg))
        value = self.data.get((method, arg), [])
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(self.token)
        return value

    async def get_courses(self) -> list[dict[str, Any]]:
        return await self._answer("get_courses")

    async def get_course_contents(self, course_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_course_contents", course_id)

    async def get_enrolled_users(self, course_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_enrolled_users", course_id)

    async def get_forums(self, course_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_forums", course_id)

    async def get_forum_discussions(self, forum_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_forum_discussions", forum_id)

    async def get_discussion_posts(self, discussion_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_discussion_posts", discussion_id)

    async def get_assignments(self, course_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_assignments", course_id)

    async def get_submissions(self, assignment_id: int) -> list[dict[str, Any]]:
        return await self._answer("get_submissions", assignment_id)


def service_only(value: Any, service_token: str = "service-token") -> Any:
    """Answer with value for the service token, deny any other token."""

    def _answer(token: str) -> Any:
        if token != service_token:
            raise LMSPermissionError("Sin permisos", error_code="nopermissions")
        return value

    return _answer


def one_course_site() -> dict[tuple[str, Any], Any]:
    """A site with one course holding one forum and one assignment."""
    return {
        ("get_courses", None): [
            {"id": 1, "format": "site", "fullname": "Portada"},
            {"id": 55, "fullname": "Historia Moderna", "shortname": "HIS-101"},
        ],
        ("get_course_contents", 55): [{"id": 1}, {"id": 2}],
        ("get_enrolled_users", 55): [{"id": 7}, {"id": 8}, {"id": 9}],
        ("get_forums", 55): [{"id": 12, "name": "Foro de presentación", "intro": "<p>Hola</p>"}],
        ("get_forum_discussions", 12): [{"discussion": 300, "name": "Preséntate"}],
        ("get_discussion_posts", 300): [
            {"id": 1, "userid": 7, "subject": "Hola", "message": "<p>Soy Ana</p>", "created": 1700000000},
            {"id": 2, "userid": 8, "subject": "Re: Hola", "message": "Bienvenida", "created": 1700000500},
        ],
        ("get_assignments", 55): [{"id": 40, "name": "Ensayo final", "duedate": 0}],
        ("get_submissions", 40): [
            {"userid": 7, "status": "submitted", "grade": "8.5", "timemodified": 1700001000},
            {"userid": 8, "status": "submitted", "grade": "-1", "timemodified": 1700002000},
        ],
    }


def transport_error(message: str = "Request failed: ConnectTimeout") -> LMSTransportError:
    return LMSTransportError(message)
