# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LMS credential resolution.

Given a tenant and a principal, pick the token a fetch should use:

1. the principal's personal token for the tenant, if not expired and it
   decrypts with LMS_TOKEN_ENCRYPTION_KEY;
2. the tenant's newest non-expired service token stored in the database;
3. the service token configured in LMS_SERVICE_TOKENS for the tenant.

The resolver only reads. It never issues, refreshes or revokes tokens.

Example:
    >>> resolver = CredentialResolver(session_factory, settings.lms)
    >>> credential = await resolver.resolve(tenant, "batch-runner")
    >>> credential.kind
    'personal'
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpulse.core.config.settings import LMSSettings
from classpulse.domains.credentials.tokens import TokenCipher, TokenEncryptionError
from classpulse.infrastructure.database.models import PersonalToken, ServiceToken, Tenant
from classpulse.utils.datetime import is_expired, utc_now

logger = logging.getLogger(__name__)

CredentialKind = Literal["personal", "service"]


class NoCredentialError(Exception):
    """Raised when no usable token exists for a tenant."""

    def __init__(self, tenant_id: str, principal: Optional[str] = None) -> None:
        self.tenant_id = tenant_id
        self.principal = principal
        self.message = f"No usable LMS credential for tenant {tenant_id}"
        super().__init__(self.message)


@dataclass(frozen=True)
class CredentialResolution:
    """Token chosen for one inventory fetch.

    Attributes:
        token: Web service token.
        kind: "personal" or "service".
        expires_at: Expiry if known.
        tenant_id: Tenant the token belongs to.
        principal: Principal the token was issued to.
    """

    token: str
    kind: CredentialKind
    tenant_id: str
    principal: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_personal(self) -> bool:
        return self.kind == "personal"

    def __repr__(self) -> str:
        return (
            f"CredentialResolution(kind={self.kind!r}, tenant_id={self.tenant_id!r}, "
            f"principal={self.principal!r})"
        )


def settings_token_key(tenant_id: str) -> str:
    """Key used to look a tenant up in LMS_SERVICE_TOKENS.

    Example:
        >>> settings_token_key("aula101")
        '101'
    """
    if tenant_id.lower().startswith("aula"):
        return tenant_id[4:]
    return tenant_id


class CredentialResolver:
    """Resolve the LMS token for a tenant and principal.

    Attributes:
        _session_factory: Sessionmaker for token lookups.
        _settings: LMS settings with the configured service tokens.
        _cipher: Cipher for personal tokens, None without a configured key.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lms_settings: LMSSettings,
    ) -> None:
        self._session_factory = session_factory
        self._settings = lms_settings
        self._cipher = TokenCipher.from_settings(lms_settings)

    async def resolve(self, tenant: Tenant, principal: Optional[str]) -> CredentialResolution:
        """Resolve a token, preferring the principal's own.

        Args:
            tenant: Tenant to resolve for.
            principal: Principal whose personal token is tried first.
                None skips straight to the service fallback, as does a
                personal token that cannot be decrypted.

        Returns:
            The chosen credential.

        Raises:
            NoCredentialError: If neither a personal nor a service token exists.
        """
        now = utc_now()

        if principal:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PersonalToken).where(
                        PersonalToken.tenant_id == tenant.id,
                        PersonalToken.principal == principal,
                    )
                )
                personal = result.scalar_one_or_none()

            token = None
            if personal is not None and not is_expired(personal.expires_at, now):
                token = self._decrypt(personal, tenant.id)

            if token is not None:
                logger.debug("Using personal token for tenant=%s", tenant.id)
                return CredentialResolution(
                    token=token,
                    kind="personal",
                    tenant_id=tenant.id,
                    principal=principal,
                    expires_at=personal.expires_at,
                )

        try:
            return await self.resolve_service(tenant)
        except NoCredentialError:
            raise NoCredentialError(tenant.id, principal) from None

    def _decrypt(self, personal: PersonalToken, tenant_id: str) -> Optional[str]:
        if self._cipher is None:
            logger.warning(
                "Personal token for tenant=%s skipped, LMS_TOKEN_ENCRYPTION_KEY is not set",
                tenant_id,
            )
            return None
        try:
            return self._cipher.decrypt(personal.token_encrypted)
        except TokenEncryptionError as e:
            logger.warning("Personal token for tenant=%s skipped: %s", tenant_id, e.message)
            return None

    async def resolve_service(self, tenant: Tenant) -> CredentialResolution:
        """Resolve the tenant's service token only.

        Raises:
            NoCredentialError: If no service token is stored or configured.
        """
        now = utc_now()

        async with self._session_factory() as session:
            result = await session.execute(
                select(ServiceToken)
                .where(
                    ServiceToken.tenant_id == tenant.id,
                    or_(ServiceToken.expires_at.is_(None), ServiceToken.expires_at > now),
                )
                .order_by(ServiceToken.created_at.desc())
                .limit(1)
            )
            stored = result.scalar_one_or_none()

        if stored is not None:
            logger.debug("Using stored service token for tenant=%s", tenant.id)
            return CredentialResolution(
                token=stored.token,
                kind="service",
                tenant_id=tenant.id,
                principal=stored.principal,
                expires_at=stored.expires_at,
            )

        configured = self._settings.service_tokens.get(settings_token_key(tenant.id))
        if configured is not None and configured.get_secret_value():
            logger.debug("Using configured service token for tenant=%s", tenant.id)
            return CredentialResolution(
                token=configured.get_secret_value(),
                kind="service",
                tenant_id=tenant.id,
                principal=self._settings.service_principal,
            )

        raise NoCredentialError(tenant.id)
