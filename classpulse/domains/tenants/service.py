# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant enumeration.

Active tenants are processed in a fixed priority order: purely numeric
identifiers first by numeric value, then every other identifier in
natural order (digit runs compare by value, so "av2" precedes "av10").

Example:
    >>> sorted(["av10", "2", "10", "av2"], key=tenant_priority_key)
    ['2', '10', 'av2', 'av10']
"""

import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpulse.infrastructure.database.models import Tenant

logger = logging.getLogger(__name__)

_DIGIT_RUN = re.compile(r"(\d+)", re.ASCII)


class TenantEnumerationError(Exception):
    """Raised when the tenant registry cannot be read."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


def tenant_priority_key(tenant_id: str) -> tuple[int, int, tuple[tuple[int, str], ...]]:
    """Sort key placing numeric ids first, ascending by value.

    Non-numeric ids are split into text and digit runs so that embedded
    numbers compare by value. Only ASCII digits count as numeric.

    Args:
        tenant_id: Tenant identifier.

    Returns:
        A tuple that orders numeric ids before all other ids.
    """
    if tenant_id.isascii() and tenant_id.isdigit():
        return (0, int(tenant_id), ())
    parts = tuple(
        (1, part.zfill(20)) if part.isascii() and part.isdigit() else (0, part.lower())
        for part in _DIGIT_RUN.split(tenant_id)
        if part
    )
    return (1, 0, parts)


class TenantService:
    """Read-only access to the tenant registry."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_active_tenants(self) -> list[Tenant]:
        """List active tenants in priority order.

        Returns:
            Active tenants sorted with tenant_priority_key.

        Raises:
            TenantEnumerationError: If the registry query fails.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Tenant).where(Tenant.is_active.is_(True)))
                tenants = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list active tenants: %s", str(e))
            raise TenantEnumerationError("Failed to list active tenants", e) from e

        tenants.sort(key=lambda t: tenant_priority_key(t.id))
        logger.debug("Enumerated %d active tenants", len(tenants))
        return tenants

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        """Get a tenant by id, active or not."""
        try:
            async with self._session_factory() as session:
                return await session.get(Tenant, tenant_id)
        except SQLAlchemyError as e:
            raise TenantEnumerationError(f"Failed to load tenant {tenant_id}", e) from e
