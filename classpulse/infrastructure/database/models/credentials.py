# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LMS credential models.

PersonalToken belongs to one principal in one tenant. ServiceToken is the
tenant-wide fallback issued for a service user. Personal tokens are stored
encrypted and written only by the store-token command. The pipeline never
writes to these tables.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from classpulse.infrastructure.database.models.base import Base, UTCDateTime
from classpulse.utils.datetime import utc_now


class PersonalToken(Base):
    """A principal's own LMS web service token for a tenant.

    Attributes:
        token_encrypted: Fernet ciphertext of the token.
    """

    __tablename__ = "personal_tokens"
    __table_args__ = (
        UniqueConstraint("tenant_id", "principal", name="uq_personal_tokens_tenant_principal"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    principal: Mapped[str] = mapped_column(String(255), nullable=False)
    token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)


class ServiceToken(Base):
    """Tenant-wide fallback token issued to a service principal.

    Attributes:
        principal: Owning service user (e.g. t_assistant).
        service_name: Web service the token is scoped to.
        expires_at: Expiry, None for tokens that do not expire.
    """

    __tablename__ = "service_tokens"
    __table_args__ = (Index("ix_service_tokens_tenant_created", "tenant_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(Text, nullable=False)
    principal: Mapped[str] = mapped_column(String(255), nullable=False)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
