# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant model.

A tenant is one independently hosted LMS instance (an "aula"). Tenants are
created by provisioning and only read by the batch pipeline.
"""

from typing import Optional

from sqlalchemy import Boolean, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from classpulse.infrastructure.database.models.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """LMS tenant registry entry.

    Attributes:
        id: Tenant identifier such as "101" or "av141".
        name: Display name.
        base_url: Root URL of the tenant's LMS.
        is_active: Whether the tenant takes part in batch runs.
        analysis_ttl_hours: Per-tenant cache lifetime override.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_url: Mapped[str] = mapped_column(String(500), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    analysis_ttl_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id!r}, active={self.is_active})>"
