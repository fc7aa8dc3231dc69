# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Declarative base, mixins and column types shared by all models."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from classpulse.utils.datetime import ensure_utc, utc_now


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetime column.

    PostgreSQL stores TIMESTAMPTZ natively. SQLite has no timezone support,
    so values are written as naive UTC and re-tagged as UTC when read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: Optional[datetime], dialect: Dialect
    ) -> Optional[datetime]:
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(
        self, value: Optional[datetime], dialect: Dialect
    ) -> Optional[datetime]:
        return ensure_utc(value)


class Base(DeclarativeBase):
    """Declarative base for all ClassPulse models."""

    type_annotation_map: dict[Any, Any] = {
        datetime: UTCDateTime,
    }


class TimestampMixin:
    """Adds created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        server_default=func.now(),
        nullable=False,
    )
