# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

Store, job and orchestrator tests run against an in-memory SQLite
database through aiosqlite; the schema is created from the models.
"""

import os
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from classpulse.core.config.settings import AnalysisSettings, BatchSettings, LMSSettings
from classpulse.infrastructure.database.connection import create_schema, create_session_factory
from classpulse.utils.datetime import utc_now
from helpers import TOKEN_ENCRYPTION_KEY

# Actors declared in tests must not need a Redis broker
os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessionmaker bound to the test engine."""
    return create_session_factory(engine)


@pytest.fixture
def add_rows(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Insert model instances and commit."""

    async def _add(*rows: Any) -> None:
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()

    return _add


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def batch_settings() -> BatchSettings:
    """Batch settings without inter-tenant delay."""
    return BatchSettings(tenant_delay_seconds=0, run_timeout_seconds=60)


@pytest.fixture
def analysis_settings() -> AnalysisSettings:
    return AnalysisSettings()


@pytest.fixture
def lms_settings() -> LMSSettings:
    return LMSSettings(service_tokens={}, token_encryption_key=TOKEN_ENCRYPTION_KEY)


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def now() -> datetime:
    return utc_now()


@pytest.fixture
def an_hour_ago(now: datetime) -> datetime:
    return now - timedelta(hours=1)
