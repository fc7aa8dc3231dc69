# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the Redis lock client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from classpulse.core.config.settings import Settings
from classpulse.infrastructure.cache.redis_client import RedisClient, RedisError


@pytest.fixture
def connected():
    """Client wired to a mocked redis.asyncio connection."""
    client = RedisClient(Settings())
    client._redis = MagicMock()
    client._redis.set = AsyncMock(return_value=True)
    client._redis.eval = AsyncMock(return_value=1)
    client._redis.ping = AsyncMock(return_value=True)
    return client


class TestLocks:
    """Tests for acquire_lock and release_lock."""

    @pytest.mark.asyncio
    async def test_acquire_uses_prefixed_set_nx(self, connected):
        assert await connected.acquire_lock("batch:run-lease", "tok", 60_000) is True

        connected._redis.set.assert_awaited_once_with(
            "classpulse:batch:run-lease", "tok", nx=True, px=60_000
        )

    @pytest.mark.asyncio
    async def test_acquire_refused(self, connected):
        connected._redis.set = AsyncMock(return_value=None)

        assert await connected.acquire_lock("batch:run-lease", "tok", 60_000) is False

    @pytest.mark.asyncio
    async def test_release_checks_token(self, connected):
        connected._redis.eval = AsyncMock(return_value=0)

        assert await connected.release_lock("batch:run-lease", "tok") is False
        args = connected._redis.eval.await_args.args
        assert args[1:] == (1, "classpulse:batch:run-lease", "tok")

    @pytest.mark.asyncio
    async def test_driver_errors_wrapped(self, connected):
        connected._redis.set = AsyncMock(side_effect=RedisConnectionError("refused"))

        with pytest.raises(RedisError) as exc_info:
            await connected.acquire_lock("batch:run-lease", "tok", 60_000)

        assert isinstance(exc_info.value.original_error, RedisConnectionError)
        assert "batch:run-lease" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_not_connected(self):
        client = RedisClient(Settings())

        with pytest.raises(RedisError, match="not connected"):
            await client.acquire_lock("batch:run-lease", "tok", 60_000)
        assert await client.ping() is False


class TestPing:
    """Tests for the readiness ping."""

    @pytest.mark.asyncio
    async def test_ping(self, connected):
        assert await connected.ping() is True

    @pytest.mark.asyncio
    async def test_ping_failure(self, connected):
        connected._redis.ping = AsyncMock(side_effect=RedisConnectionError("down"))

        assert await connected.ping() is False
