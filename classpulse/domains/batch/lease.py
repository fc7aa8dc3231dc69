# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Run lease: process-level or Redis-backed mutual exclusion for runs.

The lease is taken before admission so two triggers arriving together
never both reach the job table. The persisted RUNNING check in
JobRepository.admit covers runs started by other processes without a
shared lease.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from uuid import uuid4

from classpulse.infrastructure.cache.redis_client import RedisClient, RedisError

logger = logging.getLogger(__name__)

LEASE_KEY = "batch:run-lease"


class RunLease(ABC):
    """Non-blocking mutual exclusion for pipeline runs."""

    @abstractmethod
    def hold(self) -> AbstractAsyncContextManager[bool]:
        """Async context manager yielding True if the lease was acquired."""


class LocalRunLease(RunLease):
    """asyncio.Lock based lease for a single process."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        if self._lock.locked():
            yield False
            return
        async with self._lock:
            yield True


class RedisRunLease(RunLease):
    """SET NX PX lease shared by every instance using the same Redis.

    The holder's token is checked on release, so an expired lease taken
    over by another instance is never deleted by the previous holder.

    When Redis cannot be reached the run falls back to an in-process
    lease; the RUNNING job index still keeps runs from overlapping.
    """

    def __init__(self, redis: RedisClient, ttl_seconds: int, key: str = LEASE_KEY) -> None:
        self._redis = redis
        self._ttl_ms = ttl_seconds * 1000
        self._key = key
        self._fallback = LocalRunLease()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        token = str(uuid4())
        try:
            acquired = await self._redis.acquire_lock(self._key, token, self._ttl_ms)
        except RedisError as e:
            logger.warning("Run lease %s unavailable, using local lease: %s", self._key, str(e))
            async with self._fallback.hold() as held:
                yield held
            return

        if not acquired:
            yield False
            return
        try:
            yield True
        finally:
            await self._release(token)

    async def _release(self, token: str) -> None:
        try:
            released = await self._redis.release_lock(self._key, token)
        except RedisError as e:
            logger.warning(
                "Could not release run lease %s, it expires on its own: %s", self._key, str(e)
            )
            return
        if not released:
            logger.warning("Run lease %s expired before release", self._key)
