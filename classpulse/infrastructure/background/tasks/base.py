# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base utilities for Dramatiq tasks.

Thread-Local Event Loop Management:
    Dramatiq workers use multiple threads (--threads N) to process tasks
    concurrently. SQLAlchemy async engines, the Redis client and the
    httpx pool are bound to the event loop they were created on.

    Each worker thread therefore keeps one persistent event loop and one
    BatchRuntime built on it. When the loop is replaced, the runtime of
    the old loop is dropped with it.
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine, TypeVar

from classpulse.core.config import get_settings
from classpulse.domains.batch.runtime import BatchRuntime, build_runtime
from classpulse.infrastructure.cache.redis_client import RedisClient, RedisError
from classpulse.infrastructure.database.connection import (
    create_engine_for_url,
    create_session_factory,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Thread-local storage for event loops and runtimes
_thread_local = threading.local()


def _get_thread_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the current thread.

    Returns:
        Event loop for current thread.
    """
    loop = getattr(_thread_local, "event_loop", None)

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.event_loop = loop

        # Connections of the previous loop cannot be reused
        _thread_local.runtime = None

        logger.debug(
            "Created new event loop for thread %s",
            threading.current_thread().name,
        )

    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run async coroutine in sync Dramatiq worker context.

    Args:
        coro: Coroutine to run.

    Returns:
        Result of coroutine.

    Example:
        @dramatiq.actor
        def my_task():
            async def _process():
                runtime = await get_worker_runtime()
                return await runtime.orchestrator.get_progress()
            return run_async(_process())
    """
    loop = _get_thread_event_loop()
    return loop.run_until_complete(coro)


async def get_worker_runtime() -> BatchRuntime:
    """Get the BatchRuntime of the current worker thread, building it once.

    Must be awaited from inside run_async so the engine, Redis pool and
    HTTP client are created on the thread's loop.
    """
    runtime = getattr(_thread_local, "runtime", None)
    if runtime is not None:
        return runtime

    settings = get_settings()
    engine = create_engine_for_url(
        settings.database.url,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
    )

    redis = None
    if settings.batch.lease_backend == "redis":
        redis = RedisClient(settings)
        try:
            await redis.connect()
        except RedisError as e:
            logger.warning("Worker could not connect to Redis: %s", str(e))
            redis = None

    runtime = build_runtime(settings, create_session_factory(engine), redis=redis)
    _thread_local.runtime = runtime
    logger.info("Built batch runtime for thread %s", threading.current_thread().name)
    return runtime
