# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

The BatchRuntime is built once in the application lifespan and kept on
app.state; endpoints receive it through get_runtime so tests can swap
it with app.dependency_overrides.

Example:
    @router.post("/trigger")
    async def trigger(
        runtime: BatchRuntime = Depends(get_runtime),
        _: None = Depends(require_trigger_secret),
    ):
        ...
"""

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request, status

from classpulse.core.config import Settings, get_settings
from classpulse.domains.batch.runtime import BatchRuntime

logger = logging.getLogger(__name__)

TRIGGER_SECRET_HEADER = "X-Batch-Secret"


def get_runtime(request: Request) -> BatchRuntime:
    """Get the BatchRuntime built at startup.

    Raises:
        HTTPException: 503 if the runtime could not be built.
    """
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Batch runtime not initialized",
        )
    return runtime


def require_trigger_secret(
    x_batch_secret: str | None = Header(default=None, alias=TRIGGER_SECRET_HEADER),
    settings: Settings = Depends(get_settings),
) -> None:
    """Check the shared trigger secret when one is configured.

    Raises:
        HTTPException: 401 if the header is missing or wrong.
    """
    expected = settings.batch.trigger_secret
    if expected is None or not expected.get_secret_value():
        return

    if x_batch_secret is None or not secrets.compare_digest(
        x_batch_secret.encode(), expected.get_secret_value().encode()
    ):
        logger.warning("Rejected batch trigger with invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing batch secret",
        )
