# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Decide whether an activity needs a fresh analysis.

An analysis is regenerated when there is no latest row for its key,
when the latest row was invalidated, when it has expired, or when the
run forces a refresh. A second run right after a successful one finds
every row fresh and generates nothing.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Optional

from classpulse.domains.analysis.schemas import AnalysisPolicy
from classpulse.domains.analysis.store import AnalysisStore
from classpulse.domains.keys import AnalysisKey
from classpulse.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class StaleReason(str, Enum):
    """Why an analysis needs regeneration."""

    MISSING = "missing"
    INVALID = "invalid"
    EXPIRED = "expired"
    FORCED = "forced"


class StalenessEvaluator:
    """Staleness check backed by the analysis store."""

    def __init__(
        self,
        store: AnalysisStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    async def stale_reason(
        self,
        key: AnalysisKey,
        policy: AnalysisPolicy = AnalysisPolicy(),
    ) -> Optional[StaleReason]:
        """Return why the key is stale, or None when the cache is fresh."""
        if policy.force_refresh:
            return StaleReason.FORCED

        latest = await self._store.get_latest(key)
        if latest is None:
            return StaleReason.MISSING
        if not latest.is_valid:
            return StaleReason.INVALID
        if self._clock() > ensure_utc(latest.expires_at):
            return StaleReason.EXPIRED
        return None

    async def needs_analysis(
        self,
        key: AnalysisKey,
        policy: AnalysisPolicy = AnalysisPolicy(),
    ) -> bool:
        """Whether a new analysis must be generated for key."""
        reason = await self.stale_reason(key, policy)
        if reason is not None:
            logger.debug("Analysis for %s is stale: %s", key, reason.value)
        return reason is not None
