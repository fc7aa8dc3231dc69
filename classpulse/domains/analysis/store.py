# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persistence of cached analyses.

For every key exactly one row is latest. save_latest demotes the current
latest rows under a row lock, flushes, then updates the row carrying the
same source fingerprint or inserts a new one, all in one transaction.
The partial unique index on the key (where is_latest) catches any writer
that bypasses this path.

Example:
    >>> store = AnalysisStore(session_factory)
    >>> row = await store.save_latest(activity.key, generated, ttl=timedelta(hours=6))
    >>> deleted = await store.sweep_expired()
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from classpulse.domains.analysis.schemas import GeneratedAnalysis
from classpulse.domains.keys import AnalysisKey
from classpulse.infrastructure.database.connection import DatabaseError, session_scope
from classpulse.infrastructure.database.models import ActivityAnalysis
from classpulse.utils.datetime import utc_now

logger = logging.getLogger(__name__)


def _key_filter(key: AnalysisKey):
    return and_(
        ActivityAnalysis.course_key == key.course_key,
        ActivityAnalysis.activity_id == key.activity_id,
        ActivityAnalysis.activity_type == key.activity_type,
    )


class AnalysisStore:
    """Read and write cached analyses.

    Attributes:
        _session_factory: Sessionmaker; each operation runs in its own
            transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_latest(self, key: AnalysisKey) -> Optional[ActivityAnalysis]:
        """Get the latest row for a key, or None.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ActivityAnalysis).where(
                        _key_filter(key),
                        ActivityAnalysis.is_latest.is_(True),
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to load latest analysis for {key}", e) from e

    async def save_latest(
        self,
        key: AnalysisKey,
        analysis: GeneratedAnalysis,
        *,
        ttl: timedelta,
    ) -> ActivityAnalysis:
        """Store an analysis as the single latest row of its key.

        Args:
            key: Cache key.
            analysis: Generated analysis.
            ttl: Lifetime; expires_at is set to now + ttl.

        Returns:
            The stored row.

        Raises:
            DatabaseError: If the transaction fails.
        """
        now = utc_now()
        structured = analysis.structured

        async with session_scope(self._session_factory) as session:
            current = await session.execute(
                select(ActivityAnalysis)
                .where(_key_filter(key), ActivityAnalysis.is_latest.is_(True))
                .with_for_update()
            )
            for row in current.scalars():
                row.is_latest = False
            await session.flush()

            existing = await session.execute(
                select(ActivityAnalysis).where(
                    _key_filter(key),
                    ActivityAnalysis.source_fingerprint == analysis.source_fingerprint,
                )
            )
            row = existing.scalar_one_or_none()
            if row is None:
                row = ActivityAnalysis(
                    course_key=key.course_key,
                    activity_id=key.activity_id,
                    activity_type=key.activity_type,
                    source_fingerprint=analysis.source_fingerprint,
                    created_at=now,
                )
                session.add(row)

            row.tenant_id = analysis.tenant_id
            row.lms_course_id = analysis.lms_course_id
            row.activity_name = analysis.activity_name
            row.summary = structured.summary
            row.positives = list(structured.positives)
            row.alerts = list(structured.alerts)
            row.insights = list(structured.insights)
            row.recommendation = structured.recommendation
            row.full_analysis = analysis.full_analysis
            row.response_format = structured.response_format
            row.llm_response = {**analysis.llm_response, "dimensions": list(structured.dimensions)}
            row.activity_data = analysis.activity_data
            row.last_updated = now
            row.expires_at = now + ttl
            row.is_valid = True
            row.is_latest = True
            await session.flush()

        logger.debug("Saved latest analysis for %s (expires %s)", key, row.expires_at)
        return row

    async def invalidate(self, key: AnalysisKey) -> bool:
        """Mark the latest row of a key invalid so it is regenerated.

        Returns:
            True if a latest row existed.
        """
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(ActivityAnalysis)
                .where(_key_filter(key), ActivityAnalysis.is_latest.is_(True))
                .values(is_valid=False)
            )
        return result.rowcount > 0

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete rows that are both expired and superseded.

        Latest rows are never deleted, even when expired.

        Returns:
            Number of deleted rows.
        """
        now = now or utc_now()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(ActivityAnalysis).where(
                    ActivityAnalysis.expires_at < now,
                    ActivityAnalysis.is_latest.is_(False),
                )
            )
        deleted = result.rowcount or 0
        logger.info("Swept %d expired analyses", deleted)
        return deleted

    async def count(self, key: Optional[AnalysisKey] = None, latest_only: bool = False) -> int:
        """Count stored rows, optionally for one key."""
        stmt = select(func.count()).select_from(ActivityAnalysis)
        if key is not None:
            stmt = stmt.where(_key_filter(key))
        if latest_only:
            stmt = stmt.where(ActivityAnalysis.is_latest.is_(True))
        async with self._session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())
