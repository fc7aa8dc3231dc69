# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Fixed wall-clock run schedule.

Runs happen at configured local times (08:00 and 16:00 in
America/Mexico_City by default). A trigger counts as on time when it
lands within the tolerance of one of those times.

Example:
    >>> window = ScheduleWindow.from_settings(settings.scheduler)
    >>> window.is_due(utc_now())
    False
    >>> window.next_run(utc_now())
    datetime.datetime(2025, 3, 4, 14, 0, tzinfo=datetime.timezone.utc)
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from classpulse.core.config.settings import SchedulerSettings
from classpulse.utils.datetime import ensure_utc, utc_now


@dataclass(frozen=True)
class ScheduleWindow:
    """Run times in a timezone with a tolerance.

    Attributes:
        run_times: Local wall-clock times, sorted.
        timezone: IANA timezone name.
        tolerance: Allowed distance from a run time.
    """

    run_times: tuple[time, ...]
    timezone: str
    tolerance: timedelta

    @classmethod
    def from_settings(cls, settings: SchedulerSettings) -> "ScheduleWindow":
        return cls(
            run_times=tuple(settings.run_times_list),
            timezone=settings.timezone,
            tolerance=timedelta(minutes=settings.tolerance_minutes),
        )

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def _occurrences(self, now: datetime) -> list[datetime]:
        """Run times on the local days around now, in UTC."""
        local_now = ensure_utc(now).astimezone(self.zone)
        occurrences = []
        for day_offset in (-1, 0, 1):
            day = local_now.date() + timedelta(days=day_offset)
            for run_time in self.run_times:
                local = datetime.combine(day, run_time, tzinfo=self.zone)
                occurrences.append(local.astimezone(timezone.utc))
        return sorted(occurrences)

    def matching_run(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """The run time within tolerance of now, or None."""
        now = ensure_utc(now) if now is not None else utc_now()
        for occurrence in self._occurrences(now):
            if abs(now - occurrence) <= self.tolerance:
                return occurrence
        return None

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Whether now falls within tolerance of a run time."""
        return self.matching_run(now) is not None

    def next_run(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """The first run time strictly after now, in UTC."""
        now = ensure_utc(now) if now is not None else utc_now()
        for occurrence in self._occurrences(now):
            if occurrence > now:
                return occurrence
        return None
