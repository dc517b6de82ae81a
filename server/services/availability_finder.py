"""
Availability Finder

Turns a user's commitments into free intervals inside their working hours.
"""

from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Sequence

import pytz
from fastmcp.utilities.logging import get_logger

from services.focus_models import Commitment, TimeInterval, WorkingHoursPolicy, ensure_local

DEFAULT_MIN_SLOT = timedelta(minutes=30)


class DayRange:
    """
    Calendar dates from ``first`` to ``last`` inclusive.

    Iterating yields a fresh generator each time, so a range can be walked
    more than once.
    """

    def __init__(self, first: date, last: date):
        self.first = first
        self.last = last

    def __iter__(self) -> Iterator[date]:
        current = self.first
        while current <= self.last:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        return max((self.last - self.first).days + 1, 0)


class AvailabilityFinder:
    """
    Sweeps each working day with a cursor and emits the gaps between
    commitments that are at least ``min_slot`` long.
    """

    def __init__(self, timezone: str = "America/New_York", min_slot: timedelta = DEFAULT_MIN_SLOT):
        self.logger = get_logger("AvailabilityFinder")
        self.tz = pytz.timezone(timezone)
        self.min_slot = min_slot

    def find_free_slots(
        self,
        commitments: Sequence[Commitment],
        policy: WorkingHoursPolicy,
        range_start: datetime,
        range_end: datetime,
    ) -> List[TimeInterval]:
        """
        Find free intervals over a date range.

        Args:
            commitments: Occupied intervals, in any order
            policy: Working hours per weekday
            range_start: First day of the range (time of day is ignored)
            range_end: Last day of the range, inclusive

        Returns:
            Free intervals in chronological order
        """
        days = DayRange(
            ensure_local(range_start, self.tz).date(),
            ensure_local(range_end, self.tz).date(),
        )
        ordered = sorted(commitments, key=lambda c: c.start)

        free_slots: List[TimeInterval] = []
        for day in days:
            window = self.working_window(day, policy)
            if window is None:
                continue
            # Commitments that started on an earlier day still block this one
            touching = [c for c in ordered if c.overlaps(window)]
            free_slots.extend(self._sweep_day(window, touching))

        self.logger.info(f"Found {len(free_slots)} free slots across {len(days)} days")
        return free_slots

    def working_window(self, day: date, policy: WorkingHoursPolicy) -> Optional[TimeInterval]:
        """Working window for ``day`` in the configured timezone, or None on a day off."""
        hours = policy.for_weekday(day.weekday())
        if hours is None:
            return None
        return TimeInterval(
            start=self.tz.localize(datetime.combine(day, hours.start)),
            end=self.tz.localize(datetime.combine(day, hours.end)),
        )

    def _sweep_day(self, window: TimeInterval, commitments: List[Commitment]) -> List[TimeInterval]:
        slots = []
        cursor = window.start

        for commitment in commitments:
            # Gaps never extend past the end of the working day
            gap_end = min(ensure_local(commitment.start, self.tz), window.end)
            if gap_end > cursor and gap_end - cursor >= self.min_slot:
                slots.append(TimeInterval(start=cursor, end=gap_end))
            cursor = max(cursor, ensure_local(commitment.end, self.tz))

        if window.end > cursor and window.end - cursor >= self.min_slot:
            slots.append(TimeInterval(start=cursor, end=window.end))

        return slots
