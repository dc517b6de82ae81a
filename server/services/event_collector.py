"""
Event Collector

Gathers a user's existing commitments (calendar meetings and confirmed
time blocks) for a date range.
"""

import asyncio
from datetime import datetime, time, timedelta
from typing import List, Optional, Tuple

import pytz
from fastmcp.utilities.logging import get_logger

from services.calendar_store_service import CalendarStoreService
from services.errors import DataUnavailable
from services.focus_models import Commitment, ensure_local
from services.google_calendar_service import GoogleCalendarService


class EventCollector:
    """
    Reads meetings and time blocks concurrently and merges them.

    Meetings come from Google Calendar when a calendar service is given,
    otherwise from the local store. Confirmed time blocks always come from
    the local store.
    """

    def __init__(
        self,
        calendar_store: CalendarStoreService,
        google_calendar_service: Optional[GoogleCalendarService] = None,
        timezone_name: str = "America/New_York",
    ):
        self.logger = get_logger("EventCollector")
        self.calendar_store = calendar_store
        self.google_calendar_service = google_calendar_service
        self.tz = pytz.timezone(timezone_name)

    def fetch_window(self, range_start: datetime, range_end: datetime) -> Tuple[datetime, datetime]:
        """Local midnight of the first day through local midnight after the last day."""
        first_day = ensure_local(range_start, self.tz).date()
        last_day = ensure_local(range_end, self.tz).date()
        return (
            self.tz.localize(datetime.combine(first_day, time.min)),
            self.tz.localize(datetime.combine(last_day + timedelta(days=1), time.min)),
        )

    async def collect(self, user_id: str, range_start: datetime, range_end: datetime) -> List[Commitment]:
        """
        Get all commitments touching the days of a range.

        Args:
            user_id: User identifier
            range_start: First day of the range
            range_end: Last day of the range, inclusive

        Returns:
            Meetings and time blocks merged and sorted by start time

        Raises:
            DataUnavailable: If either source cannot be read
        """
        fetch_start, fetch_end = self.fetch_window(range_start, range_end)
        meeting_source = self.google_calendar_service or self.calendar_store

        try:
            meetings, time_blocks = await asyncio.gather(
                asyncio.to_thread(meeting_source.fetch_meetings, user_id, fetch_start, fetch_end),
                asyncio.to_thread(self.calendar_store.fetch_time_blocks, user_id, fetch_start, fetch_end),
            )
        except DataUnavailable:
            raise
        except Exception as e:
            self.logger.error(f"Error collecting commitments for user {user_id}: {e}")
            raise DataUnavailable("event collector", str(e)) from e

        commitments = sorted(meetings + time_blocks, key=lambda c: c.start)
        self.logger.info(
            f"Collected {len(meetings)} meetings and {len(time_blocks)} time blocks for user {user_id}"
        )
        return commitments
