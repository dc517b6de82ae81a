"""
Tests for EventCollector - commitment gathering

Tests cover:
- Merging meetings and confirmed time blocks
- Day window boundaries
- Failure propagation as DataUnavailable
- Google Calendar as the meeting source
"""

import json
from datetime import timedelta

import pytest

from services.errors import DataUnavailable
from services.event_collector import EventCollector
from services.focus_models import Commitment

from conftest import MONDAY, TIMEZONE

USER = "user-1"


def write_time_blocks(store, user_id, blocks):
    path = store._document_path(user_id, "time_blocks")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(blocks))


class FakeGoogleCalendar:
    """Stands in for GoogleCalendarService."""

    def __init__(self, meetings=None, error=None):
        self.meetings = meetings or []
        self.error = error
        self.calls = []

    def fetch_meetings(self, user_id, range_start, range_end):
        self.calls.append((user_id, range_start, range_end))
        if self.error:
            raise self.error
        return list(self.meetings)


class TestFetchWindow:
    def test_window_covers_whole_days(self, event_collector, at):
        start, end = event_collector.fetch_window(at(13, 30), at(9, 0, day=MONDAY + timedelta(days=2)))

        assert start == at(0)
        assert end == at(0, day=MONDAY + timedelta(days=3))


class TestCollect:
    """Tests for reading from the local store."""

    @pytest.mark.asyncio
    async def test_no_commitments(self, event_collector, at):
        assert await event_collector.collect(USER, at(0), at(0)) == []

    @pytest.mark.asyncio
    async def test_merges_and_sorts(self, event_collector, calendar_store, at):
        calendar_store.add_meeting(USER, "Standup", at(14, 0), at(15, 0))
        write_time_blocks(calendar_store, USER, [{
            "id": "block-1",
            "title": "Confirmed focus",
            "start_time": at(9, 0).isoformat(),
            "end_time": at(10, 0).isoformat(),
        }])

        commitments = await event_collector.collect(USER, at(0), at(0))

        assert [(c.source, c.title) for c in commitments] == [
            ("time_block", "Confirmed focus"),
            ("meeting", "Standup"),
        ]

    @pytest.mark.asyncio
    async def test_other_days_excluded(self, event_collector, calendar_store, at):
        calendar_store.add_meeting(USER, "Monday", at(10, 0), at(11, 0))
        calendar_store.add_meeting(USER, "Wednesday", at(10, 0, day=MONDAY + timedelta(days=2)),
                                   at(11, 0, day=MONDAY + timedelta(days=2)))

        commitments = await event_collector.collect(USER, at(0), at(0))

        assert [c.title for c in commitments] == ["Monday"]

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, event_collector, calendar_store, at):
        calendar_store.add_meeting("someone-else", "Theirs", at(10, 0), at(11, 0))

        assert await event_collector.collect(USER, at(0), at(0)) == []

    @pytest.mark.asyncio
    async def test_corrupt_store_raises_data_unavailable(self, event_collector, calendar_store, at):
        path = calendar_store._document_path(USER, "meetings")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json")

        with pytest.raises(DataUnavailable) as exc_info:
            await event_collector.collect(USER, at(0), at(0))
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_malformed_record_raises_data_unavailable(self, event_collector, calendar_store, at):
        write_time_blocks(calendar_store, USER, [{"id": "broken", "start_time": "yesterday"}])

        with pytest.raises(DataUnavailable):
            await event_collector.collect(USER, at(0), at(0))


class TestGoogleSource:
    """Tests for meetings read from Google Calendar."""

    @pytest.mark.asyncio
    async def test_google_meetings_used(self, calendar_store, at):
        google = FakeGoogleCalendar(meetings=[Commitment(start=at(11, 0), end=at(12, 0), title="Remote")])
        calendar_store.add_meeting(USER, "Local only", at(9, 0), at(10, 0))
        collector = EventCollector(calendar_store, google_calendar_service=google, timezone_name=TIMEZONE)

        commitments = await collector.collect(USER, at(0), at(0))

        assert [c.title for c in commitments] == ["Remote"]
        assert google.calls == [(USER, at(0), at(0, day=MONDAY + timedelta(days=1)))]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, calendar_store, at):
        google = FakeGoogleCalendar(error=RuntimeError("connection reset"))
        collector = EventCollector(calendar_store, google_calendar_service=google, timezone_name=TIMEZONE)

        with pytest.raises(DataUnavailable) as exc_info:
            await collector.collect(USER, at(0), at(0))
        assert exc_info.value.source == "event collector"
        assert "connection reset" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_data_unavailable_passes_through(self, calendar_store, at):
        google = FakeGoogleCalendar(error=DataUnavailable("google calendar", "not authenticated"))
        collector = EventCollector(calendar_store, google_calendar_service=google, timezone_name=TIMEZONE)

        with pytest.raises(DataUnavailable) as exc_info:
            await collector.collect(USER, at(0), at(0))
        assert exc_info.value.source == "google calendar"
