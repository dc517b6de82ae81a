"""
Pytest fixtures for focus scheduler testing.

Provides:
- Settings pointed at a temporary data directory
- Store, preferences, collector and scheduler services
- Helpers for building local timestamps and commitments
"""

import sys
from datetime import date, datetime
from pathlib import Path

import pytest
import pytz

# Add the server directory to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "server"))

from config.settings import ServerSettings
from services.calendar_store_service import CalendarStoreService
from services.event_collector import EventCollector
from services.focus_models import Commitment, Priority, TaskCandidate
from services.focus_scheduler_service import FocusSchedulerService
from services.user_config_service import UserPreferencesService

TIMEZONE = "America/New_York"

# Monday
MONDAY = date(2025, 1, 6)


# =============================================================================
# TIME HELPERS
# =============================================================================

@pytest.fixture
def tz():
    return pytz.timezone(TIMEZONE)


@pytest.fixture
def at(tz):
    """Build a localized datetime: at(hour, minute=0, day=MONDAY)."""
    def _at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
        return tz.localize(datetime(day.year, day.month, day.day, hour, minute))
    return _at


@pytest.fixture
def commitment(at):
    """Build a meeting commitment from (start_hour, start_minute) to (end_hour, end_minute)."""
    def _commitment(start, end, day: date = MONDAY, source: str = "meeting") -> Commitment:
        return Commitment(
            start=at(*start, day=day),
            end=at(*end, day=day),
            source=source,
        )
    return _commitment


@pytest.fixture
def high_priority_tasks():
    """Five high priority tasks in queue order."""
    return [
        TaskCandidate(id=f"task-{i}", title=f"Task {i}", priority=Priority.HIGH)
        for i in range(1, 6)
    ]


# =============================================================================
# SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings using a temporary data directory."""
    return ServerSettings(data_dir=tmp_path / "data", timezone=TIMEZONE)


@pytest.fixture
def calendar_store(settings):
    return CalendarStoreService(data_dir=settings.data_dir, timezone_name=settings.timezone)


@pytest.fixture
def preferences_service(settings):
    return UserPreferencesService(
        data_dir=settings.data_dir,
        default_focus_hours=settings.default_optimal_focus_hours,
    )


@pytest.fixture
def event_collector(calendar_store, settings):
    return EventCollector(calendar_store=calendar_store, timezone_name=settings.timezone)


@pytest.fixture
def focus_scheduler(calendar_store, preferences_service, event_collector, settings):
    return FocusSchedulerService(
        calendar_store=calendar_store,
        preferences_service=preferences_service,
        event_collector=event_collector,
        settings=settings,
    )
