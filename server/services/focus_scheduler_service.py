"""
Focus Scheduler Service

Runs the focus block engine for one user: collect commitments, find free
time, pack focus blocks, score the result and hand it to the store.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytz
from fastmcp.utilities.logging import get_logger

from config.settings import ServerSettings, get_settings
from services import context_scorer
from services.availability_finder import AvailabilityFinder
from services.block_packer import BlockPacker, TaskQueue
from services.calendar_store_service import CalendarStoreService
from services.errors import InvalidRange
from services.event_collector import EventCollector
from services.focus_models import SuggestionRun, TimeInterval, ensure_local, parse_timestamp
from services.user_config_service import UserPreferencesService


class FocusSchedulerService:
    """
    Service for generating focus block suggestions.

    Each call owns its own task queue and cursors, so concurrent runs for
    different users share no mutable state. Suggestions reach the store
    only once the whole run has succeeded.
    """

    def __init__(
        self,
        calendar_store: CalendarStoreService,
        preferences_service: UserPreferencesService,
        event_collector: EventCollector,
        settings: Optional[ServerSettings] = None,
    ):
        """
        Initialize Focus Scheduler Service.

        Args:
            calendar_store: Store for tasks, time blocks and suggestions
            preferences_service: Source of working hours and focus length
            event_collector: Reader for meetings and time blocks
            settings: Engine settings, defaults to the global settings
        """
        self.logger = get_logger("FocusSchedulerService")
        self.settings = settings or get_settings()
        self.calendar_store = calendar_store
        self.preferences_service = preferences_service
        self.event_collector = event_collector
        self.tz = pytz.timezone(self.settings.timezone)

        self.availability_finder = AvailabilityFinder(
            timezone=self.settings.timezone,
            min_slot=timedelta(minutes=self.settings.min_slot_minutes),
        )
        self.block_packer = BlockPacker(max_suggestions=self.settings.max_suggestions)
        self.min_block_duration = timedelta(minutes=self.settings.min_block_minutes)

    # === RANGE HANDLING ===

    def parse_range(self, start: str, end: str) -> Tuple[datetime, datetime]:
        """
        Parse ISO-8601 range bounds into the configured timezone.

        Raises:
            InvalidRange: If either bound is malformed or start is after end
        """
        try:
            range_start = parse_timestamp(start, self.tz)
            range_end = parse_timestamp(end, self.tz)
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidRange(f"Dates must be ISO-8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM): {e}") from e
        self.validate_range(range_start, range_end)
        return range_start, range_end

    def validate_range(self, range_start: datetime, range_end: datetime) -> None:
        if ensure_local(range_start, self.tz) > ensure_local(range_end, self.tz):
            raise InvalidRange(f"Range start {range_start.isoformat()} is after range end {range_end.isoformat()}")

    # === ENGINE ===

    async def get_free_time_slots(
        self,
        user_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> List[TimeInterval]:
        """
        Free intervals for a user over a range, without packing blocks.

        Raises:
            InvalidRange: If start is after end
            DataUnavailable: If preferences or commitments cannot be read
        """
        self.validate_range(range_start, range_end)
        preferences, commitments = await asyncio.gather(
            asyncio.to_thread(self.preferences_service.get_preferences, user_id),
            self.event_collector.collect(user_id, range_start, range_end),
        )
        return self.availability_finder.find_free_slots(
            commitments, preferences.work_hours, range_start, range_end
        )

    async def suggest_focus_blocks(
        self,
        user_id: str,
        range_start: datetime,
        range_end: datetime,
        persist: bool = True,
    ) -> SuggestionRun:
        """
        Generate focus block suggestions for a user.

        Args:
            user_id: User identifier
            range_start: First day to schedule
            range_end: Last day to schedule, inclusive
            persist: Hand the suggestions to the store for confirmation

        Returns:
            SuggestionRun with up to ``max_suggestions`` suggestions. An
            empty list means there was no opportunity, not a failure.

        Raises:
            InvalidRange: If start is after end (checked before any fetch)
            DataUnavailable: If any read or the final write fails
        """
        self.validate_range(range_start, range_end)
        self.logger.info(
            f"Suggesting focus blocks for user {user_id}: {range_start.isoformat()} to {range_end.isoformat()}"
        )

        preferences, commitments, tasks = await asyncio.gather(
            asyncio.to_thread(self.preferences_service.get_preferences, user_id),
            self.event_collector.collect(user_id, range_start, range_end),
            asyncio.to_thread(self.calendar_store.fetch_pending_tasks, user_id),
        )

        free_slots = self.availability_finder.find_free_slots(
            commitments, preferences.work_hours, range_start, range_end
        )
        candidates = self.block_packer.allocate_blocks(
            free_slots,
            TaskQueue(tasks),
            target_duration=preferences.target_duration,
            min_duration=self.min_block_duration,
        )
        suggestions = self.block_packer.truncate(candidates)
        confidence = self._score(user_id, candidates)

        if persist:
            await asyncio.to_thread(self.calendar_store.persist_suggestions, user_id, suggestions)
            self._record_generation(user_id, len(suggestions), confidence)

        self.logger.info(
            f"Generated {len(suggestions)} focus blocks for user {user_id} (confidence {confidence})"
        )
        return SuggestionRun(
            user_id=user_id,
            range_start=range_start,
            range_end=range_end,
            suggestions=suggestions,
            confidence=confidence,
            should_surface=confidence >= self.settings.surface_threshold,
            generated_at=datetime.now(timezone.utc),
        )

    def _score(self, user_id: str, candidates: list) -> float:
        try:
            last_updated = self.calendar_store.get_last_updated(user_id)
            return context_scorer.score(
                candidates,
                last_updated=last_updated,
                recency_window=timedelta(days=self.settings.recency_window_days),
            )
        except Exception as e:
            self.logger.warning(f"Confidence scoring failed for user {user_id}: {e}")
            return 0.0

    def _record_generation(self, user_id: str, suggestion_count: int, confidence: float) -> None:
        try:
            self.calendar_store.update_context(
                user_id,
                {
                    'last_focus_block_generation': datetime.now(timezone.utc).isoformat(),
                    'suggestion_count': suggestion_count,
                },
                confidence,
            )
        except Exception as e:
            self.logger.error(f"Failed to update work pattern context for user {user_id}: {e}")
