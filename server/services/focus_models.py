"""
Focus Scheduling Models

Value types shared by the event collector, availability finder,
block packer and context scorer.
"""

from datetime import datetime, time, timedelta
from enum import Enum
from typing import List, Literal, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

GENERIC_BLOCK_TITLE = "Deep Work Focus Block"

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def ensure_local(value: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Attach ``tz`` to a naive datetime, or convert an aware one into it."""
    if value.tzinfo is None:
        return tz.localize(value)
    return value.astimezone(tz)


def parse_timestamp(value: str, tz: pytz.BaseTzInfo) -> datetime:
    """
    Parse an ISO-8601 timestamp (or bare date) into ``tz``.

    Raises:
        ValueError: If the value is not ISO-8601
    """
    return ensure_local(datetime.fromisoformat(value.replace('Z', '+00:00')), tz)


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 for the most urgent tier."""
        return list(Priority).index(self)


class TimeInterval(BaseModel):
    """A half-open span of time with ``start < end``."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError(f"interval start {self.start} must precede end {self.end}")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and other.start < self.end


class Commitment(TimeInterval):
    """An occupied interval: a calendar meeting or a confirmed time block."""

    source: Literal["meeting", "time_block"] = "meeting"
    title: str = ""


class WorkingHours(BaseModel):
    """Start and end of the working window for one weekday."""

    model_config = ConfigDict(frozen=True)

    start: time
    end: time

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError(f"working hours start {self.start} must precede end {self.end}")
        return self


def _weekday_hours() -> Optional[WorkingHours]:
    return WorkingHours(start=time(9, 0), end=time(17, 0))


class WorkingHoursPolicy(BaseModel):
    """
    Per-weekday working hours. ``None`` marks a non-working day.

    Defaults to Monday-Friday 09:00-17:00 with the weekend off.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    monday: Optional[WorkingHours] = Field(default_factory=_weekday_hours)
    tuesday: Optional[WorkingHours] = Field(default_factory=_weekday_hours)
    wednesday: Optional[WorkingHours] = Field(default_factory=_weekday_hours)
    thursday: Optional[WorkingHours] = Field(default_factory=_weekday_hours)
    friday: Optional[WorkingHours] = Field(default_factory=_weekday_hours)
    saturday: Optional[WorkingHours] = None
    sunday: Optional[WorkingHours] = None

    def for_weekday(self, weekday: int) -> Optional[WorkingHours]:
        """Hours for ``date.weekday()`` (Monday is 0)."""
        return getattr(self, WEEKDAYS[weekday])


class FocusPreferences(BaseModel):
    """The slice of user preferences the engine reads once per run."""

    work_hours: WorkingHoursPolicy = Field(default_factory=WorkingHoursPolicy)
    optimal_focus_time: float = Field(
        default=1.5,
        gt=0,
        description="Preferred focus block length in hours",
    )

    @property
    def target_duration(self) -> timedelta:
        return timedelta(hours=self.optimal_focus_time)


class TaskCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    priority: Priority = Priority.MEDIUM


class FocusBlockSuggestion(BaseModel):
    """A proposed focus block. Serialises with camelCase keys and ISO-8601 times."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    title: str
    start_time: datetime
    end_time: datetime
    block_type: Literal["focus"] = "focus"
    related_task_id: Optional[str] = None
    notes: str = ""

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_time, end=self.end_time)


class SuggestionRun(BaseModel):
    """Outcome of one engine run for one user."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    range_start: datetime
    range_end: datetime
    suggestions: List[FocusBlockSuggestion] = Field(default_factory=list)
    confidence: float = 0.0
    should_surface: bool = False
    generated_at: datetime
