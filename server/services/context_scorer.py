"""
Context Scorer

Heuristic confidence for a freshly built suggestion set. The score only
annotates a run; it never decides whether suggestions are produced.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

CONTENT_WEIGHT = 0.4
VOLUME_WEIGHT = 0.3
RECENCY_WEIGHT = 0.3

VOLUME_THRESHOLD = 5
DEFAULT_RECENCY_WINDOW = timedelta(days=7)


@dataclass(frozen=True)
class ScoreSignals:
    """Observations about a candidate set that feed the confidence score."""
    has_content: bool = False
    exceeds_threshold: bool = False
    is_recent: bool = False


def score_signals(signals: ScoreSignals) -> float:
    """Confidence in [0, 1] from a set of signals."""
    score = 0.0
    if signals.has_content:
        score += CONTENT_WEIGHT
    if signals.exceeds_threshold:
        score += VOLUME_WEIGHT
    if signals.is_recent:
        score += RECENCY_WEIGHT
    return round(min(max(score, 0.0), 1.0), 3)


def collect_signals(
    candidate_set: Any,
    last_updated: Optional[datetime] = None,
    now: Optional[datetime] = None,
    recency_window: timedelta = DEFAULT_RECENCY_WINDOW,
    threshold: int = VOLUME_THRESHOLD,
) -> ScoreSignals:
    """
    Derive signals from a candidate set.

    Args:
        candidate_set: List or dict of candidates (anything else has no content)
        last_updated: When the user's context was last refreshed
        now: Reference time, defaults to the current UTC time
        recency_window: Maximum age of ``last_updated`` that counts as recent
        threshold: Size the set must exceed to count as high volume
    """
    well_formed = isinstance(candidate_set, (list, tuple, dict))
    size = len(candidate_set) if well_formed else 0

    is_recent = False
    if last_updated is not None:
        now = now or datetime.now(timezone.utc)
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        is_recent = timedelta(0) <= now - last_updated <= recency_window

    return ScoreSignals(
        has_content=size > 0,
        exceeds_threshold=size > threshold,
        is_recent=is_recent,
    )


def score(
    candidate_set: Any,
    last_updated: Optional[datetime] = None,
    now: Optional[datetime] = None,
    recency_window: timedelta = DEFAULT_RECENCY_WINDOW,
) -> float:
    """Confidence in [0, 1] for ``candidate_set``."""
    return score_signals(collect_signals(candidate_set, last_updated, now, recency_window))
