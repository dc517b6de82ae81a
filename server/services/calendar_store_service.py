"""
Calendar Store Service

File-backed store for per-user meetings, confirmed time blocks, tasks,
pending focus block suggestions and the work-pattern context.
Each collection lives in its own JSON document under
``data_dir/users/<user_id>/``.
"""

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytz
from fastmcp.utilities.logging import get_logger

from services.errors import DataUnavailable
from services.focus_models import (
    Commitment,
    FocusBlockSuggestion,
    Priority,
    TaskCandidate,
    TimeInterval,
    parse_timestamp,
)

MEETINGS = "meetings"
TIME_BLOCKS = "time_blocks"
TASKS = "tasks"
SUGGESTIONS = "suggestions"
CONTEXT = "context"


class CalendarStoreService:
    """
    Service for reading and writing a user's scheduling data.

    Reads raise DataUnavailable when a document cannot be loaded; a missing
    document is simply empty. Writes replace the whole document atomically.
    """

    def __init__(self, data_dir: Path, timezone_name: str = "America/New_York"):
        """
        Initialize Calendar Store Service.

        Args:
            data_dir: Directory for storing data
            timezone_name: Timezone for timestamps stored without an offset
        """
        self.logger = get_logger("CalendarStoreService")
        self.users_dir = Path(data_dir) / "users"
        self.users_dir.mkdir(parents=True, exist_ok=True)
        self.tz = pytz.timezone(timezone_name)
        self._write_lock = threading.Lock()

    # === DOCUMENT I/O ===

    def _document_path(self, user_id: str, name: str) -> Path:
        return self.users_dir / user_id / f"{name}.json"

    def _read(self, user_id: str, name: str, default: Any) -> Any:
        path = self._document_path(user_id, name)
        if not path.exists():
            return default
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to read {name} for user {user_id}: {e}")
            raise DataUnavailable(name, str(e)) from e

    def _write(self, user_id: str, name: str, data: Any) -> None:
        path = self._document_path(user_id, name)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            self.logger.error(f"Failed to write {name} for user {user_id}: {e}")
            raise DataUnavailable(name, str(e)) from e

    # === COMMITMENTS ===

    def _fetch_intervals(
        self,
        user_id: str,
        name: str,
        source: str,
        range_start: datetime,
        range_end: datetime,
    ) -> List[Commitment]:
        window = TimeInterval(start=range_start, end=range_end)
        commitments = []
        for record in self._read(user_id, name, []):
            try:
                commitment = Commitment(
                    start=parse_timestamp(record['start_time'], self.tz),
                    end=parse_timestamp(record['end_time'], self.tz),
                    source=source,
                    title=record.get('title', ''),
                )
            except (KeyError, ValueError) as e:
                raise DataUnavailable(name, f"malformed record {record.get('id')}: {e}") from e
            if commitment.overlaps(window):
                commitments.append(commitment)
        return sorted(commitments, key=lambda c: c.start)

    def fetch_meetings(self, user_id: str, range_start: datetime, range_end: datetime) -> List[Commitment]:
        """Calendar meetings intersecting the range, sorted by start."""
        return self._fetch_intervals(user_id, MEETINGS, "meeting", range_start, range_end)

    def fetch_time_blocks(self, user_id: str, range_start: datetime, range_end: datetime) -> List[Commitment]:
        """Confirmed time blocks intersecting the range, sorted by start."""
        return self._fetch_intervals(user_id, TIME_BLOCKS, "time_block", range_start, range_end)

    def add_meeting(self, user_id: str, title: str, start_time: datetime, end_time: datetime) -> Dict:
        """
        Record a calendar meeting.

        Returns:
            The stored meeting record
        """
        # Rejects end <= start
        TimeInterval(start=start_time, end=end_time)
        record = {
            'id': str(uuid.uuid4()),
            'title': title,
            'start_time': start_time.isoformat(),
            'end_time': end_time.isoformat(),
        }
        with self._write_lock:
            meetings = self._read(user_id, MEETINGS, [])
            meetings.append(record)
            self._write(user_id, MEETINGS, meetings)
        self.logger.info(f"Added meeting for user {user_id}: {title}")
        return record

    # === TASKS ===

    def add_task(
        self,
        user_id: str,
        title: str,
        priority: Priority = Priority.MEDIUM,
        estimated_hours: Optional[float] = None,
        deadline: Optional[str] = None,
    ) -> Dict:
        """
        Add a not-started task for a user.

        Returns:
            The stored task record
        """
        record = {
            'id': str(uuid.uuid4()),
            'title': title,
            'priority': Priority(priority).value,
            'status': 'not_started',
            'estimated_hours': estimated_hours,
            'deadline': deadline,
            'created_at': datetime.now(timezone.utc).isoformat(),
        }
        with self._write_lock:
            tasks = self._read(user_id, TASKS, [])
            tasks.append(record)
            self._write(user_id, TASKS, tasks)
        self.logger.info(f"Added task for user {user_id}: {title}")
        return record

    def complete_task(self, user_id: str, task_id: str) -> bool:
        """Mark a task completed. Returns False if the task does not exist."""
        with self._write_lock:
            tasks = self._read(user_id, TASKS, [])
            for task in tasks:
                if task['id'] == task_id:
                    task['status'] = 'completed'
                    self._write(user_id, TASKS, tasks)
                    return True
        return False

    def fetch_pending_tasks(self, user_id: str) -> List[TaskCandidate]:
        """
        Tasks not yet completed, ordered by priority descending.

        Within a priority, tasks keep the order they were added in.
        """
        candidates = []
        for record in self._read(user_id, TASKS, []):
            if record.get('status') == 'completed':
                continue
            try:
                candidates.append(TaskCandidate(
                    id=record['id'],
                    title=record['title'],
                    priority=record.get('priority', Priority.MEDIUM),
                ))
            except (KeyError, ValueError) as e:
                raise DataUnavailable(TASKS, f"malformed record {record.get('id')}: {e}") from e
        return sorted(candidates, key=lambda t: t.priority.rank)

    # === SUGGESTIONS ===

    def persist_suggestions(self, user_id: str, suggestions: Sequence[FocusBlockSuggestion]) -> List[Dict]:
        """
        Replace the user's pending suggestions with ``suggestions``.

        Confirmed time blocks are stored separately and are never touched,
        so re-running and re-persisting is safe.

        Returns:
            The stored suggestion records, each with an ``id``
        """
        records = []
        for suggestion in suggestions:
            record = suggestion.model_dump(mode='json', by_alias=True)
            record['id'] = str(uuid.uuid4())
            records.append(record)
        with self._write_lock:
            self._write(user_id, SUGGESTIONS, records)
        self.logger.info(f"Persisted {len(records)} focus block suggestions for user {user_id}")
        return records

    def get_pending_suggestions(self, user_id: str) -> List[Dict]:
        return self._read(user_id, SUGGESTIONS, [])

    def confirm_suggestion(self, user_id: str, suggestion_id: str) -> Optional[Dict]:
        """
        Turn a pending suggestion into a confirmed focus time block.

        Returns:
            The new time block record, or None if the suggestion is unknown

        Raises:
            ValueError: If the suggestion overlaps a confirmed time block or a meeting
        """
        with self._write_lock:
            pending = self._read(user_id, SUGGESTIONS, [])
            suggestion = next((s for s in pending if s['id'] == suggestion_id), None)
            if suggestion is None:
                return None

            start = parse_timestamp(suggestion['startTime'], self.tz)
            end = parse_timestamp(suggestion['endTime'], self.tz)
            overlapping = self.fetch_time_blocks(user_id, start, end)
            if overlapping:
                raise ValueError(
                    f"Suggestion {suggestion_id} overlaps confirmed block '{overlapping[0].title}'"
                )
            meetings = self.fetch_meetings(user_id, start, end)
            if meetings:
                raise ValueError(
                    f"Suggestion {suggestion_id} overlaps meeting '{meetings[0].title}'"
                )

            block = {
                'id': suggestion_id,
                'title': suggestion['title'],
                'start_time': suggestion['startTime'],
                'end_time': suggestion['endTime'],
                'block_type': suggestion['blockType'],
                'related_task_id': suggestion.get('relatedTaskId'),
                'notes': suggestion.get('notes', ''),
            }
            blocks = self._read(user_id, TIME_BLOCKS, [])
            blocks.append(block)
            self._write(user_id, TIME_BLOCKS, blocks)
            self._write(user_id, SUGGESTIONS, [s for s in pending if s['id'] != suggestion_id])

        self.logger.info(f"Confirmed focus block {suggestion_id} for user {user_id}")
        return block

    # === WORK PATTERN CONTEXT ===

    def get_context(self, user_id: str) -> Dict:
        """
        Work-pattern context for a user.

        Returns:
            Dict with ``context_data``, ``confidence_score`` and
            ``last_updated`` keys, or an empty dict if never written
        """
        return self._read(user_id, CONTEXT, {})

    def get_last_updated(self, user_id: str) -> Optional[datetime]:
        last_updated = self.get_context(user_id).get('last_updated')
        if not last_updated:
            return None
        try:
            return datetime.fromisoformat(last_updated)
        except ValueError:
            self.logger.warning(f"Ignoring unparsable last_updated for user {user_id}: {last_updated}")
            return None

    def update_context(self, user_id: str, context_data: Dict, confidence_score: float) -> Dict:
        record = {
            'context_type': 'work_pattern',
            'context_data': context_data,
            'confidence_score': confidence_score,
            'last_updated': datetime.now(timezone.utc).isoformat(),
        }
        with self._write_lock:
            self._write(user_id, CONTEXT, record)
        return record
