"""
Block Packer

Greedily fills free intervals with focus blocks and assigns the most
urgent pending task to each block.
"""

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Iterable, List, Optional, Sequence

from fastmcp.utilities.logging import get_logger

from services.focus_models import (
    GENERIC_BLOCK_TITLE,
    FocusBlockSuggestion,
    Priority,
    TaskCandidate,
    TimeInterval,
)

DEFAULT_TARGET_DURATION = timedelta(minutes=90)
DEFAULT_MIN_DURATION = timedelta(minutes=60)
DEFAULT_MAX_SUGGESTIONS = 5


class TaskQueue:
    """
    Pending tasks for one packing run.

    Tasks come out High before Medium before Low, and in insertion order
    within a tier. A queue belongs to exactly one run.
    """

    def __init__(self, tasks: Iterable[TaskCandidate] = ()):
        self._tiers: Dict[Priority, Deque[TaskCandidate]] = {
            priority: deque() for priority in Priority
        }
        for task in tasks:
            self.push(task)

    def push(self, task: TaskCandidate) -> None:
        self._tiers[task.priority].append(task)

    def pop(self) -> Optional[TaskCandidate]:
        """Remove and return the most urgent task, or None when empty."""
        for priority in Priority:
            tier = self._tiers[priority]
            if tier:
                return tier.popleft()
        return None

    def __len__(self) -> int:
        return sum(len(tier) for tier in self._tiers.values())


class BlockPacker:
    """
    Packs focus blocks into free intervals.

    Every interval gets as many full ``target_duration`` blocks as fit, plus
    one shorter block for the remainder when it reaches ``min_duration``.
    The finished list is cut to ``max_suggestions`` in chronological order.
    """

    def __init__(self, max_suggestions: int = DEFAULT_MAX_SUGGESTIONS):
        self.logger = get_logger("BlockPacker")
        self.max_suggestions = max_suggestions

    def pack_blocks(
        self,
        free_intervals: Sequence[TimeInterval],
        task_queue: TaskQueue,
        target_duration: timedelta = DEFAULT_TARGET_DURATION,
        min_duration: timedelta = DEFAULT_MIN_DURATION,
    ) -> List[FocusBlockSuggestion]:
        """
        Allocate focus blocks across free intervals and keep the earliest
        ``max_suggestions``.

        Args:
            free_intervals: Free time in chronological order
            task_queue: Tasks to assign; consumed as blocks are created
            target_duration: Preferred block length
            min_duration: Shortest block worth creating

        Returns:
            Up to ``max_suggestions`` suggestions in chronological order
        """
        return self.truncate(self.allocate_blocks(free_intervals, task_queue, target_duration, min_duration))

    def allocate_blocks(
        self,
        free_intervals: Sequence[TimeInterval],
        task_queue: TaskQueue,
        target_duration: timedelta = DEFAULT_TARGET_DURATION,
        min_duration: timedelta = DEFAULT_MIN_DURATION,
    ) -> List[FocusBlockSuggestion]:
        """Every block that fits, in chronological order, before any cap is applied."""
        if target_duration < min_duration:
            self.logger.warning(
                f"Target duration {target_duration} is below minimum {min_duration}; using minimum"
            )
            target_duration = min_duration

        blocks: List[FocusBlockSuggestion] = []
        for interval in free_intervals:
            duration = interval.duration
            if duration < min_duration:
                continue

            cursor = interval.start
            for _ in range(duration // target_duration):
                blocks.append(self._make_block(cursor, cursor + target_duration, task_queue))
                cursor += target_duration

            remainder = duration % target_duration
            if remainder >= min_duration:
                blocks.append(self._make_block(cursor, cursor + remainder, task_queue))

        return blocks

    def truncate(self, blocks: List[FocusBlockSuggestion]) -> List[FocusBlockSuggestion]:
        """Keep the first ``max_suggestions`` blocks."""
        if len(blocks) > self.max_suggestions:
            self.logger.info(f"Truncating {len(blocks)} focus blocks to {self.max_suggestions}")
        return blocks[:self.max_suggestions]

    def _make_block(self, start: datetime, end: datetime, task_queue: TaskQueue) -> FocusBlockSuggestion:
        task = task_queue.pop()
        minutes = int((end - start).total_seconds() // 60)
        if task is None:
            return FocusBlockSuggestion(
                title=GENERIC_BLOCK_TITLE,
                start_time=start,
                end_time=end,
                notes=f"{minutes} minutes of protected deep work time.",
            )
        return FocusBlockSuggestion(
            title=f"Focus: {task.title}",
            start_time=start,
            end_time=end,
            related_task_id=task.id,
            notes=f"{minutes} minutes reserved for a {task.priority.value} priority task.",
        )
