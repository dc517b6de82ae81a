"""
Tests for BlockPacker and TaskQueue

Tests cover:
- Greedy packing of full blocks plus a remainder block
- Task assignment order across priority tiers
- Generic blocks when no task is pending
- The suggestion cap
"""

from datetime import timedelta

import pytest

from services.block_packer import BlockPacker, TaskQueue
from services.focus_models import GENERIC_BLOCK_TITLE, Priority, TaskCandidate, TimeInterval

from conftest import MONDAY


@pytest.fixture
def packer():
    return BlockPacker(max_suggestions=5)


@pytest.fixture
def interval(at):
    """Build a free interval from (hour, minute) to (hour, minute)."""
    def _interval(start, end, day=MONDAY):
        return TimeInterval(start=at(*start, day=day), end=at(*end, day=day))
    return _interval


def times(blocks):
    return [
        (b.start_time.strftime("%H:%M"), b.end_time.strftime("%H:%M"))
        for b in blocks
    ]


# =============================================================================
# TASK QUEUE
# =============================================================================

class TestTaskQueue:
    """Tests for priority-tiered FIFO ordering."""

    def test_empty_queue_pops_none(self):
        queue = TaskQueue()
        assert queue.pop() is None
        assert len(queue) == 0

    def test_high_before_medium_before_low(self):
        queue = TaskQueue([
            TaskCandidate(id="low", title="Low", priority=Priority.LOW),
            TaskCandidate(id="medium", title="Medium", priority=Priority.MEDIUM),
            TaskCandidate(id="high", title="High", priority=Priority.HIGH),
        ])

        assert [queue.pop().id for _ in range(3)] == ["high", "medium", "low"]
        assert queue.pop() is None

    def test_fifo_within_tier(self):
        queue = TaskQueue([
            TaskCandidate(id="a", title="A", priority=Priority.MEDIUM),
            TaskCandidate(id="b", title="B", priority=Priority.HIGH),
            TaskCandidate(id="c", title="C", priority=Priority.MEDIUM),
        ])

        assert [queue.pop().id for _ in range(3)] == ["b", "a", "c"]

    def test_push_and_len(self):
        queue = TaskQueue()
        queue.push(TaskCandidate(id="x", title="X"))
        queue.push(TaskCandidate(id="y", title="Y", priority=Priority.LOW))
        assert len(queue) == 2
        queue.pop()
        assert len(queue) == 1


# =============================================================================
# PACKING
# =============================================================================

class TestPackBlocks:
    """Tests for block layout within free intervals."""

    def test_two_intervals_with_remainders(self, packer, interval, high_priority_tasks):
        free = [interval((10, 0), (14, 0)), interval((15, 0), (17, 0))]

        blocks = packer.pack_blocks(free, TaskQueue(high_priority_tasks))

        assert times(blocks) == [
            ("10:00", "11:30"),
            ("11:30", "13:00"),
            ("13:00", "14:00"),
            ("15:00", "16:30"),
        ]
        assert [b.related_task_id for b in blocks] == ["task-1", "task-2", "task-3", "task-4"]
        assert blocks[0].title == "Focus: Task 1"
        assert all(b.block_type == "focus" for b in blocks)

    def test_unassigned_task_is_not_consumed_beyond_blocks(self, packer, interval, high_priority_tasks):
        queue = TaskQueue(high_priority_tasks)

        packer.pack_blocks([interval((10, 0), (14, 0)), interval((15, 0), (17, 0))], queue)

        assert len(queue) == 1
        assert queue.pop().id == "task-5"

    def test_empty_queue_gives_generic_blocks(self, packer, interval):
        blocks = packer.pack_blocks([interval((9, 0), (12, 0))], TaskQueue())

        assert len(blocks) == 2
        for block in blocks:
            assert block.title == GENERIC_BLOCK_TITLE
            assert block.related_task_id is None
            assert block.notes == "90 minutes of protected deep work time."

    def test_tasks_run_out_midway(self, packer, interval):
        queue = TaskQueue([TaskCandidate(id="only", title="Only task", priority=Priority.LOW)])

        blocks = packer.pack_blocks([interval((9, 0), (12, 0))], queue)

        assert blocks[0].related_task_id == "only"
        assert blocks[0].notes == "90 minutes reserved for a low priority task."
        assert blocks[1].related_task_id is None
        assert blocks[1].title == GENERIC_BLOCK_TITLE

    def test_interval_shorter_than_minimum_is_skipped(self, packer, interval):
        blocks = packer.pack_blocks([interval((9, 0), (9, 45))], TaskQueue())

        assert blocks == []

    def test_interval_between_minimum_and_target_gets_one_block(self, packer, interval):
        blocks = packer.pack_blocks([interval((9, 0), (10, 15))], TaskQueue())

        assert times(blocks) == [("09:00", "10:15")]

    def test_small_remainder_is_dropped(self, packer, interval):
        blocks = packer.pack_blocks([interval((9, 0), (11, 0))], TaskQueue())

        assert times(blocks) == [("09:00", "10:30")]

    def test_no_intervals(self, packer):
        assert packer.pack_blocks([], TaskQueue()) == []

    def test_custom_target_duration(self, packer, interval):
        blocks = packer.pack_blocks(
            [interval((9, 0), (12, 0))],
            TaskQueue(),
            target_duration=timedelta(hours=1),
        )

        assert times(blocks) == [("09:00", "10:00"), ("10:00", "11:00"), ("11:00", "12:00")]

    def test_target_below_minimum_is_clamped(self, packer, interval):
        blocks = packer.pack_blocks(
            [interval((9, 0), (11, 0))],
            TaskQueue(),
            target_duration=timedelta(minutes=20),
        )

        assert times(blocks) == [("09:00", "10:00"), ("10:00", "11:00")]

    def test_queue_is_shared_across_intervals(self, packer, interval):
        tasks = [
            TaskCandidate(id="m1", title="M1", priority=Priority.MEDIUM),
            TaskCandidate(id="h1", title="H1", priority=Priority.HIGH),
            TaskCandidate(id="m2", title="M2", priority=Priority.MEDIUM),
        ]
        free = [interval((9, 0), (10, 30)), interval((13, 0), (14, 30)), interval((15, 0), (16, 30))]

        blocks = packer.pack_blocks(free, TaskQueue(tasks))

        assert [b.related_task_id for b in blocks] == ["h1", "m1", "m2"]


class TestSuggestionCap:
    """Tests for truncation to max_suggestions."""

    @pytest.fixture
    def long_week(self, interval):
        return [interval((9, 0), (17, 0), day=MONDAY + timedelta(days=i)) for i in range(5)]

    def test_cap_keeps_earliest_blocks(self, packer, long_week):
        blocks = packer.pack_blocks(long_week, TaskQueue())

        assert len(blocks) == 5
        assert all(b.start_time.date() == MONDAY for b in blocks)
        assert times(blocks)[0] == ("09:00", "10:30")

    def test_allocate_returns_every_block(self, packer, long_week):
        blocks = packer.allocate_blocks(long_week, TaskQueue())

        # 8 hours per day: five 90 minute blocks, 30 minute remainder dropped
        assert len(blocks) == 25

    def test_truncate(self, interval):
        packer = BlockPacker(max_suggestions=2)
        blocks = packer.allocate_blocks([interval((9, 0), (17, 0))], TaskQueue())

        assert packer.truncate(blocks) == blocks[:2]
        assert packer.truncate(blocks[:1]) == blocks[:1]

    def test_task_ids_are_unique(self, packer, long_week):
        tasks = [TaskCandidate(id=f"t{i}", title=f"T{i}") for i in range(20)]

        blocks = packer.pack_blocks(long_week, TaskQueue(tasks))

        task_ids = [b.related_task_id for b in blocks if b.related_task_id]
        assert len(task_ids) == len(set(task_ids)) == 5

    def test_blocks_never_overlap(self, packer, long_week):
        blocks = packer.allocate_blocks(long_week, TaskQueue())

        for earlier, later in zip(blocks, blocks[1:]):
            assert earlier.end_time <= later.start_time
