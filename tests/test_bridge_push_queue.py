"""Tests for the push reliability queue."""

import pytest

from chronicle.bridge.protocol import PushFrame
from chronicle.bridge.push_queue import PushQueue


def _push(n: int) -> PushFrame:
    return PushFrame(event=f"e{n}", data={"n": n})


def test_fifo_order():
    queue = PushQueue()
    for i in range(3):
        queue.enqueue(_push(i))
    assert [queue.popleft().event for _ in range(3)] == ["e0", "e1", "e2"]
    assert not queue


def test_drop_oldest_when_full():
    queue = PushQueue(limit=2, overflow="drop_oldest")
    for i in range(3):
        assert queue.enqueue(_push(i)) is True
    assert [p.event for p in queue] == ["e1", "e2"]
    assert queue.dropped == 1


def test_reject_new_when_full():
    queue = PushQueue(limit=2, overflow="reject_new")
    assert queue.enqueue(_push(0))
    assert queue.enqueue(_push(1))
    assert queue.enqueue(_push(2)) is False
    assert [p.event for p in queue] == ["e0", "e1"]
    assert queue.dropped == 1


def test_zero_limit_is_unbounded():
    queue = PushQueue(limit=0)
    for i in range(5000):
        queue.enqueue(_push(i))
    assert len(queue) == 5000
    assert queue.dropped == 0


def test_requeue_front_restores_head():
    queue = PushQueue()
    queue.enqueue(_push(0))
    queue.enqueue(_push(1))
    head = queue.popleft()
    queue.requeue_front(head)
    assert [p.event for p in queue] == ["e0", "e1"]


def test_invalid_construction():
    with pytest.raises(ValueError):
        PushQueue(limit=-1)
    with pytest.raises(ValueError):
        PushQueue(overflow="block")  # type: ignore[arg-type]
