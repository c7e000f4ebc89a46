"""FIFO buffer for pushes that could not be sent while disconnected."""

from __future__ import annotations

from collections import deque
from typing import Iterator, Literal

from loguru import logger

from chronicle.bridge.protocol import PushFrame

OverflowPolicy = Literal["drop_oldest", "reject_new"]


class PushQueue:
    """
    Ordered queue of pending pushes with an explicit cap.

    ``limit`` of 0 means unbounded. When full, ``drop_oldest`` evicts the head to
    make room and ``reject_new`` refuses the incoming push. ``dropped`` counts
    every push lost to either policy.
    """

    def __init__(self, limit: int = 1000, overflow: OverflowPolicy = "drop_oldest"):
        if limit < 0:
            raise ValueError("limit must be >= 0")
        if overflow not in ("drop_oldest", "reject_new"):
            raise ValueError(f"unknown overflow policy: {overflow}")
        self.limit = limit
        self.overflow = overflow
        self.dropped = 0
        self._items: deque[PushFrame] = deque()

    def enqueue(self, frame: PushFrame) -> bool:
        """Append at the tail. Returns False if the push was rejected."""
        if self._is_full():
            if self.overflow == "reject_new":
                self.dropped += 1
                logger.warning(f"Push queue full ({self.limit}), rejecting push: {frame.event}")
                return False
            evicted = self._items.popleft()
            self.dropped += 1
            logger.warning(f"Push queue full ({self.limit}), dropping oldest push: {evicted.event}")
        self._items.append(frame)
        return True

    def requeue_front(self, frame: PushFrame) -> None:
        """Put an in-flight push back at the head after a failed send."""
        self._items.appendleft(frame)
        if self.limit and len(self._items) > self.limit:
            if self.overflow == "drop_oldest":
                evicted = self._items.popleft()
            else:
                evicted = self._items.pop()
            self.dropped += 1
            logger.warning(f"Push queue over limit after requeue, dropping push: {evicted.event}")

    def popleft(self) -> PushFrame:
        return self._items.popleft()

    def _is_full(self) -> bool:
        return bool(self.limit) and len(self._items) >= self.limit

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[PushFrame]:
        return iter(list(self._items))
