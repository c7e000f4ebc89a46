"""Request/response correlation with per-request deadlines."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from chronicle.bridge.protocol import ResponseFrame
from chronicle.utils.exceptions import BridgeRequestError, RequestTimeoutError


@dataclass
class PendingRequest:
    """An outstanding request awaiting its response."""
    id: str
    method: str
    future: asyncio.Future[Any]
    deadline: float
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class RequestCorrelator:
    """
    Match outbound requests to inbound responses.

    All access happens on one event loop, so the pending map needs no locking.
    An entry is removed exactly once: by its response, its deadline, or the
    caller abandoning the await.
    """

    def __init__(self, timeout: float = 30.0, id_prefix: str = "req"):
        self.timeout = timeout
        self._id_prefix = id_prefix
        self._counter = itertools.count(1)
        self._pending: dict[str, PendingRequest] = {}

    def next_id(self) -> str:
        return f"{self._id_prefix}-{next(self._counter)}"

    def register(self, request_id: str, method: str, timeout: float | None = None) -> asyncio.Future[Any]:
        """Create the pending entry and arm its deadline. Returns the future to await."""
        if request_id in self._pending:
            raise ValueError(f"duplicate in-flight request id: {request_id}")
        loop = asyncio.get_running_loop()
        wait = self.timeout if timeout is None else timeout
        future: asyncio.Future[Any] = loop.create_future()
        pending = PendingRequest(id=request_id, method=method, future=future, deadline=loop.time() + wait)
        pending.timer = loop.call_later(wait, self._expire, request_id, wait)
        self._pending[request_id] = pending
        future.add_done_callback(lambda _f: self._forget(request_id, future))
        return future

    def resolve(self, response: ResponseFrame) -> bool:
        """Settle the matching request. Returns False when the id is unknown (late or foreign)."""
        pending = self._pending.pop(response.id, None)
        if pending is None:
            logger.debug(f"Dropping response for unknown request id {response.id}")
            return False
        self._cancel_timer(pending)
        if pending.future.done():
            return False
        if response.is_error:
            pending.future.set_exception(BridgeRequestError(pending.method, response.error or "request failed"))
        else:
            pending.future.set_result(response.result)
        return True

    def discard(self, request_id: str) -> None:
        """Drop an entry without settling it (e.g. the send itself failed)."""
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            self._cancel_timer(pending)
            if not pending.future.done():
                pending.future.cancel()

    def cancel_all(self) -> int:
        """Cancel every outstanding request; used when the owning connection is torn down."""
        count = 0
        for request_id in list(self._pending):
            self.discard(request_id)
            count += 1
        return count

    def _expire(self, request_id: str, wait: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning(f"Request {request_id} ({pending.method}) timed out after {wait:g}s")
        pending.future.set_exception(RequestTimeoutError(pending.method, wait))

    def _forget(self, request_id: str, future: asyncio.Future[Any]) -> None:
        pending = self._pending.get(request_id)
        if pending is not None and pending.future is future:
            del self._pending[request_id]
            self._cancel_timer(pending)

    @staticmethod
    def _cancel_timer(pending: PendingRequest) -> None:
        if pending.timer is not None:
            pending.timer.cancel()
            pending.timer = None

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending
