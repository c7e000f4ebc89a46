"""Tests for the agent-side connection lifecycle, requests and pushes."""

import asyncio
import json

import pytest

from chronicle.bridge.connection import BridgeConnection, ConnectionState, reconnect_delay
from chronicle.utils.exceptions import (
    BridgeConnectError,
    BridgeRequestError,
    NotConnectedError,
    RequestTimeoutError,
)

_CLOSE = object()


class _FakeWs:
    def __init__(self, *, auto_pong: bool = True, fail_from_send: int | None = None, hang_on_close: bool = False):
        self.sent: list[dict] = []
        self.closed = False
        self.fail_sends = False
        self.fail_from_send = fail_from_send
        self.hang_on_close = hang_on_close
        self.close_started = False
        self.send_attempts = 0
        self.auto_pong = auto_pong
        self.pings = 0
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: dict | str) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    async def send(self, message: str) -> None:
        self.send_attempts += 1
        if self.fail_from_send is not None and self.send_attempts >= self.fail_from_send:
            self.fail_sends = True
        if self.closed or self.fail_sends:
            raise RuntimeError("socket is closed")
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.close_started = True
        if self.hang_on_close:
            # Silent peer: the close handshake never completes.
            await asyncio.Event().wait()
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)

    async def ping(self) -> asyncio.Future:
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        if self.auto_pong:
            waiter.set_result(0.0)
        return waiter

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    def events(self) -> list[str]:
        return [f["event"] for f in self.sent if f.get("type") == "push"]


class _Connector:
    def __init__(self, fail_times: int = 0, socket_options: list[dict] | None = None):
        self.fail_times = fail_times
        self.attempts = 0
        self.sockets: list[_FakeWs] = []
        self.socket_options = list(socket_options or [])
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def __call__(self, url: str) -> _FakeWs:
        self.attempts += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.attempts <= self.fail_times:
            raise OSError("Connection refused")
        ws = _FakeWs(**(self.socket_options.pop(0) if self.socket_options else {}))
        self.sockets.append(ws)
        return ws


def _connection(connector: _Connector, **kwargs) -> BridgeConnection:
    kwargs.setdefault("ping_interval", 0)
    kwargs.setdefault("reconnect_base_delay", 10.0)
    return BridgeConnection("ws://127.0.0.1:9847", connector=connector, **kwargs)


def test_reconnect_delay_doubles_up_to_cap():
    assert [reconnect_delay(n) for n in range(8)] == [1, 2, 4, 8, 16, 32, 60, 60]
    assert reconnect_delay(10_000) == 60
    with pytest.raises(ValueError):
        reconnect_delay(-1)


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [1, 3, 7])
async def test_consecutive_failures_count_attempts(failures):
    connector = _Connector(fail_times=100)
    conn = _connection(connector, reconnect_base_delay=1.0, reconnect_max_delay=60.0)
    for _ in range(failures):
        with pytest.raises(BridgeConnectError):
            await conn.connect()
    assert conn.reconnect_attempts == failures
    assert conn.last_reconnect_delay == min(1.0 * 2 ** (failures - 1), 60.0)
    assert conn.state is ConnectionState.DISCONNECTED
    await conn.aclose()


@pytest.mark.asyncio
async def test_successful_connect_resets_attempts():
    connector = _Connector(fail_times=2)
    conn = _connection(connector)
    for _ in range(2):
        assert await conn.try_connect() is False
    assert conn.reconnect_attempts == 2
    await conn.connect()
    assert conn.is_connected()
    assert conn.reconnect_attempts == 0
    await conn.aclose()


@pytest.mark.asyncio
async def test_request_while_disconnected_fails_fast():
    conn = _connection(_Connector())
    with pytest.raises(NotConnectedError):
        await conn.request("getCurrentFile")
    assert len(conn.correlator) == 0


@pytest.mark.asyncio
async def test_request_roundtrip(wait_until):
    connector = _Connector()
    conn = _connection(connector)
    await conn.connect()
    ws = connector.sockets[0]

    task = asyncio.create_task(conn.request("getWorkspacePath"))
    await wait_until(lambda: ws.sent)
    assert ws.sent[0] == {"type": "request", "id": "req-1", "method": "getWorkspacePath"}
    ws.feed({"type": "response", "id": "req-1", "result": {"path": "/notes"}})
    assert await task == {"path": "/notes"}
    await conn.aclose()


@pytest.mark.asyncio
async def test_request_error_response(wait_until):
    connector = _Connector()
    conn = _connection(connector)
    await conn.connect()
    ws = connector.sockets[0]

    task = asyncio.create_task(conn.request("getCurrentFile"))
    await wait_until(lambda: ws.sent)
    ws.feed({"type": "response", "id": ws.sent[0]["id"], "error": "No file"})
    with pytest.raises(BridgeRequestError):
        await task
    await conn.aclose()


@pytest.mark.asyncio
async def test_timed_out_request_ignores_late_response():
    connector = _Connector()
    conn = _connection(connector)
    await conn.connect()
    ws = connector.sockets[0]

    with pytest.raises(RequestTimeoutError):
        await conn.request("getCurrentFile", timeout=0.05)
    assert len(conn.correlator) == 0

    ws.feed({"type": "response", "id": "req-1", "result": {"late": True}})
    await asyncio.sleep(0.02)
    assert conn.is_connected()
    assert len(conn.correlator) == 0
    await conn.aclose()


@pytest.mark.asyncio
async def test_queued_pushes_flush_in_order_before_new_ones():
    connector = _Connector()
    conn = _connection(connector)
    for i in range(3):
        await conn.send_push(f"queued-{i}", {"n": i})
    assert len(conn.pushes) == 3

    await conn.connect()
    ws = connector.sockets[0]
    assert ws.events() == ["queued-0", "queued-1", "queued-2"]

    await conn.send_push("fresh")
    assert ws.events() == ["queued-0", "queued-1", "queued-2", "fresh"]
    assert len(conn.pushes) == 0
    await conn.aclose()


@pytest.mark.asyncio
async def test_failed_push_send_keeps_it_queued():
    connector = _Connector()
    conn = _connection(connector)
    await conn.connect()
    ws = connector.sockets[0]
    ws.fail_sends = True

    await conn.send_push("processingComplete", {"path": "a.md"})
    await conn.send_push("processingError", {"error": "x"})
    assert [p.event for p in conn.pushes] == ["processingComplete", "processingError"]
    await conn.aclose()


@pytest.mark.asyncio
async def test_partial_drain_keeps_remaining_pushes_in_order(wait_until):
    connector = _Connector(socket_options=[{"fail_from_send": 2}])
    conn = _connection(connector, reconnect_base_delay=0.01)
    for i in range(3):
        await conn.send_push(f"e{i}")

    await conn.connect()
    first = connector.sockets[0]
    assert first.events() == ["e0"]
    assert [p.event for p in conn.pushes] == ["e1", "e2"]

    await conn.send_push("e3")
    assert [p.event for p in conn.pushes] == ["e1", "e2", "e3"]

    await first.close()
    await wait_until(lambda: len(connector.sockets) == 2 and not conn.pushes)
    assert connector.sockets[1].events() == ["e1", "e2", "e3"]
    await conn.aclose()


@pytest.mark.asyncio
async def test_pushes_survive_a_reconnect(wait_until):
    connector = _Connector()
    conn = _connection(connector, reconnect_base_delay=0.01)
    await conn.connect()
    first = connector.sockets[0]
    await first.close()
    await wait_until(lambda: conn.state is ConnectionState.DISCONNECTED)

    await conn.send_push("a")
    await conn.send_push("b")
    await wait_until(lambda: len(connector.sockets) == 2 and conn.is_connected())
    await wait_until(lambda: not conn.pushes)
    assert connector.sockets[1].events() == ["a", "b"]
    await conn.aclose()


@pytest.mark.asyncio
async def test_watchdog_closes_silent_socket_and_schedules_reconnect(wait_until):
    connector = _Connector()
    conn = _connection(connector, inactivity_timeout=0.05)
    await conn.connect()

    await wait_until(lambda: conn.state is ConnectionState.DISCONNECTED)
    await wait_until(lambda: connector.sockets[0].closed)
    assert connector.sockets[0].closed
    assert conn.reconnect_attempts == 1
    assert conn.last_reconnect_delay == 10.0
    await conn.aclose()


@pytest.mark.asyncio
async def test_watchdog_disconnects_without_waiting_for_close_handshake(wait_until):
    connector = _Connector(socket_options=[{"hang_on_close": True}])
    conn = _connection(connector, inactivity_timeout=0.05)
    await conn.connect()
    silent = connector.sockets[0]

    await wait_until(lambda: silent.close_started, timeout=0.5)
    assert conn.state is ConnectionState.DISCONNECTED
    assert not conn.is_connected()
    assert conn.reconnect_attempts == 1
    with pytest.raises(NotConnectedError):
        await conn.request("getCurrentFile")
    await conn.aclose()


@pytest.mark.asyncio
async def test_inbound_frames_reset_watchdog():
    connector = _Connector()
    conn = _connection(connector, inactivity_timeout=0.15)
    await conn.connect()
    ws = connector.sockets[0]

    for _ in range(8):
        ws.feed({"type": "push", "event": "heartbeat"})
        await asyncio.sleep(0.05)
    assert conn.is_connected()
    await conn.aclose()


@pytest.mark.asyncio
async def test_pongs_keep_connection_alive():
    connector = _Connector()
    conn = _connection(connector, inactivity_timeout=0.15, ping_interval=0.03)
    await conn.connect()
    await asyncio.sleep(0.4)
    assert conn.is_connected()
    assert connector.sockets[0].pings >= 3
    await conn.aclose()


@pytest.mark.asyncio
async def test_remote_close_reconnects(wait_until):
    connector = _Connector()
    conn = _connection(connector, reconnect_base_delay=0.01)
    await conn.connect()
    await connector.sockets[0].close()

    await wait_until(lambda: connector.attempts == 2 and conn.is_connected())
    assert conn.reconnect_attempts == 0
    await conn.aclose()


@pytest.mark.asyncio
async def test_disconnect_suppresses_reconnect():
    connector = _Connector()
    conn = _connection(connector, reconnect_base_delay=0.01)
    await conn.connect()
    await conn.disconnect()
    await asyncio.sleep(0.1)
    assert connector.attempts == 1
    assert conn.state is ConnectionState.DISCONNECTED
    await conn.aclose()


@pytest.mark.asyncio
async def test_disconnect_during_pending_connect_wins():
    connector = _Connector()
    connector.gate = asyncio.Event()
    conn = _connection(connector, reconnect_base_delay=0.01)

    pending = asyncio.create_task(conn.connect())
    await connector.entered.wait()
    await conn.disconnect()
    connector.gate.set()
    await pending

    assert conn.state is ConnectionState.DISCONNECTED
    assert not conn.is_connected()
    assert connector.sockets[0].closed
    await asyncio.sleep(0.05)
    assert connector.attempts == 1
    await conn.aclose()


@pytest.mark.asyncio
async def test_inbound_request_is_answered(wait_until):
    calls = []

    async def handler(method, params):
        calls.append((method, params))
        return {"accepted": True, "style": params["style"]}

    connector = _Connector()
    conn = _connection(connector, request_handler=handler)
    await conn.connect()
    ws = connector.sockets[0]
    ws.feed({"type": "request", "id": "trigger-1", "method": "triggerProcessing", "data": {"style": "brief"}})

    await wait_until(lambda: ws.sent)
    assert calls == [("triggerProcessing", {"style": "brief"})]
    assert ws.sent[0] == {"type": "response", "id": "trigger-1", "result": {"accepted": True, "style": "brief"}}
    await conn.aclose()


@pytest.mark.asyncio
async def test_failing_request_handler_answers_with_error(wait_until):
    async def handler(method, params):
        raise ValueError(f"Unknown method: {method}")

    connector = _Connector()
    conn = _connection(connector, request_handler=handler)
    await conn.connect()
    ws = connector.sockets[0]
    ws.feed({"type": "request", "id": "x-1", "method": "frobnicate"})

    await wait_until(lambda: ws.sent)
    assert ws.sent[0] == {"type": "response", "id": "x-1", "error": "Unknown method: frobnicate"}
    await conn.aclose()


@pytest.mark.asyncio
async def test_push_handler_and_invalid_frames(wait_until):
    received = []
    connector = _Connector()
    conn = _connection(connector, push_handler=lambda event, data: received.append((event, data)))
    await conn.connect()
    ws = connector.sockets[0]

    ws.feed("{not json")
    ws.feed({"type": "mystery"})
    ws.feed({"type": "push", "event": "noteChanged", "data": {"path": "a.md"}})

    await wait_until(lambda: received)
    assert received == [("noteChanged", {"path": "a.md"})]
    assert conn.is_connected()
    await conn.aclose()
