"""WebSocket client connection to the Chronicle desktop app.

Owns the socket and drives ``DISCONNECTED -> CONNECTING -> CONNECTED``.
Every close (remote, network failure, inactivity watchdog, failed open)
schedules a reconnect with exponential backoff until ``disconnect()`` is
called. Requests fail fast while disconnected; pushes are queued and flushed
in order on the next successful connect.
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from chronicle.bridge.correlator import RequestCorrelator
from chronicle.bridge.protocol import (
    PushFrame,
    RequestFrame,
    ResponseFrame,
    decode_frame,
    encode_frame,
    make_response,
)
from chronicle.bridge.push_queue import OverflowPolicy, PushQueue
from chronicle.config.schema import (
    INACTIVITY_TIMEOUT_SECONDS,
    RECONNECT_BASE_DELAY_SECONDS,
    RECONNECT_MAX_DELAY_SECONDS,
    Config,
)
from chronicle.utils.exceptions import (
    BridgeConnectError,
    ChronicleError,
    FrameValidationError,
    NotConnectedError,
    sanitize_error_message,
)

Connector = Callable[[str], Awaitable[Any]]
PushHandler = Callable[[str, Any], Any]
RequestHandler = Callable[[str, "dict[str, Any] | None"], Awaitable[Any]]

_MAX_FRAME_BYTES = 16 * 1024 * 1024


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def reconnect_delay(
    attempts: int,
    base: float = RECONNECT_BASE_DELAY_SECONDS,
    cap: float = RECONNECT_MAX_DELAY_SECONDS,
) -> float:
    """Backoff before reconnect number ``attempts + 1``: ``min(base * 2**attempts, cap)``."""
    if attempts < 0:
        raise ValueError("attempts must be >= 0")
    # 2**attempts grows without bound; stop doubling once past the cap.
    if attempts >= 64:
        return cap
    return min(base * (2 ** attempts), cap)


async def _websocket_connector(url: str) -> Any:
    # Keepalive is driven by BridgeConnection so pongs can feed the watchdog.
    return await websockets.connect(url, ping_interval=None, open_timeout=10, max_size=_MAX_FRAME_BYTES)


class BridgeConnection:
    """A single owned connection from the agent process to the Host."""

    def __init__(
        self,
        url: str,
        *,
        request_timeout: float = 30.0,
        inactivity_timeout: float = INACTIVITY_TIMEOUT_SECONDS,
        reconnect_base_delay: float = RECONNECT_BASE_DELAY_SECONDS,
        reconnect_max_delay: float = RECONNECT_MAX_DELAY_SECONDS,
        ping_interval: float = 20.0,
        push_queue_limit: int = 1000,
        push_overflow: OverflowPolicy = "drop_oldest",
        push_handler: PushHandler | None = None,
        request_handler: RequestHandler | None = None,
        connector: Connector | None = None,
    ):
        self.url = url
        self.inactivity_timeout = inactivity_timeout
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.ping_interval = ping_interval
        self.push_handler = push_handler
        self.request_handler = request_handler
        self._connector = connector or _websocket_connector

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.last_reconnect_delay: float | None = None
        self.correlator = RequestCorrelator(timeout=request_timeout)
        self.pushes = PushQueue(limit=push_queue_limit, overflow=push_overflow)

        self._ws: Any = None
        self._auto_reconnect = True
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._watchdog: asyncio.TimerHandle | None = None
        self._connect_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._background: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> "BridgeConnection":
        return cls(
            config.ws_url,
            request_timeout=config.request_timeout_seconds,
            ping_interval=config.ping_interval,
            push_queue_limit=config.push_queue_limit,
            push_overflow=config.push_overflow,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._ws is not None

    async def connect(self) -> None:
        """
        Make one attempt to open the socket.

        Raises:
            BridgeConnectError: the open failed. A reconnect has already been
                scheduled; the caller decides whether to wait for it.
        """
        async with self._connect_lock:
            if self.is_connected():
                return
            self._auto_reconnect = True
            self._cancel_reconnect()
            self.state = ConnectionState.CONNECTING
            try:
                ws = await self._connector(self.url)
            except asyncio.CancelledError:
                self.state = ConnectionState.DISCONNECTED
                raise
            except Exception as e:
                self.state = ConnectionState.DISCONNECTED
                reason = sanitize_error_message(str(e)) or type(e).__name__
                logger.warning(f"Could not connect to Chronicle app at {self.url}: {reason}")
                if self._auto_reconnect:
                    self._schedule_reconnect()
                raise BridgeConnectError(self.url, reason) from e

            if not self._auto_reconnect:
                # disconnect() ran while the open was in flight.
                self.state = ConnectionState.DISCONNECTED
                logger.info("Disconnected while connecting, closing the new socket")
                await self._close_quietly(ws)
                return

            self._ws = ws
            self.state = ConnectionState.CONNECTED
            self.reconnect_attempts = 0
            logger.info(f"Connected to Chronicle app at {self.url}")
            self._touch()
            self._reader_task = asyncio.create_task(self._read_loop(ws))
            if self.ping_interval > 0:
                self._heartbeat_task = asyncio.create_task(self._heartbeat(ws))

        await self._flush_pushes()

    async def try_connect(self) -> bool:
        """Connect once, logging instead of raising when the Host is not up yet."""
        try:
            await self.connect()
            return True
        except BridgeConnectError:
            logger.info("Chronicle app not running. Will keep retrying in the background.")
            return False

    async def disconnect(self) -> None:
        """Force-close and stop reconnecting until ``connect()`` is called again."""
        self._auto_reconnect = False
        self._cancel_reconnect()
        self._clear_watchdog()
        ws = self._ws
        if ws is not None:
            await self._close_socket(ws)
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self.state = ConnectionState.DISCONNECTED

    async def aclose(self) -> None:
        """Disconnect and abandon all in-flight requests and handler tasks."""
        await self.disconnect()
        dropped = self.correlator.cancel_all()
        if dropped:
            logger.debug(f"Cancelled {dropped} in-flight request(s) on shutdown")
        for task in list(self._background):
            task.cancel()

    def _schedule_reconnect(self) -> None:
        delay = reconnect_delay(self.reconnect_attempts, self.reconnect_base_delay, self.reconnect_max_delay)
        self.reconnect_attempts += 1
        self.last_reconnect_delay = delay
        self._cancel_reconnect()
        logger.info(f"Reconnecting to Chronicle in {delay:g}s (attempt {self.reconnect_attempts})")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._auto_reconnect or self.is_connected():
            return
        try:
            await self.connect()
        except BridgeConnectError:
            pass  # the failed attempt scheduled the next one

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if task is not None and task is not asyncio.current_task():
            self._reconnect_task = None

    def _on_closed(self, ws: Any) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self.state = ConnectionState.DISCONNECTED
        self._clear_watchdog()
        if self._heartbeat_task is not None and self._heartbeat_task is not asyncio.current_task():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None
        logger.info("Disconnected from Chronicle app")
        if self._auto_reconnect:
            self._schedule_reconnect()

    async def _close_socket(self, ws: Any) -> None:
        self._on_closed(ws)
        await self._close_quietly(ws)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error while closing socket: {e}")

    # ------------------------------------------------------------------
    # Inactivity watchdog and keepalive
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        """Record inbound activity: re-arm the single inactivity timer."""
        self._clear_watchdog()
        if self.inactivity_timeout > 0 and self.is_connected():
            loop = asyncio.get_running_loop()
            self._watchdog = loop.call_later(self.inactivity_timeout, self._on_inactive)

    def _clear_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_inactive(self) -> None:
        self._watchdog = None
        ws = self._ws
        if ws is None or not self.is_connected():
            return
        logger.warning(f"No messages received for {self.inactivity_timeout:g}s, reconnecting proactively...")
        # A dead peer never completes the close handshake; detach first.
        self._on_closed(ws)
        self._spawn(self._close_quietly(ws))

    async def _heartbeat(self, ws: Any) -> None:
        try:
            while ws is self._ws:
                await asyncio.sleep(self.ping_interval)
                pong_waiter = await ws.ping()
                await pong_waiter
                if ws is self._ws:
                    self._touch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Keepalive stopped: {e}")

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                if ws is not self._ws:
                    break
                self._touch()
                self._dispatch(raw)
        except ConnectionClosed as e:
            logger.debug(f"Socket closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"WebSocket error: {sanitize_error_message(str(e))}")
        finally:
            self._on_closed(ws)

    def _dispatch(self, raw: Any) -> None:
        try:
            frame = decode_frame(raw)
        except FrameValidationError as e:
            logger.warning(f"Invalid WebSocket message: {e.message}")
            return

        if isinstance(frame, ResponseFrame):
            self.correlator.resolve(frame)
        elif isinstance(frame, PushFrame):
            self._deliver_push(frame)
        elif isinstance(frame, RequestFrame):
            self._spawn(self._serve_request(frame))

    def _deliver_push(self, frame: PushFrame) -> None:
        if self.push_handler is None:
            logger.debug(f"No push handler, ignoring push: {frame.event}")
            return
        try:
            outcome = self.push_handler(frame.event, frame.data)
        except Exception as e:
            logger.error(f"Push handler failed for {frame.event}: {sanitize_error_message(str(e))}")
            return
        if inspect.isawaitable(outcome):
            self._spawn(self._await_push_handler(frame.event, outcome))

    async def _await_push_handler(self, event: str, outcome: Awaitable[Any]) -> None:
        try:
            await outcome
        except Exception as e:
            logger.error(f"Push handler failed for {event}: {sanitize_error_message(str(e))}")

    async def _serve_request(self, frame: RequestFrame) -> None:
        if self.request_handler is None:
            logger.warning(f"Unknown request method from app: {frame.method}")
            response = make_response(frame.id, error=f"Unknown method: {frame.method}")
        else:
            try:
                result = await self.request_handler(frame.method, frame.params)
                response = make_response(frame.id, result=result)
            except Exception as e:
                message = e.message if isinstance(e, ChronicleError) else sanitize_error_message(str(e))
                logger.warning(f"Request {frame.method} ({frame.id}) failed: {message}")
                response = make_response(frame.id, error=message or type(e).__name__)
        try:
            await self._send(response)
        except (NotConnectedError, ConnectionClosed):
            logger.debug(f"Connection gone, dropping response to {frame.id}")
        except Exception as e:
            logger.warning(f"Failed to send response to {frame.id}: {sanitize_error_message(str(e))}")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Outbound: requests and pushes
    # ------------------------------------------------------------------

    async def _send(self, frame: RequestFrame | ResponseFrame | PushFrame) -> None:
        ws = self._ws
        if ws is None or not self.is_connected():
            raise NotConnectedError()
        await ws.send(encode_frame(frame))

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """
        Send a request and wait for its response.

        Raises:
            NotConnectedError: the socket is down; nothing was sent or registered.
            RequestTimeoutError: no response before the deadline.
            BridgeRequestError: the peer answered with an error.
        """
        if not self.is_connected():
            raise NotConnectedError()
        request_id = self.correlator.next_id()
        frame = RequestFrame(id=request_id, method=method, params=params)
        future = self.correlator.register(request_id, method, timeout)
        try:
            await self._send(frame)
        except NotConnectedError:
            self.correlator.discard(request_id)
            raise
        except Exception as e:
            self.correlator.discard(request_id)
            raise NotConnectedError(f"Connection lost while sending '{method}'") from e
        return await future

    async def send_push(self, event: str, data: Any = None) -> None:
        """Best-effort ordered push. Never raises; degrades to queued when disconnected."""
        frame = PushFrame(event=event, data=data)
        accepted = self.pushes.enqueue(frame)
        if not self.is_connected():
            if accepted:
                logger.info(f"Queued push (not connected): {event}")
            return
        await self._flush_pushes()

    async def _flush_pushes(self) -> None:
        async with self._flush_lock:
            while self.pushes:
                if not self.is_connected():
                    logger.info(f"Connection lost mid-flush, {len(self.pushes)} push(es) stay queued")
                    return
                frame = self.pushes.popleft()
                try:
                    await self._send(frame)
                except Exception as e:
                    self.pushes.requeue_front(frame)
                    logger.warning(f"Push {frame.event} not delivered, keeping it queued: {e}")
                    return
                logger.debug(f"Sent push: {frame.event}")
