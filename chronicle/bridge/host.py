"""Host side of the bridge: a loopback WebSocket server owning the app's ground truth.

Serves ``getCurrentFile`` and ``getWorkspacePath``, records processing pushes
from the agent and can ask connected agents to start processing.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from chronicle.bridge.correlator import RequestCorrelator
from chronicle.bridge.protocol import (
    Method,
    PushEvent,
    PushFrame,
    RequestFrame,
    ResponseFrame,
    decode_frame,
    encode_frame,
    make_response,
)
from chronicle.utils.exceptions import FrameValidationError, NotConnectedError, sanitize_error_message

PushListener = Callable[[str, Any], Any]


@dataclass
class HostState:
    """What the desktop app knows: open workspace, open note, last processing outcome."""
    workspace_path: str | None = None
    current_file_path: str | None = None
    current_file_content: str | None = None
    last_processing_result: Any = None
    last_processing_error: str | None = None

    def open_file(self, path: str | Path, content: str | None = None) -> None:
        file_path = Path(path)
        self.current_file_path = str(file_path)
        self.current_file_content = content if content is not None else file_path.read_text(encoding="utf-8")

    def current_file(self) -> dict[str, Any]:
        if self.current_file_path is None or self.current_file_content is None:
            return {
                "path": None,
                "relativePath": None,
                "content": None,
                "error": "No file currently open",
            }
        return {
            "path": self.current_file_path,
            "relativePath": self._relative_path(self.current_file_path),
            "content": self.current_file_content,
            "session": None,
        }

    def workspace(self) -> dict[str, Any]:
        if self.workspace_path is None:
            return {"path": None, "error": "No workspace open"}
        return {"path": self.workspace_path}

    def _relative_path(self, path: str) -> str:
        file_path = Path(path)
        if self.workspace_path:
            try:
                return file_path.relative_to(self.workspace_path).as_posix()
            except ValueError:
                pass
        return file_path.name


class HostServer:
    """WebSocket server the agent connects to."""

    def __init__(
        self,
        state: HostState | None = None,
        *,
        host: str = "127.0.0.1",
        port: int = 9847,
        request_timeout: float = 30.0,
        push_listener: PushListener | None = None,
    ):
        self.state = state or HostState()
        self.host = host
        self.port = port
        self.push_listener = push_listener
        self.correlator = RequestCorrelator(timeout=request_timeout, id_prefix="trigger")
        self._clients: list[Any] = []
        self._server: Any = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    async def start(self) -> int:
        """Bind and start serving. Returns the bound port (useful with port 0)."""
        self._server = await websockets.serve(self._handle_client, self.host, self.port)
        sockets = list(self._server.sockets or [])
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info(f"WebSocket server listening on {self.host}:{self.port}")
        return self.port

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self.correlator.cancel_all()
        self._clients.clear()
        logger.info("WebSocket server stopped")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.wait_closed()

    async def _handle_client(self, ws: Any) -> None:
        self._clients.append(ws)
        logger.info(f"New WebSocket connection ({self.client_count} connected)")
        try:
            async for raw in ws:
                await self._handle_raw(ws, raw)
        except ConnectionClosed as e:
            logger.debug(f"WebSocket client closed: {e}")
        finally:
            if ws in self._clients:
                self._clients.remove(ws)
            logger.info("WebSocket client disconnected")

    async def _handle_raw(self, ws: Any, raw: Any) -> None:
        try:
            frame = decode_frame(raw)
        except FrameValidationError as e:
            logger.warning(f"Failed to parse WebSocket message: {e.message}")
            return
        if isinstance(frame, RequestFrame):
            await ws.send(encode_frame(self._answer(frame)))
        elif isinstance(frame, ResponseFrame):
            self.correlator.resolve(frame)
        elif isinstance(frame, PushFrame):
            self._record_push(frame)

    def _answer(self, frame: RequestFrame) -> ResponseFrame:
        logger.debug(f"Handling WebSocket request: {frame.method} ({frame.id})")
        if frame.method == Method.GET_CURRENT_FILE.value:
            return make_response(frame.id, result=self.state.current_file())
        if frame.method == Method.GET_WORKSPACE_PATH.value:
            return make_response(frame.id, result=self.state.workspace())
        logger.warning(f"Unknown WebSocket method: {frame.method}")
        return make_response(frame.id, result={"error": f"Unknown method: {frame.method}"})

    def _record_push(self, frame: PushFrame) -> None:
        logger.info(f"Received push event: {frame.event}")
        if frame.event == PushEvent.PROCESSING_COMPLETE.value:
            self.state.last_processing_result = frame.data
            self.state.last_processing_error = None
        elif frame.event == PushEvent.PROCESSING_ERROR.value:
            data = frame.data if isinstance(frame.data, dict) else {}
            self.state.last_processing_error = str(data.get("error") or "Unknown error")
        if self.push_listener is None:
            return
        try:
            outcome = self.push_listener(frame.event, frame.data)
        except Exception as e:
            logger.error(f"Push listener failed for {frame.event}: {sanitize_error_message(str(e))}")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def broadcast_push(self, event: str, data: Any = None) -> int:
        """Send a push to every connected agent. Returns how many received it."""
        message = encode_frame(PushFrame(event=event, data=data))
        delivered = 0
        for ws in list(self._clients):
            try:
                await ws.send(message)
                delivered += 1
            except ConnectionClosed:
                logger.debug("Skipping closed client during broadcast")
        return delivered

    async def _request_client(self, ws: Any, method: str, params: dict[str, Any] | None, timeout: float | None) -> Any:
        request_id = self.correlator.next_id()
        future = self.correlator.register(request_id, method, timeout)
        try:
            await ws.send(encode_frame(RequestFrame(id=request_id, method=method, params=params)))
        except ConnectionClosed as e:
            self.correlator.discard(request_id)
            raise NotConnectedError("MCP server connection closed") from e
        return await future

    async def trigger_processing(self, style: str = "standard", *, timeout: float | None = None) -> list[Any]:
        """
        Ask every connected agent to process the currently open note.

        Returns one entry per agent: its result, or the exception it failed with.

        Raises:
            ValueError: no note is open.
            NotConnectedError: no agent is connected.
        """
        if self.state.current_file_path is None:
            raise ValueError("No file currently open. Open a note first.")
        clients = list(self._clients)
        if not clients:
            raise NotConnectedError("No MCP server connected")
        logger.info(f"Triggering processing with style '{style}' on {len(clients)} client(s)")
        params = {"style": style}
        return await asyncio.gather(
            *(self._request_client(ws, Method.TRIGGER_PROCESSING.value, params, timeout) for ws in clients),
            return_exceptions=True,
        )
