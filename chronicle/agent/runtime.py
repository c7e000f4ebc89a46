"""Agent runtime: wires config, bridge connection, guard, tools and provider."""

import asyncio
from typing import Any

from loguru import logger

from chronicle.agent.tools import (
    CompareVersionsTool,
    GetHistoryTool,
    GetVersionTool,
    ProcessMeetingTool,
    StatusTool,
    ToolRegistry,
    WorkspaceGuard,
)
from chronicle.bridge.connection import BridgeConnection, Connector
from chronicle.bridge.protocol import Method, PushEvent
from chronicle.config.schema import Config
from chronicle.processing import PROCESSING_STYLES
from chronicle.providers.base import LLMProvider
from chronicle.providers.litellm_provider import LiteLLMProvider


class AgentRuntime:
    """
    Everything the MCP server process owns.

    The Host may call ``triggerProcessing`` over the bridge; the runtime
    acknowledges at once and processes the open note in a background task,
    reporting the outcome with ``processingStarted`` / ``processingComplete`` /
    ``processingError`` pushes.
    """

    def __init__(
        self,
        config: Config,
        *,
        provider: LLMProvider | None = None,
        connection: BridgeConnection | None = None,
        connector: Connector | None = None,
    ):
        self.config = config
        self.provider = provider or LiteLLMProvider(default_model=config.model)
        if connection is None:
            connection = BridgeConnection.from_config(
                config,
                request_handler=self.handle_request,
                connector=connector,
            )
        elif connection.request_handler is None:
            connection.request_handler = self.handle_request
        self.connection = connection
        self.guard = WorkspaceGuard(self.connection)
        self.tools = ToolRegistry(self.guard)
        self._background: set[asyncio.Task[None]] = set()
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        self.tools.register(ProcessMeetingTool(self.connection, self.provider, self.config))
        self.tools.register(GetHistoryTool())
        self.tools.register(GetVersionTool())
        self.tools.register(CompareVersionsTool())
        self.tools.register(StatusTool(self.connection))

    async def start(self) -> bool:
        """Try one connect; a missing Host is not fatal, the reconnect loop keeps going."""
        logger.info("Chronicle MCP server starting...")
        return await self.connection.try_connect()

    async def stop(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self.connection.aclose()

    async def join_background(self) -> None:
        """Wait for in-flight processing started by ``triggerProcessing``."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def handle_request(self, method: str, params: dict[str, Any] | None) -> Any:
        """Serve requests originated by the Host."""
        if method == Method.TRIGGER_PROCESSING.value:
            return await self._trigger_processing(params or {})
        logger.warning(f"Unknown request method from app: {method}")
        raise ValueError(f"Unknown method: {method}")

    async def _trigger_processing(self, params: dict[str, Any]) -> dict[str, Any]:
        style = params.get("style") or self.config.default_style
        if style not in PROCESSING_STYLES:
            raise ValueError(f"Unknown processing style '{style}'")
        logger.info(f"Received triggerProcessing request from Chronicle app (style={style})")

        await self.connection.send_push(PushEvent.PROCESSING_STARTED.value, {"style": style})
        task = asyncio.create_task(self._process_current(style))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return {"accepted": True, "style": style}

    async def _process_current(self, style: str) -> None:
        result = await self.tools.execute("process_meeting", {"path": "current", "style": style})
        if not result.is_error:
            logger.info(f"Processing complete: {result.text.splitlines()[0]}")
            return
        error = result.text.removeprefix("Error: ")
        logger.error(f"Processing failed: {error}")
        await self.connection.send_push(PushEvent.PROCESSING_ERROR.value, {"error": error})
