"""chronicle_status: report whether the agent can reach the Chronicle app."""

from typing import Any

from chronicle.agent.tools.base import Tool
from chronicle.bridge.connection import BridgeConnection

CONNECTED_TEXT = "Chronicle MCP server is operational and connected to Chronicle app."
DISCONNECTED_TEXT = (
    "Chronicle MCP server is operational but NOT connected to Chronicle app. Make sure Chronicle is running."
)


class StatusTool(Tool):
    def __init__(self, connection: BridgeConnection):
        self.connection = connection

    @property
    def name(self) -> str:
        return "chronicle_status"

    @property
    def description(self) -> str:
        return "Check whether the Chronicle MCP server is running and connected to the Chronicle app."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        text = CONNECTED_TEXT if self.connection.is_connected() else DISCONNECTED_TEXT
        queued = len(self.connection.pushes)
        if queued:
            text += f" {queued} notification(s) queued for delivery."
        return text
