"""Tool registry: dispatch MCP tool calls through validation and the workspace guard."""

from dataclasses import dataclass
from typing import Any

from loguru import logger

from chronicle.agent.tools.base import Tool
from chronicle.agent.tools.guard import WorkspaceGuard
from chronicle.utils.exceptions import format_tool_error


@dataclass
class ToolResult:
    text: str
    is_error: bool = False


class ToolRegistry:
    """
    Registry for agent tools.

    ``execute`` never raises: unknown tools, bad parameters, guard rejections
    and tool failures all come back as an ``Error: ...`` result flagged
    ``is_error``.
    """

    def __init__(self, guard: WorkspaceGuard | None = None):
        self.guard = guard
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if (tool.path_params or tool.ref_params) and self.guard is None:
            raise ValueError(f"Tool '{tool.name}' takes paths or refs and needs a WorkspaceGuard")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    async def execute(self, name: str, params: dict[str, Any] | None) -> ToolResult:
        """
        Execute a tool by name with given parameters.

        Args:
            name: Tool name.
            params: Raw arguments from the MCP client.

        Returns:
            ToolResult with the tool's text, or the error text.
        """
        if not isinstance(params, dict):
            params = {}
        tool = self._tools.get(name)
        if not tool:
            return ToolResult(f"Error: Tool '{name}' not found", is_error=True)

        errors = tool.validate_params(params)
        if errors:
            return ToolResult(f"Error: Invalid parameters for tool '{name}': " + "; ".join(errors), is_error=True)

        try:
            if self.guard is not None and (tool.path_params or tool.ref_params):
                params = await self.guard.check(tool, params)
            text = await tool.execute(**params)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {format_tool_error(e)}")
            return ToolResult(format_tool_error(e), is_error=True)

        # Tools decorated with tool_error_handler report failures as text.
        return ToolResult(text, is_error=text.startswith("Error:"))

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
