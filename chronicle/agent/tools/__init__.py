"""Agent tools exposed over MCP."""

from chronicle.agent.tools.base import Tool
from chronicle.agent.tools.guard import (
    ResolvedPath,
    WorkspaceGuard,
    ensure_safe_ref,
    ensure_within_workspace,
)
from chronicle.agent.tools.history import CompareVersionsTool, GetHistoryTool, GetVersionTool
from chronicle.agent.tools.process import ProcessMeetingTool
from chronicle.agent.tools.registry import ToolRegistry, ToolResult
from chronicle.agent.tools.status import StatusTool

__all__ = [
    "Tool",
    "ResolvedPath",
    "WorkspaceGuard",
    "ensure_safe_ref",
    "ensure_within_workspace",
    "CompareVersionsTool",
    "GetHistoryTool",
    "GetVersionTool",
    "ProcessMeetingTool",
    "ToolRegistry",
    "ToolResult",
    "StatusTool",
]
