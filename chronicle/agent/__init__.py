"""Agent side: MCP tools and the runtime that owns the bridge connection."""

from chronicle.agent.runtime import AgentRuntime

__all__ = ["AgentRuntime"]
