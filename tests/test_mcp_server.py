"""Tests for the MCP surface."""

from mcp import types

from chronicle.agent.runtime import AgentRuntime
from chronicle.config.schema import Config
from chronicle.mcp_server import create_server, list_mcp_tools
from chronicle.providers.base import LLMProvider, LLMResponse


class _NullProvider(LLMProvider):
    async def chat(self, messages, model=None, max_tokens=4096, temperature=0.7):
        return LLMResponse(content="unused")


def _runtime() -> AgentRuntime:
    return AgentRuntime(Config(), provider=_NullProvider())


def test_list_mcp_tools():
    tools = {tool.name: tool for tool in list_mcp_tools(_runtime())}
    assert set(tools) == {"process_meeting", "get_history", "get_version", "compare_versions", "chronicle_status"}

    process = tools["process_meeting"]
    assert process.inputSchema["required"] == ["path"]
    assert process.annotations.title == "Process Meeting Notes"
    assert process.annotations.readOnlyHint is False
    assert tools["get_history"].annotations.readOnlyHint is True
    assert tools["get_version"].inputSchema["required"] == ["path", "commit"]


def test_create_server_registers_handlers():
    server = create_server(_runtime())
    assert server.name == "chronicle"
    for request_type in (
        types.ListToolsRequest,
        types.CallToolRequest,
        types.ListResourcesRequest,
        types.ReadResourceRequest,
    ):
        assert request_type in server.request_handlers
