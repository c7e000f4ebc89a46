"""MCP stdio server exposing chronicle tools and resources."""

from typing import Any

from loguru import logger
from mcp import types
from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server

from chronicle import __version__
from chronicle.agent.runtime import AgentRuntime
from chronicle.resources import list_resources, read_resource

SERVER_NAME = "chronicle"

_TOOL_TITLES = {
    "process_meeting": "Process Meeting Notes",
    "get_history": "Get Note History",
    "get_version": "Get Note Version",
    "compare_versions": "Compare Note Versions",
    "chronicle_status": "Chronicle Status",
}


def list_mcp_tools(runtime: AgentRuntime) -> list[types.Tool]:
    tools: list[types.Tool] = []
    for name in runtime.tools.tool_names:
        tool = runtime.tools.get(name)
        if tool is None:
            continue
        tools.append(
            types.Tool(
                name=tool.name,
                description=tool.description,
                inputSchema=tool.parameters,
                annotations=types.ToolAnnotations(
                    title=_TOOL_TITLES.get(tool.name),
                    readOnlyHint=tool.read_only,
                    destructiveHint=False,
                ),
            )
        )
    return tools


def create_server(runtime: AgentRuntime) -> Server:
    """Create the MCP server bound to one runtime."""
    server: Server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        return list_mcp_tools(runtime)

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        logger.info(f"Tool call: {name}")
        result = await runtime.tools.execute(name, arguments or {})
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=result.text)],
            isError=result.is_error,
        )

    @server.list_resources()
    async def handle_list_resources() -> list[types.Resource]:
        return [
            types.Resource(
                uri=resource.uri,
                name=resource.name,
                description=resource.description,
                mimeType=resource.mime_type,
            )
            for resource in list_resources(runtime.config)
        ]

    @server.read_resource()
    async def handle_read_resource(uri: Any) -> list[ReadResourceContents]:
        resource = read_resource(str(uri), runtime.config)
        return [ReadResourceContents(content=resource.text, mime_type=resource.mime_type)]

    return server


async def run_stdio(runtime: AgentRuntime) -> None:
    """Connect to the Host (best effort) and serve MCP over stdio until stdin closes."""
    server = create_server(runtime)
    await runtime.start()
    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Chronicle MCP server started")
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await runtime.stop()
        logger.info("Chronicle MCP server stopped")
