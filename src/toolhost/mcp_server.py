"""MCP stdio server exposing the registry's tools."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from toolhost.errors import NotFoundError, ValidationError
from toolhost.host import ToolHost
from toolhost.metrics import setup_logging
from toolhost.models import ExecutionResult

logger = logging.getLogger(__name__)

McpContent = types.TextContent | types.ImageContent | types.AudioContent


def to_mcp_content(result: ExecutionResult) -> list[McpContent]:
	"""Map result blocks onto MCP content by block type.

	Block types MCP has no inline form for are sent as text.
	"""
	content: list[McpContent] = []
	for block in result.content:
		if block.type == "image":
			content.append(types.ImageContent(type="image", data=block.data, mimeType=block.mime_type))
		elif block.type == "audio":
			content.append(types.AudioContent(type="audio", data=block.data, mimeType=block.mime_type))
		else:
			content.append(TextContent(type="text", text=block.text))
	return content


def describe_tools(host: ToolHost) -> list[Tool]:
	return [
		Tool(name=t["name"], description=t["description"], inputSchema=t["inputSchema"])
		for t in host.dispatch.list_tools()
	]


async def handle_call(
	host: ToolHost, name: str, arguments: dict[str, Any] | None,
) -> list[McpContent] | types.CallToolResult:
	"""Run one MCP tool call. Failures come back as isError results, never raise."""
	try:
		result = await host.dispatch.call_tool(name, arguments or {}, context={"transport": "mcp"})
	except (NotFoundError, ValidationError) as exc:
		logger.warning("Rejected MCP call to %s: %s", name, exc)
		return types.CallToolResult(content=[TextContent(type="text", text=str(exc))], isError=True)
	if result.is_error:
		return types.CallToolResult(content=to_mcp_content(result), isError=True)
	return to_mcp_content(result)


def build_server(host: ToolHost) -> Server:
	"""Build an MCP server whose tools are the host's enabled tools."""
	server: Server = Server(host.config.server.name, version=host.config.server.version)

	@server.list_tools()
	async def list_tools() -> list[Tool]:
		return describe_tools(host)

	@server.call_tool()
	async def call_tool(name: str, arguments: dict[str, Any] | None) -> Any:
		return await handle_call(host, name, arguments)

	return server


def run_mcp_server(config_path: str | Path | None = None) -> None:
	"""Entry point for `toolhost serve`."""
	host = ToolHost.from_config_file(config_path)
	setup_logging(host.config.logging.level, host.config.logging.json_format)

	async def _run() -> None:
		async with host:
			server = build_server(host)
			async with stdio_server() as (read_stream, write_stream):
				await server.run(read_stream, write_stream, server.create_initialization_options())

	asyncio.run(_run())
