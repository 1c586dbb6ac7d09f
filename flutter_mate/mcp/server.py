"""MCP server exposing every flutter-mate action as a tool over stdio.

Each tool call is validated locally, then forwarded to the session daemon
(started on demand). The session comes from FLUTTER_MATE_SESSION.

Run with: flutter-mate mcp   (or python -m flutter_mate.mcp.server)
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from flutter_mate.config import load_config
from flutter_mate.daemon.client import arun_command
from flutter_mate.exceptions import FlutterMateError, ProtocolError
from flutter_mate.logging_config import setup_logging
from flutter_mate.protocol.service import tool_definitions
from flutter_mate.snapshot.formatter import format_snapshot

logger = logging.getLogger(__name__)

server = Server('flutter-mate')


def _text(text: str) -> list[TextContent]:
	return [TextContent(type='text', text=text)]


def render_result(action: str, data: Any) -> str:
	"""JSON for the agent; snapshots get the collapsed tree appended."""
	text = json.dumps(data, indent=2, default=str)
	if action == 'snapshot' and isinstance(data, dict) and isinstance(data.get('nodes'), list):
		lines = format_snapshot(data)
		if lines:
			text += '\n\n' + '\n'.join(lines)
	return text


async def handle_tool_call(name: str, arguments: dict[str, Any] | None, session: str | None = None) -> list[TextContent]:
	"""Validate and forward one tool call. Never raises."""
	session = session or load_config().session
	payload = {**(arguments or {}), 'action': name}

	try:
		response = await arun_command(session, payload)
	except ProtocolError as e:
		logger.info(f'Rejected tool call {name}: {e}')
		return _text(f'Error: {e}')
	except (FlutterMateError, ValueError) as e:
		logger.warning(f'Tool call {name} failed: {e}')
		return _text(f'Error: {e}')

	if not response.success:
		return _text(f'Error: {response.error}')
	return _text(render_result(name, response.data))


@server.list_tools()
async def list_tools() -> list[Tool]:
	"""List every flutter-mate action as a tool."""
	return [
		Tool(name=definition['name'], description=definition['description'], inputSchema=definition['inputSchema'])
		for definition in tool_definitions()
	]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
	"""Execute a flutter-mate action."""
	return await handle_tool_call(name, arguments)


async def serve() -> None:
	async with stdio_server() as (read_stream, write_stream):
		await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> int:
	"""Run the MCP server. stdout carries the protocol, so logs go to stderr."""
	setup_logging()
	logger.info(f'Starting MCP server for session: {load_config().session}')
	try:
		asyncio.run(serve())
	except KeyboardInterrupt:
		pass
	return 0


if __name__ == '__main__':
	raise SystemExit(main())
