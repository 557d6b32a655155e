"""MCP stdio server exposing the enabled tool catalog to AI assistants."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from mcpy import __version__
from mcpy.dispatch import ToolDispatcher
from mcpy.models import EventType

logger = logging.getLogger(__name__)


class ToolCallError(Exception):
	"""Raised at the protocol seam so the MCP layer flags the result as an error."""


class McpyServer:
	"""Binds a ToolDispatcher to the MCP low-level server."""

	def __init__(self, dispatcher: ToolDispatcher, name: str = "mcpy") -> None:
		self.dispatcher = dispatcher
		self.events = dispatcher.events
		self.server: Server = Server(name, version=__version__)
		self.session_id: str | None = None

		@self.server.list_tools()
		async def list_tools() -> list[Tool]:
			self._ensure_session()
			return self.list_tools()

		@self.server.call_tool()
		async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
			self._ensure_session()
			return await self.call_tool(name, arguments or {})

	def list_tools(self) -> list[Tool]:
		return [
			Tool(
				name=tool.name,
				title=tool.title,
				description=tool.description,
				inputSchema=tool.input_schema,
			)
			for tool in self.dispatcher.registered_tools()
		]

	async def call_tool(self, name: str, arguments: dict[str, Any]) -> list[TextContent]:
		result = await self.dispatcher.invoke(name, arguments, session_id=self.session_id)
		if result.is_error:
			raise ToolCallError(result.text)
		return [TextContent(type="text", text=result.text)]

	def _ensure_session(self) -> None:
		"""Record the connecting client on its first request."""
		if self.session_id is not None:
			return
		client_name, client_version = "Unknown", None
		try:
			params = self.server.request_context.session.client_params
		except LookupError:
			params = None
		if params is not None:
			client_name = params.clientInfo.name
			client_version = params.clientInfo.version
		self.start_session(client_name, client_version)

	def start_session(self, client_name: str = "Unknown", client_version: str | None = None) -> str:
		self.session_id = uuid.uuid4().hex[:12]
		logger.info("Session %s connected: %s %s", self.session_id, client_name, client_version or "")
		self.events.emit(self.events.make_event(
			EventType.SESSION_CONNECT,
			session_id=self.session_id,
			client_name=client_name,
			client_version=client_version,
		))
		return self.session_id

	def end_session(self) -> None:
		if self.session_id is None:
			return
		logger.info("Session %s disconnected", self.session_id)
		self.events.emit(self.events.make_event(
			EventType.SESSION_DISCONNECT,
			session_id=self.session_id,
		))
		self.session_id = None

	async def run_stdio(self) -> None:
		"""Serve MCP over stdin/stdout until the client closes the transport."""
		async with stdio_server() as (read_stream, write_stream):
			try:
				await self.server.run(
					read_stream, write_stream, self.server.create_initialization_options(),
				)
			finally:
				self.end_session()
