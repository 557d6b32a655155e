"""Invocation wrapper: the boundary every tool call passes through.

Each call emits a ``tool_call`` event before any awaiting work, re-checks the
tool's guard against the current settings, runs the handler, and emits exactly
one ``tool_result`` or ``tool_error`` event. Handler exceptions are contained
here and turned into error results; they never reach the protocol session.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mcpy.catalog import Catalog
from mcpy.config import ServerConfig, SettingsStore
from mcpy.enablement import is_enabled, missing_settings
from mcpy.events import EventBus
from mcpy.models import EventType, ToolDescriptor, ToolResult, error_result

if TYPE_CHECKING:
	from mcpy.update import UpdateManager

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
	"""What a tool handler may use besides its parameters."""

	settings: Mapping[str, Any]
	events: EventBus
	config: ServerConfig
	updater: UpdateManager | None = None

	@property
	def data_dir(self) -> Path:
		return self.config.data_dir


class ToolDispatcher:
	"""Decides which tools are callable and wraps every invocation."""

	def __init__(
		self,
		catalog: Catalog,
		events: EventBus,
		settings: SettingsStore,
		config: ServerConfig,
		updater: UpdateManager | None = None,
	) -> None:
		self.catalog = catalog
		self.events = events
		self.settings = settings
		self.config = config
		self.updater = updater
		self._registered: list[ToolDescriptor] | None = None

	def is_enabled(self, tool: ToolDescriptor, settings: Mapping[str, Any] | None = None) -> bool:
		if settings is None:
			settings = self.settings.load()
		return is_enabled(tool, settings, self.catalog.group_for(tool))

	def register(self) -> list[ToolDescriptor]:
		"""Snapshot the tools enabled at registration time."""
		settings = self.settings.load()
		self._registered = [t for t in self.catalog.tools() if self.is_enabled(t, settings)]
		logger.info(
			"Registered %d of %d tools: %s",
			len(self._registered), len(self.catalog),
			", ".join(t.name for t in self._registered),
		)
		return list(self._registered)

	def registered_tools(self) -> list[ToolDescriptor]:
		if self._registered is None:
			return self.register()
		return list(self._registered)

	def _context(self, settings: Mapping[str, Any]) -> ToolContext:
		return ToolContext(
			settings=settings,
			events=self.events,
			config=self.config,
			updater=self.updater,
		)

	def _emit_outcome(
		self,
		tool: ToolDescriptor,
		started: float,
		session_id: str | None,
		error: str | None = None,
	) -> None:
		duration = (time.perf_counter() - started) * 1000
		self.events.emit(self.events.make_event(
			EventType.TOOL_ERROR if error is not None else EventType.TOOL_RESULT,
			tool=tool.name,
			category=tool.category,
			duration=duration,
			error=error,
			session_id=session_id,
		))

	def _guard(self, tool: ToolDescriptor, settings: Mapping[str, Any]) -> tuple[str, str] | None:
		"""Return (event error, user message) when the tool may not run."""
		missing = missing_settings(tool, settings)
		if missing:
			path = missing[0]
			return (
				f"Missing setting: {path}",
				f"Missing required setting: {path}. "
				f"Please configure it in the mcpy settings UI at {self.config.settings_url}",
			)
		if not self.is_enabled(tool, settings):
			return (
				"Tool disabled",
				f"Tool {tool.name} is disabled. Enable it in the mcpy settings UI at {self.config.settings_url}",
			)
		return None

	async def invoke(
		self,
		name: str,
		params: Mapping[str, Any] | None = None,
		session_id: str | None = None,
	) -> ToolResult:
		tool = self.catalog.get_tool(name)
		if tool is None:
			logger.warning("Call to unknown tool %s", name)
			return error_result(f"Unknown tool: {name}")

		# The recorded call input must not change if a handler mutates its params.
		arguments = dict(params or {})
		started = time.perf_counter()
		self.events.emit(self.events.make_event(
			EventType.TOOL_CALL,
			tool=tool.name,
			category=tool.category,
			input=copy.deepcopy(arguments),
			session_id=session_id,
		))

		settings = self.settings.snapshot()
		blocked = self._guard(tool, settings)
		if blocked is not None:
			event_error, message = blocked
			logger.info("Tool %s blocked: %s", tool.name, event_error)
			self._emit_outcome(tool, started, session_id, error=event_error)
			return error_result(message)

		try:
			result = await tool.handler(arguments, self._context(settings))
		except Exception as e:
			message = str(e) or type(e).__name__
			logger.warning("Tool %s failed: %s", tool.name, message, exc_info=True)
			self._emit_outcome(tool, started, session_id, error=message)
			return error_result(f"Error: {message}")

		if result.is_error:
			self._emit_outcome(tool, started, session_id, error=result.text)
		else:
			self._emit_outcome(tool, started, session_id)
		return result

	def tool_info_list(self) -> list[dict[str, Any]]:
		"""Every catalog tool with its resolved state, for the dashboard."""
		settings = self.settings.load()
		infos: list[dict[str, Any]] = []
		for tool in self.catalog.tools():
			info: dict[str, Any] = {
				"name": tool.name,
				"category": tool.category,
				"title": tool.title,
				"description": tool.description,
				"enabled": self.is_enabled(tool, settings),
				"remote": tool.remote,
			}
			if tool.group is not None:
				info["group"] = tool.group
			if tool.required_settings:
				info["requiredSettings"] = list(tool.required_settings)
				missing = missing_settings(tool, settings)
				if missing:
					info["missingSettings"] = missing
			infos.append(info)
		return infos
