"""Data models for mcpy: catalog descriptors, telemetry events, stats, updates."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
	from mcpy.dispatch import ToolContext


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


class EventType(str, Enum):
	TOOL_CALL = "tool_call"
	TOOL_RESULT = "tool_result"
	TOOL_ERROR = "tool_error"
	SESSION_CONNECT = "session_connect"
	SESSION_DISCONNECT = "session_disconnect"
	SERVER_START = "server_start"


# -- Tool results --


@dataclass(frozen=True)
class ToolResult:
	"""Textual outcome of a tool call. ``is_error`` flags a failure payload."""

	text: str
	is_error: bool = False

	def to_dict(self) -> dict[str, Any]:
		data: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
		if self.is_error:
			data["isError"] = True
		return data


def text_result(text: str) -> ToolResult:
	return ToolResult(text=text)


def error_result(message: str) -> ToolResult:
	return ToolResult(text=message, is_error=True)


ToolHandler = Callable[[dict[str, Any], "ToolContext"], Awaitable[ToolResult]]


# -- Catalog --


@dataclass(frozen=True)
class SettingsField:
	"""A configuration input rendered by the dashboard for a group."""

	key: str
	label: str
	type: str = "text"  # text/password/number
	placeholder: str = ""
	grid_span: int = 1

	def to_dict(self) -> dict[str, Any]:
		data: dict[str, Any] = {
			"key": self.key,
			"label": self.label,
			"type": self.type,
			"gridSpan": self.grid_span,
		}
		if self.placeholder:
			data["placeholder"] = self.placeholder
		return data


@dataclass(frozen=True)
class GroupDescriptor:
	"""A named bundle of tools sharing default enablement and configuration."""

	id: str
	category: str
	label: str = ""
	description: str = ""
	url: str | None = None
	remote: bool = False
	requires_config: bool = False
	enabled_by_default: bool = True
	settings_fields: tuple[SettingsField, ...] = ()

	def to_dict(self) -> dict[str, Any]:
		data: dict[str, Any] = {
			"id": self.id,
			"category": self.category,
			"label": self.label or self.id,
			"description": self.description,
			"remote": self.remote,
			"requiresConfig": self.requires_config,
			"enabledByDefault": self.enabled_by_default,
		}
		if self.url:
			data["url"] = self.url
		if self.settings_fields:
			data["settingsFields"] = [f.to_dict() for f in self.settings_fields]
		return data


@dataclass(frozen=True)
class ToolDescriptor:
	"""An independently callable tool. Constructed once, never mutated."""

	name: str
	category: str
	title: str
	description: str
	group: str | None = None
	required_settings: tuple[str, ...] = ()
	remote: bool = False
	input_schema: dict[str, Any] = field(
		default_factory=lambda: {"type": "object", "properties": {}},
		hash=False,
		compare=False,
	)
	handler: ToolHandler = field(kw_only=True, hash=False, compare=False, repr=False)


# -- Telemetry --


@dataclass(frozen=True)
class Event:
	"""A telemetry event. Immutable once emitted."""

	id: int
	type: EventType
	timestamp: str = field(default_factory=_now_iso)
	tool: str | None = None
	category: str | None = None
	input: Any = None
	duration: float | None = None  # milliseconds
	error: str | None = None
	session_id: str | None = None
	client_name: str | None = None
	client_version: str | None = None

	def to_dict(self) -> dict[str, Any]:
		data: dict[str, Any] = {
			"id": str(self.id),
			"type": self.type.value,
			"timestamp": self.timestamp,
		}
		optional = {
			"tool": self.tool,
			"category": self.category,
			"input": self.input,
			"duration": self.duration,
			"error": self.error,
			"sessionId": self.session_id,
			"clientName": self.client_name,
			"clientVersion": self.client_version,
		}
		data.update({k: v for k, v in optional.items() if v is not None})
		return data


@dataclass
class ToolStats:
	"""Running counters for one tool."""

	name: str
	category: str = "unknown"
	total_calls: int = 0
	success_count: int = 0
	error_count: int = 0
	last_invoked: str | None = None
	avg_duration: float = 0.0

	def to_dict(self) -> dict[str, Any]:
		return {
			"name": self.name,
			"category": self.category,
			"totalCalls": self.total_calls,
			"successCount": self.success_count,
			"errorCount": self.error_count,
			"lastInvoked": self.last_invoked,
			"avgDuration": self.avg_duration,
		}


@dataclass
class AggregateStats:
	"""Process-wide invocation totals plus per-tool stats."""

	total_invocations: int = 0
	success_count: int = 0
	error_count: int = 0
	tools: dict[str, ToolStats] = field(default_factory=dict)

	def to_dict(self) -> dict[str, Any]:
		return {
			"totalInvocations": self.total_invocations,
			"successCount": self.success_count,
			"errorCount": self.error_count,
			"tools": {name: ts.to_dict() for name, ts in self.tools.items()},
		}


@dataclass
class SessionInfo:
	"""A connected protocol client."""

	session_id: str
	client_name: str = "Unknown"
	connected_at: str = field(default_factory=_now_iso)
	client_version: str | None = None

	def to_dict(self) -> dict[str, Any]:
		data: dict[str, Any] = {
			"sessionId": self.session_id,
			"clientName": self.client_name,
			"connectedAt": self.connected_at,
		}
		if self.client_version:
			data["clientVersion"] = self.client_version
		return data


@dataclass(frozen=True)
class TimeseriesPoint:
	timestamp: str
	tool: str
	duration: float
	success: bool

	def to_dict(self) -> dict[str, Any]:
		return {
			"timestamp": self.timestamp,
			"tool": self.tool,
			"duration": self.duration,
			"success": self.success,
		}


# -- Updates --


@dataclass(frozen=True)
class UpdateInfo:
	"""A newer release for this platform. Built fresh on every check."""

	current: str
	latest: str
	download_url: str
	asset: str

	def to_dict(self) -> dict[str, Any]:
		return {
			"current": self.current,
			"latest": self.latest,
			"updateAvailable": True,
			"downloadUrl": self.download_url,
			"asset": self.asset,
		}
