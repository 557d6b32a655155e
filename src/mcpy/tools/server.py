"""Tools for inspecting and maintaining the mcpy process itself."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys
import time
from typing import Any

from mcpy import __version__
from mcpy.dispatch import ToolContext
from mcpy.models import GroupDescriptor, ToolDescriptor, ToolResult, error_result, text_result

logger = logging.getLogger(__name__)

_STARTED = time.monotonic()
_RESTART_DELAY = 0.1

GROUP = GroupDescriptor(
	id="mcpy",
	category="agent",
	label="mcpy",
	description="Server management, logs, stats, and updates",
	url="https://github.com/ebursztein/mcpy",
)


def format_duration(seconds: float) -> str:
	s = int(seconds)
	if s < 60:
		return f"{s}s"
	m = s // 60
	if m < 60:
		return f"{m}m {s % 60}s"
	return f"{m // 60}h {m % 60}m"


async def mcpy_log(params: dict[str, Any], context: ToolContext) -> ToolResult:
	action = params.get("action", "tail")
	lines = int(params.get("lines", 50))
	log_path = context.config.log_path

	if not log_path.exists():
		return error_result(f"No log file found at {log_path}")

	if action == "clear":
		log_path.write_text("", encoding="utf-8")
		return text_result("Log file cleared.")

	content = log_path.read_text(encoding="utf-8", errors="replace")
	if not content.strip():
		return text_result("Log file is empty.")
	if action == "read":
		return text_result(content)
	if action != "tail":
		return error_result(f"Unknown action: {action}")

	all_lines = content.rstrip("\n").split("\n")
	n = max(0, min(lines, len(all_lines)))
	size_kb = log_path.stat().st_size / 1024
	header = f"--- {log_path.name} ({len(all_lines)} total lines, {size_kb:.1f} KB) last {n} ---"
	return text_result("\n".join([header, *all_lines[len(all_lines) - n:]]))


async def mcpy_stats(params: dict[str, Any], context: ToolContext) -> ToolResult:
	lines = [
		"mcpy server stats",
		"---",
		f"version: {__version__}",
		f"pid: {os.getpid()}",
		f"uptime: {format_duration(time.monotonic() - _STARTED)}",
		f"python: {sys.version.split()[0]}",
		f"platform: {platform.system().lower()} {platform.machine()}",
		f"data dir: {context.data_dir}",
	]
	for label, path in (("settings", context.config.settings_path), ("log", context.config.log_path)):
		if path.exists():
			lines.append(f"{label}: {path.stat().st_size / 1024:.1f} KB")

	stats = context.events.get_stats()
	lines += [
		"---",
		f"total invocations: {stats.total_invocations}",
		f"success: {stats.success_count}",
		f"errors: {stats.error_count}",
		f"sessions: {len(context.events.get_sessions())}",
	]
	if stats.tools:
		lines += ["---", "tool breakdown:"]
		for name, ts in stats.tools.items():
			lines.append(
				f"  {name}: {ts.total_calls} calls ({ts.success_count} ok, "
				f"{ts.error_count} err, avg {ts.avg_duration:.0f}ms)"
			)
	return text_result("\n".join(lines))


async def mcpy_update(params: dict[str, Any], context: ToolContext) -> ToolResult:
	if context.updater is None:
		return error_result("Self-update is not available in this process.")

	info = await context.updater.check_for_update()
	if info is None:
		return text_result(f"mcpy {context.updater.current_version} is up to date.")
	if not params.get("apply", False):
		return text_result(
			f"Update available: {info.current} -> {info.latest} ({info.asset}). "
			"Call again with apply=true to install it."
		)

	await context.updater.perform_update(info)
	return text_result(
		f"Updated mcpy {info.current} -> {info.latest}. Restart the server to run the new version."
	)


def _exit_process() -> None:
	logger.info("Restart requested; exiting so the MCP client relaunches mcpy")
	logging.shutdown()
	os._exit(0)


async def mcpy_restart(params: dict[str, Any], context: ToolContext) -> ToolResult:
	if params.get("confirm") is not True:
		return error_result("Set confirm=true to restart the server.")
	# Exit after the reply has been written back to the client.
	asyncio.get_running_loop().call_later(_RESTART_DELAY, _exit_process)
	return text_result("mcpy is restarting. The MCP client will reconnect automatically.")


TOOLS = [
	ToolDescriptor(
		name="mcpy_log",
		category="agent",
		group="mcpy",
		title="mcpy Server Log",
		description=(
			"Read the mcpy server log file. Use to debug server startup issues, "
			"tool errors, and connection problems. Returns the last N lines by default."
		),
		input_schema={
			"type": "object",
			"properties": {
				"action": {
					"type": "string",
					"enum": ["read", "tail", "clear"],
					"default": "tail",
					"description": "'tail' (last N lines), 'read' (full log), 'clear' (truncate log)",
				},
				"lines": {
					"type": "integer",
					"minimum": 1,
					"default": 50,
					"description": "Number of lines to return for 'tail'",
				},
			},
		},
		handler=mcpy_log,
	),
	ToolDescriptor(
		name="mcpy_stats",
		category="agent",
		group="mcpy",
		title="mcpy Server Stats",
		description="Show runtime statistics: uptime, process info, data directory, and tool invocation counts.",
		handler=mcpy_stats,
	),
	ToolDescriptor(
		name="mcpy_update",
		category="agent",
		group="mcpy",
		title="Update mcpy",
		description="Check GitHub releases for a newer mcpy and optionally install it in place.",
		input_schema={
			"type": "object",
			"properties": {
				"apply": {
					"type": "boolean",
					"default": False,
					"description": "Install the update when one is available",
				},
			},
		},
		handler=mcpy_update,
	),
	ToolDescriptor(
		name="mcpy_restart",
		category="agent",
		group="mcpy",
		title="Restart mcpy",
		description=(
			"Restart the mcpy server process. Use after updating or changing configuration. "
			"The MCP client (Claude Desktop, etc.) will automatically reconnect."
		),
		input_schema={
			"type": "object",
			"properties": {
				"confirm": {"type": "boolean", "description": "Must be true to confirm restart"},
			},
			"required": ["confirm"],
		},
		handler=mcpy_restart,
	),
]
