"""Resolve whether a tool is exposed to callers.

Precedence, first match wins:

1. An explicit override in ``settings["tools"][name]``. ``False`` always
   disables; ``True`` enables only when every required setting is present.
2. Declared required settings: enabled iff all resolve to non-empty values,
   regardless of the group's default.
3. The owning group's ``enabled_by_default`` (True for ungrouped tools).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from mcpy.config import get_setting_value, tool_override
from mcpy.models import GroupDescriptor, ToolDescriptor


def _has_value(value: Any) -> bool:
	if value is None:
		return False
	if isinstance(value, str):
		return bool(value.strip())
	if isinstance(value, (Mapping, list, tuple, set)):
		return bool(value)
	return True


def missing_settings(tool: ToolDescriptor, settings: Mapping[str, Any]) -> list[str]:
	"""Required setting paths that do not resolve to a non-empty value."""
	return [
		path for path in tool.required_settings
		if not _has_value(get_setting_value(settings, path))
	]


def has_required_settings(tool: ToolDescriptor, settings: Mapping[str, Any]) -> bool:
	return not missing_settings(tool, settings)


def is_enabled(
	tool: ToolDescriptor,
	settings: Mapping[str, Any],
	group: GroupDescriptor | None = None,
) -> bool:
	"""Pure, deterministic enablement check for one tool."""
	override = tool_override(settings, tool.name)
	if override is not None:
		return override and has_required_settings(tool, settings)

	if tool.required_settings:
		return has_required_settings(tool, settings)

	if group is None:
		return True
	return group.enabled_by_default
