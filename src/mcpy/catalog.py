"""In-memory catalog of tool and group descriptors."""

from __future__ import annotations

from collections.abc import Iterable

from mcpy.models import GroupDescriptor, ToolDescriptor


class CatalogError(ValueError):
	"""Raised when descriptors violate catalog invariants."""


class Catalog:
	"""Static list of tools grouped into named groups.

	Built once at process start. Tool names and group ids are unique, every
	tool carries a callable handler, and every tool's group must resolve to
	a registered group.
	"""

	def __init__(self, groups: Iterable[GroupDescriptor], tools: Iterable[ToolDescriptor]) -> None:
		self._groups: dict[str, GroupDescriptor] = {}
		for group in groups:
			if group.id in self._groups:
				raise CatalogError(f"Duplicate group id: {group.id}")
			self._groups[group.id] = group

		self._tools: dict[str, ToolDescriptor] = {}
		for tool in tools:
			if tool.name in self._tools:
				raise CatalogError(f"Duplicate tool name: {tool.name}")
			if not callable(tool.handler):
				raise CatalogError(f"Tool {tool.name} has no callable handler")
			if tool.group is not None and tool.group not in self._groups:
				raise CatalogError(f"Tool {tool.name} references unknown group: {tool.group}")
			self._tools[tool.name] = tool

	def __len__(self) -> int:
		return len(self._tools)

	def __contains__(self, name: object) -> bool:
		return name in self._tools

	def tools(self) -> list[ToolDescriptor]:
		return list(self._tools.values())

	def groups(self) -> list[GroupDescriptor]:
		return list(self._groups.values())

	def get_tool(self, name: str) -> ToolDescriptor | None:
		return self._tools.get(name)

	def get_group(self, group_id: str) -> GroupDescriptor | None:
		return self._groups.get(group_id)

	def group_for(self, tool: ToolDescriptor) -> GroupDescriptor | None:
		if tool.group is None:
			return None
		return self._groups.get(tool.group)

	def tools_in_group(self, group_id: str) -> list[ToolDescriptor]:
		return [t for t in self._tools.values() if t.group == group_id]
