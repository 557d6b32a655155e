"""Shared pytest fixtures and factory functions for mcpy tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from mcpy.catalog import Catalog
from mcpy.config import ServerConfig, SettingsStore
from mcpy.dispatch import ToolContext, ToolDispatcher
from mcpy.events import EventBus
from mcpy.models import GroupDescriptor, ToolDescriptor, ToolResult, text_result


async def echo_handler(params: dict[str, Any], context: ToolContext) -> ToolResult:
	return text_result(f"echo: {params.get('message', '')}")


@pytest.fixture()
def config(tmp_path: Path) -> ServerConfig:
	"""ServerConfig rooted in a temporary data directory."""
	return ServerConfig(
		data_dir=tmp_path / "data",
		install_path=tmp_path / "bin" / "mcpy",
		port=3713,
	)


@pytest.fixture()
def settings_store(config: ServerConfig) -> SettingsStore:
	"""SettingsStore with an empty environment so host variables never leak in."""
	return SettingsStore(config.settings_path, env={})


@pytest.fixture()
def bus() -> EventBus:
	return EventBus()


def make_group(**overrides: Any) -> GroupDescriptor:
	"""Create a GroupDescriptor with sensible defaults, overridable via kwargs."""
	defaults: dict[str, Any] = {
		"id": "g1",
		"category": "developer",
		"label": "Group One",
		"description": "Test group",
	}
	defaults.update(overrides)
	return GroupDescriptor(**defaults)


def make_tool(**overrides: Any) -> ToolDescriptor:
	"""Create a ToolDescriptor with sensible defaults, overridable via kwargs."""
	defaults: dict[str, Any] = {
		"name": "echo",
		"category": "developer",
		"title": "Echo",
		"description": "Echo a message back",
		"input_schema": {
			"type": "object",
			"properties": {"message": {"type": "string"}},
		},
		"handler": echo_handler,
	}
	defaults.update(overrides)
	return ToolDescriptor(**defaults)


def make_dispatcher(
	tools: list[ToolDescriptor],
	settings_store: SettingsStore,
	config: ServerConfig,
	groups: list[GroupDescriptor] | None = None,
	bus: EventBus | None = None,
	updater: Any = None,
) -> ToolDispatcher:
	"""Wire a ToolDispatcher over an ad-hoc catalog."""
	return ToolDispatcher(
		Catalog(groups or [], tools),
		bus or EventBus(),
		settings_store,
		config,
		updater=updater,
	)
