"""Process configuration and the JSON settings store for mcpy."""

from __future__ import annotations

import copy
import json
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcpy.constants import (
	DEFAULT_DATA_DIRNAME,
	DEFAULT_HOST,
	DEFAULT_PORT,
	LOG_FILENAME,
	REDACTED,
	SETTINGS_FILENAME,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
	"apiKeys": {},
	"database": {},
	"tools": {},
}

# Environment variables used when the matching key is not configured.
_ENV_FALLBACKS: dict[str, tuple[str, str]] = {
	"PERPLEXITY_API_KEY": ("apiKeys", "perplexity"),
	"GITHUB_TOKEN": ("apiKeys", "github"),
}


@dataclass
class ServerConfig:
	"""Where mcpy keeps its state and how it serves the dashboard."""

	data_dir: Path
	install_path: Path
	host: str = DEFAULT_HOST
	port: int = DEFAULT_PORT

	@property
	def settings_path(self) -> Path:
		return self.data_dir / SETTINGS_FILENAME

	@property
	def log_path(self) -> Path:
		return self.data_dir / LOG_FILENAME

	@property
	def settings_url(self) -> str:
		return f"http://localhost:{self.port}/settings"


def _parse_port(raw: str, source: str) -> int:
	try:
		port = int(raw)
	except ValueError:
		raise ValueError(f"{source} must be an integer, got {raw!r}") from None
	if not 0 < port < 65536:
		raise ValueError(f"{source} out of range: {port}")
	return port


def _default_install_path(data_dir: Path) -> Path:
	if getattr(sys, "frozen", False):
		return Path(sys.executable)
	return data_dir / "bin" / "mcpy"


def load_server_config(env: Mapping[str, str] | None = None) -> ServerConfig:
	"""Build the process configuration from environment variables.

	Honors MCPY_DATA_DIR, PORT (or MCPY_PORT), MCPY_HOST and MCPY_INSTALL_PATH.

	Raises:
		ValueError: If a port variable is not a valid TCP port.
	"""
	if env is None:
		env = os.environ

	raw_dir = env.get("MCPY_DATA_DIR")
	data_dir = Path(os.path.expanduser(raw_dir)) if raw_dir else Path.home() / DEFAULT_DATA_DIRNAME

	port = DEFAULT_PORT
	for var in ("MCPY_PORT", "PORT"):
		if env.get(var):
			port = _parse_port(env[var], var)
			break

	raw_install = env.get("MCPY_INSTALL_PATH")
	install_path = Path(os.path.expanduser(raw_install)) if raw_install else _default_install_path(data_dir)

	return ServerConfig(
		data_dir=data_dir,
		install_path=install_path,
		host=env.get("MCPY_HOST", DEFAULT_HOST),
		port=port,
	)


# -- Settings helpers --


def get_setting_value(settings: Mapping[str, Any], path: str) -> Any:
	"""Walk a dotted path through nested settings. Missing keys yield None."""
	current: Any = settings
	for part in path.split("."):
		if not isinstance(current, Mapping):
			return None
		current = current.get(part)
	return current


def tool_override(settings: Mapping[str, Any], name: str) -> bool | None:
	"""Return the explicit enable override for a tool, or None if unset."""
	tools = settings.get("tools")
	if not isinstance(tools, Mapping):
		return None
	entry = tools.get(name)
	if isinstance(entry, Mapping):
		enabled = entry.get("enabled")
		return enabled if isinstance(enabled, bool) else None
	if isinstance(entry, bool):
		return entry
	return None


def _is_redacted(value: Any) -> bool:
	return isinstance(value, str) and value.startswith(REDACTED)


def _merge_into(target: dict[str, Any], partial: Mapping[str, Any], *, skip_empty: bool) -> None:
	for key, value in partial.items():
		if _is_redacted(value):
			continue
		if skip_empty and value in ("", None):
			continue
		if isinstance(value, Mapping):
			existing = target.get(key)
			if not isinstance(existing, dict):
				existing = {}
				target[key] = existing
			_merge_into(existing, value, skip_empty=skip_empty)
		else:
			target[key] = copy.deepcopy(value)


def merge_settings(current: Mapping[str, Any], partial: Mapping[str, Any]) -> dict[str, Any]:
	"""Deep-merge a partial settings payload into a copy of ``current``.

	Redaction placeholders ("***" or "***abcd") are never written back, so a
	settings form round-tripped through the dashboard cannot clobber secrets.
	"""
	merged = copy.deepcopy(dict(current))
	for section, value in partial.items():
		if section in DEFAULT_SETTINGS and not isinstance(value, Mapping):
			logger.warning("Ignoring settings section %r: expected an object, got %s", section, type(value).__name__)
			continue
		if section == "tools":
			tools = merged.get("tools")
			if not isinstance(tools, dict):
				tools = {}
				merged["tools"] = tools
			for name, entry in value.items():
				if isinstance(entry, bool):
					tools[name] = {"enabled": entry}
				elif isinstance(entry, Mapping) and isinstance(entry.get("enabled"), bool):
					tools[name] = {"enabled": entry["enabled"]}
		elif isinstance(value, Mapping):
			target = merged.get(section)
			if not isinstance(target, dict):
				target = {}
				merged[section] = target
			_merge_into(target, value, skip_empty=section == "apiKeys")
		elif not _is_redacted(value):
			merged[section] = copy.deepcopy(value)
	return merged


def redact_settings(settings: Mapping[str, Any]) -> dict[str, Any]:
	"""Return a copy safe to hand to the dashboard."""
	redacted = copy.deepcopy(dict(settings))

	api_keys = redacted.get("apiKeys")
	if isinstance(api_keys, dict):
		for key, value in api_keys.items():
			if value:
				val = str(value)
				api_keys[key] = REDACTED + val[-4:] if len(val) > 4 else REDACTED

	databases = redacted.get("database")
	if isinstance(databases, dict):
		for db_config in databases.values():
			if isinstance(db_config, dict) and db_config.get("password"):
				db_config["password"] = REDACTED

	return redacted


class SettingsStore:
	"""JSON-file backed settings with an in-memory cache.

	Each save replaces the file in one rename, so readers never see a torn
	write. Writes are not locked: concurrent read-modify-write cycles race
	and the last writer wins.
	"""

	def __init__(self, path: Path, env: Mapping[str, str] | None = None) -> None:
		self._path = Path(path)
		self._env = env if env is not None else os.environ
		self._cached: dict[str, Any] | None = None

	@property
	def path(self) -> Path:
		return self._path

	def load(self, *, reload: bool = False) -> dict[str, Any]:
		"""Return the live settings mapping, reading the file on first use."""
		if self._cached is not None and not reload:
			return self._cached

		settings: dict[str, Any]
		if self._path.exists():
			try:
				settings = json.loads(self._path.read_text(encoding="utf-8"))
				if not isinstance(settings, dict):
					raise ValueError("settings root must be an object")
			except (OSError, ValueError) as e:
				logger.warning("Could not read %s (%s); using defaults", self._path, e)
				settings = copy.deepcopy(DEFAULT_SETTINGS)
		else:
			settings = copy.deepcopy(DEFAULT_SETTINGS)

		for section, default in DEFAULT_SETTINGS.items():
			if not isinstance(settings.get(section), dict):
				settings[section] = copy.deepcopy(default)

		for var, (section, key) in _ENV_FALLBACKS.items():
			if not settings[section].get(key) and self._env.get(var):
				settings[section][key] = self._env[var]

		self._cached = settings
		return settings

	def snapshot(self) -> dict[str, Any]:
		return copy.deepcopy(self.load())

	def save(self, settings: Mapping[str, Any]) -> None:
		self._path.parent.mkdir(parents=True, exist_ok=True)
		tmp = self._path.with_name(self._path.name + ".tmp")
		tmp.write_text(json.dumps(settings, indent=2), encoding="utf-8")
		os.replace(tmp, self._path)
		self._cached = dict(settings)

	def update(self, partial: Mapping[str, Any]) -> dict[str, Any]:
		"""Merge a partial payload into the stored settings and persist it."""
		merged = merge_settings(self.load(), partial)
		self.save(merged)
		return merged

	def set_tool_override(self, name: str, enabled: bool) -> dict[str, Any]:
		logger.info("Tool %s explicitly %s", name, "enabled" if enabled else "disabled")
		return self.update({"tools": {name: {"enabled": enabled}}})
