"""CLI interface for mcpy."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass

import uvicorn

from mcpy import __version__
from mcpy.catalog import Catalog
from mcpy.config import ServerConfig, SettingsStore, load_server_config
from mcpy.dashboard.api import ManagementAPI
from mcpy.dispatch import ToolDispatcher
from mcpy.events import EventBus
from mcpy.mcp_server import McpyServer
from mcpy.models import EventType
from mcpy.tools import build_catalog
from mcpy.update import UpdateError, UpdateManager, UpdateState

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(config: ServerConfig, level: int = logging.INFO) -> None:
	"""Log to stderr and append to the data directory log file.

	stdout carries the MCP protocol and must never receive log lines.
	"""
	handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
	try:
		config.data_dir.mkdir(parents=True, exist_ok=True)
		handlers.append(logging.FileHandler(config.log_path, mode="a", encoding="utf-8"))
	except OSError as e:
		print(f"Could not open log file {config.log_path}: {e}", file=sys.stderr)
	logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


@dataclass
class Services:
	"""Process-wide components, built once by the entry point."""

	config: ServerConfig
	settings: SettingsStore
	events: EventBus
	catalog: Catalog
	updater: UpdateManager
	dispatcher: ToolDispatcher


def build_services(config: ServerConfig) -> Services:
	settings = SettingsStore(config.settings_path)
	events = EventBus()
	catalog = build_catalog()
	updater = UpdateManager(config.install_path)
	dispatcher = ToolDispatcher(catalog, events, settings, config, updater=updater)
	return Services(
		config=config,
		settings=settings,
		events=events,
		catalog=catalog,
		updater=updater,
		dispatcher=dispatcher,
	)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="mcpy",
		description="mcpy - MCP tool server with a local management dashboard",
	)
	parser.add_argument("--version", action="version", version=f"mcpy {__version__}")
	sub = parser.add_subparsers(dest="command")

	# mcpy serve
	serve = sub.add_parser("serve", help="Run the MCP stdio server and dashboard (default)")
	serve.add_argument("--host", default=None, help="Dashboard bind address (default: 127.0.0.1)")
	serve.add_argument("--port", type=int, default=None, help="Dashboard port (default: 3713)")
	serve.add_argument("--no-dashboard", action="store_true", help="Serve MCP over stdio only")

	# mcpy version
	version = sub.add_parser("version", help="Show the installed version")
	version.add_argument("--check", action="store_true", help="Also check GitHub for a newer release")

	# mcpy update
	update = sub.add_parser("update", help="Download and install the latest release")
	update.add_argument(
		"--check-only", action="store_true",
		help="Report whether an update is available without installing it",
	)

	# mcpy tools
	sub.add_parser("tools", help="List tools and whether each is enabled")

	return parser


async def _serve_dashboard(server: uvicorn.Server) -> None:
	"""Run uvicorn, keeping the process alive when the port is unavailable."""
	try:
		await server.serve()
	except SystemExit:
		logger.warning("Dashboard could not start (port in use?); continuing with stdio only")


async def _serve(services: Services, dashboard: bool) -> None:
	config = services.config
	services.dispatcher.register()
	services.events.emit(services.events.make_event(EventType.SERVER_START))

	web_server: uvicorn.Server | None = None
	web_task: asyncio.Task[None] | None = None
	if dashboard:
		api = ManagementAPI(
			services.dispatcher, services.settings, services.events, services.updater,
			static_dir=config.data_dir / "dashboard",
		)
		web_server = uvicorn.Server(uvicorn.Config(
			api.app, host=config.host, port=config.port,
			log_config=None, log_level="warning", access_log=False,
		))
		web_task = asyncio.create_task(_serve_dashboard(web_server))
		logger.info("Dashboard at http://%s:%d", config.host, config.port)

	try:
		await McpyServer(services.dispatcher).run_stdio()
	finally:
		if web_server is not None and web_task is not None:
			web_server.should_exit = True
			await web_task
		await services.updater.close()
		logger.info("mcpy stopped")


def cmd_serve(args: argparse.Namespace) -> int:
	"""Serve MCP over stdio with the management dashboard alongside."""
	try:
		config = load_server_config()
	except ValueError as e:
		print(f"Error: {e}", file=sys.stderr)
		return 1
	if getattr(args, "host", None):
		config.host = args.host
	if getattr(args, "port", None):
		config.port = args.port

	setup_logging(config)
	logger.info("mcpy %s starting (data dir %s)", __version__, config.data_dir)
	services = build_services(config)
	try:
		asyncio.run(_serve(services, dashboard=not getattr(args, "no_dashboard", False)))
	except KeyboardInterrupt:
		pass
	return 0


def cmd_version(args: argparse.Namespace) -> int:
	"""Print the installed version, optionally checking for a newer one."""
	print(f"mcpy {__version__}")
	if not args.check:
		return 0

	try:
		config = load_server_config()
	except ValueError as e:
		print(f"Error: {e}")
		return 1
	updater = UpdateManager(config.install_path)

	async def _check() -> int:
		try:
			info = await updater.check_for_update()
		except UpdateError as e:
			print(f"Update check failed: {e}")
			return 1
		finally:
			await updater.close()
		if info is None:
			print("You are on the latest version.")
		else:
			print(f"Update available: {info.current} -> {info.latest}. Run `mcpy update` to install.")
		return 0

	return asyncio.run(_check())


_STATE_MESSAGES = {
	UpdateState.CHECKING: "Checking for updates...",
	UpdateState.DOWNLOADING: "Downloading...",
	UpdateState.VERIFYING: "Verifying checksum...",
	UpdateState.REPLACING: "Installing...",
}


def cmd_update(args: argparse.Namespace) -> int:
	"""Check for and install the latest release."""
	try:
		config = load_server_config()
	except ValueError as e:
		print(f"Error: {e}")
		return 1

	def _progress(state: UpdateState) -> None:
		message = _STATE_MESSAGES.get(state)
		if message:
			print(message)

	updater = UpdateManager(config.install_path, on_state_change=_progress)

	async def _update() -> int:
		try:
			info = await updater.check_for_update()
			if info is None:
				print(f"mcpy {__version__} is already the latest version.")
				return 0
			print(f"Update available: {info.current} -> {info.latest} ({info.asset})")
			if args.check_only:
				return 0
			await updater.perform_update(info)
		except UpdateError as e:
			print(f"Update failed: {e}")
			return 1
		finally:
			await updater.close()
		print(f"Installed mcpy {info.latest} at {updater.install_path}. Restart mcpy to use it.")
		return 0

	return asyncio.run(_update())


def cmd_tools(args: argparse.Namespace) -> int:
	"""List every tool with its resolved enablement."""
	try:
		config = load_server_config()
	except ValueError as e:
		print(f"Error: {e}")
		return 1
	services = build_services(config)
	infos = services.dispatcher.tool_info_list()
	width = max((len(i["name"]) for i in infos), default=0)
	for info in infos:
		state = "on " if info["enabled"] else "off"
		line = f"  [{state}] {info['name']:<{width}}  {info['title']}"
		if info.get("missingSettings"):
			line += f"  (needs {', '.join(info['missingSettings'])})"
		print(line)
	enabled = sum(1 for i in infos if i["enabled"])
	print(f"{enabled} of {len(infos)} tools enabled. Settings: {config.settings_path}")
	return 0


COMMANDS = {
	"serve": cmd_serve,
	"version": cmd_version,
	"update": cmd_update,
	"tools": cmd_tools,
}


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)

	if args.command is None:
		args = parser.parse_args(["serve"])

	if args.command != "serve":
		logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, force=True)

	handler = COMMANDS.get(args.command)
	if handler is None:
		print(f"Unknown command: {args.command}")
		return 1

	return handler(args)


if __name__ == "__main__":
	sys.exit(main())
