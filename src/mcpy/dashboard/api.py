"""Management HTTP API -- tool toggles, settings, telemetry and live events."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from mcpy.config import SettingsStore, redact_settings
from mcpy.constants import LIVE_STREAM_KEEPALIVE
from mcpy.dispatch import ToolDispatcher
from mcpy.events import EventBus, LiveStream
from mcpy.models import Event
from mcpy.update import UpdateError, UpdateManager

logger = logging.getLogger(__name__)

_SSE_HEADERS = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}


class ToggleRequest(BaseModel):
	"""Request body for enabling or disabling a single tool."""

	name: str
	enabled: bool


def format_sse(event: Event) -> str:
	return f"data: {json.dumps(event.to_dict())}\n\n"


async def sse_events(stream: LiveStream, keepalive: float = LIVE_STREAM_KEEPALIVE) -> AsyncIterator[str]:
	"""Render a live stream as server-sent events until it is closed.

	A comment line is sent whenever ``keepalive`` seconds pass without an
	event. The stream is always closed when the generator finishes, which
	unsubscribes it from the bus.
	"""
	try:
		while True:
			event = await stream.get(timeout=keepalive)
			if event is None:
				if stream.closed:
					break
				yield ": ping\n\n"
				continue
			yield format_sse(event)
	finally:
		stream.close()


class ManagementAPI:
	"""Local dashboard backend.

	Serves REST endpoints over the tool catalog, settings and telemetry plus
	a server-sent event feed of live events. A built dashboard directory is
	mounted at ``/`` when one is provided.
	"""

	def __init__(
		self,
		dispatcher: ToolDispatcher,
		settings: SettingsStore,
		events: EventBus,
		updater: UpdateManager,
		static_dir: Path | None = None,
	) -> None:
		self.dispatcher = dispatcher
		self.settings = settings
		self.events = events
		self.updater = updater

		@asynccontextmanager
		async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
			yield
			await self.updater.close()

		self.app = FastAPI(title="mcpy", lifespan=_lifespan)
		self.app.add_middleware(
			CORSMiddleware,
			allow_origins=["http://127.0.0.1", "http://localhost"],
			allow_methods=["GET", "POST"],
			allow_headers=["Content-Type"],
		)
		self._setup_routes()

		if static_dir is not None and static_dir.is_dir():
			self.app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="dashboard")
		elif static_dir is not None:
			logger.info("Dashboard directory %s not found; serving API only", static_dir)

	def _setup_routes(self) -> None:
		catalog = self.dispatcher.catalog

		@self.app.get("/api/tools")
		async def list_tools() -> list[dict[str, Any]]:
			return self.dispatcher.tool_info_list()

		@self.app.post("/api/tools")
		async def toggle_tool(req: ToggleRequest) -> dict[str, Any]:
			tool = catalog.get_tool(req.name)
			if tool is None:
				raise HTTPException(status_code=404, detail=f"Unknown tool: {req.name}")
			self.settings.set_tool_override(req.name, req.enabled)
			return {"ok": True, "name": req.name, "enabled": self.dispatcher.is_enabled(tool)}

		@self.app.get("/api/groups")
		async def list_groups() -> list[dict[str, Any]]:
			groups = []
			for group in catalog.groups():
				data = group.to_dict()
				data["tools"] = [t.name for t in catalog.tools_in_group(group.id)]
				groups.append(data)
			return groups

		@self.app.get("/api/settings")
		async def get_settings() -> dict[str, Any]:
			return redact_settings(self.settings.load())

		@self.app.post("/api/settings")
		async def update_settings(body: dict[str, Any]) -> dict[str, Any]:
			merged = self.settings.update(body)
			logger.info("Settings updated: %s", ", ".join(sorted(body)) or "(empty)")
			return {"ok": True, "settings": redact_settings(merged)}

		@self.app.get("/api/stats")
		async def get_stats() -> dict[str, Any]:
			return self.events.get_stats().to_dict()

		@self.app.get("/api/stats/timeseries")
		async def get_timeseries() -> list[dict[str, Any]]:
			return [p.to_dict() for p in self.events.get_timeseries()]

		@self.app.get("/api/sessions")
		async def get_sessions() -> list[dict[str, Any]]:
			return [s.to_dict() for s in self.events.get_sessions()]

		@self.app.get("/api/events/recent")
		async def recent_events() -> list[dict[str, Any]]:
			return [e.to_dict() for e in self.events.get_recent_events()]

		@self.app.get("/api/events")
		async def event_feed() -> StreamingResponse:
			stream = self.events.live_stream()
			return StreamingResponse(
				sse_events(stream),
				media_type="text/event-stream",
				headers=_SSE_HEADERS,
			)

		@self.app.get("/api/version")
		async def get_version() -> dict[str, Any]:
			return await self.updater.get_version_info()

		@self.app.post("/api/update")
		async def run_update() -> Any:
			try:
				info = await self.updater.check_for_update()
				if info is None:
					return {"ok": True, "message": f"Already up to date (v{self.updater.current_version})"}
				await self.updater.perform_update(info)
			except UpdateError as e:
				logger.warning("Update via dashboard failed: %s", e)
				return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
			return {"ok": True, "message": f"Updated to v{info.latest}. Restart mcpy to use the new version."}
