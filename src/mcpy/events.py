"""Telemetry bus: bounded event history, running stats, sessions, live streams.

All mutation happens synchronously inside ``emit`` before any subscriber runs,
so counters never race. Each subscriber is isolated from the others' failures.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from mcpy.constants import LIVE_STREAM_BUFFER, MAX_RECENT_EVENTS, MAX_TIMESERIES_POINTS
from mcpy.models import (
	AggregateStats,
	Event,
	EventType,
	SessionInfo,
	TimeseriesPoint,
	ToolStats,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[Event], None]


class EventBus:
	"""Process-wide telemetry aggregator, constructed by the entry point."""

	def __init__(
		self,
		max_recent: int = MAX_RECENT_EVENTS,
		max_timeseries: int = MAX_TIMESERIES_POINTS,
	) -> None:
		if max_recent < 1 or max_timeseries < 1:
			raise ValueError("ring capacities must be positive")
		self._recent: deque[Event] = deque(maxlen=max_recent)
		self._timeseries: deque[TimeseriesPoint] = deque(maxlen=max_timeseries)
		self._stats = AggregateStats()
		self._sessions: dict[str, SessionInfo] = {}
		self._subscribers: list[Subscriber] = []
		self._ids = itertools.count(1)

	@property
	def max_recent(self) -> int:
		return self._recent.maxlen or 0

	@property
	def max_timeseries(self) -> int:
		return self._timeseries.maxlen or 0

	@property
	def subscriber_count(self) -> int:
		return len(self._subscribers)

	def make_event(self, event_type: EventType, **fields: Any) -> Event:
		"""Build an event carrying the next monotonically increasing id."""
		return Event(id=next(self._ids), type=event_type, **fields)

	def emit(self, event: Event) -> None:
		self._recent.append(event)

		if event.tool and event.type in (EventType.TOOL_RESULT, EventType.TOOL_ERROR):
			success = event.type == EventType.TOOL_RESULT
			self._stats.total_invocations += 1
			if success:
				self._stats.success_count += 1
			else:
				self._stats.error_count += 1
			self._update_tool_stats(event, success)
			self._timeseries.append(TimeseriesPoint(
				timestamp=event.timestamp,
				tool=event.tool,
				duration=event.duration or 0.0,
				success=success,
			))

		if event.session_id:
			if event.type == EventType.SESSION_CONNECT:
				self._sessions[event.session_id] = SessionInfo(
					session_id=event.session_id,
					client_name=event.client_name or "Unknown",
					client_version=event.client_version,
					connected_at=event.timestamp,
				)
			elif event.type == EventType.SESSION_DISCONNECT:
				self._sessions.pop(event.session_id, None)

		for subscriber in list(self._subscribers):
			try:
				subscriber(event)
			except Exception:
				logger.exception("Event subscriber %r failed on event %s", subscriber, event.id)

	def _update_tool_stats(self, event: Event, success: bool) -> None:
		assert event.tool is not None
		ts = self._stats.tools.get(event.tool)
		if ts is None:
			ts = ToolStats(name=event.tool, category=event.category or "unknown")
			self._stats.tools[event.tool] = ts

		ts.total_calls += 1
		if success:
			ts.success_count += 1
		else:
			ts.error_count += 1
		ts.last_invoked = event.timestamp

		n = ts.total_calls
		ts.avg_duration = (ts.avg_duration * (n - 1) + (event.duration or 0.0)) / n

	def subscribe(self, fn: Subscriber) -> Callable[[], None]:
		"""Register a callback; returns an idempotent unsubscribe function."""
		self._subscribers.append(fn)

		def unsubscribe() -> None:
			try:
				self._subscribers.remove(fn)
			except ValueError:
				pass

		return unsubscribe

	def get_recent_events(self) -> list[Event]:
		return [copy.deepcopy(e) for e in self._recent]

	def get_stats(self) -> AggregateStats:
		return copy.deepcopy(self._stats)

	def get_sessions(self) -> list[SessionInfo]:
		return [copy.copy(s) for s in self._sessions.values()]

	def get_timeseries(self) -> list[TimeseriesPoint]:
		return [copy.copy(p) for p in self._timeseries]

	def live_stream(self, buffer_size: int = LIVE_STREAM_BUFFER) -> LiveStream:
		"""Attach a replay-then-push stream for an external observer."""
		return LiveStream(self, buffer_size)


class LiveStream:
	"""Bounded per-observer channel fed by an EventBus.

	On attach the full recent history is queued as a catch-up burst, then new
	events are pushed as they are emitted. When the buffer is full the oldest
	undelivered event is dropped, so a slow reader never blocks ``emit``.
	Closing the stream unsubscribes it from the bus.
	"""

	def __init__(self, bus: EventBus, buffer_size: int = LIVE_STREAM_BUFFER) -> None:
		history = bus.get_recent_events()
		self._buffer: deque[Event] = deque(history, maxlen=max(buffer_size, len(history), 1))
		self._ready = asyncio.Event()
		if self._buffer:
			self._ready.set()
		self.dropped = 0
		self._closed = False
		self._unsubscribe = bus.subscribe(self._push)

	@property
	def closed(self) -> bool:
		return self._closed

	def _push(self, event: Event) -> None:
		if self._closed:
			return
		if len(self._buffer) == self._buffer.maxlen:
			self.dropped += 1
		self._buffer.append(copy.deepcopy(event))
		self._ready.set()

	def pending(self) -> int:
		return len(self._buffer)

	async def get(self, timeout: float | None = None) -> Event | None:
		"""Next event, or None on timeout or once the stream is closed."""
		while not self._buffer:
			if self._closed:
				return None
			self._ready.clear()
			try:
				await asyncio.wait_for(self._ready.wait(), timeout)
			except asyncio.TimeoutError:
				return None
		return self._buffer.popleft()

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		self._unsubscribe()
		self._ready.set()

	def __aiter__(self) -> LiveStream:
		return self

	async def __anext__(self) -> Event:
		event = await self.get()
		if event is None:
			raise StopAsyncIteration
		return event

	async def __aenter__(self) -> LiveStream:
		return self

	async def __aexit__(self, *exc: object) -> None:
		self.close()
