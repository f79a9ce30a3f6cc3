"""
app/services/realtime.py

Realtime insert feed for the dashboard.

Prefers a live Supabase Realtime channel and degrades to a local synthetic
event generator ("demo mode") when the live backend is unconfigured,
errors, or keeps timing out.

  init ──start()──► live_connecting ──SUBSCRIBED──► live_connected
   │                  │    ▲                           │
   │                  │    └── TIMED_OUT, retry < max ◄┘
   │                  ├── CHANNEL_ERROR / CLOSED / open failure ──► demo
   │                  └── TIMED_OUT, retries exhausted ──────────► demo
   └── no live backend ──────────────────────────────────────────► demo

Demo is terminal for a feed. stop() from any state leaves it stopped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from app.core.contracts import EventType
from app.core.keying import new_event_id
from app.core.time import utc_now_iso

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Dict[str, Any]], None]
StatusCallback = Callable[["ChannelStatus"], None]


class ChannelStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


class FeedState(str, Enum):
    INIT = "init"
    LIVE_CONNECTING = "live_connecting"
    LIVE_CONNECTED = "live_connected"
    DEMO = "demo"
    STOPPED = "stopped"


class ChannelOpenError(RuntimeError):
    """The live channel could not be opened at all."""


# ── Live channel interface ───────────────────────────────────────────

class LiveChannel(ABC):
    """
    One subscription to INSERTs on a table.

    Implementations report status changes and inserted rows through the
    callbacks given to subscribe(), from the running event loop.
    """

    @abstractmethod
    async def subscribe(self, table: str, on_insert: InsertCallback, on_status: StatusCallback) -> None:
        """Start the subscription. Raises ChannelOpenError if it cannot start."""
        ...

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Release the subscription. Safe to call more than once."""
        ...


# ── Supabase Realtime (Phoenix channels over websockets) ─────────────

def realtime_ws_url(supabase_url: str, api_key: str) -> str:
    """
    >>> realtime_ws_url("https://abc.supabase.co/", "k")
    'wss://abc.supabase.co/realtime/v1/websocket?apikey=k&vsn=1.0.0'
    """
    base = supabase_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/realtime/v1/websocket?apikey={api_key}&vsn=1.0.0"


class SupabaseRealtimeChannel(LiveChannel):
    """
    Minimal Phoenix client for Supabase Realtime postgres_changes.

    Join reply ok -> SUBSCRIBED, error reply -> CHANNEL_ERROR, no reply
    within join_timeout_s -> TIMED_OUT, socket closed while subscribed ->
    CLOSED. Only the first terminal status is reported.
    """

    JOIN_REF = "1"

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        join_timeout_s: float = 10.0,
        heartbeat_s: float = 25.0,
    ) -> None:
        self._url = realtime_ws_url(url, api_key)
        self._api_key = api_key
        self._join_timeout_s = join_timeout_s
        self._heartbeat_s = heartbeat_s

        self._ws: Any = None
        self._tasks: Set[asyncio.Task] = set()
        self._joined = False
        self._done = False
        self._closing = False
        self._ref = 1
        self._on_insert: Optional[InsertCallback] = None
        self._on_status: Optional[StatusCallback] = None

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _report(self, status: ChannelStatus) -> None:
        if self._closing or self._on_status is None:
            return
        if status is not ChannelStatus.SUBSCRIBED:
            if self._done:
                return
            self._done = True
        self._on_status(status)

    async def subscribe(self, table: str, on_insert: InsertCallback, on_status: StatusCallback) -> None:
        self._on_insert = on_insert
        self._on_status = on_status
        topic = f"realtime:public:{table}"

        try:
            self._ws = await websockets.connect(self._url)
            await self._ws.send(
                json.dumps(
                    {
                        "topic": topic,
                        "event": "phx_join",
                        "payload": {
                            "config": {
                                "broadcast": {"self": False},
                                "presence": {"key": ""},
                                "postgres_changes": [{"event": "INSERT", "schema": "public", "table": table}],
                            },
                            "access_token": self._api_key,
                        },
                        "ref": self.JOIN_REF,
                        "join_ref": self.JOIN_REF,
                    }
                )
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            await self._close_socket()
            raise ChannelOpenError(f"realtime connect failed: {e!r}") from e

        for coro in (self._read_loop(), self._heartbeat_loop(), self._join_timer()):
            task = asyncio.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_message(raw)
        except ConnectionClosed:
            pass
        self._report(ChannelStatus.CLOSED)

    def _handle_message(self, raw: Any) -> None:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("[realtime] ignoring non-JSON frame")
            return
        if not isinstance(msg, dict):
            return

        event = msg.get("event")
        payload = msg.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if event == "phx_reply" and msg.get("ref") == self.JOIN_REF:
            if payload.get("status") == "ok":
                self._joined = True
                self._report(ChannelStatus.SUBSCRIBED)
            else:
                self._report(ChannelStatus.CHANNEL_ERROR)
        elif event == "phx_error":
            self._report(ChannelStatus.CHANNEL_ERROR)
        elif event == "phx_close":
            self._report(ChannelStatus.CLOSED)
        elif event == "postgres_changes":
            data = payload.get("data")
            if not isinstance(data, dict):
                return
            if data.get("type") == "INSERT" and isinstance(data.get("record"), dict) and self._on_insert:
                self._on_insert(data["record"])
        elif event == "INSERT":
            # legacy realtime payload shape
            if isinstance(payload.get("record"), dict) and self._on_insert:
                self._on_insert(payload["record"])

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_s)
            try:
                await self._ws.send(
                    json.dumps({"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()})
                )
            except ConnectionClosed:
                return

    async def _join_timer(self) -> None:
        await asyncio.sleep(self._join_timeout_s)
        if not self._joined:
            self._report(ChannelStatus.TIMED_OUT)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("[realtime] error closing socket: %r", e)

    async def unsubscribe(self) -> None:
        self._closing = True
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._close_socket()


# ── Demo generator ───────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class DemoLocation:
    name: str
    lat: float
    lng: float


DEMO_LOCATIONS = (
    DemoLocation("Uttarakhand Forest", 30.45, 78.15),
    DemoLocation("Madhya Pradesh", 22.9, 78.65),
    DemoLocation("Delhi NCR", 28.5, 77.1),
    DemoLocation("Bihar Region", 26.15, 87.5),
    DemoLocation("Rajasthan Desert", 25.2, 71.7),
    DemoLocation("Gujarat Coast", 22.3, 71.9),
    DemoLocation("Maharashtra Border", 19.8, 75.5),
    DemoLocation("Karnataka Hills", 14.8, 76.1),
    DemoLocation("Tamil Nadu Valley", 11.5, 79.5),
    DemoLocation("Kerala Backwaters", 10.8, 76.5),
)

DEMO_DESCRIPTIONS: Dict[EventType, tuple[str, ...]] = {
    EventType.FIRE: (
        "Active fire detected near forest area",
        "Thermal anomaly detected",
        "Wildfire spreading rapidly",
        "Fire detected in remote area",
    ),
    EventType.DEFORESTATION: (
        "Tree cover loss detected",
        "Illegal logging suspected",
        "Land clearing detected",
        "Deforestation in progress",
    ),
    EventType.POLLUTION: (
        "Air quality spike detected",
        "Pollution plume detected",
        "AQI level exceeded",
        "Industrial pollution detected",
    ),
    EventType.FLOOD: (
        "Flood risk predicted",
        "River level rising",
        "Heavy rainfall detected",
        "Flash flood warning",
    ),
}

DEMO_JITTER_DEG = 0.25


class DemoEventGenerator:
    """Synthetic event source: one event at start(), then one every interval_s."""

    def __init__(self, *, interval_s: float = 8.0, rng: random.Random | None = None) -> None:
        self.interval_s = interval_s
        self._rng = rng or random.Random()
        self._task: Optional[asyncio.Task] = None
        self._event_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def event_count(self) -> int:
        return self._event_count

    def make_event(self) -> Dict[str, Any]:
        rng = self._rng
        loc = rng.choice(DEMO_LOCATIONS)
        event_type = rng.choice(list(EventType))
        return {
            "id": new_event_id().replace("evt_", "evt_sim_", 1),
            "source": "simulator",
            "event_type": event_type.value,
            "confidence": round(rng.uniform(0.60, 0.95), 2),
            "location": loc.name,
            "latitude": loc.lat + rng.uniform(-DEMO_JITTER_DEG, DEMO_JITTER_DEG),
            "longitude": loc.lng + rng.uniform(-DEMO_JITTER_DEG, DEMO_JITTER_DEG),
            "properties": {
                "description": rng.choice(DEMO_DESCRIPTIONS[event_type]),
                "simulator": True,
                "demo_mode": True,
            },
            "created_at": utc_now_iso(),
        }

    def start(self, callback: InsertCallback) -> None:
        if self.is_running:
            logger.debug("[realtime] demo generator already running")
            return
        logger.info("[realtime] starting demo generator (interval %.1fs)", self.interval_s)
        self._task = asyncio.create_task(self._run(callback))

    async def _run(self, callback: InsertCallback) -> None:
        while True:
            event = self.make_event()
            self._event_count += 1
            logger.debug(
                "[realtime] demo event #%d: %s at %s confidence %.2f",
                self._event_count,
                event["event_type"],
                event["location"],
                event["confidence"],
            )
            try:
                callback(event)
            except Exception:
                logger.exception("[realtime] demo listener failed")
            await asyncio.sleep(self.interval_s)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("[realtime] demo generator stopped")


# ── Controller ───────────────────────────────────────────────────────

class RealtimeFeed:
    """
    Delivers inserted rows for one table to `callback`, live when possible
    and synthetic otherwise.

    channel_factory is None when no live backend is configured. on_mode is
    told "live" or "demo" whenever the delivery mode changes.
    """

    def __init__(
        self,
        table: str,
        callback: InsertCallback,
        *,
        channel_factory: Callable[[], LiveChannel] | None = None,
        generator: DemoEventGenerator | None = None,
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
        on_mode: Callable[[str], None] | None = None,
    ) -> None:
        self.table = table
        self._callback = callback
        self._channel_factory = channel_factory
        self.generator = generator or DemoEventGenerator()
        self.max_retries = max_retries
        self.backoff_base_s = backoff_base_s
        self._on_mode = on_mode

        self.state = FeedState.INIT
        self.attempts = 0
        self.connect_count = 0
        self._alive = False
        self._channel: Optional[LiveChannel] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def mode(self) -> str:
        return "demo" if self.state is FeedState.DEMO else "live"

    @property
    def pending_tasks(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify_mode(self, mode: str) -> None:
        if self._on_mode is not None:
            self._on_mode(mode)

    async def start(self) -> None:
        if self.state is not FeedState.INIT:
            return
        self._alive = True
        if self._channel_factory is None:
            logger.info("[realtime] live backend not configured, using demo mode (%s)", self.table)
            self._enter_demo()
            return
        logger.info("[realtime] connecting to live %s updates", self.table)
        await self._connect()

    async def _connect(self) -> None:
        if not self._alive:
            return
        self.state = FeedState.LIVE_CONNECTING
        self.connect_count += 1
        channel = self._channel_factory()
        self._channel = channel
        try:
            await channel.subscribe(
                self.table,
                lambda record: self._on_insert(channel, record),
                lambda status: self._spawn(self._on_status(channel, status)),
            )
        except ChannelOpenError as e:
            logger.warning("[realtime] connection error, falling back to demo: %s", e)
            await self._teardown()
            self._enter_demo()

    def _on_insert(self, channel: LiveChannel, record: Dict[str, Any]) -> None:
        if not self._alive or channel is not self._channel:
            return
        self._callback(record)

    async def _on_status(self, channel: LiveChannel, status: ChannelStatus) -> None:
        if not self._alive or channel is not self._channel:
            return
        logger.info("[realtime] connection status (%s): %s", self.table, status.value)

        if status is ChannelStatus.SUBSCRIBED:
            self.state = FeedState.LIVE_CONNECTED
            self.attempts = 0
            self._notify_mode("live")
            return

        if status is ChannelStatus.TIMED_OUT:
            await self._teardown()
            self.attempts += 1
            if self.attempts < self.max_retries:
                delay = self.backoff_base_s * (2 ** self.attempts)
                self.state = FeedState.LIVE_CONNECTING
                logger.info(
                    "[realtime] retrying in %.1fs (attempt %d/%d)", delay, self.attempts, self.max_retries
                )
                self._spawn(self._retry_after(delay))
            else:
                logger.warning("[realtime] max retries exceeded, falling back to demo")
                self._enter_demo()
            return

        # CHANNEL_ERROR or an unexpected close
        logger.warning("[realtime] channel %s, falling back to demo", status.value)
        await self._teardown()
        self._enter_demo()

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._alive and self.state is FeedState.LIVE_CONNECTING:
            await self._connect()

    async def _teardown(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.unsubscribe()

    def _enter_demo(self) -> None:
        if not self._alive:
            return
        self.state = FeedState.DEMO
        self.generator.start(self._on_demo_event)
        self._notify_mode("demo")

    def _on_demo_event(self, record: Dict[str, Any]) -> None:
        if self._alive and self.state is FeedState.DEMO:
            self._callback(record)

    async def stop(self) -> None:
        if self.state is FeedState.STOPPED:
            return
        self._alive = False
        self.state = FeedState.STOPPED

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.generator.stop()
        await self._teardown()
        logger.info("[realtime] feed stopped (%s)", self.table)
