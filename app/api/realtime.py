from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.core.contracts import RealtimeTable
from app.services.realtime import FeedState, RealtimeFeed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

FeedFactory = Callable[..., RealtimeFeed]


def get_feed_factory() -> FeedFactory:
    raise RuntimeError("RealtimeFeed factory must be provided by app dependency override")


@router.websocket("/{table}")
async def realtime_bridge(websocket: WebSocket, table: str, make_feed: FeedFactory = Depends(get_feed_factory)):
    """
    Push inserts for `table` to the client:
      {"type": "mode", "mode": "live" | "demo"}
      {"type": "insert", "table": ..., "record": {...}}
    Demo mode always emits synthetic rows of the events table.
    """
    try:
        tbl = RealtimeTable(table)
    except ValueError:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()

    def on_record(record: Dict[str, Any]) -> None:
        source_table = RealtimeTable.EVENTS.value if feed.state is FeedState.DEMO else tbl.value
        queue.put_nowait({"type": "insert", "table": source_table, "record": record})

    def on_mode(mode: str) -> None:
        queue.put_nowait({"type": "mode", "mode": mode})

    feed = make_feed(tbl.value, on_record, on_mode=on_mode)

    async def pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    async def drain() -> None:
        while True:
            await websocket.receive_text()

    tasks: list[asyncio.Task] = []
    try:
        await feed.start()
        sender = asyncio.create_task(pump())
        receiver = asyncio.create_task(drain())
        tasks = [sender, receiver]
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for t in done:
            exc = t.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("[realtime] bridge closed with error: %r", exc)
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await feed.stop()
        logger.info("[realtime] bridge closed (%s)", tbl.value)
