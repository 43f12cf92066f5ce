"""
pulse.api.streaming — Subscriptions over Server-Sent Events
=============================================================

Bridges a :class:`~pulse.engine.store.Subscription` (delivered on whatever
thread performed the write) to an async SSE response.  Each delivered
result becomes one ``event: update`` frame; a comment line is sent every
15 s so proxies keep the connection open.  The subscription is cancelled
as soon as the client goes away.

The subscription is registered *before* the response starts, so a bad
argument still produces a normal 422 instead of a broken stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from fastapi.responses import StreamingResponse

from pulse.database.engine import run_db
from pulse.engine.store import Subscription

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0

Subscribe = Callable[[Callable[[Any], None]], Subscription]


class _Request(Protocol):
    async def is_disconnected(self) -> bool: ...


def format_event(data: Any, event_id: int, event: str = "update") -> str:
    payload = json.dumps(data, default=str, separators=(",", ":"))
    return f"id: {event_id}\nevent: {event}\ndata: {payload}\n\n"


async def open_subscription(subscribe: Subscribe) -> tuple[Subscription, asyncio.Queue]:
    """Register a subscription whose deliveries land on an asyncio queue.

    *subscribe* receives the delivery callback and must return the
    :class:`Subscription` it registered.  The first result is already on
    the queue when this returns.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Any] = asyncio.Queue()

    def _deliver(result: Any) -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(queue.put_nowait, result)

    sub = await run_db(subscribe, _deliver)
    return sub, queue


async def subscription_events(
    request: _Request,
    sub: Subscription,
    queue: asyncio.Queue,
    *,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames from *queue* until the client disconnects."""
    event_id = 0
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                result = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except TimeoutError:
                yield ": keep-alive\n\n"
                continue
            event_id += 1
            yield format_event(result, event_id)
    finally:
        sub.cancel()
        logger.debug("Stream for %s closed after %d events", sub.name, event_id)


async def sse_response(request: _Request, subscribe: Subscribe) -> StreamingResponse:
    sub, queue = await open_subscription(subscribe)
    return StreamingResponse(
        subscription_events(request, sub, queue),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
