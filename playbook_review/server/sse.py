from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sse_starlette import JSONServerSentEvent
from starlette.requests import Request


class EventBus:
    """Fan-out queue feeding Server-Sent Events for one job.

    Every subscriber first receives the events already sent, so a client that
    connects after the job started (or finished) still sees the full history.
    """

    def __init__(self, *, heartbeat_interval: float | None = None) -> None:
        self._history: List[JSONServerSentEvent] = []
        self._subscribers: List[asyncio.Queue[JSONServerSentEvent | None]] = []
        self._heartbeat = heartbeat_interval
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: str, data: Optional[dict]) -> None:
        item = JSONServerSentEvent(data=data, event=event)
        self._history.append(item)
        for queue in self._subscribers:
            await queue.put(item)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            await queue.put(None)

    async def subscribe(self, request: Request) -> AsyncIterator[JSONServerSentEvent]:
        """Yield history, then live events until the bus closes or the client leaves."""

        queue: asyncio.Queue[JSONServerSentEvent | None] = asyncio.Queue()
        for item in self._history:
            queue.put_nowait(item)
        if self._closed:
            queue.put_nowait(None)
        self._subscribers.append(queue)

        timeout = self._heartbeat if self._heartbeat and self._heartbeat > 0 else None
        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    yield JSONServerSentEvent(
                        data={"ts": datetime.now(timezone.utc).isoformat()},
                        event="heartbeat",
                    )
                    continue

                if item is None:
                    break
                yield item

                if await request.is_disconnected():
                    break
        finally:
            self._subscribers.remove(queue)


__all__ = ["EventBus"]
