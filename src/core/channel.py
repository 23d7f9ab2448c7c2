"""Bounded event channel between a transport and the pipeline."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

_CLOSED = object()


class EventChannel:
    """FIFO queue of raw events with backpressure.

    The transport callback publishes events; the processor consumes them in
    arrival order. A full channel makes publishers wait instead of dropping.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def publish(self, raw_event: Any) -> None:
        if self._closed:
            raise RuntimeError("Cannot publish to a closed channel")
        await self._queue.put(raw_event)

    async def close(self) -> None:
        """Stop consumers once every event already queued has been delivered."""

        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[Any]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
