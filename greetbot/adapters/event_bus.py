"""Async bus delivering activity snapshots to loop-side consumers.

The subscription publishes synchronously from transport callbacks; the
bus queues snapshots for ``async for`` consumers. Snapshots supersede
each other, so a full queue drops its oldest entry instead of blocking
the publisher.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotBus(Generic[T]):
    """Bounded asyncio queue with drop-oldest overflow."""

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._dropped = 0

    def publish(self, item: T) -> None:
        """Queue *item* without blocking. No-op once closed."""
        if self._closed:
            return
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    continue
                self._dropped += 1
                if self._dropped == 1 or self._dropped % 100 == 0:
                    logger.warning(
                        "SnapshotBus full, dropped %d stale snapshot(s) (queue size: %d)",
                        self._dropped, self._queue.qsize(),
                    )

    async def consume(self) -> AsyncIterator[T]:
        """Yield items as they arrive. Stops on close()."""
        while not self._closed:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield item

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
