from __future__ import annotations

import asyncio
import logging

import pytest

from greetbot.adapters.event_bus import SnapshotBus


async def _take(bus: SnapshotBus, count: int) -> list:
    taken = []
    stream = bus.consume()
    try:
        for _ in range(count):
            taken.append(await asyncio.wait_for(stream.__anext__(), timeout=2.0))
    finally:
        await stream.aclose()
    return taken


@pytest.mark.asyncio
async def test_full_bus_drops_oldest_and_keeps_newest(caplog) -> None:
    bus: SnapshotBus[str] = SnapshotBus(maxsize=2)
    with caplog.at_level(logging.WARNING, logger="greetbot.adapters.event_bus"):
        for item in ("first", "second", "third", "fourth"):
            bus.publish(item)

    assert await _take(bus, 2) == ["third", "fourth"]
    # Warned on the first drop only.
    assert caplog.text.count("SnapshotBus full") == 1


@pytest.mark.asyncio
async def test_publish_after_close_is_ignored() -> None:
    bus: SnapshotBus[int] = SnapshotBus(maxsize=2)
    bus.publish(1)
    bus.close()
    bus.publish(2)

    collected = [item async for item in bus.consume()]
    assert collected == []


@pytest.mark.asyncio
async def test_consumer_waits_for_late_items() -> None:
    bus: SnapshotBus[int] = SnapshotBus()

    async def later() -> None:
        await asyncio.sleep(0.05)
        bus.publish(7)

    producer = asyncio.create_task(later())
    assert await _take(bus, 1) == [7]
    await producer
