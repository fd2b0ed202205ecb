from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import pytest

from greetbot.engine.config import ActivityConfig
from greetbot.engine.errors import FeedConnectError

_END = object()


class FakeStream:
    """One scripted feed connection. Push messages, then end() or fail()."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, *messages: Any) -> FakeStream:
        for message in messages:
            self._queue.put_nowait(message)
        return self

    def end(self) -> FakeStream:
        self._queue.put_nowait(_END)
        return self

    def fail(self, exc: BaseException) -> FakeStream:
        self._queue.put_nowait(exc)
        return self

    async def iterate(self) -> AsyncIterator[Any]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class ScriptedTransport:
    """Each connect() consumes the next script step.

    A step is a FakeStream (connection succeeds) or an exception
    (connection fails). An exhausted script refuses to connect.
    """

    def __init__(self, *script: FakeStream | BaseException) -> None:
        self.script = list(script)
        self.connects: list[str] = []
        self.released = 0

    @asynccontextmanager
    async def connect(self, session_id: str) -> AsyncIterator[AsyncIterator[Any]]:
        self.connects.append(session_id)
        if not self.script:
            raise FeedConnectError(session_id, "no more scripted connections")
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        try:
            yield step.iterate()
        finally:
            self.released += 1


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def fast_config() -> ActivityConfig:
    return ActivityConfig(
        backoff_base_seconds=0.01,
        backoff_factor=2.0,
        backoff_max_seconds=0.05,
        max_reconnect_attempts=3,
    )


@pytest.fixture
def stream() -> type[FakeStream]:
    return FakeStream


@pytest.fixture
def transport() -> type[ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return _wait_until
