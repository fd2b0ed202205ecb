"""Live feed transports.

A transport turns a session id into a stream of raw feed messages.
``connect()`` is an async context manager: entering it successfully is
the transport acknowledgment, the yielded async iterator produces raw
messages, and the iterator ending means the remote side closed the feed.

Failures are raised as ``TransportError`` subclasses; reconnection is
the connection manager's job, not the transport's.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

import aiohttp

from greetbot.engine.config import ActivityConfig
from greetbot.engine.errors import (
    FeedConnectError,
    FeedDroppedError,
    FeedRejectedError,
)

logger = logging.getLogger(__name__)


class FeedTransport(Protocol):
    def connect(
        self, session_id: str,
    ) -> AbstractAsyncContextManager[AsyncIterator[Any]]: ...


class _HttpTransport:
    """Shared aiohttp session handling for the HTTP-based transports."""

    def __init__(
        self,
        config: ActivityConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None


class WebSocketTransport(_HttpTransport):
    """One WebSocket per session at ``config.feed_url``."""

    @asynccontextmanager
    async def connect(self, session_id: str) -> AsyncIterator[AsyncIterator[Any]]:
        url = self._config.feed_url_for(session_id)
        heartbeat = self._config.heartbeat_seconds or None
        try:
            ws = await self._get_session().ws_connect(
                url, headers=self._headers(), heartbeat=heartbeat,
            )
        except aiohttp.WSServerHandshakeError as exc:
            raise FeedRejectedError(session_id, exc.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise FeedConnectError(session_id, str(exc) or type(exc).__name__) from exc

        logger.info("WebSocket feed connected session=%s url=%s", session_id, url)
        try:
            yield self._messages(session_id, ws)
        finally:
            await ws.close()
            logger.debug("WebSocket feed closed session=%s", session_id)

    @staticmethod
    async def _messages(
        session_id: str, ws: aiohttp.ClientWebSocketResponse,
    ) -> AsyncIterator[Any]:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise FeedDroppedError(session_id, str(ws.exception()))
            else:
                # CLOSE / CLOSING / CLOSED
                break


class SSETransport(_HttpTransport):
    """Server-Sent Events stream per session at ``config.feed_url``."""

    @asynccontextmanager
    async def connect(self, session_id: str) -> AsyncIterator[AsyncIterator[Any]]:
        url = self._config.feed_url_for(session_id)
        headers = self._headers()
        headers["Accept"] = "text/event-stream"
        try:
            response = await self._get_session().get(
                url, headers=headers, timeout=aiohttp.ClientTimeout(total=None),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise FeedConnectError(session_id, str(exc) or type(exc).__name__) from exc

        try:
            if response.status != 200:
                raise FeedRejectedError(session_id, response.status)
            logger.info("SSE feed connected session=%s url=%s", session_id, url)
            yield self._messages(session_id, response)
        finally:
            response.release()
            logger.debug("SSE feed closed session=%s", session_id)

    @staticmethod
    async def _messages(
        session_id: str, response: aiohttp.ClientResponse,
    ) -> AsyncIterator[Any]:
        parser = SSEParser()
        try:
            while True:
                line = await response.content.readline()
                if not line:
                    break
                message = parser.feed_line(line.decode("utf-8", errors="replace"))
                if message is not None:
                    yield message
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FeedDroppedError(session_id, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            # readline() past the stream buffer limit
            raise FeedDroppedError(session_id, f"unreadable line: {exc}") from exc


class SSEParser:
    """Incremental ``text/event-stream`` parser.

    Produces one raw message per dispatched event: the JSON body when the
    data parses as an object (with ``type`` filled from the ``event:``
    field if missing), otherwise the raw data string.
    """

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed_line(self, line: str) -> Any:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None  # comment / keepalive
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> Any:
        event, data = self._event, self._data
        self._event, self._data = None, []
        if not data:
            return None
        body = "\n".join(data)
        try:
            parsed = json.loads(body)
        except ValueError:
            return body
        if isinstance(parsed, dict):
            if "type" not in parsed and event and event != "message":
                parsed["type"] = event
            return parsed
        return body


def build_transport(
    config: ActivityConfig,
    session: aiohttp.ClientSession | None = None,
) -> WebSocketTransport | SSETransport:
    """Pick the transport named by ``config.transport``."""
    if config.transport == "sse":
        return SSETransport(config, session)
    return WebSocketTransport(config, session)
