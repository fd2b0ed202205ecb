"""Connection manager for one session-scoped live feed.

State machine::

    Idle -> Connecting -> Open <-> Reconnecting
      any state -> Closed (caller close, or retries exhausted)

Each ``open()``/``close()`` bumps a generation counter. The reader task
and the reconnect timer carry the generation they were started with and
drop their results once it is stale, so nothing from an old session can
reach the consumer after a switch.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from enum import Enum

from greetbot.adapters.events import (
    ActivityEvent,
    ConnectionClosed,
    ConnectionOpened,
    decode,
)
from greetbot.adapters.transport import FeedTransport
from greetbot.engine.config import ActivityConfig
from greetbot.engine.errors import TransportError

logger = logging.getLogger(__name__)

# Signature: callback(session_id, event) -> None
EventHandler = Callable[[str, ActivityEvent], None]
# Signature: callback(session_id, connected) -> None
ConnectivityHandler = Callable[[str, bool], None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


_ACTIVE_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.OPEN,
    ConnectionState.RECONNECTING,
})


def backoff_delay(
    attempt: int, base: float, factor: float, cap: float,
) -> float:
    """Capped exponential backoff: ``min(cap, base * factor ** attempt)``."""
    try:
        delay = base * (factor ** attempt)
    except OverflowError:
        return cap
    return min(cap, delay)


class ConnectionManager:
    """Owns the lifetime of one live feed per active session id."""

    def __init__(
        self,
        transport: FeedTransport,
        on_event: EventHandler,
        config: ActivityConfig | None = None,
        on_connectivity: ConnectivityHandler | None = None,
    ) -> None:
        self._transport = transport
        self._on_event = on_event
        self._on_connectivity = on_connectivity
        self._config = config or ActivityConfig()
        self._state = ConnectionState.IDLE
        self._session_id: str | None = None
        self._generation = 0
        self._attempts = 0
        self._opened = False
        self._task: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.info(
            "Feed session=%s state %s -> %s",
            self._session_id, self._state.value, state.value,
        )
        self._state = state

    # ── Public API ──────────────────────────────────────────────────

    def open(self, session_id: str | None) -> None:
        """Start the feed for *session_id*; ``None`` closes it.

        Must be called from inside a running event loop.
        """
        if not session_id:
            self.close()
            return
        if session_id == self._session_id and self._state in _ACTIVE_STATES:
            return
        if self._state in _ACTIVE_STATES:
            self.close()

        self._generation += 1
        self._session_id = session_id
        self._attempts = 0
        self._opened = False
        self._state = ConnectionState.IDLE
        self._set_state(ConnectionState.CONNECTING)
        self._start_attempt(self._generation)

    def close(self) -> None:
        """Tear the feed down. Emits ``ConnectionClosed`` if it was live."""
        self._generation += 1
        self._cancel_pending()
        if self._state not in _ACTIVE_STATES:
            return
        session_id = self._session_id
        self._set_state(ConnectionState.CLOSED)
        if session_id is not None:
            self._deliver(session_id, ConnectionClosed())

    async def aclose(self) -> None:
        """Close and wait for the reader task to unwind."""
        self.close()
        task = self._task
        if task is not None and not task.done():
            with suppress(asyncio.CancelledError):
                await task

    # ── Internals ───────────────────────────────────────────────────

    def _cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        # The cancelled task stays referenced so aclose() can await it.
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _start_attempt(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._session_id is None:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._run(generation, self._session_id),
            name=f"activity-feed-{self._session_id}",
        )

    async def _run(self, generation: int, session_id: str) -> None:
        reason = "feed ended"
        try:
            async with self._transport.connect(session_id) as stream:
                if generation != self._generation:
                    return
                self._set_state(ConnectionState.OPEN)
                if not self._opened:
                    self._opened = True
                    self._deliver(session_id, ConnectionOpened())
                elif self._on_connectivity is not None:
                    self._on_connectivity(session_id, True)

                async for raw in stream:
                    if generation != self._generation:
                        return
                    # A feed only counts as healthy once it delivers.
                    self._attempts = 0
                    self._deliver(session_id, decode(raw))
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            reason = exc.reason
        except Exception as exc:
            logger.warning(
                "Feed session=%s reader failed", session_id, exc_info=True,
            )
            reason = f"{type(exc).__name__}: {exc}"

        if generation != self._generation:
            return
        self._task = None
        self._schedule_reconnect(generation, session_id, reason)

    def _schedule_reconnect(
        self, generation: int, session_id: str, reason: str,
    ) -> None:
        cfg = self._config
        if self._attempts >= cfg.max_reconnect_attempts:
            logger.warning(
                "Feed session=%s giving up after %d reconnect attempts: %s",
                session_id, self._attempts, reason,
            )
            self._generation += 1
            self._set_state(ConnectionState.CLOSED)
            self._deliver(session_id, ConnectionClosed())
            return

        delay = backoff_delay(
            self._attempts,
            cfg.backoff_base_seconds,
            cfg.backoff_factor,
            cfg.backoff_max_seconds,
        )
        self._attempts += 1
        if self._state is ConnectionState.OPEN:
            self._set_state(ConnectionState.RECONNECTING)
            if self._on_connectivity is not None:
                self._on_connectivity(session_id, False)
        logger.info(
            "Feed session=%s dropped (%s); retry %d/%d in %.2fs",
            session_id, reason, self._attempts, cfg.max_reconnect_attempts, delay,
        )
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._start_attempt, generation)

    def _deliver(self, session_id: str, event: ActivityEvent) -> None:
        try:
            self._on_event(session_id, event)
        except Exception:
            logger.exception(
                "Event handler failed for %s (session=%s)",
                event.event_type, session_id,
            )
