"""Agent activity subscription.

``AgentActivity`` is the public face of the activity subsystem: hand it
the current session id (and each change of it), read ``snapshot`` or
listen for new ones, and call ``set_processing()`` from the request flow
to cover the gap between submitting a prompt and the first agent event.

Usage::

    activity = subscribe(None, config=config)
    activity.set_processing(True)
    result = await client.submit(prompt, agent_id)
    activity.set_session(result.session_id)
    async for snapshot in activity.updates():
        ...
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from greetbot.adapters.connection import ConnectionManager, ConnectionState
from greetbot.adapters.event_bus import SnapshotBus
from greetbot.adapters.events import ActivityEvent, ThinkingFragment
from greetbot.adapters.transport import FeedTransport, build_transport
from greetbot.engine.config import ActivityConfig
from greetbot.engine.reducer import ActivityReducer, ActivitySnapshot

logger = logging.getLogger(__name__)

# Signature: listener(snapshot) -> None
SnapshotListener = Callable[[ActivitySnapshot], None]


class AgentActivity:
    """Live activity snapshot for the current session id."""

    def __init__(
        self,
        transport: FeedTransport | None = None,
        config: ActivityConfig | None = None,
    ) -> None:
        self._config = config or ActivityConfig()
        self._transport = transport or build_transport(self._config)
        self._reducer = ActivityReducer(
            max_events=self._config.max_events,
            max_thinking_events=self._config.max_thinking_events,
        )
        self._manager = ConnectionManager(
            self._transport,
            self._handle_event,
            self._config,
            on_connectivity=self._handle_connectivity,
        )
        self._session_id: str | None = None
        self._listeners: list[SnapshotListener] = []
        self._buses: list[SnapshotBus[ActivitySnapshot]] = []

    # ── Snapshot access ────────────────────────────────────────────

    @property
    def snapshot(self) -> ActivitySnapshot:
        return self._reducer.snapshot

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def connection_state(self) -> ConnectionState:
        return self._manager.state

    @property
    def is_connected(self) -> bool:
        return self.snapshot.is_connected

    @property
    def active_agent_id(self) -> str | None:
        return self.snapshot.active_agent_id

    @property
    def active_agent_name(self) -> str | None:
        return self.snapshot.active_agent_name

    @property
    def is_processing(self) -> bool:
        return self.snapshot.is_processing

    @property
    def events(self) -> tuple[ActivityEvent, ...]:
        return self.snapshot.events

    @property
    def thinking_events(self) -> tuple[ThinkingFragment, ...]:
        return self.snapshot.thinking_events

    @property
    def last_thinking_message(self) -> str | None:
        return self.snapshot.last_thinking_message

    # ── Control ────────────────────────────────────────────────────

    def set_session(self, session_id: str | None) -> None:
        """Follow a new session id. ``None`` closes the feed.

        The snapshot is reset before the new feed opens, so nothing from
        the previous session is visible afterwards.
        """
        session_id = session_id or None
        if session_id == self._session_id:
            return
        logger.info(
            "Activity session change %s -> %s", self._session_id, session_id,
        )
        self._session_id = session_id
        self._manager.close()
        changed = self._reducer.reset()
        if session_id is not None:
            self._manager.open(session_id)
        if changed:
            self._publish()

    def set_processing(self, processing: bool) -> None:
        """Manually force the processing flag on, or clear it."""
        if self._reducer.set_processing(processing):
            self._publish()

    def close(self) -> None:
        """Close the feed, reset the snapshot and end ``updates()`` loops."""
        self._session_id = None
        self._manager.close()
        if self._reducer.reset():
            self._publish()
        for bus in list(self._buses):
            bus.close()

    async def aclose(self) -> None:
        """``close()``, then wait for the reader and release the transport."""
        self._session_id = None
        await self._manager.aclose()
        self.close()
        aclose_transport = getattr(self._transport, "aclose", None)
        if aclose_transport is not None:
            await aclose_transport()

    async def __aenter__(self) -> AgentActivity:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── Observers ──────────────────────────────────────────────────

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register *listener* for new snapshots. Returns an unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def updates(self, maxsize: int = 256) -> AsyncIterator[ActivitySnapshot]:
        """Yield each new snapshot until the consumer stops iterating."""
        bus: SnapshotBus[ActivitySnapshot] = SnapshotBus(maxsize=maxsize)
        unsubscribe = self.add_listener(bus.publish)
        self._buses.append(bus)
        try:
            async for snapshot in bus.consume():
                yield snapshot
        finally:
            unsubscribe()
            bus.close()
            self._buses.remove(bus)

    def _publish(self) -> None:
        snapshot = self._reducer.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Activity listener %r failed", listener)

    # ── Connection manager callbacks ───────────────────────────────

    def _handle_event(self, session_id: str, event: ActivityEvent) -> None:
        if session_id != self._session_id:
            logger.debug(
                "Dropping %s from stale session %s (current=%s)",
                event.event_type, session_id, self._session_id,
            )
            return
        if self._reducer.apply(event):
            self._publish()

    def _handle_connectivity(self, session_id: str, connected: bool) -> None:
        if session_id != self._session_id:
            return
        if self._reducer.set_connected(connected):
            self._publish()


def subscribe(
    session_id: str | None,
    transport: FeedTransport | None = None,
    config: ActivityConfig | None = None,
) -> AgentActivity:
    """Create a subscription already following *session_id*."""
    activity = AgentActivity(transport=transport, config=config)
    activity.set_session(session_id)
    return activity
