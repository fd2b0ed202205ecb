"""Activity state reducer.

Folds the decoded event sequence into a single ``ActivitySnapshot``.
``reduce_activity`` is a pure function over frozen snapshots;
``ActivityReducer`` owns the current snapshot for one subscription and
layers the connectivity and manual-override writes on top of it.

Rules:
    ConnectionOpened   is_connected = True
    ConnectionClosed   is_connected = False (agent state untouched)
    AgentStarted       identity set, processing on
    AgentFinished      clears processing and identity for the active
                       agent only; anything else is a stale no-op
    ThinkingFragment   accepted only when its sequence is above the last
                       accepted sequence for the same agent
    Unknown            logged, no state effect
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from greetbot.adapters.events import (
    ActivityEvent,
    AgentFinished,
    AgentStarted,
    ConnectionClosed,
    ConnectionOpened,
    ThinkingFragment,
    Unknown,
    event_to_dict,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 200
DEFAULT_MAX_THINKING_EVENTS = 200

_NO_SEQUENCES: Mapping[str, int] = MappingProxyType({})


@dataclass(frozen=True)
class ActivitySnapshot:
    """Consumer-visible activity state at one point in time."""

    is_connected: bool = False
    active_agent_id: str | None = None
    active_agent_name: str | None = None
    # Two independent processing sources, combined by OR.
    agent_running: bool = False
    processing_override: bool = False
    events: tuple[ActivityEvent, ...] = ()
    thinking_events: tuple[ThinkingFragment, ...] = ()
    # Highest accepted sequence per agent; survives thinking eviction.
    last_sequences: Mapping[str, int] = field(
        default_factory=lambda: _NO_SEQUENCES, repr=False,
    )

    @property
    def is_processing(self) -> bool:
        return self.agent_running or self.processing_override

    @property
    def last_thinking_message(self) -> str | None:
        if not self.thinking_events:
            return None
        return self.thinking_events[-1].text

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "active_agent_id": self.active_agent_id,
            "active_agent_name": self.active_agent_name,
            "is_processing": self.is_processing,
            "events": [event_to_dict(e) for e in self.events],
            "thinking_events": [event_to_dict(e) for e in self.thinking_events],
            "last_thinking_message": self.last_thinking_message,
        }


EMPTY_SNAPSHOT = ActivitySnapshot()


def _append(
    items: tuple[Any, ...], item: Any, limit: int,
) -> tuple[Any, ...]:
    """Append with FIFO eviction of the oldest entries."""
    items = items + (item,)
    if len(items) > limit:
        items = items[len(items) - limit:]
    return items


def reduce_activity(
    snapshot: ActivitySnapshot,
    event: ActivityEvent,
    *,
    max_events: int = DEFAULT_MAX_EVENTS,
    max_thinking_events: int = DEFAULT_MAX_THINKING_EVENTS,
) -> ActivitySnapshot:
    """Return the snapshot after applying *event*.

    Returns *snapshot* itself (same object) when the event is rejected:
    a stale ``AgentFinished`` or a duplicate/out-of-order fragment.
    """
    if isinstance(event, ConnectionOpened):
        updated = replace(snapshot, is_connected=True)

    elif isinstance(event, ConnectionClosed):
        updated = replace(snapshot, is_connected=False)

    elif isinstance(event, AgentStarted):
        updated = replace(
            snapshot,
            active_agent_id=event.agent_id,
            active_agent_name=event.agent_name or None,
            agent_running=True,
        )

    elif isinstance(event, AgentFinished):
        if event.agent_id != snapshot.active_agent_id:
            logger.debug(
                "Ignoring agent_finished for inactive agent %s (active=%s)",
                event.agent_id, snapshot.active_agent_id,
            )
            return snapshot
        updated = replace(
            snapshot,
            active_agent_id=None,
            active_agent_name=None,
            agent_running=False,
            processing_override=False,
        )

    elif isinstance(event, ThinkingFragment):
        last = snapshot.last_sequences.get(event.agent_id)
        if last is not None and event.sequence <= last:
            logger.debug(
                "Dropping thinking fragment agent=%s seq=%d (last=%d)",
                event.agent_id, event.sequence, last,
            )
            return snapshot
        sequences = dict(snapshot.last_sequences)
        sequences[event.agent_id] = event.sequence
        updated = replace(
            snapshot,
            thinking_events=_append(
                snapshot.thinking_events, event, max_thinking_events,
            ),
            last_sequences=MappingProxyType(sequences),
        )

    elif isinstance(event, Unknown):
        updated = snapshot

    else:
        # Not one of the feed variants; treat like Unknown.
        logger.debug("reduce_activity: unhandled event type %s", event.event_type)
        updated = snapshot

    return replace(updated, events=_append(updated.events, event, max_events))


class ActivityReducer:
    """Owns the current snapshot for one subscription.

    Every mutator returns True when it produced a new snapshot.
    """

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        max_thinking_events: int = DEFAULT_MAX_THINKING_EVENTS,
    ) -> None:
        self._max_events = max_events
        self._max_thinking_events = max_thinking_events
        self._snapshot = EMPTY_SNAPSHOT

    @property
    def snapshot(self) -> ActivitySnapshot:
        return self._snapshot

    def _swap(self, updated: ActivitySnapshot) -> bool:
        if updated is self._snapshot:
            return False
        self._snapshot = updated
        return True

    def apply(self, event: ActivityEvent) -> bool:
        return self._swap(reduce_activity(
            self._snapshot,
            event,
            max_events=self._max_events,
            max_thinking_events=self._max_thinking_events,
        ))

    def set_connected(self, connected: bool) -> bool:
        """Record a transient link change without logging an event."""
        if self._snapshot.is_connected == connected:
            return False
        return self._swap(replace(self._snapshot, is_connected=connected))

    def set_processing(self, processing: bool) -> bool:
        """Force processing on, or clear both processing sources.

        Clearing keeps the agent identity of an agent that already
        announced itself.
        """
        if processing:
            if self._snapshot.processing_override:
                return False
            return self._swap(replace(self._snapshot, processing_override=True))
        if not self._snapshot.is_processing:
            return False
        return self._swap(replace(
            self._snapshot, processing_override=False, agent_running=False,
        ))

    def reset(self) -> bool:
        return self._swap(EMPTY_SNAPSHOT)
