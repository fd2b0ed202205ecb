"""Event types read from the agent activity feed.

Each raw feed message is decoded into one of a closed set of frozen
dataclasses. Decoding never raises: anything malformed or unrecognised
becomes ``Unknown`` so a bad message cannot break the stream.
"""
from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityEvent:
    """Base event from the activity feed."""
    event_type: str = ""


@dataclass(frozen=True)
class ConnectionOpened(ActivityEvent):
    event_type: str = "connection_opened"


@dataclass(frozen=True)
class ConnectionClosed(ActivityEvent):
    event_type: str = "connection_closed"


@dataclass(frozen=True)
class AgentStarted(ActivityEvent):
    event_type: str = "agent_started"
    agent_id: str = ""
    agent_name: str = ""


@dataclass(frozen=True)
class AgentFinished(ActivityEvent):
    event_type: str = "agent_finished"
    agent_id: str = ""


@dataclass(frozen=True)
class ThinkingFragment(ActivityEvent):
    """An incremental, non-final piece of agent reasoning."""
    event_type: str = "thinking"
    agent_id: str = ""
    text: str = ""
    sequence: int = 0


@dataclass(frozen=True)
class Unknown(ActivityEvent):
    """A message that failed decoding. Kept for diagnostics only."""
    event_type: str = "unknown"
    raw: Any = None


# Wire type strings (lower-cased) to event classes
_EVENT_MAP: dict[str, type[ActivityEvent]] = {
    "connection_opened": ConnectionOpened,
    "connection_closed": ConnectionClosed,
    "agent_started": AgentStarted,
    "agent_start": AgentStarted,
    "agent.started": AgentStarted,
    "agent_finished": AgentFinished,
    "agent_end": AgentFinished,
    "agent_completed": AgentFinished,
    "agent.finished": AgentFinished,
    "thinking": ThinkingFragment,
    "thinking_fragment": ThinkingFragment,
    "agent.thinking": ThinkingFragment,
}

# Dataclass field -> accepted wire keys, first match wins
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "agent_id": ("agentId", "agent_id"),
    "agent_name": ("agentName", "agent_name", "name"),
    "text": ("text", "message", "content"),
    "sequence": ("sequence", "seq"),
}


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else 0
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _flatten(data: dict[str, Any]) -> dict[str, Any]:
    """Merge a nested ``data``/``payload`` object under the top-level keys."""
    merged: dict[str, Any] = {}
    for key in ("data", "payload"):
        nested = data.get(key)
        if isinstance(nested, dict):
            merged.update(nested)
    merged.update({k: v for k, v in data.items() if k not in ("data", "payload")})
    return merged


def _lookup(data: dict[str, Any], field_name: str) -> Any:
    for key in _FIELD_ALIASES.get(field_name, (field_name,)):
        if key in data:
            return data[key]
    return None


def _parse(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _detach(raw: Any) -> Any:
    """Copy mutable payloads so an ``Unknown`` cannot change afterwards."""
    if isinstance(raw, (dict, list)):
        return copy.deepcopy(raw)
    if isinstance(raw, bytearray):
        return bytes(raw)
    return raw


def decode(raw: Any) -> ActivityEvent:
    """Decode one raw feed message into a typed event.

    ``raw`` may be a JSON string, UTF-8 bytes, or an already parsed dict.
    Like the other fields, ``type`` may sit in a nested ``data``/``payload``
    object; a top-level ``type`` wins.
    Fields that fail coercion default to ``0``/``""`` so additive changes
    to the remote event shapes keep decoding.
    """
    data = _parse(raw)
    if data is None:
        logger.debug("decode: unparseable message %.200r", raw)
        return Unknown(raw=_detach(raw))

    data = _flatten(data)
    event_type = data.get("type")
    if not isinstance(event_type, str):
        return Unknown(raw=_detach(raw))
    cls = _EVENT_MAP.get(event_type.strip().lower())
    if cls is None:
        logger.debug("decode: unrecognised event type %r", event_type)
        return Unknown(raw=_detach(raw))

    kwargs: dict[str, Any] = {}
    for name in cls.__dataclass_fields__:
        if name == "event_type":
            continue
        value = _lookup(data, name)
        kwargs[name] = _as_int(value) if name == "sequence" else _as_str(value)
    return cls(**kwargs)


def event_to_dict(event: ActivityEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON output."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        d[f] = getattr(event, f)
    # Use "type" key to match the wire format
    d["type"] = d.pop("event_type")
    return d
