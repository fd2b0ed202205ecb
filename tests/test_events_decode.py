from __future__ import annotations

import json

import pytest

from greetbot.adapters.events import (
    AgentFinished,
    AgentStarted,
    ConnectionOpened,
    ThinkingFragment,
    Unknown,
    decode,
    event_to_dict,
)


def test_decode_agent_started_camel_case() -> None:
    event = decode(json.dumps({"type": "agent_started", "agentId": "a1", "agentName": "Bot"}))
    assert event == AgentStarted(agent_id="a1", agent_name="Bot")


def test_decode_accepts_snake_case_and_aliases() -> None:
    assert decode({"type": "agent_end", "agent_id": "a1"}) == AgentFinished(agent_id="a1")
    assert decode({"type": "Agent.Thinking", "agent_id": "a1", "message": "hm", "seq": 4}) == (
        ThinkingFragment(agent_id="a1", text="hm", sequence=4)
    )


def test_decode_merges_nested_payload() -> None:
    event = decode({"type": "thinking", "data": {"agentId": "a2", "text": "step", "sequence": 2}})
    assert event == ThinkingFragment(agent_id="a2", text="step", sequence=2)


def test_decode_top_level_keys_win_over_nested() -> None:
    event = decode({"type": "agent_started", "agentId": "top", "payload": {"agentId": "nested"}})
    assert isinstance(event, AgentStarted)
    assert event.agent_id == "top"


def test_decode_bytes() -> None:
    raw = json.dumps({"type": "connection_opened"}).encode("utf-8")
    assert decode(raw) == ConnectionOpened()


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        b"\xff\xfe",
        {"agentId": "a1"},
        {"type": 7},
        {"type": "tool_call_started", "tool": "search"},
        42,
        None,
    ],
)
def test_undecodable_input_becomes_unknown_with_raw_kept(raw) -> None:
    event = decode(raw)
    assert isinstance(event, Unknown)
    assert event.raw == raw


@pytest.mark.parametrize(
    ("value", "expected"),
    [(7, 7), ("7", 7), (" 8 ", 8), (3.0, 3), (2.5, 0), ("abc", 0), (True, 0), (None, 0), ([1], 0)],
)
def test_sequence_coercion_defaults_to_zero(value, expected) -> None:
    event = decode({"type": "thinking", "agentId": "a1", "text": "x", "sequence": value})
    assert isinstance(event, ThinkingFragment)
    assert event.sequence == expected


def test_missing_fields_default_to_empty() -> None:
    event = decode({"type": "agent_started"})
    assert event == AgentStarted(agent_id="", agent_name="")
    fragment = decode({"type": "thinking", "text": {"nested": True}})
    assert fragment == ThinkingFragment(agent_id="", text="", sequence=0)


def test_decode_is_pure() -> None:
    raw = '{"type": "thinking", "agentId": "a1", "text": "t", "sequence": 1}'
    assert decode(raw) == decode(raw)


def test_events_are_immutable() -> None:
    event = AgentStarted(agent_id="a1", agent_name="Bot")
    with pytest.raises(AttributeError):
        event.agent_id = "other"  # type: ignore[misc]


def test_event_to_dict_uses_wire_type_key() -> None:
    d = event_to_dict(ThinkingFragment(agent_id="a1", text="t", sequence=3))
    assert d == {"type": "thinking", "agent_id": "a1", "text": "t", "sequence": 3}


def test_decode_reads_type_from_nested_payload() -> None:
    event = decode({"data": {"type": "agent_finished", "agentId": "a1"}})
    assert event == AgentFinished(agent_id="a1")


def test_top_level_type_wins_over_nested_type() -> None:
    event = decode({"type": "agent_started", "payload": {"type": "agent_finished", "agentId": "a1"}})
    assert event == AgentStarted(agent_id="a1", agent_name="")


def test_unknown_does_not_track_later_changes_to_the_message() -> None:
    raw = {"type": "tool_call_started", "args": {"query": "hi"}}
    event = decode(raw)
    raw["type"] = "changed"
    raw["args"]["query"] = "changed"

    assert isinstance(event, Unknown)
    assert event.raw == {"type": "tool_call_started", "args": {"query": "hi"}}
