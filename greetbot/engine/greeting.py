"""Greeting request flow.

Submits one greeting prompt and keeps the activity subscription in step
with it: processing is forced on before the call (the feed only starts
reporting once the session id is known) and cleared once the call
returns, whatever the outcome.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from greetbot.adapters.activity import AgentActivity
from greetbot.adapters.agent_client import SubmitResult

from .errors import GreetingError

logger = logging.getLogger(__name__)

GREETING_STYLES: tuple[str, ...] = ("Casual", "Formal", "Funny")
DEFAULT_STYLE = "Casual"
FALLBACK_GREETING = "Could not generate greeting"
FALLBACK_ERROR = "Failed to generate greeting. Please try again."


class Submitter(Protocol):
    async def submit(self, prompt: str, agent_id: str) -> SubmitResult: ...


@dataclass
class GreetingResponse:
    greeting: str
    style: str
    name: str


def build_greeting_prompt(name: str, style: str) -> str:
    return f"Generate a {style} greeting for {name}"


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_greeting(response: dict[str, Any], name: str, style: str) -> GreetingResponse:
    """Pull the greeting out of a successful agent response.

    Looks in ``response.result`` first and falls back to
    ``response.message`` and then to the request values.
    """
    result = response.get("result")
    if not isinstance(result, dict):
        result = {}
    greeting = (
        _text(result.get("greeting"))
        or _text(response.get("message"))
        or FALLBACK_GREETING
    )
    return GreetingResponse(
        greeting=greeting,
        style=_text(result.get("style")) or style,
        name=_text(result.get("name")) or name,
    )


async def request_greeting(
    client: Submitter,
    activity: AgentActivity,
    name: str,
    style: str = DEFAULT_STYLE,
    agent_id: str = "",
) -> GreetingResponse:
    """Submit a greeting request and return the parsed greeting.

    Raises GreetingError when the call reports a failure.
    """
    name = name.strip()
    prompt = build_greeting_prompt(name, style)
    activity.set_processing(True)
    try:
        result = await client.submit(prompt, agent_id)
        if result.session_id:
            activity.set_session(result.session_id)
        if not result.success:
            message = (
                result.error
                or _text(result.response.get("message"))
                or FALLBACK_ERROR
            )
            logger.warning("Greeting request failed: %s", message)
            raise GreetingError(message, session_id=result.session_id)
        greeting = parse_greeting(result.response, name, style)
        logger.info(
            "Greeting ready style=%s name=%s session=%s",
            greeting.style, greeting.name, result.session_id,
        )
        return greeting
    finally:
        activity.set_processing(False)
