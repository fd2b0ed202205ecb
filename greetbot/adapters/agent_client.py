"""HTTP client for the content-generation call.

``submit()`` posts one prompt to the agent API and returns the parsed
outcome. Transport and HTTP failures come back as ``success=False``
results instead of exceptions, so the request flow has a single path
for reporting errors.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from greetbot.engine.config import ActivityConfig

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    success: bool
    session_id: str | None = None
    response: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


def _parse_body(status: int, text: str) -> SubmitResult:
    try:
        body = json.loads(text) if text else {}
    except ValueError:
        return SubmitResult(
            success=False, error=f"HTTP {status}: response is not JSON",
        )
    if not isinstance(body, dict):
        return SubmitResult(success=False, error=f"HTTP {status}: unexpected body")

    response = body.get("response")
    if not isinstance(response, dict):
        response = {}
    session_id = body.get("session_id") or body.get("sessionId")
    session_id = str(session_id) if session_id else None
    error = body.get("error")
    error = str(error) if error else None

    if status >= 400:
        return SubmitResult(
            success=False,
            session_id=session_id,
            response=response,
            error=error or f"HTTP {status}",
        )
    success = body.get("success")
    if success is None:
        success = error is None
    return SubmitResult(
        success=bool(success),
        session_id=session_id,
        response=response,
        error=error,
    )


class AgentClient:
    """Submits prompts to the content-generation endpoint."""

    def __init__(
        self,
        config: ActivityConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> AgentClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def submit(
        self,
        prompt: str,
        agent_id: str,
        session_id: str | None = None,
    ) -> SubmitResult:
        payload: dict[str, Any] = {"message": prompt, "agent_id": agent_id}
        if self._config.user_id:
            payload["user_id"] = self._config.user_id
        if session_id:
            payload["session_id"] = session_id
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key

        logger.info(
            "Submitting prompt agent=%s len=%d url=%s",
            agent_id, len(prompt), self._config.api_url,
        )
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        try:
            async with self._get_session().post(
                self._config.api_url, json=payload, headers=headers, timeout=timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError:
            logger.warning(
                "Submit timed out after %.0fs agent=%s",
                self._config.request_timeout_seconds, agent_id,
            )
            return SubmitResult(success=False, error="Request timed out")
        except aiohttp.ClientError as exc:
            logger.warning("Submit failed agent=%s: %s", agent_id, exc)
            return SubmitResult(success=False, error=f"Request failed: {exc}")

        result = _parse_body(status, text)
        logger.info(
            "Submit finished agent=%s status=%d success=%s session=%s",
            agent_id, status, result.success, result.session_id,
        )
        return result
