"""Tests for the content-generation HTTP client."""
from __future__ import annotations

import asyncio

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from greetbot.adapters.agent_client import AgentClient, _parse_body
from greetbot.engine.config import ActivityConfig


class TestAgentClient(AioHTTPTestCase):
    """AgentClient.submit() against a scripted agent endpoint."""

    async def get_application(self):
        self.requests = []
        app = web.Application()
        app.router.add_post("/api/agent", self._agent)
        app.router.add_post("/api/broken", self._broken)
        app.router.add_post("/api/html", self._html)
        app.router.add_post("/api/slow", self._slow)
        return app

    async def _agent(self, request):
        body = await request.json()
        self.requests.append((body, request.headers.get("x-api-key")))
        return web.json_response({
            "success": True,
            "session_id": "sess-42",
            "response": {
                "status": "success",
                "result": {"greeting": "Hey Ada!", "style": "Casual", "name": "Ada"},
            },
        })

    async def _broken(self, request):
        return web.json_response(
            {"success": False, "error": "agent exploded"}, status=500,
        )

    async def _html(self, request):
        return web.Response(text="<html>gateway error</html>", status=502)

    async def _slow(self, request):
        await asyncio.sleep(1.0)
        return web.json_response({"success": True})

    def _client(self, path: str = "/api/agent", **kwargs) -> AgentClient:
        url = str(self.server.make_url(path))
        return AgentClient(ActivityConfig(api_url=url, **kwargs))

    async def test_submit_success(self):
        async with self._client(api_key="k-1", user_id="u-7") as client:
            result = await client.submit("Generate a Casual greeting for Ada", "agent-1")

        assert result.success is True
        assert result.session_id == "sess-42"
        assert result.response["result"]["greeting"] == "Hey Ada!"
        assert result.error is None

        body, api_key = self.requests[0]
        assert body == {
            "message": "Generate a Casual greeting for Ada",
            "agent_id": "agent-1",
            "user_id": "u-7",
        }
        assert api_key == "k-1"

    async def test_submit_forwards_session_id(self):
        async with self._client() as client:
            await client.submit("hi", "agent-1", session_id="sess-1")
        body, api_key = self.requests[0]
        assert body["session_id"] == "sess-1"
        assert "user_id" not in body
        assert api_key is None

    async def test_submit_http_error(self):
        async with self._client("/api/broken") as client:
            result = await client.submit("hi", "agent-1")
        assert result.success is False
        assert result.error == "agent exploded"

    async def test_submit_non_json_body(self):
        async with self._client("/api/html") as client:
            result = await client.submit("hi", "agent-1")
        assert result.success is False
        assert result.error == "HTTP 502: response is not JSON"

    async def test_submit_timeout(self):
        async with self._client("/api/slow", request_timeout_seconds=0.1) as client:
            result = await client.submit("hi", "agent-1")
        assert result.success is False
        assert result.error == "Request timed out"

    async def test_submit_connection_failure(self):
        client = AgentClient(ActivityConfig(api_url="http://127.0.0.1:1/api/agent"))
        try:
            result = await client.submit("hi", "agent-1")
        finally:
            await client.aclose()
        assert result.success is False
        assert result.error.startswith("Request failed:")


def test_parse_body_accepts_camel_case_session_id() -> None:
    result = _parse_body(200, '{"sessionId": "s-9", "response": {"message": "ok"}}')
    assert result.success is True
    assert result.session_id == "s-9"
    assert result.response == {"message": "ok"}


def test_parse_body_error_field_means_failure() -> None:
    result = _parse_body(200, '{"error": "quota exceeded"}')
    assert result.success is False
    assert result.error == "quota exceeded"


def test_parse_body_rejects_non_object() -> None:
    result = _parse_body(200, "[1, 2]")
    assert result.success is False
    assert result.error == "HTTP 200: unexpected body"


def test_parse_body_http_error_without_message() -> None:
    result = _parse_body(503, "")
    assert result.success is False
    assert result.error == "HTTP 503"


def test_parse_body_ignores_non_mapping_response() -> None:
    result = _parse_body(200, '{"success": true, "response": "text"}')
    assert result.success is True
    assert result.response == {}
