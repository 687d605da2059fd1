"""
Tests for the generation API endpoints.
"""

import json

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient
from starlette.websockets import WebSocketDisconnect

from ideaforge.api.main import create_app
from ideaforge.core.errors import ExternalServiceError


API = "/api/v1/generation"


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for frame in body.split("\n\n"):
        lines = frame.strip().splitlines()
        if not lines or lines[0].startswith(":"):
            continue
        event = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        events.append((event, data))
    return events


class TestGenerate:
    """Tests for POST /generation/generate."""

    async def test_generate_success(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(f"{API}/generate", json={"sessionId": "gen-api"}, headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["idea"]["name"] == "Recall Autopilot"
        assert body["data"]["idea"]["score"] == 72
        assert body["data"]["summary"]["sessionId"] == "gen-api"
        assert body["data"]["logs"][-1]["stage"] == "complete"

    async def test_generate_requires_auth(self, client: AsyncClient, llm):
        response = await client.post(f"{API}/generate", json={})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"
        assert llm.calls == 0

    async def test_generate_rejects_bad_token(self, client: AsyncClient):
        response = await client.post(f"{API}/generate", json={}, headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    async def test_generate_validation_error(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(f"{API}/generate", json={"slotNumber": 0}, headers=auth_headers)

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    async def test_generate_duplicate_conflict(self, client: AsyncClient, auth_headers: dict):
        first = await client.post(f"{API}/generate", json={}, headers=auth_headers)
        second = await client.post(f"{API}/generate", json={}, headers=auth_headers)

        assert second.status_code == 409
        error = second.json()["error"]
        assert error["code"] == "CONFLICT"
        assert error["details"]["existingId"] == first.json()["data"]["idea"]["id"]

    async def test_generate_skip_duplicate_check(self, client: AsyncClient, auth_headers: dict):
        await client.post(f"{API}/generate", json={}, headers=auth_headers)
        response = await client.post(f"{API}/generate", json={"skipDuplicateCheck": True}, headers=auth_headers)

        assert response.status_code == 201

    async def test_generate_provider_failure(self, client: AsyncClient, auth_headers: dict, llm):
        llm.error = ExternalServiceError("Claude API", "Rate limit exceeded")

        response = await client.post(f"{API}/generate", json={"sessionId": "gen-429"}, headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["error"]["message"] == "Claude API: Rate limit exceeded"

        status = await client.get(f"{API}/sessions/gen-429", headers=auth_headers)
        assert status.json()["data"]["status"] == "failed"

    async def test_generate_invalid_response(self, client: AsyncClient, auth_headers: dict, llm):
        llm.responses = ["{ nope"]

        response = await client.post(f"{API}/generate", json={}, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_generate_on_auto_slot_conflicts(self, client: AsyncClient, auth_headers: dict, llm):
        await client.put("/api/v1/slots/1", json={"autoGenerate": True}, headers=auth_headers)

        response = await client.post(f"{API}/generate", json={"slotNumber": 1}, headers=auth_headers)

        assert response.status_code == 409
        assert llm.calls == 0

    async def test_generate_with_template_alias(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(f"{API}/generate", json={"template": "Moonshot"}, headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestSessionEndpoints:
    """Tests for status, session and log endpoints."""

    async def test_status_idle(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(f"{API}/status", headers=auth_headers)

        assert response.json() == {"isGenerating": False, "activeCount": 0, "activeSessions": []}

    async def test_logs_and_session(self, client: AsyncClient, auth_headers: dict):
        await client.post(f"{API}/generate", json={"sessionId": "gen-api"}, headers=auth_headers)

        logs = (await client.get(f"{API}/logs/gen-api", headers=auth_headers)).json()["data"]
        later = (await client.get(f"{API}/logs/gen-api", params={"afterId": logs[2]["id"]}, headers=auth_headers)).json()["data"]
        session = (await client.get(f"{API}/sessions/gen-api", headers=auth_headers)).json()["data"]

        assert logs[0]["stage"] == "initialization"
        assert [entry["id"] for entry in later] == [entry["id"] for entry in logs[3:]]
        assert session["status"] == "completed"
        assert session["ideaId"] is not None

    async def test_unknown_session(self, client: AsyncClient, auth_headers: dict):
        for path in ("logs", "sessions"):
            response = await client.get(f"{API}/{path}/missing", headers=auth_headers)
            assert response.status_code == 404
            assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_active_sessions(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(f"{API}/active", params={"slotNumber": 1}, headers=auth_headers)

        assert response.json() == {"success": True, "data": []}


class TestStreaming:
    """Tests for the SSE and WebSocket streams."""

    async def test_sse_stream_of_finished_session(self, client: AsyncClient, auth_headers: dict, auth_token: str):
        await client.post(f"{API}/generate", json={"sessionId": "gen-sse"}, headers=auth_headers)

        response = await client.get(f"{API}/stream/gen-sse", params={"token": auth_token})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text.startswith(": connected\n\n")
        events = _sse_events(response.text)
        kinds = [event for event, _ in events]
        assert kinds.count("complete") == 1
        assert kinds[-1] == "complete"
        assert events[-1][1]["status"] == "completed"
        log_ids = [data["id"] for event, data in events if event == "log"]
        assert log_ids == sorted(log_ids)

    async def test_sse_accepts_bearer_header(self, client: AsyncClient, auth_headers: dict):
        await client.post(f"{API}/generate", json={"sessionId": "gen-sse"}, headers=auth_headers)

        response = await client.get(f"{API}/stream/gen-sse", headers=auth_headers)

        assert response.status_code == 200

    async def test_sse_requires_auth(self, client: AsyncClient):
        response = await client.get(f"{API}/stream/gen-sse")

        assert response.status_code == 401

    async def test_sse_unknown_session_reports_error(self, client: AsyncClient, auth_token: str):
        response = await client.get(f"{API}/stream/gen-never", params={"token": auth_token})

        assert [event for event, _ in _sse_events(response.text)] == ["error"]


def test_websocket_rejects_missing_token():
    client = TestClient(create_app())

    with client.websocket_connect(f"{API}/ws/gen-1") as websocket:
        assert websocket.receive_json() == {"type": "error", "data": {"message": "Not authenticated"}}
        with pytest.raises(WebSocketDisconnect) as exc:
            websocket.receive_json()

    assert exc.value.code == 1008


class TestHealth:
    """Tests for health and root endpoints."""

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["scheduler"] == "stopped"

    async def test_root(self, client: AsyncClient):
        response = await client.get("/")

        assert response.json()["api"] == "/api/v1"
