"""
Unit tests for the HTTP transport.
"""

import asyncio

import pytest
from aiohttp import test_utils

from inferloop_mcp_server.protocol.http import SESSION_HEADER, HttpTransport
from inferloop_mcp_server.protocol.schemas import (
    INVALID_REQUEST,
    NOT_INITIALIZED,
    PARSE_ERROR,
    REQUEST_CANCELLED,
    SESSION_NOT_FOUND,
)
from inferloop_mcp_server.utils.health import UNHEALTHY, HealthChecker, HealthCheckResult

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {"protocolVersion": "2025-06-18", "clientInfo": {"name": "test", "version": "1"}},
}


@pytest.fixture
def transport(handler, context_manager, tool_registry):
    return HttpTransport(handler, context_manager, tool_registry)


async def make_client(transport):
    client = test_utils.TestClient(test_utils.TestServer(transport.create_app()))
    await client.start_server()
    return client


@pytest.fixture
async def client(transport):
    client = await make_client(transport)
    try:
        yield client
    finally:
        await client.close()


async def open_session(client):
    resp = await client.post("/mcp", json=INITIALIZE)
    assert resp.status == 200
    return resp.headers[SESSION_HEADER]


class TestMcpEndpoint:
    async def test_initialize_creates_session(self, client, context_manager):
        resp = await client.post("/mcp", json=INITIALIZE)

        body = await resp.json()
        session_id = resp.headers[SESSION_HEADER]
        assert body["result"]["protocolVersion"] == "2025-06-18"
        assert context_manager.get_session(session_id).initialized

    async def test_requests_use_session_header(self, client):
        session_id = await open_session(client)

        resp = await client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 2, "method": "tools/call",
                  "params": {"name": "echo", "arguments": {"message": "hi"}}},
            headers={SESSION_HEADER: session_id},
        )

        body = await resp.json()
        assert resp.status == 200
        assert body["result"]["isError"] is False
        assert body["result"]["structuredContent"]["message"] == "hi"

    async def test_request_without_session(self, client):
        resp = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"})

        assert resp.status == 400
        assert (await resp.json())["error"]["code"] == NOT_INITIALIZED

    async def test_unknown_session(self, client):
        resp = await client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 2, "method": "ping"},
            headers={SESSION_HEADER: "nope"},
        )

        assert resp.status == 404
        assert (await resp.json())["error"]["code"] == SESSION_NOT_FOUND

    async def test_failed_initialize_does_not_leak_session(self, client, context_manager):
        resp = await client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "initialize",
                  "params": {"clientInfo": {"name": "missing version"}}},
        )

        assert SESSION_HEADER not in resp.headers
        assert context_manager.list_sessions() == []

    async def test_notification_is_accepted(self, client):
        session_id = await open_session(client)

        resp = await client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers={SESSION_HEADER: session_id},
        )

        assert resp.status == 202

    async def test_parse_error(self, client):
        resp = await client.post("/mcp", data="{oops")

        assert resp.status == 400
        assert (await resp.json())["error"]["code"] == PARSE_ERROR

    async def test_missing_method(self, client):
        resp = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 9})

        body = await resp.json()
        assert resp.status == 400
        assert body["id"] == 9
        assert body["error"]["code"] == INVALID_REQUEST

    async def test_delete_session(self, client, context_manager):
        session_id = await open_session(client)

        first = await client.delete("/mcp", headers={SESSION_HEADER: session_id})
        second = await client.delete("/mcp", headers={SESSION_HEADER: session_id})
        missing = await client.delete("/mcp")

        assert first.status == 204
        assert second.status == 404
        assert missing.status == 400
        assert context_manager.get_session(session_id) is None


class TestWebSocket:
    async def test_session_per_connection(self, client, context_manager):
        ws = await client.ws_connect("/mcp")

        await ws.send_json({"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        gated = await ws.receive_json()
        await ws.send_json(INITIALIZE)
        initialized = await ws.receive_json()
        await ws.send_json({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        tools = await ws.receive_json()
        await ws.send_str("not json")
        invalid = await ws.receive_json()

        assert gated["error"]["code"] == NOT_INITIALIZED
        assert "capabilities" in initialized["result"]
        assert len(tools["result"]["tools"]) == 2
        assert invalid["error"]["code"] == PARSE_ERROR
        assert len(context_manager.list_sessions()) == 1

        await ws.close()

    async def test_cancelled_notification_reaches_running_request(self, client, sleepy_tool):
        ws = await client.ws_connect("/mcp")
        await ws.send_json(INITIALIZE)
        await ws.receive_json()

        await ws.send_json(
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "sleepy"}}
        )
        await asyncio.wait_for(sleepy_tool.started.wait(), 1)
        await ws.send_json(
            {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 2}}
        )
        response = await ws.receive_json(timeout=1)

        assert response["id"] == 2
        assert response["error"]["code"] == REQUEST_CANCELLED

        await ws.close()


class TestRestFacade:
    async def test_list_tools(self, client):
        resp = await client.get("/api/v1/tools")

        names = [tool["name"] for tool in (await resp.json())["tools"]]
        assert names == ["echo", "cached_echo"]

    async def test_call_tool(self, client):
        resp = await client.post("/api/v1/tools/echo", json={"message": "ab", "count": 2})

        body = await resp.json()
        assert resp.status == 200
        assert body["structuredContent"] == {"message": "abab", "length": 4}

    async def test_tool_failure_is_200(self, client):
        resp = await client.post("/api/v1/tools/echo", json={"message": "x", "fail": True})

        assert resp.status == 200
        assert (await resp.json())["isError"] is True

    async def test_validation_error_is_422(self, client):
        resp = await client.post("/api/v1/tools/echo", json={})

        assert resp.status == 422

    async def test_unknown_tool(self, client):
        resp = await client.post("/api/v1/tools/missing", json={})

        assert resp.status == 404

    async def test_body_must_be_object(self, client):
        not_json = await client.post("/api/v1/tools/echo", data="{")
        not_object = await client.post("/api/v1/tools/echo", json=[1])

        assert not_json.status == 400
        assert not_object.status == 400


class TestHealthAndAuth:
    async def test_health_without_checker(self, client):
        resp = await client.get("/health")

        assert resp.status == 200
        assert (await resp.json())["status"] == "healthy"

    async def test_unhealthy_is_503(self, handler, context_manager, tool_registry):
        async def down():
            return HealthCheckResult(name="server", status=UNHEALTHY, message="down")

        checker = HealthChecker()
        checker.register_check("server", down)
        client = await make_client(
            HttpTransport(handler, context_manager, tool_registry, health_checker=checker)
        )
        try:
            resp = await client.get("/health")
            assert resp.status == 503
            assert (await resp.json())["checks"][0]["message"] == "down"
        finally:
            await client.close()

    async def test_api_key_required(self, handler, context_manager, tool_registry):
        client = await make_client(
            HttpTransport(handler, context_manager, tool_registry, api_keys=["secret"])
        )
        try:
            anonymous = await client.get("/api/v1/tools")
            wrong = await client.get("/api/v1/tools", headers={"X-API-Key": "guess"})
            header = await client.get("/api/v1/tools", headers={"X-API-Key": "secret"})
            bearer = await client.get(
                "/api/v1/tools", headers={"Authorization": "Bearer secret"}
            )
            health = await client.get("/health")

            assert anonymous.status == 401
            assert wrong.status == 401
            assert header.status == 200
            assert bearer.status == 200
            assert health.status == 200
        finally:
            await client.close()
