"""Integration tests for the web adapter.

Tests the HTTP action endpoint, WebSocket snapshot and update streaming,
shared-secret authentication and the health probes.
"""

import asyncio
import json
import socket
import threading
import time

import pytest
import uvicorn
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from websockets import connect
from websockets.exceptions import ConnectionClosed

from agent_router.adapters.web import create_web_adapter
from agent_router.config import Config
from agent_router.core.registry import AgentRegistry
from agent_router.schemas.messages import AgentRecord
from agent_router.schemas.types import AgentStatus

TOKEN = "test-token-0123456789"
HEADERS = {"X-AgentHUD-Token": TOKEN}


@pytest.fixture
def config() -> Config:
    """Create test configuration."""
    return Config(server={"token": TOKEN})


@pytest.fixture
def registry() -> AgentRegistry:
    """Create a registry holding one running agent."""
    registry = AgentRegistry()
    registry.upsert(
        AgentRecord(
            agent_id="a1",
            name="Frontend",
            status=AgentStatus.RUNNING,
            summary="Implementing auth flow...",
        )
    )
    return registry


@pytest.fixture
def web_adapter(config, registry):
    """Create web adapter for testing."""
    return create_web_adapter(config=config, registry=registry)


@pytest.fixture
def client(web_adapter) -> TestClient:
    """Create test client."""
    return TestClient(web_adapter.app)


class TestHealthEndpoints:
    """Test the health endpoints."""

    def test_health_check(self, client):
        """Test health check endpoint needs no token."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["agents"] == 1
        assert data["subscribers"] == 0
        assert "timestamp" in data

    def test_liveness(self, client):
        response = client.get("/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness(self, client):
        response = client.get("/ready")

        assert response.status_code in (200, 503)
        assert "memory" in response.json()["checks"]

    def test_readiness_fails_over_threshold(self, registry):
        config = Config(server={"token": TOKEN}, health={"max_memory_usage_percent": 0})
        client = TestClient(create_web_adapter(config=config, registry=registry).app)

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestActionEndpoint:
    """Test POST /action."""

    def test_missing_token(self, client, registry):
        """Test requests without the shared secret are rejected untouched."""
        response = client.post("/action", json={"agent_id": "a1", "action": "pause"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "INVALID_TOKEN"}
        assert registry.get("a1").status == AgentStatus.RUNNING

    def test_wrong_token(self, client, registry):
        response = client.post(
            "/action",
            json={"agent_id": "a1", "action": "pause"},
            headers={"X-AgentHUD-Token": "wrong"},
        )

        assert response.status_code == 401
        assert registry.get("a1").status == AgentStatus.RUNNING

    def test_apply_action(self, client, registry):
        response = client.post(
            "/action", json={"agent_id": "a1", "action": "pause"}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "agent_id": "a1",
            "new_status": "PAUSED",
        }
        assert registry.get("a1").status == AgentStatus.PAUSED

    def test_stale_action_fails(self, client):
        """Test a second pause reports the illegal transition."""
        body = {"agent_id": "a1", "action": "pause"}
        client.post("/action", json=body, headers=HEADERS)

        response = client.post("/action", json=body, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "error": "INVALID_ACTION: pause not valid for status PAUSED",
        }

    def test_unknown_agent(self, client):
        response = client.post(
            "/action", json={"agent_id": "ghost", "action": "pause"}, headers=HEADERS
        )

        assert response.json() == {"success": False, "error": "INVALID_AGENT"}

    def test_unknown_action(self, client):
        response = client.post(
            "/action", json={"agent_id": "a1", "action": "explode"}, headers=HEADERS
        )

        assert response.json()["error"] == "INVALID_ACTION: unknown action explode"

    @pytest.mark.parametrize(
        "body,error",
        [
            ({"agent_id": "a1", "action": 7}, "INVALID_ACTION: unknown action 7"),
            ({"agent_id": 42, "action": "pause"}, "INVALID_AGENT"),
        ],
    )
    def test_wrong_typed_fields(self, client, registry, body, error):
        """Test non-string fields are reported by the registry, not as missing."""
        response = client.post("/action", json=body, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"success": False, "error": error}
        assert registry.get("a1").status == AgentStatus.RUNNING

    def test_non_object_payload_ignored(self, client, registry):
        response = client.post(
            "/action",
            json={"agent_id": "a1", "action": "pause", "payload": [1]},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["new_status"] == "PAUSED"

    @pytest.mark.parametrize(
        "body", [{"agent_id": "a1"}, {"action": "pause"}, {}, [1, 2]]
    )
    def test_malformed_body(self, client, body):
        response = client.post("/action", json=body, headers=HEADERS)

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Missing agent_id or action",
        }

    def test_non_json_body(self, client):
        response = client.post(
            "/action",
            content=b"not json",
            headers={**HEADERS, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Missing agent_id or action"


class TestWebSocketStream:
    """Test the /ws subscriber endpoint."""

    def test_rejects_missing_token(self, client, web_adapter):
        """Test the upgrade completes and is then closed with 4001."""
        with client.websocket_connect("/ws") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 4001
        assert exc_info.value.reason == "INVALID_TOKEN"
        assert web_adapter.hub.subscriber_count == 0

    def test_rejects_wrong_token(self, client):
        with client.websocket_connect(
            "/ws", headers={"X-AgentHUD-Token": "nope"}
        ) as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 4001

    def test_snapshot_on_connect(self, client, web_adapter):
        with client.websocket_connect("/ws", headers=HEADERS) as websocket:
            snapshot = websocket.receive_json()

            assert snapshot["type"] == "snapshot"
            assert len(snapshot["agents"]) == 1
            agent = snapshot["agents"][0]
            assert agent["agent_id"] == "a1"
            assert agent["status"] == "RUNNING"
            assert agent["actions"] == ["pause"]
            assert client.get("/health").json()["subscribers"] == 1

        assert web_adapter.hub.subscriber_count == 0

    def test_query_token(self, client):
        with client.websocket_connect(f"/ws?token={TOKEN}") as websocket:
            assert websocket.receive_json()["type"] == "snapshot"

    def test_http_action_reaches_subscriber(self, client):
        """Test the end-to-end pause flow from caller to HUD."""
        with client.websocket_connect("/ws", headers=HEADERS) as websocket:
            websocket.receive_json()

            response = client.post(
                "/action", json={"agent_id": "a1", "action": "pause"}, headers=HEADERS
            )
            assert response.json()["new_status"] == "PAUSED"

            update = websocket.receive_json()
            assert update["type"] == "agent_update"
            assert update["agent_id"] == "a1"
            assert update["status"] == "PAUSED"
            assert update["summary"] == "Paused by user"
            assert update["actions"] == ["resume"]

    def test_upsert_reaches_every_subscriber(self, client, registry):
        with client.websocket_connect("/ws", headers=HEADERS) as first:
            with client.websocket_connect("/ws", headers=HEADERS) as second:
                first.receive_json()
                second.receive_json()

                registry.upsert(
                    AgentRecord(
                        agent_id="a2",
                        name="Backend",
                        status=AgentStatus.WAITING_APPROVAL,
                        summary="Delete user table?",
                    )
                )

                for websocket in (first, second):
                    update = websocket.receive_json()
                    assert update["agent_id"] == "a2"
                    assert update["actions"] == ["approve", "deny"]

    def test_agent_action_over_websocket(self, client):
        """Test a HUD can act through its own connection."""
        with client.websocket_connect("/ws", headers=HEADERS) as websocket:
            websocket.receive_json()

            websocket.send_json(
                {"type": "agent_action", "agent_id": "a1", "action": "pause"}
            )

            update = websocket.receive_json()
            result = websocket.receive_json()
            assert update["type"] == "agent_update"
            assert update["status"] == "PAUSED"
            assert result == {
                "type": "action_result",
                "success": True,
                "agent_id": "a1",
                "new_status": "PAUSED",
            }

            websocket.send_json(
                {"type": "agent_action", "agent_id": "a1", "action": "pause"}
            )
            failure = websocket.receive_json()
            assert failure["type"] == "action_result"
            assert failure["success"] is False
            assert failure["error"].startswith("INVALID_ACTION")

    def test_unknown_message_type(self, client):
        with client.websocket_connect("/ws", headers=HEADERS) as websocket:
            websocket.receive_json()

            websocket.send_json({"type": "subscribe"})

            assert websocket.receive_json() == {
                "type": "error",
                "error": "UNKNOWN_MESSAGE_TYPE",
            }

    def test_invalid_json(self, client):
        with client.websocket_connect("/ws", headers=HEADERS) as websocket:
            websocket.receive_json()

            websocket.send_text("{not json")

            assert websocket.receive_json() == {"type": "error", "error": "INVALID_JSON"}


class TestLifespan:
    """Test simulator binding to the application lifetime."""

    def test_simulator_runs_with_app(self):
        config = Config(
            server={"token": TOKEN},
            simulator={"enabled": True, "initial_delay_seconds": 60, "seed": 1},
        )
        web_adapter = create_web_adapter(config=config)

        with TestClient(web_adapter.app) as client:
            assert web_adapter.simulator.running
            assert client.get("/health").json()["agents"] == 4

        assert not web_adapter.simulator.running

    def test_no_simulator_by_default(self, web_adapter):
        assert web_adapter.simulator is None


@pytest.fixture
def live_server(web_adapter):
    """Serve the adapter with uvicorn on a free local port."""
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    server = uvicorn.Server(
        uvicorn.Config(web_adapter.app, host="127.0.0.1", port=port, log_level="error")
    )
    server_thread = threading.Thread(target=server.run, daemon=True)
    server_thread.start()

    deadline = time.monotonic() + 5
    while not server.started and time.monotonic() < deadline:
        time.sleep(0.01)
    assert server.started, "uvicorn did not start"

    yield f"ws://127.0.0.1:{port}/ws"

    server.should_exit = True
    server_thread.join(timeout=5)


class TestWebSocketOverRealServer:
    """Test the close frames a real WebSocket client receives."""

    @pytest.mark.asyncio
    async def test_invalid_token_close_frame(self, live_server, web_adapter):
        """Test a bad token yields close code 4001, not an HTTP 403 rejection."""
        async with connect(f"{live_server}?token=wrong") as websocket:
            with pytest.raises(ConnectionClosed) as exc_info:
                await asyncio.wait_for(websocket.recv(), timeout=5)

        assert exc_info.value.rcvd is not None
        assert exc_info.value.rcvd.code == 4001
        assert exc_info.value.rcvd.reason == "INVALID_TOKEN"
        assert web_adapter.hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_valid_token_receives_snapshot(self, live_server):
        async with connect(f"{live_server}?token={TOKEN}") as websocket:
            message = await asyncio.wait_for(websocket.recv(), timeout=5)

        snapshot = json.loads(message)
        assert snapshot["type"] == "snapshot"
        assert snapshot["agents"][0]["agent_id"] == "a1"
