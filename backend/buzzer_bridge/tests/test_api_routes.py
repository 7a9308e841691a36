"""Integration tests for FastAPI routes using dependency overrides."""
from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from backend.buzzer_bridge import app
from backend.buzzer_bridge.coordinator_link import SerialNotFoundError, normalize_command
from backend.buzzer_bridge.line_protocol import PressEvent
from backend.buzzer_bridge.services import dependencies
from backend.buzzer_bridge.services.outcomes import DispatchOutcome


class _StubService:
    def __init__(self) -> None:
        self.commands: List[str] = []
        self.presses: List[PressEvent] = []

    def health(self) -> Dict[str, Any]:
        return {"status": "healthy", "timestamp": 0.0, "services": {"simulation": True}}

    async def get_status(self) -> Dict[str, Any]:
        return {"simulated": True, "connected": False, "device_count": 1}

    def get_devices(self) -> List[Dict[str, Any]]:
        return [
            {
                "identifier": "AA:BB:CC:DD:EE:FF",
                "status": "online",
                "online": True,
                "armed": False,
                "pressed": False,
                "press_count": 0,
                "last_seen_at": 10.0,
                "last_online_at": 10.0,
                "last_press_at": None,
                "discovery_mode": "normal",
                "seconds_since_last_seen": 1.0,
                "seconds_since_last_online": 1.0,
            }
        ]

    async def send_command(self, command: str) -> Dict[str, Any]:
        command = normalize_command(command)
        self.commands.append(command)
        return {"command": command, "hardware": False, "timestamp": 1.0}

    async def start_device_scan(self) -> Dict[str, Any]:
        await self.send_command("SCAN")
        return {"success": True, "scanning": True, "timestamp": 1.0, "hardware_connected": False}

    async def simulate_press(self, identifier: Optional[str] = None, timestamp_ms: Optional[int] = None) -> PressEvent:
        press = PressEvent(identifier=identifier or "AA:BB:CC:DD:EE:FF", timestamp_ms=timestamp_ms or 5)
        self.presses.append(press)
        return press

    async def send_test_command(self, command_id: int, target_id: int, arguments=None) -> DispatchOutcome:
        if command_id != 1:
            raise LookupError(f"Command not found: {command_id}")
        return DispatchOutcome(
            event_type="test_osc_sent",
            success=True,
            message="Test command: QLab - GO to Local Test",
            command_name="QLab - GO",
            osc_address="/go",
            osc_args=tuple(arguments or ()),
            target_name="Local Test",
            target_host="127.0.0.1",
            target_port=53000,
            test=True,
            timestamp=0.0,
        )

    async def target_status(self) -> List[Dict[str, Any]]:
        return [{"id": 1, "name": "Local Test", "connected": False}]

    async def recent_activity(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [{"event_type": "osc_sent", "limit": limit}]

    async def register_client(self) -> asyncio.Queue[dict[str, Any]]:  # pragma: no cover - WS only
        return asyncio.Queue()

    async def unregister_client(self, queue: asyncio.Queue[dict[str, Any]]) -> None:  # pragma: no cover - WS only
        return None


class _ErrorService(_StubService):
    async def send_command(self, command: str) -> Dict[str, Any]:
        raise SerialNotFoundError("serial unavailable")


@pytest_asyncio.fixture(name="stub")
async def stub_fixture() -> _StubService:
    return _StubService()


@pytest_asyncio.fixture(name="client")
async def client_fixture(stub: _StubService) -> AsyncGenerator[AsyncClient, None]:
    async def _override() -> _StubService:
        return stub

    app.dependency_overrides[dependencies.get_service] = _override
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.pop(dependencies.get_service, None)


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_devices_endpoint_lists_devices(client: AsyncClient) -> None:
    response = await client.get("/api/devices")
    assert response.status_code == 200
    devices = response.json()["devices"]
    assert devices[0]["identifier"] == "AA:BB:CC:DD:EE:FF"
    assert devices[0]["status"] == "online"


@pytest.mark.asyncio
async def test_command_endpoint_sends_command(client: AsyncClient, stub: _StubService) -> None:
    response = await client.post("/api/command", json={"command": "ARM"})
    assert response.status_code == 200
    assert response.json()["hardware"] is False
    assert stub.commands == ["ARM"]


@pytest.mark.asyncio
async def test_command_endpoint_rejects_unknown_command(client: AsyncClient) -> None:
    response = await client.post("/api/command", json={"command": "REBOOT"})
    assert response.status_code == 400
    assert "Unsupported" in response.json()["detail"]


@pytest.mark.asyncio
async def test_scan_endpoint(client: AsyncClient, stub: _StubService) -> None:
    response = await client.post("/api/devices/scan")
    assert response.status_code == 200
    assert response.json()["scanning"] is True
    assert stub.commands == ["SCAN"]


@pytest.mark.asyncio
async def test_simulate_press_defaults_identifier(client: AsyncClient, stub: _StubService) -> None:
    response = await client.post("/api/buzzers/simulate", json={})
    assert response.status_code == 200
    assert response.json()["mac_address"] == "AA:BB:CC:DD:EE:FF"
    assert len(stub.presses) == 1


@pytest.mark.asyncio
async def test_osc_test_endpoint_returns_outcome(client: AsyncClient) -> None:
    response = await client.post(
        "/api/osc/test", json={"command_id": 1, "target_id": 1, "arguments": [2, "x"]}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["event_type"] == "test_osc_sent"
    assert body["osc_args"] == [2, "x"]
    assert body["target_address"] == "127.0.0.1:53000"


@pytest.mark.asyncio
async def test_osc_test_endpoint_unknown_command(client: AsyncClient) -> None:
    response = await client.post("/api/osc/test", json={"command_id": 99, "target_id": 1})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_activity_endpoint_clamps_limit(client: AsyncClient) -> None:
    response = await client.get("/api/activity", params={"limit": 5000})
    assert response.status_code == 200
    assert response.json()["entries"][0]["limit"] == 1000


@pytest.mark.asyncio
async def test_targets_status_endpoint(client: AsyncClient) -> None:
    response = await client.get("/api/targets/status")
    assert response.status_code == 200
    assert response.json()["targets"][0]["name"] == "Local Test"


@pytest.mark.asyncio
async def test_command_endpoint_handles_serial_errors() -> None:
    async def _override() -> _ErrorService:
        return _ErrorService()

    app.dependency_overrides[dependencies.get_service] = _override
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post("/api/command", json={"command": "STATUS"})
    app.dependency_overrides.pop(dependencies.get_service, None)

    assert response.status_code == 503
    assert "serial" in response.json()["detail"]
