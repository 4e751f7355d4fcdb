"""Tests for the HTTP and WebSocket surface."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from factory_monitor.main import app, install
from factory_monitor.ws_manager import WSManager


@pytest.fixture
def wired(store):
    install(app, store, WSManager())
    yield store
    for name in ("store", "trends", "sound", "ws"):
        if hasattr(app.state, name):
            delattr(app.state, name)


@pytest_asyncio.fixture
async def client(wired) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestDevicesAPI:
    @pytest.mark.asyncio
    async def test_list_devices(self, client: AsyncClient):
        response = await client.get("/devices")
        assert response.status_code == 200
        body = response.json()
        assert [d["name"] for d in body] == ["Press 1", "Lathe 2"]
        assert "lastUpdate" in body[0]

    @pytest.mark.asyncio
    async def test_add_device_with_form_defaults(self, client: AsyncClient, wired):
        response = await client.post("/devices", json={"name": "Boiler", "location": "Yard"})
        assert response.status_code == 201
        body = response.json()
        assert body["id"] == 3
        assert (body["temperature"], body["vibration"], body["energy"]) == (45, 1.2, 100)
        assert body["status"] == "online"
        assert wired.get_device(3).name == "Boiler"

    @pytest.mark.asyncio
    async def test_add_device_rejects_bad_input(self, client: AsyncClient, wired):
        bad = await client.post("/devices", json={"name": "Boiler", "temperature": "hot"})
        empty = await client.post("/devices", json={"name": ""})
        assert bad.status_code == 422
        assert empty.status_code == 422
        assert len(wired.devices) == 2

    @pytest.mark.asyncio
    async def test_update_device(self, client: AsyncClient):
        response = await client.patch("/devices/2", json={"vibration": 4.5, "location": "Hall 3"})
        assert response.status_code == 200
        assert response.json()["location"] == "Hall 3"

        alerts = (await client.get("/alerts")).json()
        assert [(a["id"], a["severity"]) for a in alerts] == [("alert-vib-2", "critical")]

    @pytest.mark.asyncio
    async def test_update_unknown_device(self, client: AsyncClient):
        response = await client.patch("/devices/99", json={"name": "ghost"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_device_is_idempotent(self, client: AsyncClient, wired):
        assert (await client.delete("/devices/1")).status_code == 204
        assert (await client.delete("/devices/1")).status_code == 204
        assert [d.id for d in wired.devices] == [2]

    @pytest.mark.asyncio
    async def test_toggle(self, client: AsyncClient):
        response = await client.post("/devices/1/toggle")
        assert response.json()["status"] == "offline"
        assert (await client.post("/devices/99/toggle")).status_code == 404


class TestAlertsAndSettingsAPI:
    @pytest.mark.asyncio
    async def test_settings_change_propagates(self, client: AsyncClient):
        response = await client.put("/settings", json={
            "temperatureThreshold": 40, "vibrationThreshold": 3.0, "energyThreshold": 200,
            "warningSound": "chime", "criticalSound": "siren",
        })
        assert response.status_code == 200
        assert response.json()["warningSound"] == "chime"

        alerts = (await client.get("/alerts")).json()
        assert sorted(a["id"] for a in alerts) == ["alert-temp-1", "alert-temp-2"]

    @pytest.mark.asyncio
    async def test_invalid_sound_profile(self, client: AsyncClient):
        response = await client.put("/settings", json={"warningSound": "foghorn"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    async def test_non_finite_threshold_rejected(self, client: AsyncClient, wired, value):
        response = await client.put(
            "/settings",
            content='{"temperatureThreshold": ' + value + '}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422
        assert wired.settings.temperature_threshold == 60

    @pytest.mark.asyncio
    async def test_clear_alert(self, client: AsyncClient):
        await client.patch("/devices/1", json={"temperature": 65})
        response = await client.delete("/alerts/alert-temp-1")
        assert response.json() == {"cleared": True}
        assert (await client.get("/alerts")).json() == []
        assert (await client.delete("/alerts/alert-temp-1")).json() == {"cleared": False}

    @pytest.mark.asyncio
    async def test_get_settings(self, client: AsyncClient):
        body = (await client.get("/settings")).json()
        assert body["temperatureThreshold"] == 60
        assert body["criticalSound"] == "siren"


class TestDashboardAPI:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.json() == {"status": "ok", "durabilityWarning": None}

    @pytest.mark.asyncio
    async def test_state(self, client: AsyncClient):
        body = (await client.get("/state")).json()
        assert set(body) == {"devices", "alerts", "settings", "durabilityWarning"}

    @pytest.mark.asyncio
    async def test_summary(self, client: AsyncClient):
        body = (await client.get("/summary")).json()
        assert body["onlineDevices"] == 2
        assert body["avgTemperature"] == pytest.approx(47.5)

    @pytest.mark.asyncio
    async def test_trends_follow_ticks(self, client: AsyncClient, wired):
        wired.tick()
        wired.tick()
        fleet = (await client.get("/trends")).json()
        device = (await client.get("/trends/1")).json()
        assert len(fleet) == 2
        assert len(device) == 2
        assert (await client.get("/trends/99")).status_code == 404

    @pytest.mark.asyncio
    async def test_audio_permission(self, client: AsyncClient):
        response = await client.post("/audio/permission")
        assert response.json() == {"granted": True}
        assert app.state.sound.permission_granted


class TestWebSocket:
    def test_initial_state_and_permission(self, wired):
        client = TestClient(app)
        with client.websocket_connect("/ws/telemetry") as ws:
            message = ws.receive_json()
            assert message["type"] == "state"
            assert len(message["data"]["devices"]) == 2
            assert not app.state.sound.permission_granted

            ws.send_text("hello")
        # leaving the block waits for the server side to finish
        assert app.state.sound.permission_granted

    def test_closed_socket_is_unregistered(self, wired):
        client = TestClient(app)
        with client.websocket_connect("/ws/telemetry") as ws:
            ws.receive_json()
            assert len(app.state.ws._connections) == 1
        assert app.state.ws._connections == set()
