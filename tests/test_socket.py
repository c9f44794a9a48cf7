from __future__ import annotations

from typing import Any

import pytest
from aiohttp import ClientWebSocketResponse
from aiohttp.test_utils import TestClient, TestServer
from conftest import RecordingObserver, wait_until

from uavlink.broadcast import HubEvent
from uavlink.config import BrokerSettings, HubConfig, SimulationSettings
from uavlink.models.telemetry import ConnectionStatus, TransportKind
from uavlink.server import TelemetryServer


def _server() -> TelemetryServer:
    return TelemetryServer(
        HubConfig(broker=BrokerSettings(enabled=False), simulation=SimulationSettings(enabled=False))
    )


async def _next(ws: ClientWebSocketResponse, event: str) -> dict[str, Any]:
    while True:
        frame = await ws.receive_json(timeout=2.0)
        if frame["event"] == event:
            return frame["data"]


@pytest.mark.asyncio
async def test_snapshot_is_sent_on_connect() -> None:
    server = _server()
    server.store.update_telemetry({"voltage": 12.5}, "d0", transport=TransportKind.HTTP)

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        frame = await ws.receive_json(timeout=2.0)
        await ws.close()

    assert frame["event"] == "snapshot"
    assert frame["data"]["voltage"] == 12.5


@pytest.mark.asyncio
async def test_announce_then_telemetry_then_disconnect() -> None:
    server = _server()
    observer = RecordingObserver()
    server.hub.subscribe(observer)

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await _next(ws, "snapshot")

        await ws.send_json({"event": "esp32Connect", "data": {"deviceId": "uav-1", "firmware": "2.1"}})
        registered = await _next(ws, "device_status")
        assert registered == {"status": "registered", "deviceId": "uav-1", "connectionType": "socket"}
        (device,) = server.store.get_devices()
        assert device.info == {"firmware": "2.1"}

        await ws.send_json({"event": "telemetry", "data": {"deviceId": "uav-1", "voltage": 15.1, "packetNumber": 4}})
        update = await _next(ws, "telemetry_update")
        assert update["voltage"] == 15.1
        assert update["connectionType"] == "socket"
        assert server.socket.connection_count == 1

        await ws.close()
        await wait_until(lambda: server.socket.connection_count == 0)

    await wait_until(
        lambda: any(p["status"] == "disconnected" for p in observer.of(HubEvent.DEVICE_STATUS))
    )
    snapshot = server.store.get_snapshot()
    assert snapshot.connection_status == ConnectionStatus.DISCONNECTED
    assert snapshot.voltage == 15.1
    assert server.store.live_device_count() == 0


@pytest.mark.asyncio
async def test_bad_frames_get_error_replies() -> None:
    server = _server()

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await _next(ws, "snapshot")

        await ws.send_str("not json")
        assert "invalid JSON" in (await _next(ws, "error"))["reason"]

        await ws.send_json({"event": "selfDestruct", "data": {}})
        assert "unsupported event" in (await _next(ws, "error"))["reason"]

        await ws.send_json({"event": "command", "data": {"command": "relay", "action": "sideways"}})
        assert "Invalid command" in (await _next(ws, "error"))["reason"]
        await ws.close()

    assert server.store.get_stats().packets_received == 0


@pytest.mark.asyncio
async def test_emergency_over_socket_is_acknowledged_and_broadcast() -> None:
    server = _server()

    async with TestClient(TestServer(server.app)) as client:
        operator = await client.ws_connect("/ws")
        device = await client.ws_connect("/ws")
        await _next(operator, "snapshot")
        await _next(device, "snapshot")

        await operator.send_json({"event": "emergencyCommand", "data": {"action": "on"}})
        ack = await _next(operator, "command_ack")
        stop = await _next(device, "emergency_stop")

        await operator.close()
        await device.close()

    assert ack["success"] is True
    assert ack["command"]["command"] == "emergency"
    assert ack["command"]["source"] == "socket"
    assert stop["target"] == "all"
    assert stop["action"] == "on"


@pytest.mark.asyncio
async def test_invalid_socket_telemetry_is_counted_not_applied() -> None:
    server = _server()

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await _next(ws, "snapshot")
        await ws.send_json({"event": "telemetryData", "data": {"deviceId": "uav-1", "voltage": 80}})
        await wait_until(lambda: server.store.get_stats().invalid_packets == 1)
        await ws.close()

    assert server.store.get_snapshot().voltage is None
    assert server.store.live_device_count() == 0


@pytest.mark.asyncio
async def test_telemetry_after_expiry_reattaches_channel() -> None:
    server = _server()

    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await _next(ws, "snapshot")
        await ws.send_json({"event": "esp32Connect", "data": {"deviceId": "uav-1"}})
        await _next(ws, "device_status")

        assert [device.device_id for device in server.store.expire_devices(-1.0)] == ["uav-1"]

        await ws.send_json({"event": "telemetry", "data": {"deviceId": "uav-1", "voltage": 14.2}})
        await _next(ws, "telemetry_update")
        (device,) = server.store.get_devices()
        assert device.channel_id is not None

        await ws.close()
        await wait_until(lambda: server.socket.connection_count == 0)

    await wait_until(lambda: server.store.live_device_count() == 0)
    assert server.store.get_snapshot().connection_status == ConnectionStatus.DISCONNECTED
