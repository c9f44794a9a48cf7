from __future__ import annotations

import pytest
from conftest import RecordingObserver

from uavlink.broadcast import HubEvent
from uavlink.config import BrokerSettings, HubConfig, SimulationSettings
from uavlink.server import TelemetryServer


def _config() -> HubConfig:
    return HubConfig(
        host="127.0.0.1",
        port=0,
        broker=BrokerSettings(enabled=False),
        simulation=SimulationSettings(enabled=False),
    )


@pytest.mark.asyncio
async def test_start_and_idempotent_shutdown() -> None:
    server = TelemetryServer(_config())
    observer = RecordingObserver()
    server.hub.subscribe(observer)

    await server.start()
    assert not server.is_shutting_down
    await server.shutdown("test")
    await server.shutdown("again")
    await server.wait_closed()

    shutdowns = observer.of(HubEvent.SERVER_SHUTDOWN)
    assert len(shutdowns) == 1
    assert shutdowns[0]["reason"] == "test"
    assert server.is_shutting_down


@pytest.mark.asyncio
async def test_context_manager_wires_components() -> None:
    async with TelemetryServer(_config()) as server:
        assert server.broker is None
        assert server.dispatcher.stats()["sinks"] == ["socket"]
        stats = server.stats()
        assert stats["fallback"]["active"] is False
        assert stats["socket"]["connections"] == 0

    assert server.is_shutting_down


@pytest.mark.asyncio
async def test_initial_fallback_is_scheduled_when_enabled() -> None:
    config = HubConfig(
        host="127.0.0.1",
        port=0,
        broker=BrokerSettings(enabled=False),
        simulation=SimulationSettings(grace=60.0),
    )

    async with TelemetryServer(config) as server:
        assert server.monitor.activation_pending
        assert not server.fallback.is_active

    assert not server.monitor.activation_pending
