from __future__ import annotations

import asyncio
import random

import pytest
from conftest import Components, wait_until

from uavlink.broadcast import HubEvent
from uavlink.config import SimulationSettings
from uavlink.models.telemetry import ConnectionStatus, TransportKind
from uavlink.monitor import ConnectionMonitor
from uavlink.simulation import SimulationFallback


def _build(components: Components, **overrides: object) -> tuple[ConnectionMonitor, SimulationFallback]:
    settings = SimulationSettings(**{"grace": 0.05, "interval": 60.0, **overrides})  # type: ignore[arg-type]
    fallback = SimulationFallback(components.pipeline, settings, rng=random.Random(5))
    components.pipeline.set_fallback(fallback)
    monitor = ConnectionMonitor(components.store, components.hub, fallback, settings)
    return monitor, fallback


@pytest.mark.asyncio
async def test_silent_link_times_out_and_fallback_takes_over(components: Components) -> None:
    monitor, fallback = _build(components)
    components.pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")
    components.clock.advance(16)

    try:
        monitor.tick()

        assert components.store.get_snapshot().connection_status == ConnectionStatus.TIMEOUT
        timeouts = [p for p in components.observer.of(HubEvent.DEVICE_STATUS) if p["status"] == "timeout"]
        assert len(timeouts) == 1
        assert timeouts[0]["lastDataAge"] == pytest.approx(16.0)
        assert components.store.live_device_count() == 0
        assert monitor.activation_pending

        await wait_until(lambda: fallback.is_active)
        await wait_until(lambda: fallback.counter >= 1)
        assert components.store.get_snapshot().device_id == "dummy_device"
    finally:
        await monitor.stop()
        await fallback.aclose()


@pytest.mark.asyncio
async def test_timeout_is_announced_once(components: Components) -> None:
    monitor, fallback = _build(components, enabled=False)
    components.pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")
    components.clock.advance(16)

    monitor.tick()
    monitor.tick()

    timeouts = [p for p in components.observer.of(HubEvent.DEVICE_STATUS) if p["status"] == "timeout"]
    assert len(timeouts) == 1
    await monitor.stop()


@pytest.mark.asyncio
async def test_not_armed_while_a_device_is_live(components: Components) -> None:
    monitor, fallback = _build(components)
    components.pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")
    components.clock.advance(1)

    monitor.tick()

    assert not monitor.activation_pending
    assert components.store.get_snapshot().connection_status == ConnectionStatus.CONNECTED
    await monitor.stop()


@pytest.mark.asyncio
async def test_activation_rechecks_after_grace(components: Components) -> None:
    monitor, fallback = _build(components)

    monitor.schedule_fallback(0.05)
    assert monitor.activation_pending
    components.pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")

    await asyncio.sleep(0.1)
    assert not monitor.activation_pending
    assert not fallback.is_active
    await monitor.stop()


@pytest.mark.asyncio
async def test_disabled_fallback_is_never_armed(components: Components) -> None:
    monitor, fallback = _build(components, enabled=False)

    monitor.tick()
    monitor.schedule_fallback(0.0)

    assert not monitor.activation_pending
    await monitor.stop()


@pytest.mark.asyncio
async def test_tick_publishes_connection_stats(components: Components) -> None:
    monitor, fallback = _build(components, enabled=False)
    components.pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")

    monitor.tick()

    stats = components.observer.of(HubEvent.CONNECTION_STATS)[-1]
    assert stats["packetsReceived"] == 1
    assert stats["connectedDevices"] == 1
    assert stats["fallbackActive"] is False
    assert stats["hubObservers"] == 1
    await monitor.stop()
