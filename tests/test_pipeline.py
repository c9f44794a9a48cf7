from __future__ import annotations

import pytest
from conftest import Components

from uavlink.broadcast import HubEvent
from uavlink.breaker import BreakerState
from uavlink.exceptions import CircuitOpenError, TelemetryValidationError
from uavlink.ingestion.pipeline import resolve_device_id
from uavlink.models.telemetry import ConnectionStatus, TransportKind


class _FakeFallback:
    def __init__(self) -> None:
        self.is_active = True
        self.stopped = 0

    def stop(self) -> None:
        self.is_active = False
        self.stopped += 1


def test_transports_merge_into_one_composite_record(components: Components) -> None:
    pipeline = components.pipeline

    pipeline.ingest({"voltage": 14.8, "packetNumber": 1}, transport=TransportKind.HTTP, device_id="ESP32_UAV")
    pipeline.ingest({"latitude": -6.2, "longitude": 106.8}, transport=TransportKind.BROKER, device_id="ESP32_UAV")

    snapshot = components.store.get_snapshot()
    assert snapshot.voltage == 14.8
    assert snapshot.latitude == -6.2
    assert snapshot.longitude == 106.8
    assert snapshot.connection_type == TransportKind.BROKER
    assert snapshot.packet_number == 1


def test_duplicate_is_counted_and_not_merged(components: Components) -> None:
    pipeline = components.pipeline
    first = pipeline.ingest({"voltage": 12.0, "packetNumber": 7}, transport=TransportKind.HTTP, device_id="d1")
    second = pipeline.ingest({"voltage": 13.0, "packetNumber": 7}, transport=TransportKind.SOCKET, device_id="d1")

    assert first.accepted
    assert not second.accepted
    assert second.duplicate
    assert second.to_wire() == {"accepted": False, "duplicate": True, "reason": "duplicate packet"}
    assert components.store.get_snapshot().voltage == 12.0
    stats = components.store.get_stats()
    assert stats.duplicate_packets == 1
    assert stats.packets_received == 1
    assert len(components.observer.of(HubEvent.TELEMETRY_UPDATE)) == 1


def test_same_packet_number_after_window_is_accepted(components: Components) -> None:
    pipeline = components.pipeline
    pipeline.ingest({"voltage": 12.0, "packetNumber": 7}, transport=TransportKind.HTTP, device_id="d1")
    components.clock.advance(6)

    result = pipeline.ingest({"voltage": 13.0, "packetNumber": 7}, transport=TransportKind.HTTP, device_id="d1")

    assert result.accepted
    assert components.store.get_snapshot().voltage == 13.0


def test_publishes_update_and_first_link_up(components: Components) -> None:
    pipeline = components.pipeline
    pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")
    pipeline.ingest({"voltage": 12.5}, transport=TransportKind.HTTP, device_id="d1")

    updates = components.observer.of(HubEvent.TELEMETRY_UPDATE)
    assert [payload["voltage"] for payload in updates] == [12.0, 12.5]
    assert updates[0]["deviceId"] == "d1"
    assert updates[0]["connectionStatus"] == "connected"

    statuses = components.observer.of(HubEvent.DEVICE_STATUS)
    assert len(statuses) == 1
    assert statuses[0]["status"] == ConnectionStatus.CONNECTED
    assert statuses[0]["connectionType"] == TransportKind.HTTP
    assert statuses[0]["deviceId"] == "d1"


def test_validation_error_propagates_and_feeds_breaker(components: Components) -> None:
    pipeline = components.pipeline
    for _ in range(5):
        with pytest.raises(TelemetryValidationError):
            pipeline.ingest({"voltage": 999}, transport=TransportKind.HTTP, device_id="d1")

    assert components.breaker.state == BreakerState.OPEN
    with pytest.raises(CircuitOpenError):
        pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")
    assert components.store.get_stats().invalid_packets == 5
    assert components.observer.of(HubEvent.TELEMETRY_UPDATE) == []


def test_broker_transport_uses_relaxed_profile(components: Components) -> None:
    result = components.pipeline.ingest(
        {"voltage": 999, "speed": 12.5},
        transport=TransportKind.BROKER,
        device_id="ESP32_UAV",
    )

    assert result.accepted
    snapshot = components.store.get_snapshot()
    assert snapshot.voltage is None
    assert snapshot.speed == 12.5


def test_real_packet_stops_active_fallback(components: Components) -> None:
    fallback = _FakeFallback()
    components.pipeline.set_fallback(fallback)  # type: ignore[arg-type]

    components.pipeline.ingest(
        {"voltage": 16.0}, transport=TransportKind.NONE, device_id="dummy_device", synthetic=True
    )
    assert fallback.stopped == 0

    components.pipeline.ingest({"voltage": 12.0}, transport=TransportKind.HTTP, device_id="d1")
    assert fallback.stopped == 1


def test_resolve_device_id_precedence() -> None:
    assert resolve_device_id({"deviceId": "payload"}, "header") == "header"
    assert resolve_device_id({"deviceId": "payload"}) == "payload"
    assert resolve_device_id({"device_id": "snake"}) == "snake"
    assert resolve_device_id({"deviceId": ""}) == "unknown"
    assert resolve_device_id([1, 2]) == "unknown"


def test_short_circuited_packet_can_be_retried(components: Components) -> None:
    pipeline = components.pipeline
    for _ in range(5):
        with pytest.raises(TelemetryValidationError):
            pipeline.ingest({"voltage": 999}, transport=TransportKind.HTTP, device_id="d1")
    components.clock.advance(8)

    with pytest.raises(CircuitOpenError) as excinfo:
        pipeline.ingest({"voltage": 14.8, "packetNumber": 42}, transport=TransportKind.HTTP, device_id="d1")
    components.clock.advance(excinfo.value.retry_after + 0.5)

    result = pipeline.ingest({"voltage": 14.8, "packetNumber": 42}, transport=TransportKind.HTTP, device_id="d1")

    assert result.accepted
    assert not result.duplicate
    assert components.store.get_snapshot().voltage == 14.8


def test_rejected_packet_can_be_corrected_and_resent(components: Components) -> None:
    pipeline = components.pipeline
    with pytest.raises(TelemetryValidationError):
        pipeline.ingest({"voltage": 999, "packetNumber": 7}, transport=TransportKind.HTTP, device_id="d1")

    result = pipeline.ingest({"voltage": 14.8, "packetNumber": 7}, transport=TransportKind.HTTP, device_id="d1")

    assert result.accepted
    assert components.store.get_snapshot().voltage == 14.8
    assert components.store.get_stats().duplicate_packets == 0

    again = pipeline.ingest({"voltage": 14.8, "packetNumber": 7}, transport=TransportKind.HTTP, device_id="d1")
    assert again.duplicate
