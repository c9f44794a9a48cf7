from __future__ import annotations

from typing import Any

from conftest import RecordingObserver

from uavlink.broadcast import BroadcastHub, HubEvent, Observer
from uavlink.models.telemetry import TelemetryRecord


class _BrokenObserver:
    def notify(self, event: HubEvent, payload: dict[str, Any]) -> None:
        raise RuntimeError("socket gone")


def _hub() -> BroadcastHub:
    return BroadcastHub(lambda: TelemetryRecord(voltage=12.0))


def test_subscribe_delivers_current_snapshot_once() -> None:
    hub = _hub()
    observer = RecordingObserver()

    hub.subscribe(observer)
    hub.subscribe(observer)

    assert observer.events == [(HubEvent.SNAPSHOT, {"voltage": 12.0})]
    assert hub.observer_count == 1


def test_publish_reaches_all_observers() -> None:
    hub = _hub()
    first, second = RecordingObserver(), RecordingObserver()
    hub.subscribe(first)
    hub.subscribe(second)

    delivered = hub.publish(HubEvent.COMMAND, {"command": "status"})

    assert delivered == 2
    assert first.of(HubEvent.COMMAND) == [{"command": "status"}]
    assert second.of(HubEvent.COMMAND) == [{"command": "status"}]


def test_failing_observer_is_isolated() -> None:
    hub = _hub()
    healthy = RecordingObserver()
    hub.subscribe(_BrokenObserver())
    hub.subscribe(healthy)

    delivered = hub.publish(HubEvent.TELEMETRY_UPDATE, {"voltage": 13.0})

    assert delivered == 1
    assert healthy.of(HubEvent.TELEMETRY_UPDATE) == [{"voltage": 13.0}]
    stats = hub.stats()
    assert stats["failures"] == 2
    assert stats["published"] == 1


def test_unsubscribed_observer_stops_receiving() -> None:
    hub = _hub()
    observer = RecordingObserver()
    hub.subscribe(observer)
    hub.unsubscribe(observer)

    assert hub.publish(HubEvent.SERVER_SHUTDOWN, {"reason": "test"}) == 0
    assert observer.of(HubEvent.SERVER_SHUTDOWN) == []


def test_recording_observer_satisfies_protocol() -> None:
    assert isinstance(RecordingObserver(), Observer)
