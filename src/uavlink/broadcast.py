"""Fan-out of server events to connected observers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from uavlink.models.telemetry import TelemetryRecord

_logger = logging.getLogger(__name__)


class HubEvent(StrEnum):
    """Closed set of events observers may receive."""

    SNAPSHOT = "snapshot"
    TELEMETRY_UPDATE = "telemetry_update"
    DEVICE_STATUS = "device_status"
    CONNECTION_STATS = "connection_stats"
    COMMAND = "command"
    EMERGENCY_STOP = "emergency_stop"
    BROKER_STATUS = "broker_status"
    SERVER_SHUTDOWN = "server_shutdown"


@runtime_checkable
class Observer(Protocol):
    """Receiver of hub events.

    ``notify`` is called from the publisher's context and must not block;
    implementations queue the event and deliver it on their own time.
    """

    def notify(self, event: HubEvent, payload: dict[str, Any]) -> None: ...


class BroadcastHub:
    """Best-effort publish/subscribe hub.

    The subscriber set is an immutable tuple replaced on every change, so
    ``publish`` iterates whatever tuple it read and never takes a lock.
    Observers that join mid-publish miss that event; the only retroactive
    delivery is the snapshot sent on :meth:`subscribe`.
    """

    def __init__(self, snapshot_provider: Callable[[], TelemetryRecord]) -> None:
        self._snapshot_provider = snapshot_provider
        self._observers: tuple[Observer, ...] = ()
        self._write_lock = threading.Lock()
        self._published = 0
        self._failures = 0

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer) -> None:
        with self._write_lock:
            if observer in self._observers:
                return
            self._observers = (*self._observers, observer)
        self._deliver(observer, HubEvent.SNAPSHOT, self._snapshot_provider().to_wire())

    def unsubscribe(self, observer: Observer) -> None:
        with self._write_lock:
            self._observers = tuple(o for o in self._observers if o is not observer)

    def publish(self, event: HubEvent, payload: dict[str, Any]) -> int:
        """Deliver *event* to current observers. Returns the delivery count."""
        observers = self._observers
        self._published += 1
        delivered = 0
        for observer in observers:
            if self._deliver(observer, event, payload):
                delivered += 1
        _logger.debug("Published %s to %d/%d observers", event.value, delivered, len(observers))
        return delivered

    def _deliver(self, observer: Observer, event: HubEvent, payload: dict[str, Any]) -> bool:
        try:
            observer.notify(event, payload)
        except Exception:
            self._failures += 1
            _logger.warning("Observer %r failed on %s", observer, event.value, exc_info=True)
            return False
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "observers": len(self._observers),
            "published": self._published,
            "failures": self._failures,
        }
