"""Thread-safe in-memory state store.

This is the only component allowed to mutate the canonical snapshot, the
history ring buffer and the device table. Every mutation (and every
aggregate read) happens under one :class:`threading.Lock`, so a reader
never observes a half-merged record.

Merge semantics are per field: fields present in an update overwrite,
absent fields keep their previous value. Two transports writing
different fields therefore produce a composite record neither sent whole.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from uavlink._constants import MAX_DEVICE_ID_LENGTH, SYNTHETIC_DEVICE_ID
from uavlink.exceptions import TelemetryValidationError
from uavlink.ingestion.validate import ValidationProfile, validate_fragment
from uavlink.models._base import HubBaseModel
from uavlink.models.device import DeviceRegistration
from uavlink.models.telemetry import (
    ConnectionStatus,
    HistoryEntry,
    TelemetryRecord,
    TransportKind,
)

_logger = logging.getLogger(__name__)


def _initial_snapshot() -> TelemetryRecord:
    return TelemetryRecord(
        connection_status=ConnectionStatus.DISCONNECTED,
        connection_type=TransportKind.NONE,
    )


@dataclass(frozen=True)
class TelemetryUpdate:
    """Result of an accepted update: the snapshot before and after the merge."""

    previous: TelemetryRecord
    current: TelemetryRecord

    @property
    def became_connected(self) -> bool:
        return (
            self.previous.connection_status != ConnectionStatus.CONNECTED
            and self.current.connection_status == ConnectionStatus.CONNECTED
        )


class StoreStats(HubBaseModel):
    """Aggregate counters, read atomically."""

    packets_received: int
    duplicate_packets: int
    invalid_packets: int
    connected_devices: int
    observers: int
    total_observers: int
    connection_status: ConnectionStatus
    connection_type: TransportKind
    last_update_at: int | None = None
    last_real_update_at: int | None = None
    uptime_seconds: float
    history_size: int


class StateStore:
    """Canonical snapshot, history and device table.

    Parameters
    ----------
    history_size : int
        Ring buffer capacity; the oldest entry is evicted on overflow.
    clock : callable
        Wall clock returning epoch seconds; injectable for tests.
    """

    def __init__(self, *, history_size: int = 1000, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = _initial_snapshot()
        self._history: deque[HistoryEntry] = deque(maxlen=history_size)
        self._devices: dict[str, DeviceRegistration] = {}

        self._packets_received = 0
        self._duplicate_packets = 0
        self._invalid_packets = 0
        self._observers = 0
        self._total_observers = 0
        self._last_update_at: float | None = None
        self._last_real_update_at: float | None = None
        self._started_at = clock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_telemetry(
        self,
        raw: Any,
        device_id: str,
        *,
        transport: TransportKind,
        profile: ValidationProfile = ValidationProfile.STRICT,
        synthetic: bool = False,
    ) -> TelemetryUpdate:
        """Validate *raw* and merge it into the snapshot.

        Raises
        ------
        TelemetryValidationError
            If *raw* fails validation. The invalid-packet counter is
            incremented and the snapshot is left untouched.
        """
        try:
            if not device_id or len(device_id) > MAX_DEVICE_ID_LENGTH:
                raise TelemetryValidationError(
                    f"Device id must be 1-{MAX_DEVICE_ID_LENGTH} characters",
                    field="device_id",
                    value=device_id,
                )
            fragment = validate_fragment(raw, profile)
        except TelemetryValidationError:
            with self._lock:
                self._invalid_packets += 1
            raise

        # Server-side identity and receipt time always win over the payload.
        fragment.pop("connection_status", None)
        fragment.pop("connection_type", None)
        now = self._clock()
        fragment["device_id"] = device_id
        fragment["timestamp"] = int(now * 1000)
        if not synthetic:
            fragment["connection_status"] = ConnectionStatus.CONNECTED
            fragment["connection_type"] = transport

        with self._lock:
            previous = self._snapshot
            current = previous.model_copy(update=fragment)
            self._snapshot = current
            self._packets_received += 1
            self._last_update_at = now
            self._history.append(HistoryEntry(record=current, received_at=int(now * 1000)))
            if not synthetic:
                self._last_real_update_at = now
                self._touch_device(device_id, transport, now)

        _logger.debug(
            "Telemetry merged device=%s transport=%s fields=%s",
            device_id,
            transport.value,
            sorted(fragment),
        )
        return TelemetryUpdate(previous=previous, current=current)

    def record_duplicate(self, device_id: str, transport: TransportKind) -> None:
        """Count a duplicate packet. Duplicates still prove liveness."""
        now = self._clock()
        with self._lock:
            self._duplicate_packets += 1
            if device_id != SYNTHETIC_DEVICE_ID:
                self._touch_device(device_id, transport, now)

    def register_device(
        self,
        device_id: str,
        transport: TransportKind,
        *,
        channel_id: str | None = None,
        info: Mapping[str, Any] | None = None,
    ) -> DeviceRegistration:
        """Create or refresh a registration ahead of any telemetry."""
        now = self._clock()
        with self._lock:
            return self._touch_device(device_id, transport, now, channel_id=channel_id, info=info)

    def _touch_device(
        self,
        device_id: str,
        transport: TransportKind,
        now: float,
        *,
        channel_id: str | None = None,
        info: Mapping[str, Any] | None = None,
    ) -> DeviceRegistration:
        """Refresh (or create) a registration. Caller holds the lock."""
        existing = self._devices.get(device_id)
        if existing is None:
            registration = DeviceRegistration(
                device_id=device_id,
                transport=transport,
                channel_id=channel_id,
                connected_at=now,
                last_seen=now,
                info=dict(info or {}),
            )
            _logger.info("Device registered: %s via %s", device_id, transport.value)
        else:
            update: dict[str, Any] = {"transport": transport, "last_seen": now}
            if channel_id is not None:
                update["channel_id"] = channel_id
            if info:
                update["info"] = {**existing.info, **info}
            registration = existing.model_copy(update=update)
        self._devices[device_id] = registration
        return registration

    def expire_devices(self, timeout: float) -> list[DeviceRegistration]:
        """Remove registrations not seen for more than *timeout* seconds."""
        now = self._clock()
        with self._lock:
            stale = [device for device in self._devices.values() if device.age(now) > timeout]
            for device in stale:
                del self._devices[device.device_id]
        for device in stale:
            _logger.warning("Device %s stale for %.1fs, removed", device.device_id, device.age(now))
        return stale

    def drop_channel(self, channel_id: str) -> list[DeviceRegistration]:
        """Remove every registration owned by a closed socket connection."""
        with self._lock:
            owned = [device for device in self._devices.values() if device.channel_id == channel_id]
            for device in owned:
                del self._devices[device.device_id]
        for device in owned:
            _logger.info("Device %s disconnected", device.device_id)
        return owned

    def mark_timeout(self) -> bool:
        """Flip ``connected`` to ``timeout``. Returns ``True`` if the status changed."""
        with self._lock:
            if self._snapshot.connection_status != ConnectionStatus.CONNECTED:
                return False
            self._snapshot = self._snapshot.model_copy(update={"connection_status": ConnectionStatus.TIMEOUT})
            return True

    def mark_disconnected(self) -> bool:
        """Set ``disconnected``/``none``. Returns ``True`` if the status changed."""
        with self._lock:
            if self._snapshot.connection_status == ConnectionStatus.DISCONNECTED:
                return False
            self._snapshot = self._snapshot.model_copy(
                update={
                    "connection_status": ConnectionStatus.DISCONNECTED,
                    "connection_type": TransportKind.NONE,
                }
            )
            return True

    def observer_connected(self) -> None:
        with self._lock:
            self._observers += 1
            self._total_observers += 1

    def observer_disconnected(self) -> None:
        with self._lock:
            self._observers = max(0, self._observers - 1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self) -> TelemetryRecord:
        with self._lock:
            return self._snapshot

    def get_history(self, limit: int | None = None) -> list[HistoryEntry]:
        """Most recent entries, oldest first."""
        with self._lock:
            entries = list(self._history)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def get_devices(self) -> list[DeviceRegistration]:
        with self._lock:
            return list(self._devices.values())

    def live_device_count(self) -> int:
        with self._lock:
            return len(self._devices)

    def real_data_age(self) -> float | None:
        """Seconds since the last accepted real update, or ``None`` if never."""
        now = self._clock()
        with self._lock:
            if self._last_real_update_at is None:
                return None
            return now - self._last_real_update_at

    def get_stats(self) -> StoreStats:
        now = self._clock()
        with self._lock:
            return StoreStats(
                packets_received=self._packets_received,
                duplicate_packets=self._duplicate_packets,
                invalid_packets=self._invalid_packets,
                connected_devices=len(self._devices),
                observers=self._observers,
                total_observers=self._total_observers,
                connection_status=self._snapshot.connection_status or ConnectionStatus.DISCONNECTED,
                connection_type=self._snapshot.connection_type or TransportKind.NONE,
                last_update_at=_ms(self._last_update_at),
                last_real_update_at=_ms(self._last_real_update_at),
                uptime_seconds=round(now - self._started_at, 3),
                history_size=len(self._history),
            )


def _ms(value: float | None) -> int | None:
    return None if value is None else int(value * 1000)
