"""Shared ingestion entry point for every transport."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from uavlink._constants import UNKNOWN_DEVICE_ID
from uavlink._redact import redact_for_log
from uavlink.breaker import CircuitBreaker
from uavlink.broadcast import BroadcastHub, HubEvent
from uavlink.ingestion.dedup import Deduplicator
from uavlink.ingestion.normalize import normalize_timestamp_ms, safe_int, safe_str
from uavlink.ingestion.validate import ValidationProfile
from uavlink.models.telemetry import TelemetryRecord, TransportKind

if TYPE_CHECKING:
    from uavlink.simulation import SimulationFallback
    from uavlink.state.store import StateStore

_logger = logging.getLogger(__name__)

#: Validation profile per transport.
TRANSPORT_PROFILES: dict[TransportKind, ValidationProfile] = {
    TransportKind.HTTP: ValidationProfile.STRICT,
    TransportKind.SOCKET: ValidationProfile.STRICT,
    TransportKind.BROKER: ValidationProfile.RELAXED,
}


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest call."""

    accepted: bool
    duplicate: bool = False
    reason: str | None = None
    snapshot: TelemetryRecord | None = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"accepted": self.accepted, "duplicate": self.duplicate}
        if self.reason:
            body["reason"] = self.reason
        return body


def resolve_device_id(raw: Any, explicit: str | None = None) -> str:
    """Explicit id (header, broker setting) first, then the payload, else ``unknown``."""
    if explicit:
        return explicit
    if isinstance(raw, Mapping):
        for key in ("deviceId", "device_id"):
            value = safe_str(raw.get(key))
            if value:
                return value
    return UNKNOWN_DEVICE_ID


def _packet_number(raw: Any) -> int | None:
    if not isinstance(raw, Mapping):
        return None
    value = raw.get("packetNumber", raw.get("packet_number"))
    return safe_int(value)


class IngestionPipeline:
    """Dedup, then guarded store update, then fan-out.

    Validation errors and :class:`~uavlink.exceptions.CircuitOpenError`
    propagate to the calling adapter, which decides how to surface them.
    """

    def __init__(
        self,
        store: StateStore,
        dedup: Deduplicator,
        breaker: CircuitBreaker,
        hub: BroadcastHub,
        *,
        profiles: Mapping[TransportKind, ValidationProfile] | None = None,
    ) -> None:
        self.store = store
        self.dedup = dedup
        self.breaker = breaker
        self.hub = hub
        self._profiles = dict(profiles or TRANSPORT_PROFILES)
        self._fallback: SimulationFallback | None = None
        self._admit_lock = threading.Lock()

    def set_fallback(self, fallback: SimulationFallback | None) -> None:
        """Attach the simulation fallback stopped by real packets."""
        self._fallback = fallback

    def profile_for(self, transport: TransportKind) -> ValidationProfile:
        return self._profiles.get(transport, ValidationProfile.STRICT)

    def ingest(
        self,
        raw: Any,
        *,
        transport: TransportKind,
        device_id: str | None = None,
        synthetic: bool = False,
    ) -> IngestResult:
        """Submit one raw fragment.

        Raises
        ------
        TelemetryValidationError
            The fragment failed validation under the transport's profile.
        CircuitOpenError
            The ingestion breaker is open.
        """
        resolved = resolve_device_id(raw, device_id)
        packet_number = _packet_number(raw)
        timestamp = normalize_timestamp_ms(raw.get("timestamp")) if isinstance(raw, Mapping) else None

        # A packet identity is recorded only once it has been applied, so a
        # rejected or short-circuited packet can be retried within the window.
        with self._admit_lock:
            if self.dedup.seen(resolved, packet_number, timestamp):
                self.store.record_duplicate(resolved, transport)
                return IngestResult(accepted=False, duplicate=True, reason="duplicate packet")

            _logger.debug(
                "Ingest device=%s transport=%s payload=%s",
                resolved,
                transport.value,
                redact_for_log(raw),
            )
            update = self.breaker.call(
                self.store.update_telemetry,
                raw,
                resolved,
                transport=transport,
                profile=self.profile_for(transport),
                synthetic=synthetic,
            )
            self.dedup.remember(resolved, packet_number)

        if not synthetic and self._fallback is not None and self._fallback.is_active:
            _logger.info("Real telemetry from %s, stopping simulation fallback", resolved)
            self._fallback.stop()

        snapshot = update.current
        self.hub.publish(HubEvent.TELEMETRY_UPDATE, snapshot.to_wire())
        if update.became_connected:
            _logger.info("Device link up: %s via %s", resolved, transport.value)
            self.hub.publish(
                HubEvent.DEVICE_STATUS,
                {
                    "status": snapshot.connection_status,
                    "connectionType": snapshot.connection_type,
                    "deviceId": resolved,
                },
            )
        return IngestResult(accepted=True, snapshot=snapshot)
