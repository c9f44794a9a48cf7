"""Canonical telemetry record.

One :class:`TelemetryRecord` describes a (possibly partial) snapshot of the
device. Every field is optional: ``None`` means "not present in this
update", never "zero". Numeric fields carry their physical bounds so a
record that exists is always within range.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field

from uavlink._constants import MAX_DEVICE_ID_LENGTH
from uavlink.models._base import HubBaseModel, HubEnum

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class ConnectionStatus(HubEnum):
    """Device link state as seen by the server."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TIMEOUT = "timeout"


class TransportKind(HubEnum):
    """Transport a record (or device registration) arrived on."""

    HTTP = "http"
    SOCKET = "socket"
    BROKER = "broker"
    NONE = "none"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        # Legacy firmware spellings.
        return {"websocket": "socket", "ws": "socket", "mqtt": "broker"}


class EmergencyState(HubEnum):
    """Emergency cut-off state reported by (or commanded to) the device."""

    ON = "on"
    OFF = "off"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {"emergency_on": "on", "emergency_off": "off", "1": "on", "0": "off"}


# ------------------------------------------------------------------
# Bounds
# ------------------------------------------------------------------

#: Inclusive (min, max) bounds per numeric field.
TELEMETRY_BOUNDS: dict[str, tuple[float, float]] = {
    "voltage": (0, 50),
    "current": (-10_000, 10_000),
    "power": (-500_000, 500_000),
    "temperature": (-50, 100),
    "humidity": (0, 100),
    "latitude": (-90, 90),
    "longitude": (-180, 180),
    "altitude": (-1_000, 50_000),
    "speed": (0, 1_000),
    "signal_strength": (-127, 0),
    "satellites": (0, 50),
}


def _bounded(name: str, *aliases: str) -> Any:
    low, high = TELEMETRY_BOUNDS[name]
    return Field(
        default=None,
        ge=low,
        le=high,
        allow_inf_nan=False,
        validation_alias=AliasChoices(name, *aliases),
    )


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


class TelemetryRecord(HubBaseModel):
    """One canonical telemetry snapshot or fragment."""

    voltage: float | None = _bounded("voltage", "battery_voltage", "batteryVoltage")
    current: float | None = _bounded("current", "battery_current", "batteryCurrent")
    power: float | None = _bounded("power", "battery_power", "batteryPower")
    temperature: float | None = _bounded("temperature")
    humidity: float | None = _bounded("humidity")
    latitude: float | None = _bounded("latitude", "lat", "gps_latitude", "gpsLatitude")
    longitude: float | None = _bounded("longitude", "lng", "lon", "gps_longitude", "gpsLongitude")
    altitude: float | None = _bounded("altitude")
    speed: float | None = _bounded("speed")
    signal_strength: float | None = _bounded("signal_strength", "signalStrength")
    satellites: int | None = Field(
        default=None,
        ge=0,
        le=50,
        validation_alias=AliasChoices("satellites", "satelliteCount", "satellite_count"),
    )
    relay_on: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("relay_on", "relayOn", "relay_status", "relayStatus", "relay"),
    )
    emergency_state: EmergencyState | None = Field(
        default=None,
        validation_alias=AliasChoices("emergency_state", "emergencyState", "emergency_status", "emergency"),
    )
    connection_status: ConnectionStatus | None = Field(
        default=None,
        validation_alias=AliasChoices("connection_status", "connectionStatus"),
    )
    connection_type: TransportKind | None = Field(
        default=None,
        validation_alias=AliasChoices("connection_type", "connectionType"),
    )
    packet_number: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("packet_number", "packetNumber"),
    )
    device_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=MAX_DEVICE_ID_LENGTH,
        validation_alias=AliasChoices("device_id", "deviceId"),
    )
    timestamp: int | None = Field(default=None, validation_alias=AliasChoices("timestamp"))


def _build_alias_index() -> dict[str, str]:
    index: dict[str, str] = {}
    for name, info in TelemetryRecord.model_fields.items():
        index[name] = name
        alias = info.validation_alias
        if isinstance(alias, AliasChoices):
            for choice in alias.choices:
                if isinstance(choice, str):
                    index[choice] = name
    return index


#: Every accepted wire key mapped to its canonical field name.
FIELD_ALIASES: dict[str, str] = _build_alias_index()


class HistoryEntry(HubBaseModel):
    """Immutable copy of an accepted snapshot plus its receipt time (epoch ms)."""

    record: TelemetryRecord
    received_at: int
