"""Data models for uavlink telemetry, devices and commands."""

from uavlink.models._base import HubBaseModel, HubEnum, is_sentinel
from uavlink.models.command import (
    ALLOWED_ACTIONS,
    BROADCAST_TARGET,
    Command,
    CommandAck,
    CommandAction,
    CommandKind,
    CommandRequest,
)
from uavlink.models.device import DeviceRegistration
from uavlink.models.telemetry import (
    FIELD_ALIASES,
    TELEMETRY_BOUNDS,
    ConnectionStatus,
    EmergencyState,
    HistoryEntry,
    TelemetryRecord,
    TransportKind,
)

__all__ = [
    "ALLOWED_ACTIONS",
    "BROADCAST_TARGET",
    "Command",
    "CommandAck",
    "CommandAction",
    "CommandKind",
    "CommandRequest",
    "ConnectionStatus",
    "DeviceRegistration",
    "EmergencyState",
    "FIELD_ALIASES",
    "HistoryEntry",
    "HubBaseModel",
    "HubEnum",
    "TELEMETRY_BOUNDS",
    "TelemetryRecord",
    "TransportKind",
    "is_sentinel",
]
