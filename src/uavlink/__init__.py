"""uavlink - UAV telemetry hub over HTTP, WebSocket and MQTT."""

from importlib.metadata import PackageNotFoundError, version

from uavlink.breaker import BreakerState, CircuitBreaker
from uavlink.broadcast import BroadcastHub, HubEvent, Observer
from uavlink.commands import CommandDispatcher, CommandSink
from uavlink.config import BrokerSettings, HubConfig, SimulationSettings, TopicMap
from uavlink.exceptions import (
    BrokerNotConnectedError,
    CircuitOpenError,
    CommandValidationError,
    HubConfigError,
    HubTransportError,
    TelemetryValidationError,
    UavLinkError,
)
from uavlink.ingestion import Deduplicator, IngestionPipeline, IngestResult, ValidationProfile
from uavlink.models import (
    Command,
    CommandAck,
    CommandAction,
    CommandKind,
    CommandRequest,
    ConnectionStatus,
    DeviceRegistration,
    EmergencyState,
    HistoryEntry,
    TelemetryRecord,
    TransportKind,
)
from uavlink.monitor import ConnectionMonitor
from uavlink.server import TelemetryServer
from uavlink.simulation import SimulationFallback
from uavlink.state import StateStore, StoreStats

try:
    __version__ = version("uavlink")
except PackageNotFoundError:
    __version__ = "0+local"

__all__ = [
    "__version__",
    "BreakerState",
    "BroadcastHub",
    "BrokerNotConnectedError",
    "BrokerSettings",
    "CircuitBreaker",
    "CircuitOpenError",
    "Command",
    "CommandAck",
    "CommandAction",
    "CommandDispatcher",
    "CommandKind",
    "CommandRequest",
    "CommandSink",
    "CommandValidationError",
    "ConnectionMonitor",
    "ConnectionStatus",
    "Deduplicator",
    "DeviceRegistration",
    "EmergencyState",
    "HistoryEntry",
    "HubConfig",
    "HubConfigError",
    "HubEvent",
    "HubTransportError",
    "IngestResult",
    "IngestionPipeline",
    "Observer",
    "SimulationFallback",
    "SimulationSettings",
    "StateStore",
    "StoreStats",
    "TelemetryRecord",
    "TelemetryServer",
    "TelemetryValidationError",
    "TopicMap",
    "TransportKind",
    "UavLinkError",
    "ValidationProfile",
]
