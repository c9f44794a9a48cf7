"""State/store layer.

The single source of truth for the canonical telemetry snapshot, the
history ring buffer and the device table.
"""

from uavlink.state.store import StateStore, StoreStats, TelemetryUpdate

__all__ = ["StateStore", "StoreStats", "TelemetryUpdate"]
