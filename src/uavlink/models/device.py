"""Device registration model."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from uavlink.models._base import HubBaseModel
from uavlink.models.telemetry import TransportKind


class DeviceRegistration(HubBaseModel):
    """A device the server has heard from.

    Parameters
    ----------
    device_id : str
        Device identity.
    transport : TransportKind
        Transport the device was last seen on.
    channel_id : str or None
        Identifier of the owning socket connection, if any. Used to drop
        the registration when that connection closes.
    connected_at : float
        Epoch seconds of the first packet or announce.
    last_seen : float
        Epoch seconds of the most recent packet (duplicates included).
    info : dict
        Metadata sent with a device-announce event.
    """

    device_id: str
    transport: TransportKind
    channel_id: str | None = None
    connected_at: float
    last_seen: float
    info: dict[str, Any] = Field(default_factory=dict)

    def age(self, now: float) -> float:
        return now - self.last_seen
