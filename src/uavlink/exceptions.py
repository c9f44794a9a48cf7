"""Custom exception hierarchy for uavlink."""

from __future__ import annotations

from typing import Any


class UavLinkError(Exception):
    """Base exception for all uavlink errors."""


class HubConfigError(UavLinkError):
    """Invalid or missing configuration."""


class TelemetryValidationError(UavLinkError):
    """A telemetry payload field is malformed or outside its declared bound."""

    def __init__(
        self,
        message: str,
        *,
        field: str,
        value: Any = None,
        reason: str = "",
    ) -> None:
        self.field = field
        self.value = value
        self.reason = reason or message
        super().__init__(message)


class CommandValidationError(UavLinkError):
    """Operator command is not part of the closed command enumeration."""


class CircuitOpenError(UavLinkError):
    """A guarded operation was short-circuited because its breaker is OPEN.

    ``retry_after`` is the number of seconds until the breaker will admit
    a half-open trial call.
    """

    def __init__(
        self,
        message: str,
        *,
        name: str = "",
        retry_after: float = 0.0,
    ) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(message)


class HubTransportError(UavLinkError):
    """Transport-level failure (socket drop, broker publish rejected)."""

    def __init__(
        self,
        message: str,
        *,
        transport: str = "",
    ) -> None:
        self.transport = transport
        super().__init__(message)


class BrokerNotConnectedError(HubTransportError):
    """The broker link is not currently established."""
