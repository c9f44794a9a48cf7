"""Operator command models.

Commands form a closed enumeration: a :class:`CommandKind` plus, where the
kind takes one, a :class:`CommandAction`. Anything else is rejected before
it reaches a transport.
"""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import AliasChoices, Field, model_validator

from uavlink._constants import MAX_DEVICE_ID_LENGTH
from uavlink.models._base import HubBaseModel, HubEnum

BROADCAST_TARGET = "all"

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class CommandKind(HubEnum):
    RELAY = "relay"
    EMERGENCY = "emergency"
    REBOOT = "reboot"
    STATUS = "status"


class CommandAction(HubEnum):
    ON = "on"
    OFF = "off"
    EMERGENCY_ON = "emergency_on"
    EMERGENCY_OFF = "emergency_off"


#: Actions each kind accepts. ``None`` means the kind takes no action.
ALLOWED_ACTIONS: dict[CommandKind, frozenset[CommandAction | None]] = {
    CommandKind.RELAY: frozenset({CommandAction.ON, CommandAction.OFF}),
    CommandKind.EMERGENCY: frozenset(
        {CommandAction.ON, CommandAction.OFF, CommandAction.EMERGENCY_ON, CommandAction.EMERGENCY_OFF}
    ),
    CommandKind.REBOOT: frozenset({None}),
    CommandKind.STATUS: frozenset({None}),
}


def _new_command_id() -> str:
    return f"cmd_{uuid.uuid4().hex}"


# ------------------------------------------------------------------
# Models
# ------------------------------------------------------------------


class CommandRequest(HubBaseModel):
    """An operator request as received from HTTP or the socket channel."""

    command: CommandKind
    action: CommandAction | None = None
    value: str | int | float | bool | None = None
    device_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=MAX_DEVICE_ID_LENGTH,
        validation_alias=AliasChoices("device_id", "deviceId"),
    )

    @model_validator(mode="after")
    def _check_action(self) -> CommandRequest:
        allowed = ALLOWED_ACTIONS[self.command]
        if self.action not in allowed:
            if None in allowed:
                raise ValueError(f"command {self.command.value!r} takes no action")
            choices = ", ".join(sorted(action.value for action in allowed if action is not None))
            raise ValueError(f"command {self.command.value!r} requires action in: {choices}")
        return self

    @property
    def urgent(self) -> bool:
        """Emergency commands bypass breakers and go to every device."""
        if self.command == CommandKind.EMERGENCY:
            return True
        return self.action in (CommandAction.EMERGENCY_ON, CommandAction.EMERGENCY_OFF)

    @property
    def engages_emergency(self) -> bool:
        """Whether the command switches the emergency cut-off on."""
        return self.action in (CommandAction.ON, CommandAction.EMERGENCY_ON)


class Command(HubBaseModel):
    """A dispatched command. Fire-and-forget: not tracked to completion."""

    id: str = Field(default_factory=_new_command_id)
    target: str = BROADCAST_TARGET
    command: CommandKind
    action: CommandAction | None = None
    value: str | int | float | bool | None = None
    source: str
    urgent: bool = False
    issued_at: int

    @classmethod
    def from_request(cls, request: CommandRequest, *, source: str, issued_at: int) -> Command:
        target = BROADCAST_TARGET if request.urgent else (request.device_id or BROADCAST_TARGET)
        return cls(
            target=target,
            command=request.command,
            action=request.action,
            value=request.value,
            source=source,
            urgent=request.urgent,
            issued_at=issued_at,
        )

    @property
    def engages_emergency(self) -> bool:
        return self.action in (CommandAction.ON, CommandAction.EMERGENCY_ON)


class CommandAck(HubBaseModel):
    """Per-transport outcome of a dispatch."""

    command: Command
    delivered: dict[str, bool] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def any_delivered(self) -> bool:
        return any(self.delivered.values())

    def to_wire(self) -> dict[str, Any]:
        payload = super().to_wire()
        payload["success"] = self.any_delivered
        return payload
