"""Operator command dispatch.

Commands are fire-and-forget. Each registered :class:`CommandSink` gets a
chance to deliver; one sink failing never stops the others, and dispatch
is never routed through a circuit breaker.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from pydantic import ValidationError

from uavlink.exceptions import CommandValidationError
from uavlink.models.command import Command, CommandAck, CommandRequest

_logger = logging.getLogger(__name__)


class CommandSink(Protocol):
    """A transport able to carry commands to devices."""

    name: str

    def can_deliver(self, command: Command) -> bool: ...

    def send_command(self, command: Command) -> None: ...


def parse_command(raw: Any) -> CommandRequest:
    """Validate a raw command body against the closed command enumeration.

    Raises
    ------
    CommandValidationError
        If the body is not an object or names an unknown kind/action.
    """
    if isinstance(raw, CommandRequest):
        return raw
    if not isinstance(raw, Mapping):
        raise CommandValidationError(f"Command must be an object, got {type(raw).__name__}")
    try:
        return CommandRequest.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "command"
        raise CommandValidationError(f"Invalid command ({location}): {first.get('msg')}") from exc


class CommandDispatcher:
    """Builds :class:`Command` objects and hands them to every capable sink."""

    def __init__(
        self,
        sinks: Iterable[CommandSink] = (),
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sinks: list[CommandSink] = list(sinks)
        self._clock = clock
        self._dispatched = 0
        self._failed = 0

    def add_sink(self, sink: CommandSink) -> None:
        self._sinks.append(sink)

    def dispatch(self, request: CommandRequest | Mapping[str, Any], *, source: str) -> CommandAck:
        """Deliver a command on every transport that can reach its target."""
        parsed = parse_command(request)
        command = Command.from_request(parsed, source=source, issued_at=int(self._clock() * 1000))
        if command.urgent:
            _logger.warning(
                "Emergency command %s action=%s from %s",
                command.id,
                command.action,
                source,
            )
        else:
            _logger.info("Command %s %s action=%s from %s", command.id, command.command, command.action, source)

        delivered: dict[str, bool] = {}
        errors: dict[str, str] = {}
        for sink in list(self._sinks):
            if not sink.can_deliver(command):
                continue
            try:
                sink.send_command(command)
            except Exception as exc:
                _logger.error("Command %s failed on %s: %s", command.id, sink.name, exc)
                delivered[sink.name] = False
                errors[sink.name] = str(exc) or type(exc).__name__
                self._failed += 1
            else:
                delivered[sink.name] = True
        self._dispatched += 1
        return CommandAck(command=command, delivered=delivered, errors=errors)

    def stats(self) -> dict[str, Any]:
        return {
            "dispatched": self._dispatched,
            "failed_deliveries": self._failed,
            "sinks": [sink.name for sink in self._sinks],
        }
