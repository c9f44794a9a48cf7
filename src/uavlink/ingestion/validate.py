"""Telemetry validation.

Raw fragments from every transport pass through :func:`validate_fragment`
before the store sees them. Keys are canonicalised through
:data:`~uavlink.models.telemetry.FIELD_ALIASES` and each field is checked
against :class:`~uavlink.models.telemetry.TelemetryRecord` on its own, so a
failure can be attributed to exactly one field.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from uavlink._redact import redact_for_log
from uavlink.exceptions import TelemetryValidationError
from uavlink.models._base import is_sentinel
from uavlink.models.telemetry import FIELD_ALIASES, TelemetryRecord

_logger = logging.getLogger(__name__)

ROOT_FIELD = "<root>"


class ValidationProfile(StrEnum):
    """How strictly a transport's payloads are checked."""

    STRICT = "strict"
    """Any failing field rejects the whole fragment (HTTP, socket)."""

    RELAXED = "relaxed"
    """Failing fields are logged and dropped (broker)."""


def _canonicalise(raw: Mapping[str, Any]) -> dict[str, Any]:
    canonical: dict[str, Any] = {}
    for key, value in raw.items():
        name = FIELD_ALIASES.get(str(key))
        if name is None or is_sentinel(value):
            continue
        # Canonical spelling wins over an alias carried in the same payload.
        if name in canonical and key != name:
            continue
        canonical[name] = value
    return canonical


def _reason(exc: ValidationError) -> str:
    errors = exc.errors(include_url=False)
    if not errors:
        return str(exc)
    return str(errors[0].get("msg", "invalid value"))


def validate_fragment(raw: Any, profile: ValidationProfile = ValidationProfile.STRICT) -> dict[str, Any]:
    """Validate a raw fragment and return canonical ``{field: value}`` pairs.

    Only fields present (and not sentinel) in *raw* appear in the result.

    Raises
    ------
    TelemetryValidationError
        If *raw* is not a mapping, or (strict profile) if any field is
        malformed or out of bounds.
    """
    if not isinstance(raw, Mapping):
        raise TelemetryValidationError(
            f"Telemetry payload must be an object, got {type(raw).__name__}",
            field=ROOT_FIELD,
            value=raw,
        )

    accepted: dict[str, Any] = {}
    for name, value in _canonicalise(raw).items():
        try:
            record = TelemetryRecord.model_validate({name: value})
        except ValidationError as exc:
            reason = _reason(exc)
            if profile is ValidationProfile.STRICT:
                raise TelemetryValidationError(
                    f"Invalid {name}: {reason}",
                    field=name,
                    value=value,
                    reason=reason,
                ) from exc
            _logger.warning(
                "Dropping invalid field %s=%s (%s)",
                name,
                redact_for_log(value),
                reason,
            )
            continue
        parsed = getattr(record, name)
        if parsed is not None:
            accepted[name] = parsed
    return accepted
