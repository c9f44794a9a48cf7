"""Normalization helpers.

Centralizes defensive parsing of device payload values.
"""

from __future__ import annotations

import math
from typing import Any

from uavlink.models._base import is_sentinel


def safe_float(value: Any) -> float | None:
    if is_sentinel(value) or isinstance(value, bool):
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        text = value.decode("utf-8", errors="replace").strip()
    else:
        text = str(value).strip()
    return text if text else None


def prune_fragment(data: dict[str, Any]) -> dict[str, Any]:
    """Drop sentinel values from a flat telemetry fragment.

    Missing keys mean "no update"; the store never sees a sentinel.
    """
    return {key: value for key, value in data.items() if not is_sentinel(value)}


def normalize_timestamp_ms(value: Any) -> int | None:
    """Normalize device timestamps to epoch milliseconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Seconds (< 1e11) -> milliseconds
    """
    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts < 1e11:
        ts *= 1000.0
    return int(ts)
