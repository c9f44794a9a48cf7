"""Short-window duplicate suppression.

A device may deliver the same packet twice, on one transport or on two.
Packets are identified by ``(device_id, packet_number)``; a repeat within
``window`` seconds of the first sighting is a duplicate.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

_logger = logging.getLogger(__name__)


class Deduplicator:
    """Remembers recently seen packet identities.

    Parameters
    ----------
    window : float
        Seconds a packet identity is remembered.
    clock : callable
        Monotonic clock; injectable for tests.
    """

    def __init__(self, window: float = 5.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self._window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._seen: dict[tuple[str, int], float] = {}

    @property
    def window(self) -> float:
        return self._window

    def is_duplicate(self, device_id: str, packet_number: int | None, timestamp: int | None = None) -> bool:
        """Check and record in one step.

        First sightings are recorded and return ``False``. Packets without a
        packet number cannot be identified and are never duplicates.
        """
        with self._lock:
            if self._seen_locked(device_id, packet_number, timestamp):
                return True
            self._remember_locked(device_id, packet_number)
            return False

    def seen(self, device_id: str, packet_number: int | None, timestamp: int | None = None) -> bool:
        """Return ``True`` if this packet was recorded within the window.

        Nothing is recorded; pair with :meth:`remember` once the packet has
        actually been applied. The device *timestamp* is informational only;
        ages use the server clock.
        """
        with self._lock:
            return self._seen_locked(device_id, packet_number, timestamp)

    def remember(self, device_id: str, packet_number: int | None) -> None:
        """Record a packet identity as applied."""
        with self._lock:
            self._remember_locked(device_id, packet_number)

    def _seen_locked(self, device_id: str, packet_number: int | None, timestamp: int | None) -> bool:
        if packet_number is None:
            return False
        first_seen = self._seen.get((device_id, packet_number))
        if first_seen is None:
            return False
        age = self._clock() - first_seen
        if age > self._window:
            return False
        _logger.debug(
            "Duplicate packet device=%s packet=%s timestamp=%s age=%.3fs",
            device_id,
            packet_number,
            timestamp,
            age,
        )
        return True

    def _remember_locked(self, device_id: str, packet_number: int | None) -> None:
        if packet_number is not None:
            self._seen[(device_id, packet_number)] = self._clock()

    def sweep(self) -> int:
        """Evict identities older than the window. Returns the number evicted."""
        now = self._clock()
        with self._lock:
            expired = [key for key, seen in self._seen.items() if now - seen > self._window]
            for key in expired:
                del self._seen[key]
        if expired:
            _logger.debug("Dedup sweep evicted %d entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            size = len(self._seen)
        return {"cache_size": size, "window": self._window}
