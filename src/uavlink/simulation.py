"""Synthetic telemetry for when no real device is reporting.

The generator flies a small circle around a base position, drains the
battery slowly and degrades signal strength with distance from the base.
It submits through the same ingestion path as real transports, tagged
with the reserved synthetic device id, so observers see one continuous
stream either way.
"""

from __future__ import annotations

import logging
import math
import random
import time
from typing import TYPE_CHECKING, Any

from uavlink._constants import SYNTHETIC_DEVICE_ID
from uavlink._periodic import PeriodicTask
from uavlink.breaker import BreakerState, CircuitBreaker
from uavlink.config import SimulationSettings
from uavlink.models.telemetry import TransportKind

if TYPE_CHECKING:
    from uavlink.ingestion.pipeline import IngestionPipeline

_logger = logging.getLogger(__name__)

_BREAKER_FAILURE_THRESHOLD = 3
_BREAKER_RESET_TIMEOUT = 5.0


class SimulationFallback:
    """Periodic synthetic-telemetry generator.

    Parameters
    ----------
    pipeline : IngestionPipeline
        Ingestion entry point; synthetic packets are submitted with
        ``synthetic=True``.
    settings : SimulationSettings
        Cadence and trajectory parameters.
    rng : random.Random, optional
        Noise source; inject a seeded instance for reproducible tests.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        settings: SimulationSettings,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._settings = settings
        self._rng = rng or random.Random()
        self._counter = 0
        self._active = False
        self._task = PeriodicTask("uavlink-simulation", settings.interval, self.tick, run_immediately=True)
        self.breaker = CircuitBreaker(
            "simulation",
            failure_threshold=_BREAKER_FAILURE_THRESHOLD,
            reset_timeout=_BREAKER_RESET_TIMEOUT,
        )

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def counter(self) -> int:
        return self._counter

    def start(self) -> None:
        """Begin ticking. Must be called from the event loop."""
        if self._active:
            return
        self.breaker.reset()
        self._active = True
        self._task.start()
        _logger.info("Simulation fallback started (interval %.1fs)", self._settings.interval)

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._task.cancel()
        _logger.info("Simulation fallback stopped after %d packets", self._counter)

    async def aclose(self) -> None:
        self._active = False
        await self._task.stop()

    def synthesize(self) -> dict[str, Any]:
        """Build the next synthetic fragment and advance the trajectory."""
        self._counter += 1
        counter = self._counter
        rng = self._rng
        now = time.time()
        settings = self._settings

        angle = (counter * 0.1) % (2 * math.pi)
        radius = settings.movement_range
        delta_lat = math.cos(angle) * radius
        delta_lng = math.sin(angle) * radius

        battery = max(10.5, 16.8 - counter * 0.001)
        distance = math.hypot(delta_lat, delta_lng)
        signal = max(-100.0, -50.0 - distance * 10_000)
        current = 5.5 + rng.random() * 2

        return {
            "voltage": round(battery + rng.random() * 0.2 - 0.1, 2),
            "current": round(current, 2),
            "power": round(battery * current, 2),
            "temperature": round(28 + math.sin(now / 100) * 5 + rng.random() * 2, 1),
            "humidity": round(55 + math.cos(now / 120) * 10 + rng.random() * 5, 1),
            "latitude": round(settings.base_latitude + delta_lat, 8),
            "longitude": round(settings.base_longitude + delta_lng, 8),
            "altitude": round(100 + math.sin(angle) * 20 + rng.random() * 5, 1),
            "speed": round(15 + math.sin(angle * 2) * 5 + rng.random() * 2, 1),
            "signalStrength": round(signal),
            "satellites": rng.randint(8, 10),
            "packetNumber": counter,
        }

    def _submit(self) -> None:
        self._pipeline.ingest(
            self.synthesize(),
            transport=TransportKind.NONE,
            device_id=SYNTHETIC_DEVICE_ID,
            synthetic=True,
        )

    def tick(self) -> None:
        """Generate and submit one packet; stop if the generator's breaker opens."""
        if not self._active:
            return
        try:
            self.breaker.call(self._submit)
        except Exception as exc:
            _logger.error("Simulation tick failed: %s", exc)
            if self.breaker.state == BreakerState.OPEN:
                _logger.error("Simulation breaker open, stopping generator")
                self.stop()

    def stats(self) -> dict[str, Any]:
        return {
            "active": self._active,
            "counter": self._counter,
            "breaker": self.breaker.stats(),
        }
