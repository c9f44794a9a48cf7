"""Periodic connection health sweep."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from uavlink._periodic import PeriodicTask
from uavlink.broadcast import BroadcastHub, HubEvent
from uavlink.config import SimulationSettings
from uavlink.simulation import SimulationFallback
from uavlink.state.store import StateStore

_logger = logging.getLogger(__name__)


class ConnectionMonitor:
    """Flips stale links to timeout, expires devices and arms the fallback.

    Parameters
    ----------
    store : StateStore
        Source of data age and the device table.
    hub : BroadcastHub
        Receives ``device_status`` and ``connection_stats`` events.
    fallback : SimulationFallback
        Started after ``settings.grace`` once nothing real is reporting.
    settings : SimulationSettings
        Fallback enablement and grace delay.
    connection_timeout : float
        Seconds without real data before the link counts as timed out.
    interval : float
        Tick period in seconds.
    """

    def __init__(
        self,
        store: StateStore,
        hub: BroadcastHub,
        fallback: SimulationFallback,
        settings: SimulationSettings,
        *,
        connection_timeout: float = 15.0,
        interval: float = 5.0,
    ) -> None:
        self._store = store
        self._hub = hub
        self._fallback = fallback
        self._settings = settings
        self._timeout = connection_timeout
        self._task = PeriodicTask("uavlink-monitor", interval, self.tick)
        self._pending: asyncio.TimerHandle | None = None

    @property
    def activation_pending(self) -> bool:
        return self._pending is not None

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        self.cancel_activation()
        await self._task.stop()

    def _data_is_stale(self) -> bool:
        age = self._store.real_data_age()
        return age is None or age > self._timeout

    def tick(self) -> None:
        """One sweep. Safe to call directly from the event loop."""
        age = self._store.real_data_age()
        if age is not None and age > self._timeout and self._store.mark_timeout():
            _logger.warning("No real telemetry for %.1fs, link timed out", age)
            self._hub.publish(
                HubEvent.DEVICE_STATUS,
                {"status": "timeout", "lastDataAge": round(age, 3)},
            )

        self._store.expire_devices(self._timeout)

        if self._should_arm_fallback():
            self.schedule_fallback(self._settings.grace)

        self._hub.publish(HubEvent.CONNECTION_STATS, self.connection_stats())

    def _should_arm_fallback(self) -> bool:
        return (
            self._settings.enabled
            and not self._fallback.is_active
            and self._pending is None
            and self._store.live_device_count() == 0
            and self._data_is_stale()
        )

    def schedule_fallback(self, delay: float) -> None:
        """Arm a one-shot fallback activation after *delay* seconds."""
        if not self._settings.enabled or self._fallback.is_active or self._pending is not None:
            return
        loop = asyncio.get_running_loop()
        _logger.info("Simulation fallback armed, starting in %.1fs", delay)
        self._pending = loop.call_later(delay, self._activate_fallback)

    def cancel_activation(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _activate_fallback(self) -> None:
        self._pending = None
        # Re-check: a device may have reported during the grace delay.
        if self._fallback.is_active or self._store.live_device_count() > 0 or not self._data_is_stale():
            _logger.debug("Fallback activation skipped, real data resumed")
            return
        self._fallback.start()

    def connection_stats(self) -> dict[str, Any]:
        stats = self._store.get_stats().to_wire()
        stats["fallbackActive"] = self._fallback.is_active
        stats["hubObservers"] = self._hub.observer_count
        return stats
