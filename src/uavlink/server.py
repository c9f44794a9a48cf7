"""Server assembly and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from aiohttp import web

from uavlink._mqtt import ClientFactory
from uavlink._periodic import PeriodicTask
from uavlink.breaker import CircuitBreaker
from uavlink.broadcast import BroadcastHub, HubEvent
from uavlink.commands import CommandDispatcher, CommandSink
from uavlink.config import HubConfig
from uavlink.ingestion.dedup import Deduplicator
from uavlink.ingestion.pipeline import IngestionPipeline
from uavlink.monitor import ConnectionMonitor
from uavlink.simulation import SimulationFallback
from uavlink.state.store import StateStore
from uavlink.transports.broker import BrokerTransport
from uavlink.transports.http import HttpApi
from uavlink.transports.socket import SocketTransport

_logger = logging.getLogger(__name__)

# Grace before the fallback starts after the last socket device leaves.
_DISCONNECT_GRACE = 5.0


class TelemetryServer:
    """All components, constructed explicitly and wired together.

    Usage::

        async with TelemetryServer(HubConfig.from_env()) as server:
            await server.wait_closed()

    Parameters
    ----------
    config : HubConfig, optional
        Defaults to :meth:`HubConfig.from_env`.
    broker_client_factory : callable, optional
        Passed to the broker runtime; tests inject fake MQTT clients.
    """

    def __init__(
        self,
        config: HubConfig | None = None,
        *,
        broker_client_factory: ClientFactory | None = None,
    ) -> None:
        self.config = config or HubConfig.from_env()
        cfg = self.config

        self.store = StateStore(history_size=cfg.history_size)
        self.hub = BroadcastHub(self.store.get_snapshot)
        self.dedup = Deduplicator(cfg.dedup_window)
        self.breaker = CircuitBreaker(
            "ingestion",
            failure_threshold=cfg.breaker_failure_threshold,
            reset_timeout=cfg.breaker_reset_timeout,
            half_open_successes=cfg.breaker_half_open_successes,
        )
        self.pipeline = IngestionPipeline(self.store, self.dedup, self.breaker, self.hub)
        self.fallback = SimulationFallback(self.pipeline, cfg.simulation)
        self.pipeline.set_fallback(self.fallback)
        self.monitor = ConnectionMonitor(
            self.store,
            self.hub,
            self.fallback,
            cfg.simulation,
            connection_timeout=cfg.connection_timeout,
            interval=cfg.monitor_interval,
        )

        self.socket = SocketTransport(self.pipeline, self.hub, on_devices_gone=self._on_devices_gone)
        self.broker: BrokerTransport | None = None
        if cfg.broker.enabled:
            self.broker = BrokerTransport(self.pipeline, self.hub, cfg.broker, client_factory=broker_client_factory)

        sinks: list[CommandSink] = [self.socket]
        if self.broker is not None:
            sinks.append(self.broker)
        self.dispatcher = CommandDispatcher(sinks)
        self.socket.bind_dispatcher(self.dispatcher)

        self.http = HttpApi(
            self.pipeline,
            self.dispatcher,
            stats_provider=self.stats,
            is_shutting_down=lambda: self._shutting_down,
        )
        self.app = web.Application(client_max_size=cfg.max_payload_size, middlewares=[self.http.middleware])
        self.http.register(self.app)
        self.socket.register(self.app)

        self._dedup_sweeper = PeriodicTask("uavlink-dedup-sweep", cfg.dedup_window, self.dedup.sweep)
        self._runner: web.AppRunner | None = None
        self._shutting_down = False
        self._closed = asyncio.Event()
        self._started_at = time.time()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def __aenter__(self) -> TelemetryServer:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    async def start(self) -> None:
        """Bind the HTTP/WebSocket listener and start timers and the broker."""
        cfg = self.config
        runner = web.AppRunner(self.app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, cfg.host, cfg.port)
        await site.start()
        self._runner = runner

        self._dedup_sweeper.start()
        self.monitor.start()
        if self.broker is not None:
            self.broker.start()
        self.monitor.schedule_fallback(cfg.simulation.grace)
        _logger.info(
            "uavlink server ready on http://%s:%d (socket path /ws, broker %s)",
            cfg.host,
            cfg.port,
            cfg.broker.url if self.broker is not None else "disabled",
        )

    async def shutdown(self, reason: str = "shutdown") -> None:
        """Notify observers, stop timers, then close broker, socket and HTTP."""
        if self._shutting_down:
            await self._closed.wait()
            return
        self._shutting_down = True
        _logger.info("uavlink server shutting down (%s)", reason)
        self.hub.publish(HubEvent.SERVER_SHUTDOWN, {"reason": reason, "timestamp": int(time.time() * 1000)})

        try:
            await self.monitor.stop()
            await self.fallback.aclose()
            await self._dedup_sweeper.stop()

            if self.broker is not None:
                await self.broker.stop()
            await self.socket.close_all()
            if self._runner is not None:
                await self._runner.cleanup()
                self._runner = None
        finally:
            self._closed.set()
        _logger.info("uavlink server stopped")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _on_devices_gone(self) -> None:
        self.monitor.schedule_fallback(_DISCONNECT_GRACE)

    def stats(self) -> dict[str, Any]:
        """Aggregated diagnostics for ``GET /stats``."""
        return {
            "telemetry": self.store.get_stats().to_wire(),
            "breakers": {
                "ingestion": self.breaker.stats(),
                "simulation": self.fallback.breaker.stats(),
            },
            "dedup": self.dedup.stats(),
            "fallback": self.fallback.stats(),
            "broker": self.broker.stats() if self.broker is not None else {"state": "disabled"},
            "hub": self.hub.stats(),
            "commands": self.dispatcher.stats(),
            "socket": {
                "connections": self.socket.connection_count,
                "frames_received": self.socket.frames_received,
            },
            "http": {"requests": self.http.requests},
            "uptime_seconds": round(time.time() - self._started_at, 3),
        }
