"""Request/response transport (aiohttp.web)."""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from uavlink._constants import DEVICE_ID_HEADER
from uavlink.breaker import BreakerState
from uavlink.commands import CommandDispatcher
from uavlink.exceptions import CircuitOpenError, CommandValidationError, TelemetryValidationError
from uavlink.ingestion.pipeline import IngestionPipeline
from uavlink.models.telemetry import TransportKind

_logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _ingest_error(status: int, reason: str, **extra: Any) -> web.Response:
    body: dict[str, Any] = {"accepted": False, "duplicate": False, "reason": reason, **extra}
    return web.json_response(body, status=status)


async def _read_json(request: web.Request) -> Any:
    """Decode the request body; raises ``ValueError`` for malformed JSON."""
    text = await request.text()
    if not text.strip():
        raise ValueError("empty request body")
    return json.loads(text)


class HttpApi:
    """HTTP endpoints for devices, operators and diagnostics.

    Parameters
    ----------
    pipeline : IngestionPipeline
        Shared ingestion entry point.
    dispatcher : CommandDispatcher
        Command fan-out; never breaker-guarded.
    stats_provider : callable
        Returns the aggregated diagnostics served by ``GET /stats``.
    is_shutting_down : callable
        While it returns ``True`` every request is answered with 503.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        dispatcher: CommandDispatcher,
        *,
        stats_provider: Callable[[], dict[str, Any]],
        is_shutting_down: Callable[[], bool] = lambda: False,
    ) -> None:
        self._pipeline = pipeline
        self._store = pipeline.store
        self._dispatcher = dispatcher
        self._stats_provider = stats_provider
        self._is_shutting_down = is_shutting_down
        self.requests = 0

    def register(self, app: web.Application) -> None:
        app.add_routes(
            [
                web.get("/telemetry", self.get_telemetry),
                web.post("/telemetry", self.post_telemetry),
                web.post("/command", self.post_command),
                web.get("/stats", self.get_stats),
                web.get("/health", self.get_health),
                web.get("/history", self.get_history),
            ]
        )

    @web.middleware
    async def middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        """Shutdown gate, error envelope, cache headers and request logging."""
        if self._is_shutting_down():
            return web.json_response({"error": "server shutting down"}, status=503)

        started = time.monotonic()
        self.requests += 1
        try:
            response = await handler(request)
        except web.HTTPException:
            raise
        except Exception:
            _logger.exception("Unhandled error on %s %s", request.method, request.path)
            response = web.json_response({"error": "internal server error"}, status=500)

        if not response.prepared:
            response.headers["Cache-Control"] = "no-store"
        _logger.debug(
            "%s %s -> %s (%.1fms)",
            request.method,
            request.path,
            response.status,
            (time.monotonic() - started) * 1000,
        )
        return response

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    async def get_telemetry(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "snapshot": self._store.get_snapshot().to_wire(),
                "stats": self._store.get_stats().to_wire(),
            }
        )

    async def post_telemetry(self, request: web.Request) -> web.Response:
        try:
            raw = await _read_json(request)
        except web.HTTPRequestEntityTooLarge:
            return _ingest_error(413, "payload too large")
        except ValueError as exc:
            return _ingest_error(400, f"invalid JSON: {exc}")

        try:
            result = self._pipeline.ingest(
                raw,
                transport=TransportKind.HTTP,
                device_id=request.headers.get(DEVICE_ID_HEADER) or None,
            )
        except TelemetryValidationError as exc:
            _logger.warning("Rejected HTTP telemetry: %s", exc)
            return _ingest_error(400, str(exc), field=exc.field)
        except CircuitOpenError as exc:
            retry_after = max(1, math.ceil(exc.retry_after))
            return web.json_response(
                {
                    "accepted": False,
                    "duplicate": False,
                    "reason": "service degraded: ingestion circuit open",
                    "retryAfter": retry_after,
                },
                status=503,
                headers={"Retry-After": str(retry_after)},
            )
        return web.json_response(result.to_wire())

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def post_command(self, request: web.Request) -> web.Response:
        try:
            raw = await _read_json(request)
        except web.HTTPRequestEntityTooLarge:
            return web.json_response({"success": False, "reason": "payload too large"}, status=413)
        except ValueError as exc:
            return web.json_response({"success": False, "reason": f"invalid JSON: {exc}"}, status=400)

        try:
            ack = self._dispatcher.dispatch(raw, source="http")
        except CommandValidationError as exc:
            _logger.warning("Rejected command: %s", exc)
            return web.json_response({"success": False, "reason": str(exc)}, status=400)
        return web.json_response(ack.to_wire())

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def get_stats(self, request: web.Request) -> web.Response:
        return web.json_response(self._stats_provider())

    async def get_health(self, request: web.Request) -> web.Response:
        breaker = self._pipeline.breaker
        state = breaker.state
        stats = self._store.get_stats()
        return web.json_response(
            {
                "status": "healthy" if state == BreakerState.CLOSED else "degraded",
                "breaker": state.value,
                "connectionStatus": stats.connection_status.value,
                "connectedDevices": stats.connected_devices,
                "uptimeSeconds": stats.uptime_seconds,
            }
        )

    async def get_history(self, request: web.Request) -> web.Response:
        raw_limit = request.query.get("limit")
        limit: int | None = None
        if raw_limit is not None:
            try:
                limit = int(raw_limit)
            except ValueError:
                return web.json_response({"error": "limit must be an integer"}, status=400)
            if limit < 0:
                return web.json_response({"error": "limit must not be negative"}, status=400)
        entries = self._store.get_history(limit)
        return web.json_response({"count": len(entries), "entries": [entry.to_wire() for entry in entries]})
