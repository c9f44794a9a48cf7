"""Persistent-socket transport over aiohttp WebSockets.

Frames in both directions are JSON objects ``{"event": <name>, "data": {...}}``.
Every connection is also a :class:`~uavlink.broadcast.Observer`: hub events
are queued per connection and written by that connection's own task, so a
slow client never stalls a publish.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from aiohttp import WSCloseCode, WSMsgType, web

from uavlink._redact import redact_for_log
from uavlink.broadcast import BroadcastHub, HubEvent
from uavlink.exceptions import CircuitOpenError, CommandValidationError, TelemetryValidationError
from uavlink.ingestion.normalize import prune_fragment
from uavlink.ingestion.pipeline import IngestionPipeline, resolve_device_id
from uavlink.models.command import Command, CommandKind
from uavlink.models.telemetry import ConnectionStatus, TransportKind

if TYPE_CHECKING:
    from uavlink.commands import CommandDispatcher

_logger = logging.getLogger(__name__)

SOCKET_PATH = "/ws"
_QUEUE_SIZE = 256

EVENT_DEVICE_ANNOUNCE = "device_announce"
EVENT_TELEMETRY = "telemetry"
EVENT_COMMAND = "command"
EVENT_EMERGENCY = "emergency"
EVENT_ERROR = "error"
EVENT_COMMAND_ACK = "command_ack"

#: Inbound event names, including the spellings older firmware uses.
INBOUND_EVENTS: dict[str, str] = {
    EVENT_DEVICE_ANNOUNCE: EVENT_DEVICE_ANNOUNCE,
    "esp32Connect": EVENT_DEVICE_ANNOUNCE,
    EVENT_TELEMETRY: EVENT_TELEMETRY,
    "telemetryData": EVENT_TELEMETRY,
    EVENT_COMMAND: EVENT_COMMAND,
    "relayCommand": EVENT_COMMAND,
    EVENT_EMERGENCY: EVENT_EMERGENCY,
    "emergencyCommand": EVENT_EMERGENCY,
}


class SocketConnection:
    """One WebSocket peer: an observer with its own outbound queue."""

    def __init__(self, ws: web.WebSocketResponse, *, remote: str | None = None) -> None:
        self.ws = ws
        self.channel_id = uuid.uuid4().hex
        self.remote = remote
        self.device_ids: set[str] = set()
        self.dropped = 0
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=_QUEUE_SIZE)
        self._writer: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"SocketConnection({self.channel_id[:8]}, remote={self.remote})"

    def start(self) -> None:
        self._writer = asyncio.get_running_loop().create_task(self._write_loop(), name=f"uavlink-ws-{self.channel_id[:8]}")

    def notify(self, event: HubEvent, payload: dict[str, Any]) -> None:
        self.send(event.value, payload)

    def send(self, event: str, data: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            self.dropped += 1
            _logger.warning("Socket %s queue full, dropping %s", self.channel_id[:8], event)

    async def _write_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            if frame is None or self.ws.closed:
                return
            try:
                await self.ws.send_json(frame)
            except (ConnectionError, RuntimeError) as exc:
                _logger.debug("Socket %s write failed: %s", self.channel_id[:8], exc)
                return

    async def flush(self, timeout: float = 1.0) -> None:
        """Let the writer drain what is already queued, then exit."""
        writer = self._writer
        if writer is None or writer.done():
            return
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(None)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(asyncio.shield(writer), timeout)

    async def close(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is not None and not writer.done():
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer


class SocketTransport:
    """WebSocket endpoint and the broadcast command sink.

    Parameters
    ----------
    pipeline : IngestionPipeline
        Shared ingestion entry point.
    hub : BroadcastHub
        Connections subscribe here; commands are broadcast through it.
    on_devices_gone : callable, optional
        Called after a close leaves no registered device at all.
    """

    name = "socket"

    def __init__(
        self,
        pipeline: IngestionPipeline,
        hub: BroadcastHub,
        *,
        on_devices_gone: Callable[[], None] | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._store = pipeline.store
        self._hub = hub
        self._on_devices_gone = on_devices_gone
        self._dispatcher: CommandDispatcher | None = None
        self._connections: dict[str, SocketConnection] = {}
        self.frames_received = 0

    def bind_dispatcher(self, dispatcher: CommandDispatcher) -> None:
        """Attach the dispatcher used for operator commands sent over the socket."""
        self._dispatcher = dispatcher

    def register(self, app: web.Application) -> None:
        app.router.add_get(SOCKET_PATH, self.handle)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        connection = SocketConnection(ws, remote=request.remote)
        self._connections[connection.channel_id] = connection
        connection.start()
        self._store.observer_connected()
        self._hub.subscribe(connection)
        _logger.info("Socket client connected: %s", connection)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.handle_frame(connection, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    _logger.warning("Socket %s error: %s", connection, ws.exception())
        finally:
            self._hub.unsubscribe(connection)
            self._store.observer_disconnected()
            self._connections.pop(connection.channel_id, None)
            await connection.close()
            self._channel_closed(connection)
            _logger.info("Socket client disconnected: %s", connection)
        return ws

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_frame(self, connection: SocketConnection, text: str) -> None:
        self.frames_received += 1
        try:
            frame = json.loads(text)
        except ValueError:
            connection.send(EVENT_ERROR, {"reason": "invalid JSON frame"})
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            connection.send(EVENT_ERROR, {"reason": "frame must be an object with an 'event' name"})
            return

        event = INBOUND_EVENTS.get(frame["event"])
        data = frame.get("data")
        if data is None:
            data = {}
        if event is None or not isinstance(data, dict):
            connection.send(EVENT_ERROR, {"reason": f"unsupported event {frame['event']!r}"})
            return

        if event == EVENT_DEVICE_ANNOUNCE:
            self._announce(connection, data)
        elif event == EVENT_TELEMETRY:
            self._telemetry(connection, data)
        elif event == EVENT_COMMAND:
            self._command(connection, data)
        else:
            self._command(connection, {"command": CommandKind.EMERGENCY.value, **data})

    def _announce(self, connection: SocketConnection, data: dict[str, Any]) -> None:
        device_id = resolve_device_id(data)
        info = prune_fragment({key: value for key, value in data.items() if key not in ("deviceId", "device_id")})
        self._store.register_device(device_id, TransportKind.SOCKET, channel_id=connection.channel_id, info=info)
        connection.device_ids.add(device_id)
        self._hub.publish(
            HubEvent.DEVICE_STATUS,
            {"status": "registered", "deviceId": device_id, "connectionType": TransportKind.SOCKET.value},
        )

    def _telemetry(self, connection: SocketConnection, data: dict[str, Any]) -> None:
        try:
            result = self._pipeline.ingest(data, transport=TransportKind.SOCKET)
        except TelemetryValidationError as exc:
            _logger.warning("Rejected socket telemetry from %s: %s", connection, exc)
            return
        except CircuitOpenError:
            _logger.warning("Socket telemetry from %s dropped, ingestion circuit open", connection)
            return
        if not result.accepted:
            return
        # The monitor may have expired the registration since the announce,
        # so the channel is attached on every accepted packet.
        device_id = resolve_device_id(data)
        self._store.register_device(device_id, TransportKind.SOCKET, channel_id=connection.channel_id)
        connection.device_ids.add(device_id)

    def _command(self, connection: SocketConnection, data: dict[str, Any]) -> None:
        if self._dispatcher is None:
            connection.send(EVENT_ERROR, {"reason": "commands are not accepted on this server"})
            return
        try:
            ack = self._dispatcher.dispatch(data, source="socket")
        except CommandValidationError as exc:
            _logger.warning("Rejected socket command %s: %s", redact_for_log(data), exc)
            connection.send(EVENT_ERROR, {"reason": str(exc)})
            return
        connection.send(EVENT_COMMAND_ACK, ack.to_wire())

    def _channel_closed(self, connection: SocketConnection) -> None:
        dropped = self._store.drop_channel(connection.channel_id)
        if not dropped or self._store.live_device_count() > 0:
            return
        if self._store.mark_disconnected():
            self._hub.publish(
                HubEvent.DEVICE_STATUS,
                {
                    "status": ConnectionStatus.DISCONNECTED.value,
                    "connectionType": TransportKind.NONE.value,
                    "deviceIds": sorted(device.device_id for device in dropped),
                },
            )
        if self._on_devices_gone is not None:
            self._on_devices_gone()

    # ------------------------------------------------------------------
    # CommandSink
    # ------------------------------------------------------------------

    def can_deliver(self, command: Command) -> bool:
        return True

    def send_command(self, command: Command) -> None:
        payload = command.to_wire()
        self._hub.publish(HubEvent.COMMAND, payload)
        if command.urgent:
            self._hub.publish(HubEvent.EMERGENCY_STOP, payload)

    async def close_all(self) -> None:
        """Close every connection with GOING_AWAY (server shutdown)."""
        for connection in list(self._connections.values()):
            await connection.flush()
            await connection.ws.close(code=WSCloseCode.GOING_AWAY, message=b"server shutdown")
