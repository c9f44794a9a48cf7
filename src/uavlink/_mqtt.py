"""Internal MQTT runtime: a reconnecting paho-mqtt client driven from asyncio.

paho's network loop runs on its own thread; every callback is marshalled
onto the asyncio loop with ``call_soon_threadsafe``. Reconnection is not
left to paho: an asyncio supervisor walks an explicit state machine::

    DISCONNECTED -> CONNECTING -> CONNECTED -> BACKOFF -> CONNECTING ...
                                     any state -> STOPPED (on stop())

Every successful (re)connect subscribes the full topic list again.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import secrets
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, cast

import paho.mqtt.client as mqtt

from uavlink.config import BrokerEndpoint, BrokerSettings
from uavlink.exceptions import BrokerNotConnectedError, HubTransportError

_logger = logging.getLogger(__name__)

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"


class BrokerLinkState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"
    STOPPED = "stopped"


@dataclass(frozen=True)
class BrokerMessage:
    """One inbound PUBLISH, decoded to text."""

    topic: str
    payload: str
    retain: bool = False


ClientFactory = Callable[[str, BrokerEndpoint], Any]


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Capped exponential backoff: ``min(cap, base * 2**attempt)``."""
    return min(cap, base * (2 ** max(0, attempt)))


def _default_client_factory(client_id: str, endpoint: BrokerEndpoint) -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        transport=endpoint.transport,
        reconnect_on_failure=False,
    )
    if endpoint.transport == "websockets":
        client.ws_set_options(path=endpoint.path)
    if endpoint.tls:
        client.tls_set()
    return client


class BrokerRuntime:
    """Reconnecting MQTT client.

    Parameters
    ----------
    settings : BrokerSettings
        Broker URL, keepalive, timeouts, backoff and topics.
    on_message : callable
        Invoked on the event loop for every inbound message.
    on_state_change : callable, optional
        Invoked on the event loop for every link state transition.
    client_factory : callable, optional
        ``(client_id, endpoint) -> client``; defaults to a paho ``Client``.
    sleep : callable, optional
        Backoff sleep; injectable for tests.
    """

    def __init__(
        self,
        settings: BrokerSettings,
        *,
        on_message: Callable[[BrokerMessage], None],
        on_state_change: Callable[[BrokerLinkState], None] | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._endpoint = settings.endpoint()
        self._topics: Sequence[str] = settings.topics.subscriptions()
        self._on_message = on_message
        self._on_state_change = on_state_change
        self._client_factory = client_factory or _default_client_factory
        self._sleep = sleep

        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: Any = None
        self._state = BrokerLinkState.DISCONNECTED
        self._supervisor: asyncio.Task[None] | None = None
        self._stopping = False
        self._ever_connected = False
        self._connect_result: asyncio.Future[bool] | None = None
        self._link_down = asyncio.Event()

        self.connect_attempts = 0
        self.reconnects = 0
        self.messages_received = 0
        self.messages_published = 0
        self.last_error: str | None = None

    @property
    def state(self) -> BrokerLinkState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == BrokerLinkState.CONNECTED

    def _set_state(self, state: BrokerLinkState) -> None:
        if state == self._state:
            return
        _logger.debug("Broker link %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                _logger.warning("Broker state listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the supervisor task. Must be called from the event loop."""
        if self._supervisor is not None and not self._supervisor.done():
            return
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        self._supervisor = self._loop.create_task(self._supervise(), name="uavlink-broker")

    async def stop(self) -> None:
        """Cancel any pending backoff, disconnect and stop the network loop."""
        self._stopping = True
        supervisor = self._supervisor
        self._supervisor = None
        if supervisor is not None and not supervisor.done():
            supervisor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await supervisor
        await self._teardown(graceful=True)
        self._set_state(BrokerLinkState.STOPPED)

    async def _supervise(self) -> None:
        attempt = 0
        while not self._stopping:
            self._set_state(BrokerLinkState.CONNECTING)
            if await self._connect_once():
                if self._ever_connected:
                    self.reconnects += 1
                self._ever_connected = True
                attempt = 0
                self._set_state(BrokerLinkState.CONNECTED)
                await self._link_down.wait()
                _logger.warning("Broker link lost: %s", self.last_error or "disconnected")
                await self._teardown(graceful=False)
                if self._stopping:
                    break
            delay = backoff_delay(attempt, self._settings.backoff_base, self._settings.backoff_cap)
            attempt += 1
            self._set_state(BrokerLinkState.BACKOFF)
            _logger.info("Broker reconnect in %.1fs (attempt %d)", delay, attempt)
            await self._sleep(delay)

    async def _connect_once(self) -> bool:
        loop = asyncio.get_running_loop()
        self.connect_attempts += 1
        self._link_down = asyncio.Event()
        self._connect_result = loop.create_future()

        client_id = f"{self._settings.client_id}-{secrets.token_hex(4)}"
        client = self._client_factory(client_id, self._endpoint)
        client.will_set(self._settings.topics.status, STATUS_OFFLINE, qos=1, retain=True)
        client.on_connect = self._handle_connect
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message
        self._client = client

        endpoint = self._endpoint
        _logger.info(
            "Connecting to broker %s:%s transport=%s tls=%s client_id=%s",
            endpoint.host,
            endpoint.port,
            endpoint.transport,
            endpoint.tls,
            client_id,
        )
        try:
            await loop.run_in_executor(
                None,
                functools.partial(client.connect, endpoint.host, endpoint.port, keepalive=self._settings.keepalive),
            )
            client.loop_start()
            ok = await asyncio.wait_for(asyncio.shield(self._connect_result), timeout=self._settings.connect_timeout)
        except (OSError, TimeoutError) as exc:
            self.last_error = str(exc) or type(exc).__name__
            _logger.warning("Broker connect failed: %s", self.last_error)
            ok = False
        if not ok:
            await self._teardown(graceful=False)
        return ok

    async def _teardown(self, *, graceful: bool) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        loop = asyncio.get_running_loop()
        try:
            if graceful and self._state == BrokerLinkState.CONNECTED:
                client.publish(self._settings.topics.status, STATUS_OFFLINE, qos=1, retain=True)
                client.disconnect()
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            _logger.debug("Broker network loop stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _handle_connect(
        self,
        client: Any,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            _logger.warning("Broker refused connection: %s", reason_code)
            self._marshal(self._resolve_connect, False, str(reason_code))
            return
        _logger.info("Broker connected, subscribing %d topics", len(self._topics))
        client.subscribe([(topic, 1) for topic in self._topics])
        client.publish(self._settings.topics.status, STATUS_ONLINE, qos=1, retain=True)
        self._marshal(self._resolve_connect, True, None)

    def _handle_disconnect(
        self,
        _client: Any,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        self._marshal(self._on_link_lost, str(reason_code))

    def _handle_message(self, _client: Any, _userdata: Any, msg: Any) -> None:
        payload = msg.payload
        text = payload.decode("utf-8", errors="replace") if isinstance(payload, (bytes, bytearray)) else str(payload)
        message = BrokerMessage(topic=msg.topic, payload=text, retain=bool(getattr(msg, "retain", False)))
        self._marshal(self._dispatch, message)

    def _marshal(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    # ------------------------------------------------------------------
    # Event-loop side
    # ------------------------------------------------------------------

    def _resolve_connect(self, ok: bool, error: str | None) -> None:
        if error:
            self.last_error = error
        future = self._connect_result
        if future is not None and not future.done():
            future.set_result(ok)

    def _on_link_lost(self, reason: str) -> None:
        self.last_error = reason
        self._resolve_connect(False, None)
        self._link_down.set()

    def _dispatch(self, message: BrokerMessage) -> None:
        self.messages_received += 1
        try:
            self._on_message(message)
        except Exception:
            _logger.exception("Broker message handler failed topic=%s", message.topic)

    def publish(self, topic: str, payload: str, *, qos: int = 1, retain: bool = True) -> None:
        """Publish one message.

        Raises
        ------
        BrokerNotConnectedError
            If the link is not currently established.
        HubTransportError
            If paho rejects the publish.
        """
        client = self._client
        if client is None or self._state != BrokerLinkState.CONNECTED:
            raise BrokerNotConnectedError("Broker not connected", transport="broker")
        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise HubTransportError(f"Broker publish failed rc={info.rc}", transport="broker")
        self.messages_published += 1
        _logger.debug("Published %s=%s qos=%d retain=%s", topic, payload, qos, retain)

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "broker": f"{self._endpoint.host}:{self._endpoint.port}",
            "connect_attempts": self.connect_attempts,
            "reconnects": self.reconnects,
            "messages_received": self.messages_received,
            "messages_published": self.messages_published,
            "last_error": self.last_error,
        }
