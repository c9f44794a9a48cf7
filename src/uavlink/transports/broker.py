"""Publish/subscribe transport adapter.

The device firmware publishes one quantity per topic. Each message is
decoded to a one-field fragment, merged into a locally held last-known
record, and the merged record is submitted with the relaxed profile, so a
current reading never erases the voltage that arrived half a second ago.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from uavlink._constants import RELAY_OFF_TOKENS, RELAY_ON_TOKENS
from uavlink._mqtt import BrokerLinkState, BrokerMessage, BrokerRuntime, ClientFactory
from uavlink.broadcast import BroadcastHub, HubEvent
from uavlink.config import BrokerSettings, TopicMap
from uavlink.exceptions import CircuitOpenError, TelemetryValidationError
from uavlink.ingestion.normalize import safe_float
from uavlink.ingestion.pipeline import IngestionPipeline
from uavlink.ingestion.validate import ValidationProfile, validate_fragment
from uavlink.models.command import Command
from uavlink.models.telemetry import TransportKind

_logger = logging.getLogger(__name__)


class _PositionPayload(BaseModel):
    """``{"lat": ..., "lng": ...}`` as published on the position topic."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    lat: float = Field(...)
    lng: float = Field(...)


def _decode_relay(text: str) -> bool | None:
    token = text.strip().upper()
    if token in RELAY_ON_TOKENS:
        return True
    if token in RELAY_OFF_TOKENS:
        return False
    return None


def _decode_position(text: str) -> dict[str, Any] | None:
    try:
        position = _PositionPayload.model_validate(json.loads(text))
    except (ValueError, ValidationError):
        return None
    return {"latitude": position.lat, "longitude": position.lng}


def decode_topic_message(topic: str, payload: str, topics: TopicMap | None = None) -> dict[str, Any] | None:
    """Translate one broker message into a raw telemetry fragment.

    Returns ``None`` for unknown topics and undecodable payloads.
    """
    topics = topics or TopicMap()
    text = payload.strip()

    if topic == topics.position:
        return _decode_position(text)
    if topic == topics.relay:
        relay = _decode_relay(text)
        return None if relay is None else {"relay_on": relay}
    if topic == topics.emergency:
        return {"emergency_state": text} if text else None

    numeric_topics = {
        topics.voltage: "voltage",
        topics.current: "current",
        topics.power: "power",
        topics.speed: "speed",
    }
    field = numeric_topics.get(topic)
    if field is None:
        return None
    value = safe_float(text)
    return None if value is None else {field: value}


class BrokerTransport:
    """Broker ingestion plus the emergency command sink."""

    name = "broker"

    def __init__(
        self,
        pipeline: IngestionPipeline,
        hub: BroadcastHub,
        settings: BrokerSettings,
        *,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pipeline = pipeline
        self._hub = hub
        self._settings = settings
        self._last_known: dict[str, Any] = {}
        self._pending_echoes: deque[str] = deque(maxlen=8)
        self.runtime = BrokerRuntime(
            settings,
            on_message=self.handle_message,
            on_state_change=self._on_link_state,
            client_factory=client_factory,
            sleep=sleep,
        )
        self.messages_ingested = 0
        self.messages_ignored = 0
        self.messages_retained = 0
        self.messages_echoed = 0

    @property
    def last_known(self) -> dict[str, Any]:
        return dict(self._last_known)

    def start(self) -> None:
        self.runtime.start()

    async def stop(self) -> None:
        await self.runtime.stop()

    def handle_message(self, message: BrokerMessage) -> None:
        if self._is_own_echo(message):
            self.messages_echoed += 1
            _logger.debug("Ignoring echo of own publish on %s", message.topic)
            return

        fragment = decode_topic_message(message.topic, message.payload, self._settings.topics)
        if fragment is None:
            self.messages_ignored += 1
            _logger.debug("Ignoring broker message topic=%s payload=%r", message.topic, message.payload)
            return

        accepted = validate_fragment(fragment, ValidationProfile.RELAXED)
        if not accepted:
            self.messages_ignored += 1
            return
        self._last_known.update(accepted)

        # Retained values are replayed on every subscribe and say nothing
        # about whether the device is up; they only seed the last-known record.
        if message.retain:
            self.messages_retained += 1
            _logger.debug("Retained value on %s merged into last-known record", message.topic)
            return

        try:
            self._pipeline.ingest(
                dict(self._last_known),
                transport=TransportKind.BROKER,
                device_id=self._settings.device_id,
            )
        except CircuitOpenError as exc:
            _logger.warning("Broker telemetry dropped, ingestion circuit open (retry in %.1fs)", exc.retry_after)
            return
        except TelemetryValidationError as exc:
            _logger.warning("Broker telemetry rejected: %s", exc)
            return
        self.messages_ingested += 1

    def _is_own_echo(self, message: BrokerMessage) -> bool:
        if message.topic != self._settings.topics.command or not self._pending_echoes:
            return False
        if message.payload.strip().lower() != self._pending_echoes[0]:
            return False
        self._pending_echoes.popleft()
        return True

    def _on_link_state(self, state: BrokerLinkState) -> None:
        if state == BrokerLinkState.CONNECTED:
            _logger.info("Broker link established")
        self._hub.publish(
            HubEvent.BROKER_STATUS,
            {"state": state.value, "connected": state == BrokerLinkState.CONNECTED},
        )

    # ------------------------------------------------------------------
    # CommandSink
    # ------------------------------------------------------------------

    def can_deliver(self, command: Command) -> bool:
        return command.urgent

    def send_command(self, command: Command) -> None:
        payload = "on" if command.engages_emergency else "off"
        self.runtime.publish(self._settings.topics.command, payload, qos=1, retain=True)
        self._pending_echoes.append(payload)
        _logger.warning("Emergency %s published to %s", payload, self._settings.topics.command)

    def stats(self) -> dict[str, Any]:
        return {
            **self.runtime.stats(),
            "device_id": self._settings.device_id,
            "messages_ingested": self.messages_ingested,
            "messages_ignored": self.messages_ignored,
            "messages_retained": self.messages_retained,
            "messages_echoed": self.messages_echoed,
            "last_known": dict(self._last_known),
        }
