"""Server configuration for uavlink."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from uavlink._constants import (
    DEFAULT_BROKER_DEVICE_ID,
    TOPIC_COMMAND,
    TOPIC_CURRENT,
    TOPIC_EMERGENCY,
    TOPIC_POSITION,
    TOPIC_POWER,
    TOPIC_RELAY,
    TOPIC_SPEED,
    TOPIC_STATUS,
    TOPIC_VOLTAGE,
)
from uavlink.exceptions import HubConfigError

_DEFAULT_PORTS: dict[str, int] = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class BrokerEndpoint:
    """Connection target derived from a broker URL."""

    host: str
    port: int
    transport: str
    path: str
    tls: bool


def parse_broker_url(raw_broker: str) -> BrokerEndpoint:
    """Split ``scheme://host:port/path`` into a :class:`BrokerEndpoint`.

    Bare ``host`` or ``host:port`` values are treated as plain TCP.
    """
    value = raw_broker.strip()
    if not value:
        raise HubConfigError("Broker value is empty")

    scheme = "mqtt"
    if "://" in value:
        scheme, value = value.split("://", 1)
        scheme = scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise HubConfigError(f"Unsupported broker scheme: {scheme}")

    path = ""
    if "/" in value:
        value, path = value.split("/", 1)
        path = f"/{path}"

    host, sep, maybe_port = value.rpartition(":")
    if sep and maybe_port.isdigit():
        port = int(maybe_port)
    else:
        host = value
        port = _DEFAULT_PORTS[scheme]
    if not host:
        raise HubConfigError(f"Broker host missing in {raw_broker!r}")

    websockets = scheme in {"ws", "wss"}
    return BrokerEndpoint(
        host=host,
        port=port,
        transport="websockets" if websockets else "tcp",
        path=(path or "/mqtt") if websockets else "",
        tls=scheme in {"wss", "mqtts", "ssl"},
    )


@dataclasses.dataclass(frozen=True)
class TopicMap:
    """Broker topic names, one per physical quantity."""

    position: str = TOPIC_POSITION
    speed: str = TOPIC_SPEED
    voltage: str = TOPIC_VOLTAGE
    current: str = TOPIC_CURRENT
    power: str = TOPIC_POWER
    relay: str = TOPIC_RELAY
    emergency: str = TOPIC_EMERGENCY
    command: str = TOPIC_COMMAND
    status: str = TOPIC_STATUS

    def subscriptions(self) -> tuple[str, ...]:
        """Topics the broker adapter subscribes to, in a stable order."""
        return (
            self.position,
            self.speed,
            self.voltage,
            self.current,
            self.power,
            self.relay,
            self.emergency,
        )


@dataclasses.dataclass(frozen=True)
class BrokerSettings:
    """Publish/subscribe transport settings.

    Parameters
    ----------
    enabled : bool
        Start the broker adapter at all.
    url : str
        Broker URL, e.g. ``wss://broker.hivemq.com:8884/mqtt``.
    client_id : str
        Client id prefix; a random suffix is appended per connection.
    keepalive : int
        MQTT keepalive in seconds.
    connect_timeout : float
        Seconds to wait for CONNACK before counting the attempt as failed.
    backoff_base : float
        First reconnect delay in seconds; doubled per consecutive failure.
    backoff_cap : float
        Upper bound for the reconnect delay.
    device_id : str
        Device identity attributed to broker telemetry.
    topics : TopicMap
        Topic names.
    """

    enabled: bool = True
    url: str = "wss://broker.hivemq.com:8884/mqtt"
    client_id: str = "WEBSITETD-server"
    keepalive: int = 60
    connect_timeout: float = 30.0
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    device_id: str = DEFAULT_BROKER_DEVICE_ID
    topics: TopicMap = dataclasses.field(default_factory=TopicMap)

    def endpoint(self) -> BrokerEndpoint:
        return parse_broker_url(self.url)


@dataclasses.dataclass(frozen=True)
class SimulationSettings:
    """Synthetic-telemetry fallback settings."""

    enabled: bool = True
    interval: float = 2.0
    grace: float = 3.0
    base_latitude: float = -5.358400
    base_longitude: float = 105.311700
    movement_range: float = 0.001


@dataclasses.dataclass(frozen=True)
class HubConfig:
    """Server configuration.

    All values are read once at startup; nothing here is reloaded.

    Parameters
    ----------
    host : str
        Interface the HTTP/WebSocket server binds to.
    port : int
        TCP port for the HTTP/WebSocket server.
    log_level : str
        Root log level used by ``python -m uavlink``.
    dedup_window : float
        Seconds during which a repeated ``(device, packet)`` pair is suppressed.
    connection_timeout : float
        Seconds without real telemetry before the link is considered timed out.
    monitor_interval : float
        Connection monitor tick in seconds.
    history_size : int
        Capacity of the in-memory history ring buffer.
    max_payload_size : int
        Maximum accepted HTTP request body in bytes.
    breaker_failure_threshold : int
        Consecutive ingestion failures that open the ingestion breaker.
    breaker_reset_timeout : float
        Seconds an OPEN breaker waits before admitting a half-open trial.
    breaker_half_open_successes : int
        Consecutive half-open successes required to close the breaker.
    broker : BrokerSettings
        Publish/subscribe transport settings.
    simulation : SimulationSettings
        Synthetic-telemetry fallback settings.
    """

    host: str = "0.0.0.0"
    port: int = 3003
    log_level: str = "INFO"
    dedup_window: float = 5.0
    connection_timeout: float = 15.0
    monitor_interval: float = 5.0
    history_size: int = 1000
    max_payload_size: int = 1024
    breaker_failure_threshold: int = 5
    breaker_reset_timeout: float = 10.0
    breaker_half_open_successes: int = 3
    broker: BrokerSettings = dataclasses.field(default_factory=BrokerSettings)
    simulation: SimulationSettings = dataclasses.field(default_factory=SimulationSettings)

    @classmethod
    def from_env(cls, **overrides: Any) -> HubConfig:
        """Create configuration from ``UAV_*`` environment variables.

        Explicit keyword arguments override environment values. ``broker``
        and ``simulation`` overrides may be given as dicts of field values
        or as fully built settings objects.
        """
        env = os.environ

        try:
            broker = cls._broker_from_env(env, overrides.pop("broker", None))
            simulation = cls._simulation_from_env(env, overrides.pop("simulation", None))

            config_kwargs: dict[str, Any] = {"broker": broker, "simulation": simulation}
            _ENV_CONFIG_MAP: dict[str, tuple[str, type]] = {
                "UAV_HOST": ("host", str),
                "UAV_PORT": ("port", int),
                "UAV_LOG_LEVEL": ("log_level", str),
                "UAV_DEDUP_WINDOW": ("dedup_window", float),
                "UAV_CONNECTION_TIMEOUT": ("connection_timeout", float),
                "UAV_MONITOR_INTERVAL": ("monitor_interval", float),
                "UAV_HISTORY_SIZE": ("history_size", int),
                "UAV_MAX_PAYLOAD_SIZE": ("max_payload_size", int),
                "UAV_BREAKER_FAILURE_THRESHOLD": ("breaker_failure_threshold", int),
                "UAV_BREAKER_RESET_TIMEOUT": ("breaker_reset_timeout", float),
                "UAV_BREAKER_HALF_OPEN_SUCCESSES": ("breaker_half_open_successes", int),
            }
            for env_key, (field_name, cast) in _ENV_CONFIG_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = cast(val)
        except ValueError as exc:
            raise HubConfigError(f"Invalid environment configuration: {exc}") from exc

        config_kwargs.update(overrides)
        config = cls(**config_kwargs)
        config.validate()
        return config

    @staticmethod
    def _broker_from_env(env: Any, override: Any) -> BrokerSettings:
        if isinstance(override, BrokerSettings):
            return override

        broker_kwargs: dict[str, Any] = {"enabled": _env_bool(env.get("UAV_MQTT_ENABLED"), True)}
        _ENV_BROKER_MAP: dict[str, tuple[str, type]] = {
            "UAV_MQTT_BROKER": ("url", str),
            "UAV_MQTT_CLIENT_ID": ("client_id", str),
            "UAV_MQTT_KEEPALIVE": ("keepalive", int),
            "UAV_MQTT_CONNECT_TIMEOUT": ("connect_timeout", float),
            "UAV_MQTT_BACKOFF_BASE": ("backoff_base", float),
            "UAV_MQTT_BACKOFF_CAP": ("backoff_cap", float),
            "UAV_MQTT_DEVICE_ID": ("device_id", str),
        }
        for env_key, (field_name, cast) in _ENV_BROKER_MAP.items():
            val = env.get(env_key)
            if val is not None:
                broker_kwargs[field_name] = cast(val)
        if isinstance(override, dict):
            broker_kwargs.update(override)
        return BrokerSettings(**broker_kwargs)

    @staticmethod
    def _simulation_from_env(env: Any, override: Any) -> SimulationSettings:
        if isinstance(override, SimulationSettings):
            return override

        sim_kwargs: dict[str, Any] = {"enabled": _env_bool(env.get("UAV_FALLBACK_ENABLED"), True)}
        _ENV_SIM_MAP: dict[str, str] = {
            "UAV_FALLBACK_INTERVAL": "interval",
            "UAV_FALLBACK_GRACE": "grace",
            "UAV_GPS_BASE_LAT": "base_latitude",
            "UAV_GPS_BASE_LNG": "base_longitude",
            "UAV_GPS_MOVEMENT_RANGE": "movement_range",
        }
        for env_key, field_name in _ENV_SIM_MAP.items():
            val = env.get(env_key)
            if val is not None:
                sim_kwargs[field_name] = float(val)
        if isinstance(override, dict):
            sim_kwargs.update(override)
        return SimulationSettings(**sim_kwargs)

    def validate(self) -> None:
        """Reject values that would make the timers or breakers meaningless."""
        positive = {
            "dedup_window": self.dedup_window,
            "connection_timeout": self.connection_timeout,
            "monitor_interval": self.monitor_interval,
            "breaker_reset_timeout": self.breaker_reset_timeout,
            "simulation.interval": self.simulation.interval,
            "broker.backoff_base": self.broker.backoff_base,
        }
        for name, value in positive.items():
            if value <= 0:
                raise HubConfigError(f"{name} must be positive, got {value}")
        for name, count in {
            "history_size": self.history_size,
            "max_payload_size": self.max_payload_size,
            "breaker_failure_threshold": self.breaker_failure_threshold,
            "breaker_half_open_successes": self.breaker_half_open_successes,
        }.items():
            if count < 1:
                raise HubConfigError(f"{name} must be at least 1, got {count}")
        if self.broker.backoff_cap < self.broker.backoff_base:
            raise HubConfigError("broker.backoff_cap must not be smaller than broker.backoff_base")
        if self.simulation.grace < 0:
            raise HubConfigError("simulation.grace must not be negative")
