from __future__ import annotations

import pytest

from uavlink.config import BrokerSettings, HubConfig, SimulationSettings, parse_broker_url
from uavlink.exceptions import HubConfigError


def test_defaults() -> None:
    config = HubConfig()

    assert config.port == 3003
    assert config.dedup_window == 5.0
    assert config.connection_timeout == 15.0
    assert config.history_size == 1000
    assert config.broker.topics.voltage == "awikwoktegangan"
    assert config.simulation.interval == 2.0


def test_from_env_reads_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UAV_PORT", "8080")
    monkeypatch.setenv("UAV_CONNECTION_TIMEOUT", "20")
    monkeypatch.setenv("UAV_MQTT_ENABLED", "false")
    monkeypatch.setenv("UAV_MQTT_DEVICE_ID", "UAV_7")
    monkeypatch.setenv("UAV_FALLBACK_GRACE", "1.5")

    config = HubConfig.from_env()

    assert config.port == 8080
    assert config.connection_timeout == 20.0
    assert config.broker.enabled is False
    assert config.broker.device_id == "UAV_7"
    assert config.simulation.grace == 1.5


def test_explicit_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UAV_PORT", "8080")
    monkeypatch.setenv("UAV_MQTT_BROKER", "mqtt://env-broker:1883")

    config = HubConfig.from_env(
        port=9000,
        broker={"url": "mqtts://override:8883"},
        simulation=SimulationSettings(enabled=False),
    )

    assert config.port == 9000
    assert config.broker.url == "mqtts://override:8883"
    assert config.simulation.enabled is False


def test_bad_environment_value(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UAV_PORT", "eighty")

    with pytest.raises(HubConfigError):
        HubConfig.from_env()


@pytest.mark.parametrize(
    "overrides",
    [
        {"dedup_window": 0},
        {"history_size": 0},
        {"breaker_failure_threshold": 0},
        {"broker": BrokerSettings(backoff_base=10.0, backoff_cap=5.0)},
        {"simulation": SimulationSettings(grace=-1.0)},
    ],
)
def test_validate_rejects_nonsense(overrides: dict[str, object]) -> None:
    with pytest.raises(HubConfigError):
        HubConfig(**overrides).validate()  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("url", "host", "port", "transport", "path", "tls"),
    [
        ("wss://broker.hivemq.com:8884/mqtt", "broker.hivemq.com", 8884, "websockets", "/mqtt", True),
        ("ws://localhost", "localhost", 80, "websockets", "/mqtt", False),
        ("mqtt://10.0.0.5:1884", "10.0.0.5", 1884, "tcp", "", False),
        ("mqtts://secure.example", "secure.example", 8883, "tcp", "", True),
        ("broker.local", "broker.local", 1883, "tcp", "", False),
    ],
)
def test_parse_broker_url(url: str, host: str, port: int, transport: str, path: str, tls: bool) -> None:
    endpoint = parse_broker_url(url)

    assert (endpoint.host, endpoint.port, endpoint.transport, endpoint.path, endpoint.tls) == (
        host,
        port,
        transport,
        path,
        tls,
    )


@pytest.mark.parametrize("url", ["", "gopher://x", "mqtt://:1883"])
def test_parse_broker_url_rejects(url: str) -> None:
    with pytest.raises(HubConfigError):
        parse_broker_url(url)
