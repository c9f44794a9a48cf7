from __future__ import annotations

import logging

import pytest

from uavlink.exceptions import TelemetryValidationError
from uavlink.ingestion.validate import ROOT_FIELD, ValidationProfile, validate_fragment
from uavlink.models.telemetry import EmergencyState, TransportKind


def test_aliases_are_canonicalised() -> None:
    fragment = validate_fragment(
        {
            "battery_voltage": "14.8",
            "gps_latitude": -5.1,
            "lng": 105.2,
            "signalStrength": -60,
            "relayStatus": True,
            "packetNumber": 7,
        }
    )

    assert fragment == {
        "voltage": 14.8,
        "latitude": -5.1,
        "longitude": 105.2,
        "signal_strength": -60,
        "relay_on": True,
        "packet_number": 7,
    }


def test_unknown_keys_and_sentinels_are_dropped() -> None:
    fragment = validate_fragment({"foo": 1, "voltage": "--", "current": None, "speed": "", "humidity": 40})
    assert fragment == {"humidity": 40}


def test_canonical_spelling_wins_over_alias_in_same_payload() -> None:
    assert validate_fragment({"voltage": 10, "battery_voltage": 12}) == {"voltage": 10}
    assert validate_fragment({"battery_voltage": 12, "voltage": 10}) == {"voltage": 10}


def test_strict_rejects_out_of_range_field_naming_field_and_bound() -> None:
    with pytest.raises(TelemetryValidationError) as excinfo:
        validate_fragment({"voltage": 999, "current": 1.0}, ValidationProfile.STRICT)

    assert excinfo.value.field == "voltage"
    assert excinfo.value.value == 999
    assert "50" in excinfo.value.reason


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("latitude", 91),
        ("longitude", -181),
        ("humidity", 101),
        ("speed", -1),
        ("signalStrength", 5),
        ("satellites", 8.5),
        ("satellites", 51),
        ("packetNumber", -1),
        ("emergency", "maybe"),
    ],
)
def test_strict_rejects_each_bound(field: str, value: object) -> None:
    with pytest.raises(TelemetryValidationError):
        validate_fragment({field: value})


def test_relaxed_drops_only_the_offending_field(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="uavlink.ingestion.validate"):
        fragment = validate_fragment({"voltage": 999, "current": 1.5}, ValidationProfile.RELAXED)

    assert fragment == {"current": 1.5}
    assert "voltage" in caplog.text


def test_non_mapping_payload_is_rejected_in_every_profile() -> None:
    for profile in ValidationProfile:
        with pytest.raises(TelemetryValidationError) as excinfo:
            validate_fragment([1, 2, 3], profile)
        assert excinfo.value.field == ROOT_FIELD


def test_legacy_enum_spellings_are_accepted() -> None:
    fragment = validate_fragment({"emergency": "EMERGENCY_ON", "connectionType": "WebSocket"})

    assert fragment["emergency_state"] == EmergencyState.ON
    assert fragment["connection_type"] == TransportKind.SOCKET
