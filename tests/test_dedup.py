from __future__ import annotations

from conftest import FakeClock

from uavlink.ingestion.dedup import Deduplicator


def test_repeat_within_window_is_duplicate(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)

    assert dedup.is_duplicate("d1", 1) is False
    clock.advance(4.9)
    assert dedup.is_duplicate("d1", 1) is True


def test_repeat_after_window_is_accepted_again(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)

    assert dedup.is_duplicate("d1", 1) is False
    clock.advance(5.1)
    assert dedup.is_duplicate("d1", 1) is False
    assert dedup.is_duplicate("d1", 1) is True


def test_keys_are_per_device(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)

    assert dedup.is_duplicate("d1", 1) is False
    assert dedup.is_duplicate("d2", 1) is False
    assert dedup.is_duplicate("d1", 2) is False


def test_missing_packet_number_is_never_duplicate(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)

    assert dedup.is_duplicate("d1", None) is False
    assert dedup.is_duplicate("d1", None) is False
    assert dedup.stats()["cache_size"] == 0


def test_device_timestamp_does_not_affect_window(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)

    assert dedup.is_duplicate("d1", 1, timestamp=1) is False
    assert dedup.is_duplicate("d1", 1, timestamp=999_999_999_999) is True


def test_sweep_evicts_expired_entries(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)
    for packet in range(3):
        dedup.is_duplicate("d1", packet)
    clock.advance(6)
    dedup.is_duplicate("d1", 100)

    assert dedup.sweep() == 3
    assert dedup.stats() == {"cache_size": 1, "window": 5.0}


def test_seen_does_not_record(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)

    assert dedup.seen("d1", 1) is False
    assert dedup.seen("d1", 1) is False
    assert dedup.stats()["cache_size"] == 0


def test_remember_then_seen_within_window(clock: FakeClock) -> None:
    dedup = Deduplicator(5.0, clock=clock)
    dedup.remember("d1", 1)
    dedup.remember("d1", None)

    clock.advance(4.9)
    assert dedup.seen("d1", 1) is True
    clock.advance(0.2)
    assert dedup.seen("d1", 1) is False
    assert dedup.stats()["cache_size"] == 1
