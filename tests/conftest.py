from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from uavlink.breaker import CircuitBreaker
from uavlink.broadcast import BroadcastHub, HubEvent
from uavlink.ingestion.dedup import Deduplicator
from uavlink.ingestion.pipeline import IngestionPipeline
from uavlink.state.store import StateStore


class FakeClock:
    """Manually advanced clock usable as both a wall and a monotonic clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[HubEvent, dict[str, Any]]] = []

    def notify(self, event: HubEvent, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: HubEvent) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class Components:
    def __init__(self, clock: FakeClock, *, history_size: int = 1000) -> None:
        self.clock = clock
        self.store = StateStore(history_size=history_size, clock=clock)
        self.hub = BroadcastHub(self.store.get_snapshot)
        self.dedup = Deduplicator(5.0, clock=clock)
        self.breaker = CircuitBreaker("ingestion", clock=clock)
        self.pipeline = IngestionPipeline(self.store, self.dedup, self.breaker, self.hub)
        self.observer = RecordingObserver()
        self.hub.subscribe(self.observer)


async def wait_until(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def components(clock: FakeClock) -> Components:
    return Components(clock)
