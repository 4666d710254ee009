"""Shared fixtures: the whole pipeline wired over the in-memory adapters."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from dish_ratings.services.aggregation import AggregationConsumer
from dish_ratings.services.leaderboard import LeaderboardReader
from dish_ratings.services.review_writer import ReviewWriter
from dish_ratings.storage.memory import InMemoryEventBus, InMemoryReviewStore, InMemoryStatCache

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

# restaurant 1: Margherita (10), Carbonara (11), Tiramisu (12)
# restaurant 2: Pad Thai (20), Green Curry (21)
CHECK_R1_A = 100  # dishes 10, 11
CHECK_R1_B = 101  # dishes 10, 12
CHECK_R2 = 200    # dishes 20, 21


class FakeTimer:
    """Monotonic clock for TTLCache that only moves when told to."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> InMemoryReviewStore:
    s = InMemoryReviewStore(clock=lambda: NOW)
    s.add_dish(10, 1, "Margherita")
    s.add_dish(11, 1, "Carbonara")
    s.add_dish(12, 1, "Tiramisu")
    s.add_dish(20, 2, "Pad Thai")
    s.add_dish(21, 2, "Green Curry")
    s.add_order(CHECK_R1_A, 1, [10, 11])
    s.add_order(CHECK_R1_B, 1, [10, 12])
    s.add_order(CHECK_R2, 2, [20, 21])
    return s


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def cache(timer: FakeTimer) -> InMemoryStatCache:
    return InMemoryStatCache(timer=timer)


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def writer(store, cache, bus) -> ReviewWriter:
    return ReviewWriter(store, cache, bus)


@pytest.fixture
def consumer(store, cache, bus) -> AggregationConsumer:
    return AggregationConsumer(store, cache, bus, block_ms=10, clock=lambda: NOW)


@pytest.fixture
def reader(store, cache) -> LeaderboardReader:
    return LeaderboardReader(store, cache, clock=lambda: NOW)


@pytest.fixture
def drain(consumer: AggregationConsumer, bus: InMemoryEventBus):
    """Coroutine function delivering everything queued on the bus to the consumer."""

    async def _drain() -> int:
        handled = 0
        while bus.backlog:
            for delivery in await bus.read(count=10, block_ms=0):
                await consumer.handle_delivery(delivery)
                handled += 1
        return handled

    return _drain
