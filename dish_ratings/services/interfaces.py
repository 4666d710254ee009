"""
Capability interfaces the pipeline components depend on.

Each component receives implementations through its constructor; the
PostgreSQL/Redis adapters live in dish_ratings.storage, as do in-memory
implementations used by the tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from dish_ratings.schemas.analytics import CachedDishStat, DishRanking
from dish_ratings.schemas.events import AggregationEvent
from dish_ratings.schemas.review import ReviewRead


@dataclass
class UpsertResult:
    """Outcome of ReviewStore.upsert_review()."""

    review: ReviewRead
    created: bool  # False when an existing row for the natural key was updated


@dataclass
class DishAggregate:
    """Recomputed avg_rating/review_count as stored on the dish row."""

    dish_id: int
    restaurant_id: int
    avg_rating: float
    review_count: int


@dataclass
class DishMeta:
    """Display metadata resolved from the Primary Store for a ranked dish."""

    dish_id: int
    name: str
    restaurant_id: int
    review_count: int = 0


@dataclass
class Delivery:
    """One message handed out by an EventSource, acknowledged after processing."""

    message_id: str
    payload: bytes | str
    key: Optional[str] = None


class ReviewStore(Protocol):
    """The Primary Store as seen by the pipeline. Raises TransientStoreError."""

    async def dish_in_order(self, dish_id: int, order_id: int, restaurant_id: int) -> bool: ...

    async def upsert_review(
        self,
        dish_id: int,
        order_id: int,
        restaurant_id: int,
        rating: int,
        comment: str,
    ) -> UpsertResult: ...

    async def list_dish_reviews(self, dish_id: int, restaurant_id: int) -> list[ReviewRead]: ...

    async def refresh_dish_aggregate(
        self, dish_id: int, restaurant_id: int
    ) -> Optional[DishAggregate]: ...

    async def dish_meta(self, dish_id: int) -> Optional[DishMeta]: ...

    async def top_today_from_orders(self, day: date, limit: int) -> list[DishRanking]: ...

    async def top_rated_dishes(self, limit: int) -> list[DishRanking]: ...

    async def rating_distribution(self, restaurant_id: Optional[int]) -> dict[int, int]: ...


class StatCache(Protocol):
    """The Cache Mirror. Raises TransientStoreError."""

    async def marker_exists(self, dish_id: int, order_id: int) -> bool: ...

    async def set_marker(self, dish_id: int, order_id: int) -> None: ...

    async def claim_marker(self, dish_id: int, order_id: int) -> bool:
        """Set the marker only if absent. True when this caller set it."""
        ...

    async def clear_marker(self, dish_id: int, order_id: int) -> None: ...

    async def put_dish_stat(self, restaurant_id: int, stat: CachedDishStat) -> None: ...

    async def get_dish_stat(self, restaurant_id: int, dish_id: int) -> Optional[CachedDishStat]: ...

    async def incr_daily_popularity(
        self, day: date, restaurant_id: int, dish_id: int, amount: float = 1.0
    ) -> float: ...

    async def set_alltime_score(self, restaurant_id: int, dish_id: int, score: float) -> None: ...

    async def daily_shard_keys(self, day: date) -> list[str]: ...

    async def alltime_shard_keys(self) -> list[str]: ...

    async def top_of_shard(self, key: str, count: int) -> list[tuple[int, float]]: ...


class EventPublisher(Protocol):
    """Raises EventPublishError."""

    async def publish(self, event: AggregationEvent) -> None: ...


class EventSource(Protocol):
    async def read(self, count: int, block_ms: int) -> list[Delivery]: ...

    async def ack(self, delivery: Delivery) -> None: ...
