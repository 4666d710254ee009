"""
In-memory ReviewStore, StatCache and event bus.

Behave like the PostgreSQL/Redis adapters closely enough to run the whole
pipeline in one process: same rounding, same key layout, same TTLs (via
cachetools.TTLCache, with an injectable timer). Each has an ``offline`` switch
that makes every call fail the way the real backend does when unreachable.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from fnmatch import fnmatchcase
from typing import Callable, Optional

from cachetools import TTLCache

from dish_ratings.schemas.analytics import CachedDishStat, DishRanking
from dish_ratings.schemas.events import AggregationEvent
from dish_ratings.schemas.review import ReviewRead
from dish_ratings.services.errors import EventPublishError, TransientStoreError
from dish_ratings.services.interfaces import Delivery, DishAggregate, DishMeta, UpsertResult
from dish_ratings.utils.cache_keys import (
    alltime_key,
    alltime_pattern,
    daily_popularity_key,
    daily_popularity_pattern,
    dish_stat_key,
    review_marker_key,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _round2(values: list[int]) -> float:
    """ROUND(AVG(x), 2) as PostgreSQL computes it on numerics (half away from zero)."""
    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# ── Primary Store ──────────────────────────────────────────────────────────────


@dataclass
class _Dish:
    id: int
    restaurant_id: int
    name: str
    avg_rating: Optional[float] = None
    review_count: int = 0


@dataclass
class _Order:
    id: int
    restaurant_id: int
    created_at: datetime
    dish_ids: list[int] = field(default_factory=list)


class InMemoryReviewStore:
    """
    ReviewStore kept in dicts. Upserts contain no await, so on one event loop
    they are atomic just like the single-statement SQL upsert.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self.dishes: dict[int, _Dish] = {}
        self.orders: dict[int, _Order] = {}
        self.reviews: dict[int, ReviewRead] = {}
        self._by_natural_key: dict[tuple[int, int, int], int] = {}
        self._next_review_id = 1
        self.offline = False

    def _check(self) -> None:
        if self.offline:
            raise TransientStoreError("primary store unreachable")

    # Fixtures for the data this pipeline does not own

    def add_dish(self, dish_id: int, restaurant_id: int, name: str) -> None:
        self.dishes[dish_id] = _Dish(id=dish_id, restaurant_id=restaurant_id, name=name)

    def remove_dish(self, dish_id: int) -> None:
        self.dishes.pop(dish_id, None)

    def add_order(
        self,
        order_id: int,
        restaurant_id: int,
        dish_ids: list[int],
        created_at: Optional[datetime] = None,
    ) -> None:
        self.orders[order_id] = _Order(
            id=order_id,
            restaurant_id=restaurant_id,
            created_at=created_at or self._clock(),
            dish_ids=list(dish_ids),
        )

    # ReviewStore

    async def dish_in_order(self, dish_id: int, order_id: int, restaurant_id: int) -> bool:
        self._check()
        order = self.orders.get(order_id)
        return (
            order is not None
            and order.restaurant_id == restaurant_id
            and dish_id in order.dish_ids
        )

    async def upsert_review(
        self,
        dish_id: int,
        order_id: int,
        restaurant_id: int,
        rating: int,
        comment: str,
    ) -> UpsertResult:
        self._check()
        natural_key = (dish_id, order_id, restaurant_id)
        now = self._clock()

        existing_id = self._by_natural_key.get(natural_key)
        if existing_id is not None:
            review = self.reviews[existing_id].model_copy(
                update={"rating": rating, "comment": comment, "created_at": now}
            )
            self.reviews[existing_id] = review
            return UpsertResult(review=review, created=False)

        review = ReviewRead(
            id=self._next_review_id,
            dish_id=dish_id,
            order_id=order_id,
            restaurant_id=restaurant_id,
            rating=rating,
            comment=comment,
            created_at=now,
        )
        self._next_review_id += 1
        self.reviews[review.id] = review
        self._by_natural_key[natural_key] = review.id
        return UpsertResult(review=review, created=True)

    async def list_dish_reviews(self, dish_id: int, restaurant_id: int) -> list[ReviewRead]:
        self._check()
        matching = [
            r for r in self.reviews.values()
            if r.dish_id == dish_id and r.restaurant_id == restaurant_id
        ]
        return sorted(matching, key=lambda r: r.created_at, reverse=True)

    async def refresh_dish_aggregate(
        self, dish_id: int, restaurant_id: int
    ) -> Optional[DishAggregate]:
        self._check()
        dish = self.dishes.get(dish_id)
        if dish is None or dish.restaurant_id != restaurant_id:
            return None

        ratings = [r.rating for r in self.reviews.values() if r.dish_id == dish_id]
        dish.avg_rating = _round2(ratings) if ratings else None
        dish.review_count = len(ratings)
        return DishAggregate(
            dish_id=dish_id,
            restaurant_id=restaurant_id,
            avg_rating=dish.avg_rating or 0.0,
            review_count=dish.review_count,
        )

    async def dish_meta(self, dish_id: int) -> Optional[DishMeta]:
        self._check()
        dish = self.dishes.get(dish_id)
        if dish is None:
            return None
        return DishMeta(
            dish_id=dish.id,
            name=dish.name,
            restaurant_id=dish.restaurant_id,
            review_count=dish.review_count,
        )

    async def top_today_from_orders(self, day: date, limit: int) -> list[DishRanking]:
        self._check()
        counts: Counter[int] = Counter()
        for order in self.orders.values():
            if order.created_at.date() != day:
                continue
            for dish_id in order.dish_ids:
                if dish_id in self.dishes:
                    counts[dish_id] += 1

        return [
            DishRanking(
                dish_id=dish_id,
                dish_name=self.dishes[dish_id].name,
                restaurant_id=self.dishes[dish_id].restaurant_id,
                score=float(score),
            )
            for dish_id, score in counts.most_common(limit)
        ]

    async def top_rated_dishes(self, limit: int) -> list[DishRanking]:
        self._check()
        rated = [d for d in self.dishes.values() if d.avg_rating and d.avg_rating > 0]
        rated.sort(key=lambda d: d.avg_rating, reverse=True)
        return [
            DishRanking(
                dish_id=d.id,
                dish_name=d.name,
                restaurant_id=d.restaurant_id,
                score=d.avg_rating,
                review_count=d.review_count,
            )
            for d in rated[:limit]
        ]

    async def rating_distribution(self, restaurant_id: Optional[int]) -> dict[int, int]:
        self._check()
        counts: Counter[int] = Counter(
            r.rating for r in self.reviews.values()
            if restaurant_id is None or r.restaurant_id == restaurant_id
        )
        return dict(counts)


# ── Cache Mirror ───────────────────────────────────────────────────────────────


class InMemoryStatCache:
    """StatCache with Redis-like expiry: one TTLCache per key family."""

    def __init__(
        self,
        *,
        dish_stat_ttl: int = 24 * 60 * 60,
        daily_ttl: int = 7 * 24 * 60 * 60,
        marker_ttl: int = 7 * 24 * 60 * 60,
        timer: Callable[[], float] = time.monotonic,
        maxsize: int = 100_000,
    ) -> None:
        self._stats: TTLCache = TTLCache(maxsize=maxsize, ttl=dish_stat_ttl, timer=timer)
        self._daily: TTLCache = TTLCache(maxsize=maxsize, ttl=daily_ttl, timer=timer)
        self._markers: TTLCache = TTLCache(maxsize=maxsize, ttl=marker_ttl, timer=timer)
        self._alltime: dict[str, dict[str, float]] = {}
        self.offline = False

    def _check(self) -> None:
        if self.offline:
            raise TransientStoreError("cache unreachable")

    async def marker_exists(self, dish_id: int, order_id: int) -> bool:
        self._check()
        return review_marker_key(dish_id, order_id) in self._markers

    async def set_marker(self, dish_id: int, order_id: int) -> None:
        self._check()
        self._markers[review_marker_key(dish_id, order_id)] = "1"

    async def claim_marker(self, dish_id: int, order_id: int) -> bool:
        self._check()
        key = review_marker_key(dish_id, order_id)
        if key in self._markers:
            return False
        self._markers[key] = "1"
        return True

    async def clear_marker(self, dish_id: int, order_id: int) -> None:
        self._check()
        self._markers.pop(review_marker_key(dish_id, order_id), None)

    async def put_dish_stat(self, restaurant_id: int, stat: CachedDishStat) -> None:
        self._check()
        # Reassigning restarts the TTL, like HSET followed by EXPIRE
        self._stats[dish_stat_key(restaurant_id, stat.dish_id)] = stat

    async def get_dish_stat(self, restaurant_id: int, dish_id: int) -> Optional[CachedDishStat]:
        self._check()
        return self._stats.get(dish_stat_key(restaurant_id, dish_id))

    async def incr_daily_popularity(
        self, day: date, restaurant_id: int, dish_id: int, amount: float = 1.0
    ) -> float:
        self._check()
        key = daily_popularity_key(day, restaurant_id)
        members = dict(self._daily.get(key, {}))
        members[str(dish_id)] = members.get(str(dish_id), 0.0) + amount
        self._daily[key] = members
        return members[str(dish_id)]

    async def set_alltime_score(self, restaurant_id: int, dish_id: int, score: float) -> None:
        self._check()
        self._alltime.setdefault(alltime_key(restaurant_id), {})[str(dish_id)] = score

    async def daily_shard_keys(self, day: date) -> list[str]:
        self._check()
        self._daily.expire()
        pattern = daily_popularity_pattern(day)
        return [key for key in list(self._daily.keys()) if fnmatchcase(key, pattern)]

    async def alltime_shard_keys(self) -> list[str]:
        self._check()
        pattern = alltime_pattern()
        return [key for key, members in self._alltime.items() if members and fnmatchcase(key, pattern)]

    async def top_of_shard(self, key: str, count: int) -> list[tuple[int, float]]:
        self._check()
        if count <= 0:
            return []
        members = self._daily.get(key) or self._alltime.get(key) or {}
        # ZREVRANGE order: score desc, then member desc
        ranked = sorted(members.items(), key=lambda kv: (kv[1], kv[0]), reverse=True)
        return [(int(member), score) for member, score in ranked[:count]]


# ── Event bus ──────────────────────────────────────────────────────────────────


class InMemoryEventBus:
    """EventPublisher and EventSource in one. Keeps a log of everything published."""

    def __init__(self) -> None:
        self.published: list[AggregationEvent] = []
        self.acked: list[str] = []
        self._pending: deque[Delivery] = deque()
        self._sequence = 0
        self.offline = False

    async def publish(self, event: AggregationEvent) -> None:
        if self.offline:
            raise EventPublishError("event bus unreachable")
        self.published.append(event)
        self.push(event.model_dump_json(), key=event.partition_key)

    def push(self, payload: bytes | str, key: Optional[str] = None) -> Delivery:
        """Queue a raw payload, e.g. a redelivered or malformed message."""
        self._sequence += 1
        delivery = Delivery(message_id=f"{self._sequence}-0", payload=payload, key=key)
        self._pending.append(delivery)
        return delivery

    async def read(self, count: int, block_ms: int) -> list[Delivery]:
        if self.offline:
            raise TransientStoreError("event bus unreachable")
        if not self._pending:
            await asyncio.sleep(min(block_ms, 50) / 1000)
        batch: list[Delivery] = []
        while self._pending and len(batch) < count:
            batch.append(self._pending.popleft())
        return batch

    async def ack(self, delivery: Delivery) -> None:
        self.acked.append(delivery.message_id)

    @property
    def backlog(self) -> int:
        return len(self._pending)
