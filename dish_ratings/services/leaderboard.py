"""
LeaderboardReader — ranked reads over the cache shards.

Global rankings (top_today / top_alltime):
  1. Enumerate the per-restaurant shard keys for the ranking
  2. Take the top N of each shard (5 for today, 10 for all-time)
  3. Resolve dish name/restaurant from the Primary Store; drop dishes that are gone
  4. Merge, sort by score DESC (stable, shard keys in sorted order), truncate
  5. No shards, or nothing survived the merge → direct Primary Store query

The per-shard bound is an approximation: a restaurant holding more than N of
the global top-K loses the surplus. Raising N changes the merge cost.

Point lookups (dish_stat) read the cache only; a miss is "not found" even when
the Primary Store has the numbers. No method here raises store errors.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from dish_ratings.schemas.analytics import CachedDishStat, DishRanking, RestaurantSummary
from dish_ratings.services.interfaces import ReviewStore, StatCache
from dish_ratings.utils.cache_keys import alltime_key, daily_popularity_key

logger = logging.getLogger(__name__)

RATING_BUCKETS = (1, 2, 3, 4, 5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_distribution() -> dict[int, int]:
    return {rating: 0 for rating in RATING_BUCKETS}


class LeaderboardReader:
    """Read side of the pipeline. Tolerates stale or missing cache data."""

    def __init__(
        self,
        store: ReviewStore,
        cache: StatCache,
        *,
        today_shard_fetch: int = 5,
        alltime_shard_fetch: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._today_shard_fetch = today_shard_fetch
        self._alltime_shard_fetch = alltime_shard_fetch
        self._clock = clock

    def _today(self) -> date:
        return self._clock().date()

    # ── Global rankings ──────────────────────────────────────────────────────

    async def top_today(self, limit: int = 10) -> list[DishRanking]:
        """Most popular dishes today across every restaurant."""
        day = self._today()
        try:
            keys = await self._cache.daily_shard_keys(day)
        except Exception as exc:
            logger.warning("Daily shard enumeration failed, using database: %s", exc)
            keys = []

        merged = await self._merge_shards(keys, self._today_shard_fetch, with_review_count=False)
        if not merged:
            logger.debug("No cached popularity for %s, falling back to order counts", day)
            return await self._top_today_from_db(day, limit)
        return merged[:limit]

    async def top_alltime(self, limit: int = 10) -> list[DishRanking]:
        """Best rated dishes across every restaurant."""
        try:
            keys = await self._cache.alltime_shard_keys()
        except Exception as exc:
            logger.warning("All-time shard enumeration failed, using database: %s", exc)
            keys = []

        merged = await self._merge_shards(keys, self._alltime_shard_fetch, with_review_count=True)
        if not merged:
            logger.debug("No cached all-time ranking, falling back to dish ratings")
            return await self._top_alltime_from_db(limit)
        return merged[:limit]

    async def _merge_shards(
        self,
        keys: list[str],
        per_shard: int,
        *,
        with_review_count: bool,
    ) -> list[DishRanking]:
        candidates: list[DishRanking] = []
        for key in sorted(keys):
            try:
                members = await self._cache.top_of_shard(key, per_shard)
            except Exception as exc:
                logger.warning("Skipping shard %s: %s", key, exc)
                continue
            for dish_id, score in members:
                ranking = await self._resolve(dish_id, score, with_review_count)
                if ranking is not None:
                    candidates.append(ranking)

        # list.sort is stable, so equal scores keep shard/member order
        candidates.sort(key=lambda r: r.score, reverse=True)
        return candidates

    async def _resolve(
        self,
        dish_id: int,
        score: float,
        with_review_count: bool,
        restaurant_id: Optional[int] = None,
    ) -> Optional[DishRanking]:
        """Attach display metadata; None when the dish is gone or unreadable."""
        try:
            meta = await self._store.dish_meta(dish_id)
        except Exception as exc:
            logger.warning("Could not resolve dish %d: %s", dish_id, exc)
            return None
        if meta is None:
            return None
        if restaurant_id is not None and meta.restaurant_id != restaurant_id:
            return None
        return DishRanking(
            dish_id=dish_id,
            dish_name=meta.name,
            restaurant_id=meta.restaurant_id,
            score=score,
            review_count=meta.review_count if with_review_count else 0,
        )

    async def _top_today_from_db(self, day: date, limit: int) -> list[DishRanking]:
        try:
            return await self._store.top_today_from_orders(day, limit)
        except Exception as exc:
            logger.error("Top-today fallback query failed: %s", exc)
            return []

    async def _top_alltime_from_db(self, limit: int) -> list[DishRanking]:
        try:
            return await self._store.top_rated_dishes(limit)
        except Exception as exc:
            logger.error("Top-all-time fallback query failed: %s", exc)
            return []

    # ── Per-restaurant reads ─────────────────────────────────────────────────

    async def most_popular_dish(
        self, restaurant_id: int, day: Optional[date] = None
    ) -> Optional[DishRanking]:
        """Top-1 of the restaurant's daily popularity shard."""
        key = daily_popularity_key(day or self._today(), restaurant_id)
        return await self._top_one(key, restaurant_id, with_review_count=False)

    async def best_rated_dish(self, restaurant_id: int) -> Optional[DishRanking]:
        """Top-1 of the restaurant's all-time shard."""
        return await self._top_one(alltime_key(restaurant_id), restaurant_id, with_review_count=True)

    async def _top_one(
        self, key: str, restaurant_id: int, *, with_review_count: bool
    ) -> Optional[DishRanking]:
        try:
            members = await self._cache.top_of_shard(key, 1)
        except Exception as exc:
            logger.warning("Reading %s failed: %s", key, exc)
            return None
        if not members:
            return None
        dish_id, score = members[0]
        return await self._resolve(dish_id, score, with_review_count, restaurant_id)

    async def restaurant_summary(self, restaurant_id: int, period: str = "all") -> RestaurantSummary:
        """
        today → most_popular_today
        day   → most_popular_dish (today's shard)
        all   → best_rated_dish
        other → most_popular_today and best_rated_dish
        """
        summary = RestaurantSummary()
        if period == "today":
            summary.most_popular_today = await self.most_popular_dish(restaurant_id)
        elif period == "day":
            summary.most_popular_dish = await self.most_popular_dish(restaurant_id)
        elif period == "all":
            summary.best_rated_dish = await self.best_rated_dish(restaurant_id)
        else:
            summary.most_popular_today = await self.most_popular_dish(restaurant_id)
            summary.best_rated_dish = await self.best_rated_dish(restaurant_id)
        return summary

    async def top_dishes(self, restaurant_id: int, limit: int = 10) -> list[DishRanking]:
        """A single restaurant's all-time ranking, cache only."""
        if limit <= 0:
            return []
        try:
            members = await self._cache.top_of_shard(alltime_key(restaurant_id), limit)
        except Exception as exc:
            logger.warning("Top dishes for restaurant %d unavailable: %s", restaurant_id, exc)
            return []

        top: list[DishRanking] = []
        for dish_id, score in members:
            ranking = await self._resolve(dish_id, score, with_review_count=False)
            if ranking is not None:
                top.append(ranking.model_copy(update={"restaurant_id": restaurant_id}))
        return top

    async def dish_stat(self, restaurant_id: int, dish_id: int) -> Optional[CachedDishStat]:
        """Cached stat for one dish, or None. Never consults the Primary Store."""
        try:
            return await self._cache.get_dish_stat(restaurant_id, dish_id)
        except Exception as exc:
            logger.warning("Dish stat lookup for %d:%d failed: %s", restaurant_id, dish_id, exc)
            return None

    # ── Distributions ────────────────────────────────────────────────────────

    async def rating_distribution(self, restaurant_id: Optional[int] = None) -> dict[int, int]:
        """
        Review count per rating 1–5, for one restaurant or globally when
        restaurant_id is None. Always all five buckets; all zero on failure.
        """
        distribution = empty_distribution()
        try:
            counts = await self._store.rating_distribution(restaurant_id)
        except Exception as exc:
            logger.warning("Rating distribution query failed (restaurant=%s): %s", restaurant_id, exc)
            return distribution

        for rating, count in counts.items():
            if rating in distribution:
                distribution[rating] = count
        return distribution
