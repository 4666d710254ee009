"""
RedisStatCache — the Cache Mirror on Redis (redis.asyncio).

Owns nothing but the key layout in dish_ratings.utils.cache_keys. The client
must be created with decode_responses=True. RedisError becomes
TransientStoreError so callers only deal with the pipeline's own taxonomy.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from dish_ratings.schemas.analytics import CachedDishStat
from dish_ratings.services.errors import TransientStoreError
from dish_ratings.utils.cache_keys import (
    alltime_key,
    alltime_pattern,
    daily_popularity_key,
    daily_popularity_pattern,
    dish_stat_key,
    review_marker_key,
)

logger = logging.getLogger(__name__)

SCAN_BATCH = 500


class RedisStatCache:
    def __init__(
        self,
        client: Redis,
        *,
        dish_stat_ttl: int = 24 * 60 * 60,
        daily_ttl: int = 7 * 24 * 60 * 60,
        marker_ttl: int = 7 * 24 * 60 * 60,
    ) -> None:
        self._redis = client
        self._dish_stat_ttl = dish_stat_ttl
        self._daily_ttl = daily_ttl
        self._marker_ttl = marker_ttl

    # ── Dedup markers ────────────────────────────────────────────────────────

    async def marker_exists(self, dish_id: int, order_id: int) -> bool:
        try:
            return await self._redis.exists(review_marker_key(dish_id, order_id)) > 0
        except RedisError as exc:
            raise TransientStoreError(f"marker lookup failed: {exc}") from exc

    async def set_marker(self, dish_id: int, order_id: int) -> None:
        try:
            await self._redis.set(review_marker_key(dish_id, order_id), "1", ex=self._marker_ttl)
        except RedisError as exc:
            raise TransientStoreError(f"marker write failed: {exc}") from exc

    async def claim_marker(self, dish_id: int, order_id: int) -> bool:
        # SET NX makes check-and-set one step across every writer process
        try:
            claimed = await self._redis.set(
                review_marker_key(dish_id, order_id), "1", ex=self._marker_ttl, nx=True
            )
        except RedisError as exc:
            raise TransientStoreError(f"marker claim failed: {exc}") from exc
        return bool(claimed)

    async def clear_marker(self, dish_id: int, order_id: int) -> None:
        try:
            await self._redis.delete(review_marker_key(dish_id, order_id))
        except RedisError as exc:
            raise TransientStoreError(f"marker delete failed: {exc}") from exc

    # ── Dish stat mirror ─────────────────────────────────────────────────────

    async def put_dish_stat(self, restaurant_id: int, stat: CachedDishStat) -> None:
        key = dish_stat_key(restaurant_id, stat.dish_id)
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.hset(
                    key,
                    mapping={
                        "avg_rating": stat.avg_rating,
                        "review_count": stat.review_count,
                        "last_updated": stat.last_updated,
                    },
                )
                pipe.expire(key, self._dish_stat_ttl)
                await pipe.execute()
        except RedisError as exc:
            raise TransientStoreError(f"dish stat write failed: {exc}") from exc

    async def get_dish_stat(self, restaurant_id: int, dish_id: int) -> Optional[CachedDishStat]:
        try:
            raw = await self._redis.hgetall(dish_stat_key(restaurant_id, dish_id))
        except RedisError as exc:
            raise TransientStoreError(f"dish stat read failed: {exc}") from exc
        if not raw:
            return None
        try:
            return CachedDishStat(
                dish_id=dish_id,
                avg_rating=float(raw.get("avg_rating", 0)),
                review_count=int(raw.get("review_count", 0)),
                last_updated=int(float(raw.get("last_updated", 0))),
            )
        except ValueError:
            logger.warning("Malformed dish stat hash for %d:%d: %r", restaurant_id, dish_id, raw)
            return None

    # ── Leaderboards ─────────────────────────────────────────────────────────

    async def incr_daily_popularity(
        self, day: date, restaurant_id: int, dish_id: int, amount: float = 1.0
    ) -> float:
        key = daily_popularity_key(day, restaurant_id)
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.zincrby(key, amount, str(dish_id))
                pipe.expire(key, self._daily_ttl)
                score, _ = await pipe.execute()
        except RedisError as exc:
            raise TransientStoreError(f"popularity increment failed: {exc}") from exc
        return float(score)

    async def set_alltime_score(self, restaurant_id: int, dish_id: int, score: float) -> None:
        try:
            await self._redis.zadd(alltime_key(restaurant_id), {str(dish_id): score})
        except RedisError as exc:
            raise TransientStoreError(f"all-time leaderboard write failed: {exc}") from exc

    async def daily_shard_keys(self, day: date) -> list[str]:
        return await self._scan(daily_popularity_pattern(day))

    async def alltime_shard_keys(self) -> list[str]:
        return await self._scan(alltime_pattern())

    async def _scan(self, pattern: str) -> list[str]:
        try:
            return [key async for key in self._redis.scan_iter(match=pattern, count=SCAN_BATCH)]
        except RedisError as exc:
            raise TransientStoreError(f"key scan failed for {pattern}: {exc}") from exc

    async def top_of_shard(self, key: str, count: int) -> list[tuple[int, float]]:
        if count <= 0:
            return []
        try:
            members = await self._redis.zrevrange(key, 0, count - 1, withscores=True)
        except RedisError as exc:
            raise TransientStoreError(f"range read failed for {key}: {exc}") from exc

        top: list[tuple[int, float]] = []
        for member, score in members:
            try:
                top.append((int(member), float(score)))
            except ValueError:
                logger.warning("Ignoring non-numeric member %r in %s", member, key)
        return top
