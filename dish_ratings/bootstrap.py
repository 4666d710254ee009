"""
Component wiring shared by the API process and the aggregation worker.

build_services() turns Settings into live adapters (PostgreSQL, Redis cache,
Redis stream) and the services on top of them. Tests build a Services by hand
from the in-memory adapters instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from dish_ratings.config import Settings
from dish_ratings.database import build_engine, build_session_factory, check_db_connectivity
from dish_ratings.services.aggregation import AggregationConsumer
from dish_ratings.services.leaderboard import LeaderboardReader
from dish_ratings.services.review_writer import ReviewWriter
from dish_ratings.storage.postgres import SqlReviewStore
from dish_ratings.storage.redis_bus import RedisStreamPublisher, RedisStreamSource
from dish_ratings.storage.redis_cache import RedisStatCache

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]
Closer = Callable[[], Awaitable[None]]


@dataclass
class Services:
    """Everything the HTTP layer needs, plus readiness probes and cleanup hooks."""

    writer: ReviewWriter
    reader: LeaderboardReader
    probes: dict[str, Probe] = field(default_factory=dict)
    closers: list[Closer] = field(default_factory=list)

    async def readiness(self) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for name, probe in self.probes.items():
            try:
                results[name] = await probe()
            except Exception as exc:
                logger.warning("Readiness probe %s failed: %s", name, exc)
                results[name] = False
        return results

    async def aclose(self) -> None:
        for close in reversed(self.closers):
            try:
                await close()
            except Exception as exc:
                logger.warning("Error during shutdown: %s", exc)


def build_redis(settings: Settings) -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def build_stat_cache(client: Redis, settings: Settings) -> RedisStatCache:
    return RedisStatCache(
        client,
        dish_stat_ttl=settings.dish_stat_ttl_seconds,
        daily_ttl=settings.daily_popularity_ttl_seconds,
        marker_ttl=settings.review_marker_ttl_seconds,
    )


def redis_probe(client: Redis) -> Probe:
    async def probe() -> bool:
        try:
            return bool(await client.ping())
        except RedisError:
            return False
    return probe


def build_services(settings: Settings) -> Services:
    """Wire the API-side components. Opens no connections until first use."""
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    redis = build_redis(settings)

    store = SqlReviewStore(session_factory)
    cache = build_stat_cache(redis, settings)
    publisher = RedisStreamPublisher(
        redis, stream=settings.review_stream, maxlen=settings.stream_maxlen
    )

    async def db_probe() -> bool:
        return await check_db_connectivity(session_factory)

    return Services(
        writer=ReviewWriter(store, cache, publisher, duplicate_policy=settings.duplicate_policy),
        reader=LeaderboardReader(
            store,
            cache,
            today_shard_fetch=settings.today_shard_fetch,
            alltime_shard_fetch=settings.alltime_shard_fetch,
        ),
        probes={"db": db_probe, "redis": redis_probe(redis)},
        closers=[engine.dispose, redis.aclose],
    )


def build_consumer(settings: Settings) -> tuple[AggregationConsumer, list[Closer]]:
    """Wire the aggregation worker; the closers release its connections."""
    engine = build_engine(settings)
    redis = build_redis(settings)

    source = RedisStreamSource(
        redis,
        stream=settings.review_stream,
        group=settings.consumer_group,
        consumer=settings.consumer_name,
    )
    consumer = AggregationConsumer(
        SqlReviewStore(build_session_factory(engine)),
        build_stat_cache(redis, settings),
        source,
        block_ms=settings.consumer_block_ms,
    )
    return consumer, [engine.dispose, redis.aclose]
