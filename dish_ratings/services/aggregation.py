"""
AggregationConsumer — folds review events into dish statistics.

Per event, strictly in delivery order, one at a time:
  1. Recompute avg_rating/review_count from all review rows (never incremental)
  2. Write them back to the dish row
  3. Re-read the stored values and mirror them into dish:{rid}:{did} (24 h TTL)
  4. ZINCRBY analytics:daily:{today}:{rid} by 1 — NOT idempotent under redelivery
  5. ZADD analytics:alltime:{rid} with the recomputed avg_rating — idempotent

Steps 1–3 are one store call plus one cache write. Step 4 runs even when the
recompute fails; step 5 needs the recomputed value. Failures are logged and
the event is still acknowledged: no retry, no dead-letter queue.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError as PayloadError

from dish_ratings.schemas.analytics import CachedDishStat
from dish_ratings.schemas.events import AggregationEvent
from dish_ratings.services.interfaces import (
    Delivery,
    DishAggregate,
    EventSource,
    ReviewStore,
    StatCache,
)

logger = logging.getLogger(__name__)

READ_ERROR_BACKOFF_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AggregationOutcome:
    """What actually happened for one event; logged, never raised."""

    dish_id: int
    restaurant_id: int
    aggregate: Optional[DishAggregate] = None
    mirrored: bool = False
    popularity_incremented: bool = False
    leaderboard_updated: bool = False


class AggregationConsumer:
    """
    Single-threaded consumer. All writes to the cache mirror and both
    leaderboards go through here, so none of them need locking.
    """

    def __init__(
        self,
        store: ReviewStore,
        cache: StatCache,
        source: Optional[EventSource] = None,
        *,
        block_ms: int = 1_000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._source = source
        self._block_ms = block_ms
        self._clock = clock
        self._stopping = asyncio.Event()
        self.processed_count = 0

    # ── Event processing ─────────────────────────────────────────────────────

    async def process_event(self, event: AggregationEvent) -> AggregationOutcome:
        """Apply one event. Never raises."""
        logger.info(
            "Processing review: DishID=%d, RestaurantID=%d, Rating=%d (%s)",
            event.dish_id, event.restaurant_id, event.rating, event.type,
        )
        outcome = AggregationOutcome(dish_id=event.dish_id, restaurant_id=event.restaurant_id)
        now = self._clock()

        # Steps 1–3
        outcome.aggregate = await self._recompute(event)
        if outcome.aggregate is not None:
            outcome.mirrored = await self._mirror(outcome.aggregate, now)

        # Step 4
        outcome.popularity_incremented = await self._bump_popularity(event, now.date())

        # Step 5
        if outcome.aggregate is not None:
            outcome.leaderboard_updated = await self._update_alltime(outcome.aggregate)

        self.processed_count += 1
        logger.info(
            "Processed review for dish %d: avg=%s count=%s mirrored=%s popularity=%s leaderboard=%s",
            event.dish_id,
            outcome.aggregate.avg_rating if outcome.aggregate else None,
            outcome.aggregate.review_count if outcome.aggregate else None,
            outcome.mirrored, outcome.popularity_incremented, outcome.leaderboard_updated,
        )
        return outcome

    async def _recompute(self, event: AggregationEvent) -> Optional[DishAggregate]:
        try:
            aggregate = await self._store.refresh_dish_aggregate(
                event.dish_id, event.restaurant_id
            )
        except Exception as exc:
            logger.error("Error updating dish rating for dish %d: %s", event.dish_id, exc)
            return None
        if aggregate is None:
            logger.warning(
                "Dish %d not found at restaurant %d, skipping mirror and leaderboard",
                event.dish_id, event.restaurant_id,
            )
        return aggregate

    async def _mirror(self, aggregate: DishAggregate, now: datetime) -> bool:
        stat = CachedDishStat(
            dish_id=aggregate.dish_id,
            avg_rating=aggregate.avg_rating,
            review_count=aggregate.review_count,
            last_updated=int(now.timestamp()),
        )
        try:
            await self._cache.put_dish_stat(aggregate.restaurant_id, stat)
            return True
        except Exception as exc:
            logger.error("Error mirroring stats for dish %d: %s", aggregate.dish_id, exc)
            return False

    async def _bump_popularity(self, event: AggregationEvent, day: date) -> bool:
        try:
            await self._cache.incr_daily_popularity(day, event.restaurant_id, event.dish_id)
            return True
        except Exception as exc:
            logger.error("Error updating daily popularity for dish %d: %s", event.dish_id, exc)
            return False

    async def _update_alltime(self, aggregate: DishAggregate) -> bool:
        try:
            await self._cache.set_alltime_score(
                aggregate.restaurant_id, aggregate.dish_id, aggregate.avg_rating
            )
            return True
        except Exception as exc:
            logger.error("Error updating all-time leaderboard for dish %d: %s", aggregate.dish_id, exc)
            return False

    # ── Delivery handling ────────────────────────────────────────────────────

    async def handle_delivery(self, delivery: Delivery) -> Optional[AggregationOutcome]:
        """
        Decode, process and acknowledge one delivery. Undecodable payloads and
        unknown event types are acknowledged without side effects.
        """
        outcome: Optional[AggregationOutcome] = None
        try:
            event = AggregationEvent.model_validate_json(delivery.payload)
        except PayloadError as exc:
            logger.error("Error unmarshaling message %s: %s", delivery.message_id, exc)
        else:
            outcome = await self.process_event(event)

        await self._ack(delivery)
        return outcome

    async def _ack(self, delivery: Delivery) -> None:
        if self._source is None:
            return
        try:
            await self._source.ack(delivery)
        except Exception as exc:
            # Unacked entries get redelivered, which double-counts popularity.
            logger.error("Failed to ack message %s: %s", delivery.message_id, exc)

    # ── Run loop ─────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """
        Consume until stop() is called. The in-flight event always finishes;
        entries read but not yet started stay unacknowledged for redelivery.
        """
        if self._source is None:
            raise RuntimeError("AggregationConsumer.run() needs an EventSource")

        logger.info("Starting aggregation consumer...")
        while not self._stopping.is_set():
            try:
                deliveries = await self._source.read(count=1, block_ms=self._block_ms)
            except Exception as exc:
                logger.error("Error reading message: %s", exc)
                await self._pause(READ_ERROR_BACKOFF_SECONDS)
                continue

            for delivery in deliveries:
                if self._stopping.is_set():
                    break
                await self.handle_delivery(delivery)

        logger.info("Aggregation consumer stopped after %d events", self.processed_count)

    def stop(self) -> None:
        """Stop accepting new events; safe to call from a signal handler."""
        if not self._stopping.is_set():
            logger.info("Aggregation consumer shutdown requested")
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
