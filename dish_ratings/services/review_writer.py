"""
ReviewWriter — the write path for dish reviews.

Durable phase (errors propagate to the caller):
  1. Validate the rating bounds and that the dish was on the order/check
  2. Duplicate check (only under the "reject" policy): atomically claim the
     dedup marker, released again if the upsert fails
  3. Atomic upsert by natural key (dish_id, order_id, restaurant_id)

Best-effort phase (errors are logged, never raised):
  4. Refresh the dedup marker ("upsert" policy)
  5. Publish an AggregationEvent

The Primary Store row is the source of truth. Once it is written the review
counts as accepted, even if the marker or the event never make it out.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from dish_ratings.schemas.events import NEW_REVIEW, UPDATED_REVIEW, AggregationEvent
from dish_ratings.schemas.review import (
    BatchItemResult,
    BatchReviewRequest,
    BatchReviewResponse,
    ReviewRead,
)
from dish_ratings.services.errors import (
    DishNotInOrderError,
    DuplicateReviewError,
    EventPublishError,
    InvalidRatingError,
    ReviewError,
    TransientStoreError,
    ValidationError,
)
from dish_ratings.services.interfaces import (
    EventPublisher,
    ReviewStore,
    StatCache,
    UpsertResult,
)
from dish_ratings.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5

DuplicatePolicy = Literal["upsert", "reject"]


class ReviewWriter:
    """
    Validates, records and announces reviews.

    duplicate_policy:
      "upsert" — the dedup marker is advisory; a resubmission for the same
                 natural key replaces rating/comment and keeps the review id.
      "reject" — an existing marker fails the submission with
                 DuplicateReviewError, so ratings cannot be corrected while
                 the marker lives.
    """

    def __init__(
        self,
        store: ReviewStore,
        cache: StatCache,
        publisher: Optional[EventPublisher] = None,
        *,
        duplicate_policy: DuplicatePolicy = "upsert",
    ) -> None:
        if duplicate_policy not in ("upsert", "reject"):
            raise ValueError(f"Unknown duplicate policy: {duplicate_policy!r}")
        self._store = store
        self._cache = cache
        self._publisher = publisher
        self._duplicate_policy = duplicate_policy
        self._locks = KeyedLock()

    @property
    def duplicate_policy(self) -> DuplicatePolicy:
        return self._duplicate_policy

    # ── Single submission ────────────────────────────────────────────────────

    async def submit(
        self,
        dish_id: int,
        order_id: int,
        restaurant_id: int,
        rating: int,
        comment: str = "",
    ) -> ReviewRead:
        """
        Record a review and trigger aggregation.

        Raises ValidationError (bad rating, dish not on the check),
        DuplicateReviewError (reject policy only) or TransientStoreError.
        """
        if not MIN_RATING <= rating <= MAX_RATING:
            raise InvalidRatingError(rating)

        # Concurrent submissions for one natural key must not both insert.
        # The store's unique constraint covers other processes.
        async with self._locks.hold((dish_id, order_id, restaurant_id)):
            result = await self._persist(dish_id, order_id, restaurant_id, rating, comment)

        marker_ok = await self._refresh_marker(dish_id, order_id)
        published = await self._publish(result)

        logger.info(
            "Successfully %s review %d for dish %d in order %d (marker=%s, published=%s)",
            "created" if result.created else "updated",
            result.review.id, dish_id, order_id, marker_ok, published,
        )
        return result.review

    async def _persist(
        self,
        dish_id: int,
        order_id: int,
        restaurant_id: int,
        rating: int,
        comment: str,
    ) -> UpsertResult:
        if not await self._store.dish_in_order(dish_id, order_id, restaurant_id):
            raise DishNotInOrderError()

        if self._duplicate_policy == "upsert":
            return await self._store.upsert_review(
                dish_id, order_id, restaurant_id, rating, comment
            )

        # Reject policy: claiming the marker is the duplicate check
        try:
            claimed = await self._cache.claim_marker(dish_id, order_id)
        except TransientStoreError:
            logger.error(
                "Dedup marker claim failed for dish %d order %d", dish_id, order_id
            )
            raise
        if not claimed:
            raise DuplicateReviewError()

        try:
            return await self._store.upsert_review(
                dish_id, order_id, restaurant_id, rating, comment
            )
        except Exception:
            await self._release_marker(dish_id, order_id)
            raise

    # ── Best-effort side effects ─────────────────────────────────────────────

    async def _release_marker(self, dish_id: int, order_id: int) -> None:
        """Give back a claim whose review was never written. Never raises."""
        try:
            await self._cache.clear_marker(dish_id, order_id)
        except Exception as exc:
            logger.warning(
                "Failed to release review marker for dish %d order %d: %s",
                dish_id, order_id, exc,
            )

    async def _refresh_marker(self, dish_id: int, order_id: int) -> bool:
        """Set/refresh the dedup marker on both insert and update. Never raises."""
        if self._duplicate_policy == "reject":
            # Already claimed under the key lock
            return True
        try:
            await self._cache.set_marker(dish_id, order_id)
            return True
        except Exception as exc:
            logger.warning(
                "Failed to cache review marker for dish %d order %d: %s",
                dish_id, order_id, exc,
            )
            return False

    async def _publish(self, result: UpsertResult) -> bool:
        """
        Emit the aggregation trigger. Never raises: the review is already
        durable, and a bus outage must not make it look rejected.
        """
        if self._publisher is None:
            logger.warning("No event publisher configured, skipping publish")
            return False

        review = result.review
        event = AggregationEvent(
            type=NEW_REVIEW if result.created else UPDATED_REVIEW,
            dish_id=review.dish_id,
            restaurant_id=review.restaurant_id,
            order_id=review.order_id,
            rating=review.rating,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self._publisher.publish(event)
            return True
        except EventPublishError as exc:
            logger.error("Failed to emit aggregation event for dish %d: %s", review.dish_id, exc)
        except Exception as exc:
            logger.error(
                "Unexpected error emitting aggregation event for dish %d: %s",
                review.dish_id, exc,
            )
        return False

    # ── Batch submission ─────────────────────────────────────────────────────

    async def submit_batch(self, request: BatchReviewRequest) -> BatchReviewResponse:
        """
        Submit every review of one check independently. One item failing never
        stops the rest; the caller decides success from ``created``.

        Raises ValidationError only when the batch itself is malformed.
        """
        if not request.check_id or not request.restaurant_id or not request.reviews:
            raise ValidationError("Missing check_id, restaurant_id or reviews")

        processed: list[BatchItemResult] = []
        created = 0

        for entry in request.reviews:
            try:
                await self.submit(
                    dish_id=entry.dish_id,
                    order_id=request.check_id,
                    restaurant_id=request.restaurant_id,
                    rating=entry.rating,
                    comment=entry.comment,
                )
            except ReviewError as exc:
                processed.append(
                    BatchItemResult(dish_id=entry.dish_id, status="error", message=str(exc))
                )
                continue
            except Exception as exc:
                logger.exception("Unexpected failure reviewing dish %d", entry.dish_id)
                processed.append(
                    BatchItemResult(dish_id=entry.dish_id, status="error", message=str(exc))
                )
                continue

            created += 1
            processed.append(BatchItemResult(dish_id=entry.dish_id, status="ok"))

        logger.info(
            "Batch for check %d: %d created, %d failed",
            request.check_id, created, len(processed) - created,
        )
        return BatchReviewResponse(
            processed=processed,
            created=created,
            failed=len(processed) - created,
        )

    # ── Reads ────────────────────────────────────────────────────────────────

    async def list_dish_reviews(self, dish_id: int, restaurant_id: int) -> list[ReviewRead]:
        """All reviews for a dish at a restaurant, newest first."""
        return await self._store.list_dish_reviews(dish_id, restaurant_id)
