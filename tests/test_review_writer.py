"""ReviewWriter: validation, upsert identity, duplicate policies, best-effort side effects."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from conftest import CHECK_R1_A, CHECK_R1_B, CHECK_R2
from dish_ratings.schemas.events import NEW_REVIEW, UPDATED_REVIEW
from dish_ratings.schemas.review import BatchReviewEntry, BatchReviewRequest
from dish_ratings.services.errors import (
    DishNotInOrderError,
    DuplicateReviewError,
    InvalidRatingError,
    TransientStoreError,
    ValidationError,
)
from dish_ratings.services.review_writer import ReviewWriter


# ── Validation ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize("rating", [1, 5])
def test_rating_bounds_accepted(writer, rating):
    review = asyncio.run(writer.submit(10, CHECK_R1_A, 1, rating))
    assert review.rating == rating


@pytest.mark.parametrize("rating", [0, 6, -1])
def test_rating_out_of_range_rejected_before_store(writer, store, rating):
    store.offline = True  # proves the store is never touched
    with pytest.raises(InvalidRatingError):
        asyncio.run(writer.submit(10, CHECK_R1_A, 1, rating))


def test_dish_not_on_check(writer, store, bus):
    with pytest.raises(DishNotInOrderError):
        asyncio.run(writer.submit(12, CHECK_R1_A, 1, 4))
    assert store.reviews == {}
    assert bus.published == []


def test_check_from_another_restaurant(writer):
    with pytest.raises(DishNotInOrderError):
        asyncio.run(writer.submit(20, CHECK_R2, 1, 4))


def test_dish_not_in_order_is_a_validation_error():
    assert issubclass(DishNotInOrderError, ValidationError)
    assert issubclass(InvalidRatingError, ValidationError)


# ── Upsert identity ──────────────────────────────────────────────────────────


def test_resubmission_keeps_id_and_replaces_rating(writer, store):
    first = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 2, "meh"))
    second = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 5, "actually great"))

    assert second.id == first.id
    assert len(store.reviews) == 1
    assert store.reviews[first.id].rating == 5
    assert store.reviews[first.id].comment == "actually great"


def test_same_dish_on_two_checks_is_two_reviews(writer, store):
    a = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))
    b = asyncio.run(writer.submit(10, CHECK_R1_B, 1, 3))
    assert a.id != b.id
    assert len(store.reviews) == 2


def test_concurrent_submissions_collapse_to_one_row(writer, store):
    async def scenario():
        return await asyncio.gather(
            *(writer.submit(10, CHECK_R1_A, 1, rating) for rating in (1, 2, 3, 4, 5))
        )

    results = asyncio.run(scenario())

    assert len(store.reviews) == 1
    assert len({r.id for r in results}) == 1
    final = next(iter(store.reviews.values()))
    assert final.rating in {1, 2, 3, 4, 5}
    assert final.rating == results[-1].rating


def test_events_distinguish_new_and_updated(writer, bus):
    asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))
    asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))

    assert [e.type for e in bus.published] == [NEW_REVIEW, UPDATED_REVIEW]
    assert bus.published[1].rating == 4
    assert bus.published[1].partition_key == "10"


# ── Duplicate policy ─────────────────────────────────────────────────────────


def test_reject_policy_refuses_resubmission(store, cache, bus):
    writer = ReviewWriter(store, cache, bus, duplicate_policy="reject")
    asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))

    with pytest.raises(DuplicateReviewError):
        asyncio.run(writer.submit(10, CHECK_R1_A, 1, 5))
    assert next(iter(store.reviews.values())).rating == 3


def test_reject_policy_allows_resubmission_after_marker_expires(store, cache, bus, timer):
    writer = ReviewWriter(store, cache, bus, duplicate_policy="reject")
    first = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))

    timer.advance(7 * 24 * 60 * 60 + 1)
    second = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 5))
    assert second.id == first.id
    assert second.rating == 5


def test_reject_policy_surfaces_cache_outage(store, cache, bus):
    writer = ReviewWriter(store, cache, bus, duplicate_policy="reject")
    cache.offline = True
    with pytest.raises(TransientStoreError):
        asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))
    assert store.reviews == {}


def test_reject_policy_holds_for_concurrent_duplicates(store, cache, bus, monkeypatch):
    writer = ReviewWriter(store, cache, bus, duplicate_policy="reject")
    claim = cache.claim_marker
    set_marker = cache.set_marker

    async def slow_claim(dish_id, order_id):
        await asyncio.sleep(0.01)
        return await claim(dish_id, order_id)

    async def slow_set_marker(dish_id, order_id):
        await asyncio.sleep(0.01)
        await set_marker(dish_id, order_id)

    monkeypatch.setattr(cache, "claim_marker", slow_claim)
    monkeypatch.setattr(cache, "set_marker", slow_set_marker)

    async def scenario():
        return await asyncio.gather(
            writer.submit(10, CHECK_R1_A, 1, 2),
            writer.submit(10, CHECK_R1_A, 1, 5),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    assert sum(isinstance(r, DuplicateReviewError) for r in results) == 1
    assert next(iter(store.reviews.values())).rating == 2
    assert [e.type for e in bus.published] == [NEW_REVIEW]


def test_reject_policy_releases_marker_when_upsert_fails(store, cache, bus, monkeypatch):
    writer = ReviewWriter(store, cache, bus, duplicate_policy="reject")

    async def broken_upsert(*args):
        raise TransientStoreError("connection reset")

    upsert = store.upsert_review
    monkeypatch.setattr(store, "upsert_review", broken_upsert)
    with pytest.raises(TransientStoreError):
        asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))
    assert not asyncio.run(cache.marker_exists(10, CHECK_R1_A))

    monkeypatch.setattr(store, "upsert_review", upsert)
    review = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))
    assert review.rating == 3


def test_unknown_policy_rejected(store, cache):
    with pytest.raises(ValueError):
        ReviewWriter(store, cache, duplicate_policy="ignore")


# ── Best-effort phase ────────────────────────────────────────────────────────


def test_marker_refreshed_on_insert_and_update(writer, cache):
    asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))
    assert asyncio.run(cache.marker_exists(10, CHECK_R1_A))

    asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))
    assert asyncio.run(cache.marker_exists(10, CHECK_R1_A))


def test_publish_failure_does_not_fail_submission(writer, store, bus):
    bus.offline = True
    review = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))

    assert store.reviews[review.id].rating == 4
    assert bus.published == []


def test_cache_outage_does_not_fail_upsert_policy(writer, store, cache, bus):
    cache.offline = True
    review = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))
    assert review.id in store.reviews
    assert len(bus.published) == 1


def test_no_publisher_configured(store, cache):
    writer = ReviewWriter(store, cache)
    review = asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))
    assert review.id in store.reviews


def test_store_outage_propagates(writer, store, bus):
    store.offline = True
    with pytest.raises(TransientStoreError):
        asyncio.run(writer.submit(10, CHECK_R1_A, 1, 4))
    assert bus.published == []


# ── Batch ────────────────────────────────────────────────────────────────────


class TestBatch:
    def test_items_are_independent(self, writer, store):
        request = BatchReviewRequest(
            check_id=CHECK_R1_A,
            restaurant_id=1,
            reviews=[
                BatchReviewEntry(dish_id=10, rating=5, comment="crispy"),
                BatchReviewEntry(dish_id=12, rating=4),   # not on this check
                BatchReviewEntry(dish_id=11, rating=9),   # out of range
                BatchReviewEntry(dish_id=11, rating=3),
            ],
        )
        response = asyncio.run(writer.submit_batch(request))

        assert response.created == 2
        assert response.failed == 2
        assert [item.status for item in response.processed] == ["ok", "error", "error", "ok"]
        assert response.processed[1].message == "dish was not ordered for this check"
        assert len(store.reviews) == 2

    def test_nothing_created(self, writer):
        request = BatchReviewRequest(
            check_id=CHECK_R1_A,
            restaurant_id=1,
            reviews=[BatchReviewEntry(dish_id=21, rating=4)],
        )
        response = asyncio.run(writer.submit_batch(request))
        assert response.created == 0
        assert response.failed == 1

    @pytest.mark.parametrize(
        "request_kwargs",
        [
            {"restaurant_id": 1, "reviews": [BatchReviewEntry(dish_id=10, rating=4)]},
            {"check_id": CHECK_R1_A, "reviews": [BatchReviewEntry(dish_id=10, rating=4)]},
            {"check_id": CHECK_R1_A, "restaurant_id": 1, "reviews": []},
        ],
    )
    def test_malformed_batch(self, writer, request_kwargs):
        with pytest.raises(ValidationError):
            asyncio.run(writer.submit_batch(BatchReviewRequest(**request_kwargs)))

    def test_store_outage_reported_per_item(self, writer, store):
        store.offline = True
        request = BatchReviewRequest(
            check_id=CHECK_R1_A,
            restaurant_id=1,
            reviews=[BatchReviewEntry(dish_id=10, rating=4)],
        )
        response = asyncio.run(writer.submit_batch(request))
        assert response.created == 0
        assert response.processed[0].status == "error"


def test_list_newest_first(store, cache, bus):
    moments = iter([datetime(2026, 3, 14, 9, 0), datetime(2026, 3, 14, 10, 0)])
    store._clock = lambda: next(moments)
    writer = ReviewWriter(store, cache, bus)
    asyncio.run(writer.submit(10, CHECK_R1_A, 1, 3))
    asyncio.run(writer.submit(10, CHECK_R1_B, 1, 5))

    reviews = asyncio.run(writer.list_dish_reviews(10, 1))
    assert [r.order_id for r in reviews] == [CHECK_R1_B, CHECK_R1_A]
