"""HTTP surface over the in-memory pipeline, via FastAPI's TestClient."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import CHECK_R1_A, CHECK_R1_B, NOW
from dish_ratings.bootstrap import Services
from dish_ratings.main import create_app


async def _up() -> bool:
    return True


async def _down() -> bool:
    return False


@pytest.fixture
def services(writer, reader) -> Services:
    return Services(writer=writer, reader=reader, probes={"db": _up, "redis": _up})


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as c:
        yield c


def _review_url(restaurant_id=1, dish_id=10):
    return f"/api/restaurants/{restaurant_id}/dishes/{dish_id}/reviews"


# ── Health ───────────────────────────────────────────────────────────────────


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_ready(client):
    resp = client.get("/ready")
    assert resp.status_code == 200
    assert resp.json() == {"db": "ok", "redis": "ok"}


def test_not_ready_when_redis_down(services, client):
    services.probes["redis"] = _down
    resp = client.get("/ready")
    assert resp.status_code == 503
    assert resp.json() == {"db": "ok", "redis": "error"}


# ── Reviews ──────────────────────────────────────────────────────────────────


class TestReviewEndpoints:
    def test_create_and_resubmit(self, client):
        first = client.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 3, "comment": "ok"})
        assert first.status_code == 201
        body = first.json()
        assert body["dish_id"] == 10
        assert body["restaurant_id"] == 1

        second = client.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 5})
        assert second.status_code == 201
        assert second.json()["id"] == body["id"]
        assert second.json()["rating"] == 5

    @pytest.mark.parametrize("rating", [0, 6])
    def test_out_of_range_rating(self, client, rating):
        resp = client.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": rating})
        assert resp.status_code == 400

    def test_dish_not_on_check(self, client):
        resp = client.post(_review_url(dish_id=12), json={"order_id": CHECK_R1_A, "rating": 4})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "dish was not ordered for this check"

    def test_invalid_json(self, client):
        resp = client.post(
            _review_url(), content="{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400

    def test_duplicate_under_reject_policy(self, store, cache, bus, reader):
        from dish_ratings.services.review_writer import ReviewWriter

        services = Services(
            writer=ReviewWriter(store, cache, bus, duplicate_policy="reject"), reader=reader
        )
        with TestClient(create_app(services=services)) as c:
            assert c.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 4}).status_code == 201
            resp = c.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 2})
        assert resp.status_code == 409

    def test_store_outage_is_503(self, client, store):
        store.offline = True
        resp = client.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 4})
        assert resp.status_code == 503

    def test_list_reviews(self, client):
        client.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 4})
        client.post(_review_url(), json={"order_id": CHECK_R1_B, "rating": 2})

        resp = client.get(_review_url())
        assert resp.status_code == 200
        assert {r["order_id"] for r in resp.json()} == {CHECK_R1_A, CHECK_R1_B}

    def test_list_reviews_empty(self, client):
        assert client.get(_review_url(dish_id=11)).json() == []


class TestBatchEndpoint:
    def test_partial_success_is_201(self, client):
        resp = client.post(
            "/api/reviews",
            json={
                "check_id": CHECK_R1_A,
                "restaurant_id": 1,
                "reviews": [
                    {"dish_id": 10, "rating": 5},
                    {"dish_id": 12, "rating": 4},
                ],
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["created"] == 1
        assert body["failed"] == 1
        assert body["processed"][1]["status"] == "error"

    def test_all_failed_is_400_with_details(self, client):
        resp = client.post(
            "/api/reviews",
            json={"check_id": CHECK_R1_A, "restaurant_id": 1, "reviews": [{"dish_id": 21, "rating": 4}]},
        )
        assert resp.status_code == 400
        assert resp.json()["created"] == 0

    def test_missing_fields_is_400(self, client):
        resp = client.post("/api/reviews", json={"restaurant_id": 1, "reviews": []})
        assert resp.status_code == 400


# ── Analytics ────────────────────────────────────────────────────────────────


def _submit_and_aggregate(client, drain):
    client.post(_review_url(), json={"order_id": CHECK_R1_A, "rating": 4})
    client.post(_review_url(), json={"order_id": CHECK_R1_B, "rating": 5})
    client.post(_review_url(restaurant_id=2, dish_id=20), json={"order_id": 200, "rating": 3})
    asyncio.run(drain())


class TestAnalyticsEndpoints:
    def test_top_today_and_alltime(self, client, drain):
        _submit_and_aggregate(client, drain)

        today = client.get("/api/analytics/top-today").json()
        assert [(d["dish_id"], d["score"]) for d in today] == [(10, 2.0), (20, 1.0)]

        alltime = client.get("/api/analytics/top-alltime", params={"limit": 1}).json()
        assert alltime == [
            {"dish_id": 10, "dish_name": "Margherita", "restaurant_id": 1, "score": 4.5, "review_count": 2}
        ]

    def test_restaurant_summary_defaults_to_all(self, client, drain):
        _submit_and_aggregate(client, drain)

        summary = client.get("/api/restaurants/1/analytics").json()
        assert list(summary) == ["best_rated_dish"]
        assert summary["best_rated_dish"]["dish_id"] == 10

        both = client.get("/api/restaurants/1/analytics", params={"period": "week"}).json()
        assert set(both) == {"best_rated_dish", "most_popular_today"}

    def test_dish_stats(self, client, drain):
        _submit_and_aggregate(client, drain)

        resp = client.get("/api/restaurants/1/dishes/10/stats")
        assert resp.status_code == 200
        assert resp.json() == {
            "dish_id": 10,
            "avg_rating": 4.5,
            "review_count": 2,
            "last_updated": int(NOW.timestamp()),
        }

    def test_dish_stats_not_cached(self, client):
        assert client.get("/api/restaurants/1/dishes/11/stats").status_code == 404

    def test_top_dishes(self, client, drain):
        _submit_and_aggregate(client, drain)
        top = client.get("/api/restaurants/2/top-dishes", params={"limit": 5}).json()
        assert [(d["dish_id"], d["restaurant_id"]) for d in top] == [(20, 2)]

    def test_rating_distributions(self, client, drain):
        _submit_and_aggregate(client, drain)

        assert client.get("/api/restaurants/1/analytics/rating-distribution").json() == {
            "1": 0, "2": 0, "3": 0, "4": 1, "5": 1,
        }
        assert client.get("/api/analytics/rating-distribution").json() == {
            "1": 0, "2": 0, "3": 1, "4": 1, "5": 1,
        }

    def test_reads_degrade_when_cache_down(self, client, cache):
        cache.offline = True
        assert client.get("/api/restaurants/1/top-dishes").json() == []
        assert client.get("/api/restaurants/1/dishes/10/stats").status_code == 404
        assert client.get("/api/restaurants/1/analytics").json() == {}
