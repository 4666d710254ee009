"""
SqlReviewStore — the Primary Store (PostgreSQL) behind the ReviewStore interface.

Raw SQL through SQLAlchemy's async session. Every driver/database failure is
re-raised as TransientStoreError; callers decide whether to surface or degrade.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dish_ratings.schemas.analytics import DishRanking
from dish_ratings.schemas.review import ReviewRead
from dish_ratings.services.errors import TransientStoreError
from dish_ratings.services.interfaces import DishAggregate, DishMeta, UpsertResult

logger = logging.getLogger(__name__)

_STORE_ERRORS = (SQLAlchemyError, OSError)


class SqlReviewStore:
    """ReviewStore over an async_sessionmaker. One session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _fetch(self, sql: str, params: dict[str, Any]) -> list[Any]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(text(sql), params)
                return result.fetchall()
        except _STORE_ERRORS as exc:
            raise TransientStoreError(f"primary store query failed: {exc}") from exc

    # ── Write path ───────────────────────────────────────────────────────────

    async def dish_in_order(self, dish_id: int, order_id: int, restaurant_id: int) -> bool:
        rows = await self._fetch(
            """
            SELECT EXISTS(
                SELECT 1 FROM order_items oi
                JOIN orders o ON oi.order_id = o.id
                WHERE oi.dish_id = :dish_id
                  AND oi.order_id = :order_id
                  AND o.restaurant_id = :restaurant_id
            ) AS present
            """,
            {"dish_id": dish_id, "order_id": order_id, "restaurant_id": restaurant_id},
        )
        return bool(rows and rows[0].present)

    async def upsert_review(
        self,
        dish_id: int,
        order_id: int,
        restaurant_id: int,
        rating: int,
        comment: str,
    ) -> UpsertResult:
        """
        Insert or replace the review for the natural key in one statement.
        uq_reviews_natural_key makes concurrent first submissions collapse
        into one row; xmax = 0 only for a freshly inserted tuple.
        """
        params = {
            "dish_id": dish_id,
            "order_id": order_id,
            "restaurant_id": restaurant_id,
            "rating": rating,
            "comment": comment,
        }
        try:
            async with self._session_factory() as db:
                try:
                    result = await db.execute(
                        text("""
                            INSERT INTO reviews (dish_id, order_id, restaurant_id, rating, comment)
                            VALUES (:dish_id, :order_id, :restaurant_id, :rating, :comment)
                            ON CONFLICT ON CONSTRAINT uq_reviews_natural_key
                            DO UPDATE SET rating     = EXCLUDED.rating,
                                          comment    = EXCLUDED.comment,
                                          created_at = CURRENT_TIMESTAMP
                            RETURNING id, dish_id, order_id, restaurant_id, rating,
                                      comment, created_at, (xmax = 0) AS inserted
                        """),
                        params,
                    )
                    row = result.fetchone()
                    await db.commit()
                except _STORE_ERRORS:
                    await db.rollback()
                    raise
        except _STORE_ERRORS as exc:
            logger.error("Failed to upsert review for dish %d order %d: %s", dish_id, order_id, exc)
            raise TransientStoreError(f"failed to upsert review: {exc}") from exc

        mapping = dict(row._mapping)
        created = bool(mapping.pop("inserted"))
        return UpsertResult(review=ReviewRead.model_validate(mapping), created=created)

    async def list_dish_reviews(self, dish_id: int, restaurant_id: int) -> list[ReviewRead]:
        rows = await self._fetch(
            """
            SELECT id, dish_id, order_id, restaurant_id, rating, comment, created_at
            FROM reviews
            WHERE dish_id = :dish_id AND restaurant_id = :restaurant_id
            ORDER BY created_at DESC
            """,
            {"dish_id": dish_id, "restaurant_id": restaurant_id},
        )
        return [ReviewRead.model_validate(dict(r._mapping)) for r in rows]

    # ── Aggregation ──────────────────────────────────────────────────────────

    async def refresh_dish_aggregate(
        self, dish_id: int, restaurant_id: int
    ) -> Optional[DishAggregate]:
        """Recompute from every review row, store it, then read back what was stored."""
        params = {"dish_id": dish_id, "restaurant_id": restaurant_id}
        try:
            async with self._session_factory() as db:
                try:
                    await db.execute(
                        text("""
                            UPDATE dishes
                            SET avg_rating = (
                                    SELECT ROUND(AVG(rating::numeric), 2)
                                    FROM reviews WHERE dish_id = :dish_id
                                ),
                                review_count = (
                                    SELECT COUNT(*)
                                    FROM reviews WHERE dish_id = :dish_id
                                )
                            WHERE id = :dish_id AND restaurant_id = :restaurant_id
                        """),
                        params,
                    )
                    await db.commit()
                except _STORE_ERRORS:
                    await db.rollback()
                    raise

                result = await db.execute(
                    text("""
                        SELECT COALESCE(avg_rating, 0) AS avg_rating,
                               COALESCE(review_count, 0) AS review_count
                        FROM dishes
                        WHERE id = :dish_id AND restaurant_id = :restaurant_id
                    """),
                    params,
                )
                row = result.fetchone()
        except _STORE_ERRORS as exc:
            raise TransientStoreError(f"failed to refresh dish aggregate: {exc}") from exc

        if row is None:
            return None
        return DishAggregate(
            dish_id=dish_id,
            restaurant_id=restaurant_id,
            avg_rating=float(row.avg_rating),
            review_count=int(row.review_count),
        )

    # ── Read path ────────────────────────────────────────────────────────────

    async def dish_meta(self, dish_id: int) -> Optional[DishMeta]:
        rows = await self._fetch(
            """
            SELECT id, name, restaurant_id, COALESCE(review_count, 0) AS review_count
            FROM dishes WHERE id = :dish_id
            """,
            {"dish_id": dish_id},
        )
        if not rows:
            return None
        row = rows[0]
        return DishMeta(
            dish_id=row.id,
            name=row.name,
            restaurant_id=row.restaurant_id,
            review_count=int(row.review_count),
        )

    async def top_today_from_orders(self, day: date, limit: int) -> list[DishRanking]:
        """Popularity straight from today's order items."""
        rows = await self._fetch(
            """
            SELECT d.id, d.name, d.restaurant_id, COUNT(oi.id) AS score
            FROM dishes d
            JOIN order_items oi ON d.id = oi.dish_id
            JOIN orders o ON oi.order_id = o.id
            WHERE o.created_at::date = :day
            GROUP BY d.id, d.name, d.restaurant_id
            ORDER BY score DESC
            LIMIT :limit
            """,
            {"day": day, "limit": limit},
        )
        return [
            DishRanking(
                dish_id=r.id,
                dish_name=r.name,
                restaurant_id=r.restaurant_id,
                score=float(r.score),
            )
            for r in rows
        ]

    async def top_rated_dishes(self, limit: int) -> list[DishRanking]:
        rows = await self._fetch(
            """
            SELECT id, name, restaurant_id,
                   COALESCE(avg_rating, 0) AS score,
                   COALESCE(review_count, 0) AS review_count
            FROM dishes
            WHERE avg_rating > 0
            ORDER BY avg_rating DESC
            LIMIT :limit
            """,
            {"limit": limit},
        )
        return [
            DishRanking(
                dish_id=r.id,
                dish_name=r.name,
                restaurant_id=r.restaurant_id,
                score=float(r.score),
                review_count=int(r.review_count),
            )
            for r in rows
        ]

    async def rating_distribution(self, restaurant_id: Optional[int]) -> dict[int, int]:
        if restaurant_id is None:
            sql = """
                SELECT rating, COUNT(*) AS total
                FROM reviews
                GROUP BY rating
                ORDER BY rating
            """
            params: dict[str, Any] = {}
        else:
            sql = """
                SELECT rating, COUNT(*) AS total
                FROM reviews
                WHERE restaurant_id = :restaurant_id
                GROUP BY rating
                ORDER BY rating
            """
            params = {"restaurant_id": restaurant_id}

        rows = await self._fetch(sql, params)
        return {int(r.rating): int(r.total) for r in rows}
