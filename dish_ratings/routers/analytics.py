"""
Analytics endpoints — leaderboards, per-restaurant summaries, dish stats and
rating distributions. Every read degrades to an empty result rather than an
error; only a dish stat missing from the cache is a 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from dish_ratings.dependencies import get_reader
from dish_ratings.schemas.analytics import CachedDishStat, DishRanking, RestaurantSummary
from dish_ratings.services.leaderboard import LeaderboardReader

router = APIRouter(prefix="/api", tags=["analytics"])


# ── Global ───────────────────────────────────────────────────────────────────


@router.get("/analytics/top-today", response_model=list[DishRanking])
async def top_today(
    limit: int = Query(10, ge=1, le=100),
    reader: LeaderboardReader = Depends(get_reader),
) -> list[DishRanking]:
    return await reader.top_today(limit)


@router.get("/analytics/top-alltime", response_model=list[DishRanking])
async def top_alltime(
    limit: int = Query(10, ge=1, le=100),
    reader: LeaderboardReader = Depends(get_reader),
) -> list[DishRanking]:
    return await reader.top_alltime(limit)


@router.get("/analytics/rating-distribution", response_model=dict[int, int])
async def global_rating_distribution(
    reader: LeaderboardReader = Depends(get_reader),
) -> dict[int, int]:
    return await reader.rating_distribution()


# ── Per restaurant ───────────────────────────────────────────────────────────


@router.get(
    "/restaurants/{restaurant_id}/analytics",
    response_model=RestaurantSummary,
    response_model_exclude_none=True,
)
async def restaurant_summary(
    restaurant_id: int,
    period: str = Query("all"),
    reader: LeaderboardReader = Depends(get_reader),
) -> RestaurantSummary:
    """period: today | day | all; anything else returns both today's and all-time."""
    return await reader.restaurant_summary(restaurant_id, period)


@router.get("/restaurants/{restaurant_id}/dishes/{dish_id}/stats", response_model=CachedDishStat)
async def dish_stats(
    restaurant_id: int,
    dish_id: int,
    reader: LeaderboardReader = Depends(get_reader),
) -> CachedDishStat:
    stat = await reader.dish_stat(restaurant_id, dish_id)
    if stat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dish stats not found")
    return stat


@router.get("/restaurants/{restaurant_id}/top-dishes", response_model=list[DishRanking])
async def top_dishes(
    restaurant_id: int,
    limit: int = Query(10, ge=1, le=100),
    reader: LeaderboardReader = Depends(get_reader),
) -> list[DishRanking]:
    return await reader.top_dishes(restaurant_id, limit)


@router.get(
    "/restaurants/{restaurant_id}/analytics/rating-distribution",
    response_model=dict[int, int],
)
async def restaurant_rating_distribution(
    restaurant_id: int,
    reader: LeaderboardReader = Depends(get_reader),
) -> dict[int, int]:
    return await reader.rating_distribution(restaurant_id)
