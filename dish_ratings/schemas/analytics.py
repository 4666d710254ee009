"""Pydantic schemas for leaderboards and cached dish statistics."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class DishRanking(BaseModel):
    """A dish's position in a ranking. ``score`` is popularity or avg rating."""

    dish_id: int
    dish_name: str
    restaurant_id: int
    score: float
    review_count: int = 0


class CachedDishStat(BaseModel):
    """
    The cache mirror of a dish's aggregate. Expires after 24 h; a missing
    entry means "unknown", never "zero".
    """

    dish_id: int
    avg_rating: float
    review_count: int
    last_updated: int  # epoch seconds


class RestaurantSummary(BaseModel):
    """Per-restaurant highlights. Absent fields mean "no data", not an error."""

    most_popular_dish: Optional[DishRanking] = None
    best_rated_dish: Optional[DishRanking] = None
    most_popular_today: Optional[DishRanking] = None
