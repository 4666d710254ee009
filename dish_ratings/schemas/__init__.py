"""Pydantic schemas package."""

from dish_ratings.schemas.review import (
    ReviewBody,
    ReviewRead,
    BatchReviewEntry,
    BatchReviewRequest,
    BatchItemResult,
    BatchReviewResponse,
)
from dish_ratings.schemas.events import AggregationEvent, NEW_REVIEW, UPDATED_REVIEW
from dish_ratings.schemas.analytics import (
    CachedDishStat,
    DishRanking,
    RestaurantSummary,
)

__all__ = [
    "ReviewBody", "ReviewRead",
    "BatchReviewEntry", "BatchReviewRequest", "BatchItemResult", "BatchReviewResponse",
    "AggregationEvent", "NEW_REVIEW", "UPDATED_REVIEW",
    "CachedDishStat", "DishRanking", "RestaurantSummary",
]
