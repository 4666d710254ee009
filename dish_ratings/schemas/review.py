"""Pydantic schemas for review submission and listing."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReviewBody(BaseModel):
    """Request body for POST /api/restaurants/{rid}/dishes/{did}/reviews."""

    order_id: int
    rating: int
    comment: str = ""


class ReviewRead(BaseModel):
    """A persisted review; ``id`` is stable across resubmissions."""

    id: int
    dish_id: int
    order_id: int
    restaurant_id: int
    rating: int
    comment: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ── Batch submission ─────────────────────────────────────────────────────────


class BatchReviewEntry(BaseModel):
    dish_id: int
    rating: int
    comment: str = ""


class BatchReviewRequest(BaseModel):
    """All reviews for one check. ``check_id`` is the order id."""

    check_id: int = 0
    restaurant_id: int = 0
    reviews: list[BatchReviewEntry] = Field(default_factory=list)


class BatchItemResult(BaseModel):
    dish_id: int
    status: Literal["ok", "error"]
    message: Optional[str] = None


class BatchReviewResponse(BaseModel):
    processed: list[BatchItemResult]
    created: int
    failed: int
