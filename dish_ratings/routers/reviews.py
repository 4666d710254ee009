"""
Review endpoints — single submission, listing, and per-check batches.
Thin adapters over ReviewWriter; error classes map onto status codes here.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from dish_ratings.dependencies import get_writer
from dish_ratings.schemas.review import (
    BatchReviewRequest,
    BatchReviewResponse,
    ReviewBody,
    ReviewRead,
)
from dish_ratings.services.errors import (
    ConflictError,
    ReviewError,
    TransientStoreError,
    ValidationError,
)
from dish_ratings.services.review_writer import ReviewWriter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reviews"])


def _to_http(exc: ReviewError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, TransientStoreError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Review storage temporarily unavailable",
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "/restaurants/{restaurant_id}/dishes/{dish_id}/reviews",
    response_model=ReviewRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_review(
    restaurant_id: int,
    dish_id: int,
    body: ReviewBody,
    writer: ReviewWriter = Depends(get_writer),
) -> ReviewRead:
    """Submit (or resubmit) the review of one dish on one check."""
    try:
        return await writer.submit(
            dish_id=dish_id,
            order_id=body.order_id,
            restaurant_id=restaurant_id,
            rating=body.rating,
            comment=body.comment,
        )
    except ReviewError as exc:
        logger.info("Review for dish %d rejected: %s", dish_id, exc)
        raise _to_http(exc) from exc


@router.get(
    "/restaurants/{restaurant_id}/dishes/{dish_id}/reviews",
    response_model=list[ReviewRead],
)
async def list_reviews(
    restaurant_id: int,
    dish_id: int,
    writer: ReviewWriter = Depends(get_writer),
) -> list[ReviewRead]:
    """All reviews of a dish, newest first."""
    try:
        return await writer.list_dish_reviews(dish_id, restaurant_id)
    except ReviewError as exc:
        raise _to_http(exc) from exc


@router.post("/reviews", response_model=BatchReviewResponse)
async def create_reviews_batch(
    body: BatchReviewRequest,
    writer: ReviewWriter = Depends(get_writer),
) -> JSONResponse:
    """
    Review several dishes of one check at once. 201 when at least one review
    was recorded, 400 otherwise; per-dish outcomes are in ``processed``.
    """
    try:
        result = await writer.submit_batch(body)
    except ReviewError as exc:
        raise _to_http(exc) from exc

    code = status.HTTP_201_CREATED if result.created > 0 else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=result.model_dump())
