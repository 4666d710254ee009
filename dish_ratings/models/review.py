"""Review ORM model — one row per (dish, order, restaurant)."""

from sqlalchemy import (
    Column, Integer, Text, TIMESTAMP, ForeignKey,
    CheckConstraint, UniqueConstraint, func,
)

from dish_ratings.database import Base


class Review(Base):
    """
    A diner's rating of a dish they ordered.

    The natural key (dish_id, order_id, restaurant_id) is unique: resubmitting
    for the same key replaces rating/comment/created_at in place and keeps the
    surrogate id. The upsert in SqlReviewStore relies on uq_reviews_natural_key.
    """

    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint(
            "dish_id", "order_id", "restaurant_id", name="uq_reviews_natural_key"
        ),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    dish_id = Column(
        Integer,
        ForeignKey("dishes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    restaurant_id = Column(
        Integer,
        ForeignKey("restaurants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, server_default="")
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
