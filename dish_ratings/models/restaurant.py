"""Restaurant and Dish ORM models.

``dishes.avg_rating`` and ``dishes.review_count`` are the denormalised
DishAggregate columns; only the aggregation consumer writes them.
"""

from sqlalchemy import (
    Column, Integer, Text, String, Numeric,
    TIMESTAMP, ForeignKey, func,
)
from sqlalchemy.orm import relationship

from dish_ratings.database import Base


class Restaurant(Base):
    """A restaurant whose dishes can be reviewed."""

    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    address = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    # Relationships
    dishes = relationship(
        "Dish", back_populates="restaurant", cascade="all, delete-orphan"
    )


class Dish(Base):
    """A menu item. Carries the recomputed rating aggregate."""

    __tablename__ = "dishes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(
        Integer,
        ForeignKey("restaurants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, server_default="0")
    image_url = Column(String(512), nullable=True)

    # DishAggregate — round(mean(rating), 2) and count(rating) over reviews
    avg_rating = Column(Numeric(3, 2), nullable=True)
    review_count = Column(Integer, nullable=False, server_default="0")

    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    # Relationships
    restaurant = relationship("Restaurant", back_populates="dishes")
