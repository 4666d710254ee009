"""Order (a "check") and OrderItem ORM models.

Orders are authored elsewhere; the review pipeline only reads them to check
that a reviewed dish was actually on the check, and to count today's orders
for the popularity fallback.
"""

from sqlalchemy import (
    Column, Integer, Text, String, Numeric,
    TIMESTAMP, ForeignKey, func,
)
from sqlalchemy.orm import relationship

from dish_ratings.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(
        Integer,
        ForeignKey("restaurants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    total_amount = Column(Numeric(10, 2), nullable=False, server_default="0")
    status = Column(String(32), nullable=False, server_default="pending")
    qr_code = Column(Text, nullable=True)
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    dish_id = Column(
        Integer,
        ForeignKey("dishes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantity = Column(Integer, nullable=False, server_default="1")
    price = Column(Numeric(10, 2), nullable=False, server_default="0")

    order = relationship("Order", back_populates="items")
