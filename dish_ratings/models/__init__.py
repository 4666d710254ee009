"""SQLAlchemy ORM models package — the Primary Store schema."""

from dish_ratings.database import Base
from dish_ratings.models.restaurant import Dish, Restaurant
from dish_ratings.models.order import Order, OrderItem
from dish_ratings.models.review import Review

__all__ = ["Base", "Restaurant", "Dish", "Order", "OrderItem", "Review"]
