"""
Cache key layout. Other services read these keys directly, so the format
must stay byte-for-byte identical:

  dish:{restaurant_id}:{dish_id}                    hash  avg_rating, review_count, last_updated
  analytics:daily:{YYYY-MM-DD}:{restaurant_id}      zset  dish_id -> popularity
  analytics:alltime:{restaurant_id}                 zset  dish_id -> avg_rating
  review:{dish_id}:{order_id}                       string marker "1"
"""

from __future__ import annotations

from datetime import date

DAILY_PREFIX = "analytics:daily:"
ALLTIME_PREFIX = "analytics:alltime:"


def dish_stat_key(restaurant_id: int, dish_id: int) -> str:
    return f"dish:{restaurant_id}:{dish_id}"


def daily_popularity_key(day: date, restaurant_id: int) -> str:
    return f"{DAILY_PREFIX}{day.isoformat()}:{restaurant_id}"


def daily_popularity_pattern(day: date) -> str:
    """SCAN pattern matching every restaurant's shard for ``day``."""
    return f"{DAILY_PREFIX}{day.isoformat()}:*"


def alltime_key(restaurant_id: int) -> str:
    return f"{ALLTIME_PREFIX}{restaurant_id}"


def alltime_pattern() -> str:
    return f"{ALLTIME_PREFIX}*"


def review_marker_key(dish_id: int, order_id: int) -> str:
    return f"review:{dish_id}:{order_id}"

