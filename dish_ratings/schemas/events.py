"""AggregationEvent — the message carried from the write path to the consumer.

Field names are the wire contract shared with any other producer/consumer of
the ``reviews`` topic; do not rename them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

NEW_REVIEW = "new_review"
UPDATED_REVIEW = "updated_review"


class AggregationEvent(BaseModel):
    type: Literal["new_review", "updated_review"]
    dish_id: int
    restaurant_id: int
    order_id: int
    rating: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def partition_key(self) -> str:
        """Events for one dish share a partition so they stay ordered."""
        return str(self.dish_id)
