"""
Event bus over a Redis Stream with a consumer group.

Entries carry two fields:
  key   — partition key (dish_id)
  value — the AggregationEvent JSON wire shape

Delivery is at-least-once: the consumer acknowledges (XACK) only after it has
processed an entry, and on start-up re-reads its own pending entries before
asking for new ones, so anything in flight during a crash is delivered again.
"""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from dish_ratings.schemas.events import AggregationEvent
from dish_ratings.services.errors import EventPublishError, TransientStoreError
from dish_ratings.services.interfaces import Delivery

logger = logging.getLogger(__name__)


class RedisStreamPublisher:
    """EventPublisher that appends to the review stream."""

    def __init__(self, client: Redis, stream: str = "reviews", maxlen: int = 100_000) -> None:
        self._redis = client
        self._stream = stream
        self._maxlen = maxlen

    async def publish(self, event: AggregationEvent) -> None:
        try:
            await self._redis.xadd(
                self._stream,
                {"key": event.partition_key, "value": event.model_dump_json()},
                maxlen=self._maxlen,
                approximate=True,
            )
        except RedisError as exc:
            raise EventPublishError(f"failed to emit event to {self._stream}: {exc}") from exc


class RedisStreamSource:
    """EventSource reading the review stream as one member of a consumer group."""

    def __init__(
        self,
        client: Redis,
        stream: str = "reviews",
        group: str = "agg-svc-consumer",
        consumer: str = "agg-svc-1",
    ) -> None:
        self._redis = client
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._group_ready = False
        self._draining_pending = True
        self._pending_cursor = "0"

    async def ensure_group(self) -> None:
        """Create the consumer group (and stream) if missing."""
        try:
            await self._redis.xgroup_create(self._stream, self._group, id="0", mkstream=True)
            logger.info("Created consumer group %s on %s", self._group, self._stream)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise TransientStoreError(f"cannot create consumer group: {exc}") from exc
        except RedisError as exc:
            raise TransientStoreError(f"cannot create consumer group: {exc}") from exc
        self._group_ready = True

    async def read(self, count: int, block_ms: int) -> list[Delivery]:
        if not self._group_ready:
            await self.ensure_group()

        # Pending replay walks this consumer's unacknowledged entries from the
        # last id it handed out, then ">" asks for new ones
        start = self._pending_cursor if self._draining_pending else ">"
        try:
            response = await self._redis.xreadgroup(
                self._group,
                self._consumer,
                {self._stream: start},
                count=count,
                block=None if self._draining_pending else block_ms,
            )
        except RedisError as exc:
            raise TransientStoreError(f"stream read failed: {exc}") from exc

        deliveries = self._parse(response)
        if self._draining_pending:
            if deliveries:
                self._pending_cursor = deliveries[-1].message_id
            else:
                self._draining_pending = False
        return deliveries

    def _parse(self, response: Any) -> list[Delivery]:
        if not response:
            return []
        if isinstance(response, dict):
            # RESP3 replies nest each stream's entries one level deeper
            streams = [(name, value[0] if value else []) for name, value in response.items()]
        else:
            streams = response

        deliveries: list[Delivery] = []
        for _stream, entries in streams:
            for message_id, fields in entries:
                if not fields:
                    # Trimmed away while pending; nothing left to process
                    deliveries.append(Delivery(message_id=message_id, payload=b""))
                    continue
                deliveries.append(
                    Delivery(
                        message_id=message_id,
                        payload=fields.get("value", ""),
                        key=fields.get("key"),
                    )
                )
        return deliveries

    async def ack(self, delivery: Delivery) -> None:
        try:
            await self._redis.xack(self._stream, self._group, delivery.message_id)
        except RedisError as exc:
            raise TransientStoreError(f"ack failed for {delivery.message_id}: {exc}") from exc
