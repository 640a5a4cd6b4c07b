"""Durable processed-record store for inbound webhook idempotency."""
from __future__ import annotations

from datetime import datetime

from webhook_engine.repositories.base import BaseRepository


class InboundEventRepository(BaseRepository):
    """Persistence layer for inbound delivery ids that were already applied."""

    async def record_once(self, delivery_id: str, event: str, received_at: datetime) -> bool:
        """Insert the delivery id. Returns False if it was already recorded."""
        record = await self._fetchrow(
            """
            INSERT INTO inbound_webhook_events (delivery_id, event, received_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (delivery_id) DO NOTHING
            RETURNING delivery_id
            """,
            delivery_id,
            event,
            received_at,
        )
        return record is not None

    async def release(self, delivery_id: str) -> None:
        """Forget a delivery id so a redelivery is applied again."""
        await self._execute("DELETE FROM inbound_webhook_events WHERE delivery_id = $1", delivery_id)

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self._execute(
            "DELETE FROM inbound_webhook_events WHERE received_at < $1",
            cutoff,
        )
        return self._affected(result)
