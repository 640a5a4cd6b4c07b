"""Producer-facing webhook publisher (fan-out into the delivery store)."""
from __future__ import annotations

import asyncio
from typing import Any

import structlog

from service_common.db.migrations import SchemaState
from service_common.worker import Clock, utc_now
from webhook_engine.domain.dto import is_valid_event_name
from webhook_engine.repositories.deliveries import WebhookDeliveryRepository

logger = structlog.get_logger(__name__)


class WebhookPublisher:
    """Fire-and-forget entry point for business code.

    :meth:`enqueue_event` never raises: storage problems are logged and the
    event is dropped, so a webhook outage cannot fail the caller's operation.
    """

    def __init__(
        self,
        delivery_repository: WebhookDeliveryRepository,
        *,
        max_attempts: int = 5,
        schema: SchemaState | None = None,
        clock: Clock = utc_now,
    ):
        self._deliveries = delivery_repository
        self._max_attempts = max_attempts
        self._schema = schema
        self._clock = clock

    async def enqueue_event(self, event_type: str, payload: Any) -> int:
        """Create one PENDING delivery per subscribed endpoint. Returns how many."""
        if not isinstance(event_type, str) or not is_valid_event_name(event_type):
            logger.warning("Invalid webhook event name, event dropped", event_type=repr(event_type))
            return 0
        if self._schema is not None and not self._schema.ready:
            logger.warning(
                "Webhook tables missing, event dropped",
                event_type=event_type,
                missing=self._schema.missing,
            )
            return 0
        try:
            delivery_ids = await self._deliveries.enqueue_for_event(
                event_type,
                payload,
                max_attempts=self._max_attempts,
                now=self._clock(),
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Webhook enqueue failed", event_type=event_type)
            return 0
        if delivery_ids:
            logger.info("Webhook event enqueued", event_type=event_type, deliveries=len(delivery_ids))
        return len(delivery_ids)
