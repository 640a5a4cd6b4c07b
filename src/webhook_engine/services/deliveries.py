"""Admin introspection over deliveries and their attempt logs."""
from __future__ import annotations

from typing import List

import structlog

from service_common.worker import Clock, utc_now
from webhook_engine.domain.dto import DeliveryListFilter, DeliveryReplayDTO
from webhook_engine.domain.enums import DeliveryStatus
from webhook_engine.domain.models import DeliveryDetail, WebhookDelivery
from webhook_engine.repositories.deliveries import DeliveryAttemptRepository, WebhookDeliveryRepository
from webhook_engine.repositories.endpoints import WebhookEndpointRepository

logger = structlog.get_logger(__name__)


class DeliveryQueryService:
    def __init__(
        self,
        delivery_repository: WebhookDeliveryRepository,
        attempt_repository: DeliveryAttemptRepository,
        endpoint_repository: WebhookEndpointRepository,
        *,
        max_attempts: int = 5,
        clock: Clock = utc_now,
    ):
        self._deliveries = delivery_repository
        self._attempts = attempt_repository
        self._endpoints = endpoint_repository
        self._max_attempts = max_attempts
        self._clock = clock

    async def list_deliveries(
        self, filters: DeliveryListFilter
    ) -> tuple[List[WebhookDelivery], int | None]:
        return await self._deliveries.list(filters)

    async def list_dead(self, filters: DeliveryListFilter) -> tuple[List[WebhookDelivery], int | None]:
        return await self._deliveries.list(filters.model_copy(update={"status": DeliveryStatus.DEAD}))

    async def get_delivery(self, delivery_id: int) -> DeliveryDetail:
        delivery = await self._deliveries.get(delivery_id)
        attempts = await self._attempts.list_for_delivery(delivery_id)
        return DeliveryDetail(delivery=delivery, attempts=attempts)

    async def replay(self, delivery_id: int, data: DeliveryReplayDTO) -> WebhookDelivery:
        """Queue a fresh delivery with the same event and payload.

        The source row is left untouched; terminal deliveries stay immutable.
        """
        source = await self._deliveries.get(delivery_id)
        endpoint_id = data.endpoint_id if data.endpoint_id is not None else source.endpoint_id
        endpoint = await self._endpoints.get(endpoint_id)
        replayed = await self._deliveries.create(
            endpoint_id=endpoint.id,
            event=source.event,
            payload=source.payload,
            max_attempts=self._max_attempts,
            now=self._clock(),
        )
        logger.info(
            "Webhook delivery replayed",
            source_delivery_id=source.id,
            delivery_id=replayed.id,
            endpoint_id=endpoint.id,
        )
        return replayed
