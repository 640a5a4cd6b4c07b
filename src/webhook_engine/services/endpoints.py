"""Endpoint registry service (CRUD, secret rotation, test pings)."""
from __future__ import annotations

from typing import List

import structlog

from service_common.worker import Clock, utc_now
from webhook_engine.domain.dto import EndpointCreateDTO, EndpointUpdateDTO
from webhook_engine.domain.models import EndpointWithSecret, WebhookDelivery, WebhookEndpoint
from webhook_engine.repositories.deliveries import WebhookDeliveryRepository
from webhook_engine.repositories.endpoints import WebhookEndpointRepository
from webhook_engine.services.signing import generate_secret

logger = structlog.get_logger(__name__)

TEST_EVENT = "webhook.test"


class EndpointService:
    def __init__(
        self,
        endpoint_repository: WebhookEndpointRepository,
        delivery_repository: WebhookDeliveryRepository,
        *,
        max_attempts: int = 5,
        clock: Clock = utc_now,
    ):
        self._endpoints = endpoint_repository
        self._deliveries = delivery_repository
        self._max_attempts = max_attempts
        self._clock = clock

    async def create_endpoint(self, data: EndpointCreateDTO) -> EndpointWithSecret:
        secret = generate_secret()
        endpoint = await self._endpoints.create(url=data.url, events=data.events, secret=secret)
        logger.info("Webhook endpoint created", endpoint_id=endpoint.id, events=sorted(endpoint.events))
        return EndpointWithSecret(endpoint=endpoint, secret=secret)

    async def list_endpoints(self) -> List[WebhookEndpoint]:
        return await self._endpoints.list_all()

    async def get_endpoint(self, endpoint_id: int) -> WebhookEndpoint:
        return await self._endpoints.get(endpoint_id)

    async def update_endpoint(self, endpoint_id: int, data: EndpointUpdateDTO) -> WebhookEndpoint:
        endpoint = await self._endpoints.update(
            endpoint_id,
            url=data.url,
            enabled=data.enabled,
            events=data.events,
        )
        logger.info(
            "Webhook endpoint updated",
            endpoint_id=endpoint_id,
            fields=sorted(data.model_dump(exclude_none=True)),
        )
        return endpoint

    async def rotate_secret(self, endpoint_id: int) -> EndpointWithSecret:
        """Replace the secret. The old one stops verifying on the very next send."""
        secret = generate_secret()
        endpoint = await self._endpoints.set_secret(endpoint_id, secret)
        logger.info("Webhook endpoint secret rotated", endpoint_id=endpoint_id)
        return EndpointWithSecret(endpoint=endpoint, secret=secret)

    async def delete_endpoint(self, endpoint_id: int) -> None:
        await self._endpoints.delete(endpoint_id)
        logger.info("Webhook endpoint deleted", endpoint_id=endpoint_id)

    async def send_test(self, endpoint_id: int) -> WebhookDelivery:
        """Queue a ``webhook.test`` delivery for one endpoint, subscribed or not."""
        endpoint = await self._endpoints.get(endpoint_id)
        now = self._clock()
        delivery = await self._deliveries.create(
            endpoint_id=endpoint.id,
            event=TEST_EVENT,
            payload={"event": TEST_EVENT, "endpoint_id": endpoint.id, "sent_at": now.isoformat()},
            max_attempts=self._max_attempts,
            now=now,
        )
        logger.info("Webhook test event queued", endpoint_id=endpoint.id, delivery_id=delivery.id)
        return delivery
