"""Repository package exports."""

from webhook_engine.repositories.deliveries import DeliveryAttemptRepository, WebhookDeliveryRepository
from webhook_engine.repositories.endpoints import WebhookEndpointRepository
from webhook_engine.repositories.inbound import InboundEventRepository

__all__ = [
    "WebhookEndpointRepository",
    "WebhookDeliveryRepository",
    "DeliveryAttemptRepository",
    "InboundEventRepository",
]
