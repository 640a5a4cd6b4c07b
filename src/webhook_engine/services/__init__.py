"""Domain services exports."""

from webhook_engine.services.deliveries import DeliveryQueryService
from webhook_engine.services.endpoints import EndpointService
from webhook_engine.services.inbound import InboundVerifier, InboundWebhookService
from webhook_engine.services.webhooks import WebhookPublisher

__all__ = [
    "EndpointService",
    "DeliveryQueryService",
    "WebhookPublisher",
    "InboundVerifier",
    "InboundWebhookService",
]
