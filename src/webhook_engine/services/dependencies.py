"""Shared dependency providers for aiohttp handlers."""
# pyright: reportMissingImports=false
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

import structlog
from aiohttp import web

from service_common.db.migrations import SchemaState, check_schema
from service_common.db.pool import get_pool
from webhook_engine.repositories import (
    DeliveryAttemptRepository,
    InboundEventRepository,
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
)
from webhook_engine.services import (
    DeliveryQueryService,
    EndpointService,
    InboundVerifier,
    InboundWebhookService,
    WebhookPublisher,
)
from webhook_engine.services.inbound import InboundHandlerRegistry, inbound_handlers
from webhook_engine.settings import settings

logger = structlog.get_logger(__name__)

TService = TypeVar("TService")

WEBHOOK_TABLES = (
    "webhook_endpoints",
    "webhook_deliveries",
    "webhook_delivery_attempts",
    "inbound_webhook_events",
)

SCHEMA_STATE_KEY = "webhook_schema_state"
PUBLISHER_KEY = "webhook_publisher"
INBOUND_HANDLERS_KEY = "inbound_webhook_handlers"

_ENDPOINT_SERVICE_KEY = "endpoint_service"
_DELIVERY_SERVICE_KEY = "delivery_query_service"
_INBOUND_SERVICE_KEY = "inbound_webhook_service"

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


@dataclass
class AdminContext:
    user_id: UUID
    role: str


async def require_admin(request: web.Request) -> AdminContext:
    """Gateway identity headers; only ``settings.admin_role`` may use the admin API."""
    user_header = request.headers.get(USER_ID_HEADER)
    if user_header is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    try:
        user_id = UUID(user_header)
    except ValueError as exc:
        raise web.HTTPUnauthorized(text=f"Invalid {USER_ID_HEADER}") from exc

    role = request.headers.get(USER_ROLE_HEADER)
    if role != settings.admin_role:
        raise web.HTTPForbidden(reason="Admin role required")
    return AdminContext(user_id=user_id, role=role)


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_endpoint_service(request: web.Request) -> EndpointService:
    async def builder(_: web.Request) -> EndpointService:
        pool = await get_pool()
        return EndpointService(
            WebhookEndpointRepository(pool),
            WebhookDeliveryRepository(pool),
            max_attempts=settings.webhook_max_attempts,
        )

    return await _get_or_create_service(request, _ENDPOINT_SERVICE_KEY, builder)


async def get_delivery_query_service(request: web.Request) -> DeliveryQueryService:
    async def builder(_: web.Request) -> DeliveryQueryService:
        pool = await get_pool()
        return DeliveryQueryService(
            WebhookDeliveryRepository(pool),
            DeliveryAttemptRepository(pool),
            WebhookEndpointRepository(pool),
            max_attempts=settings.webhook_max_attempts,
        )

    return await _get_or_create_service(request, _DELIVERY_SERVICE_KEY, builder)


async def get_inbound_service(request: web.Request) -> InboundWebhookService:
    async def builder(req: web.Request) -> InboundWebhookService:
        pool = await get_pool()
        handlers: InboundHandlerRegistry = req.app.get(INBOUND_HANDLERS_KEY, inbound_handlers)
        return InboundWebhookService(InboundEventRepository(pool), handlers)

    return await _get_or_create_service(request, _INBOUND_SERVICE_KEY, builder)


def get_inbound_verifier() -> InboundVerifier | None:
    """``None`` when no inbound secret is configured."""
    if settings.inbound_webhook_secret is None:
        return None
    return InboundVerifier(
        settings.inbound_webhook_secret.get_secret_value(),
        tolerance_seconds=settings.inbound_tolerance_seconds,
    )


async def init_webhook_publisher(app: web.Application) -> None:
    """Startup hook: check the schema once, then build the shared publisher."""
    pool = await get_pool()
    schema = await check_schema(pool, WEBHOOK_TABLES)
    if not schema.ready:
        logger.error("Webhook tables missing, run migrations", missing=schema.missing)
    app[SCHEMA_STATE_KEY] = schema
    app[PUBLISHER_KEY] = WebhookPublisher(
        WebhookDeliveryRepository(pool),
        max_attempts=settings.webhook_max_attempts,
        schema=schema,
    )


def get_schema_state(app: web.Application) -> SchemaState:
    return app.get(SCHEMA_STATE_KEY) or SchemaState()


async def enqueue_event(app: web.Application, event_type: str, payload: Any) -> int:
    """Producer entry point for business code running inside the app.

    Best-effort: never raises, returns the number of deliveries created.
    """
    publisher: WebhookPublisher | None = app.get(PUBLISHER_KEY)
    if publisher is None:
        logger.warning("Webhook publisher not initialised, event dropped", event_type=event_type)
        return 0
    return await publisher.enqueue_event(event_type, payload)
