"""Inbound webhook verification and exactly-once application."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import structlog

from service_common.worker import Clock, utc_now
from webhook_engine.core.exceptions import ReplayError, SignatureError, ValidationError
from webhook_engine.repositories.inbound import InboundEventRepository
from webhook_engine.services.signing import (
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    SIGNATURE_RE,
    TIMESTAMP_HEADER,
    verify_signature,
)

logger = structlog.get_logger(__name__)

_TIMESTAMP_RE = re.compile(r"^[0-9]{1,12}$")


@dataclass(frozen=True)
class InboundWebhook:
    delivery_id: str
    event: str
    timestamp: int
    payload: Any


InboundHandler = Callable[[InboundWebhook], Awaitable[None]]


class InboundHandlerRegistry:
    """Side effects for inbound events, keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, InboundHandler] = {}

    def register(self, event: str) -> Callable[[InboundHandler], InboundHandler]:
        def decorator(fn: InboundHandler) -> InboundHandler:
            if event in self._handlers:
                raise ValueError(f"Handler already registered for {event}")
            self._handlers[event] = fn
            return fn

        return decorator

    def get(self, event: str) -> InboundHandler | None:
        return self._handlers.get(event)

    def __contains__(self, event: object) -> bool:
        return event in self._handlers


inbound_handlers = InboundHandlerRegistry()


@inbound_handlers.register("webhook.test")
async def acknowledge_test_event(webhook: InboundWebhook) -> None:
    logger.info("Inbound test webhook received", delivery_id=webhook.delivery_id)


class InboundVerifier:
    """Checks header shape, freshness and HMAC of a received webhook."""

    def __init__(self, secret: str, *, tolerance_seconds: int = 300, clock: Clock = utc_now):
        self._secret = secret
        self._tolerance = tolerance_seconds
        self._clock = clock

    def verify(self, headers: Mapping[str, str], body: bytes) -> InboundWebhook:
        """Return the parsed webhook or raise.

        ``body`` must be the raw request bytes; the HMAC is computed over them
        exactly as received.
        """
        delivery_id = headers.get(DELIVERY_ID_HEADER)
        event = headers.get(EVENT_HEADER)
        timestamp = headers.get(TIMESTAMP_HEADER)
        signature = headers.get(SIGNATURE_HEADER)
        if not delivery_id or not event or not timestamp or not signature:
            raise ValidationError("Missing webhook headers")

        match = SIGNATURE_RE.match(signature)
        if match is None:
            raise ValidationError("Malformed signature header")
        if _TIMESTAMP_RE.match(timestamp) is None:
            raise ValidationError("Invalid timestamp header")

        now = int(self._clock().timestamp())
        if abs(now - int(timestamp)) > self._tolerance:
            raise ReplayError("Timestamp outside tolerance window")

        if not verify_signature(self._secret, timestamp, event, body, match.group(1)):
            raise SignatureError("Signature mismatch")

        try:
            payload = json.loads(body) if body else None
        except ValueError as exc:
            raise ValidationError("Body must be valid JSON") from exc
        return InboundWebhook(
            delivery_id=delivery_id,
            event=event,
            timestamp=int(timestamp),
            payload=payload,
        )


class InboundWebhookService:
    def __init__(
        self,
        repository: InboundEventRepository,
        handlers: InboundHandlerRegistry,
        *,
        clock: Clock = utc_now,
    ):
        self._repository = repository
        self._handlers = handlers
        self._clock = clock

    async def process(self, webhook: InboundWebhook) -> bool:
        """Apply the side effect once per delivery id. Returns True for a duplicate."""
        first = await self._repository.record_once(webhook.delivery_id, webhook.event, self._clock())
        if not first:
            logger.info(
                "Inbound webhook duplicate ignored",
                delivery_id=webhook.delivery_id,
                event_type=webhook.event,
            )
            return True

        handler = self._handlers.get(webhook.event)
        if handler is None:
            logger.info("Inbound webhook has no handler", delivery_id=webhook.delivery_id, event_type=webhook.event)
            return False
        try:
            await handler(webhook)
        except Exception:
            # let the sender's redelivery apply it again
            await self._repository.release(webhook.delivery_id)
            raise
        logger.info("Inbound webhook applied", delivery_id=webhook.delivery_id, event_type=webhook.event)
        return False
