"""Webhook domain models."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer

from webhook_engine.domain.enums import DeliveryStatus


class WebhookEndpoint(BaseModel):
    id: int
    url: str
    # Never serialized; only EndpointWithSecret exposes a freshly minted value.
    secret: str = Field(exclude=True, repr=False)
    enabled: bool = True
    events: frozenset[str] = Field(default_factory=frozenset)
    created_at: datetime
    updated_at: datetime

    @field_serializer("events")
    def _serialize_events(self, events: frozenset[str]) -> list[str]:
        return sorted(events)


class EndpointWithSecret(BaseModel):
    """Returned exactly once, when a secret is created or rotated."""

    endpoint: WebhookEndpoint
    secret: str


class WebhookDelivery(BaseModel):
    id: int
    endpoint_id: int
    event: str
    payload: Any = None
    status: DeliveryStatus
    attempts: int = 0
    max_attempts: int = 5
    last_error: str | None = None
    last_status_code: int | None = None
    last_attempt_at: datetime | None = None
    next_attempt: datetime | None = None
    delivered_at: datetime | None = None
    locked_at: datetime | None = None
    claim_token: UUID | None = Field(default=None, exclude=True)
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class DeliveryAttempt(BaseModel):
    """Append-only audit row for one send attempt."""

    id: int
    delivery_id: int
    attempt_number: int
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int | None = None
    status: DeliveryStatus
    status_code: int | None = None
    error: str | None = None
    response_snippet: str | None = None
    retry_after: str | None = None
    endpoint_id: int | None = None
    endpoint_url: str | None = None


class DeliveryDetail(BaseModel):
    delivery: WebhookDelivery
    attempts: list[DeliveryAttempt] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        payload = self.delivery.model_dump(mode="json")
        payload["attempts"] = [a.model_dump(mode="json") for a in self.attempts]
        return payload
