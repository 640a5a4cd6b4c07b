"""Pydantic DTOs for repository/service layers."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from webhook_engine.domain.enums import DeliveryStatus

MAX_EVENTS_PER_ENDPOINT = 50
MAX_EVENT_NAME_LENGTH = 100
MAX_LIST_LIMIT = 200


def normalize_url(value: str) -> str:
    url = value.strip()
    if not url:
        raise ValueError("url is required")
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return url


def is_valid_event_name(name: str) -> bool:
    """Event names travel in the ``X-Webhook-Event`` header: printable, no edge whitespace."""
    return (
        0 < len(name) <= MAX_EVENT_NAME_LENGTH
        and name == name.strip()
        and name.isprintable()
    )


def normalize_events(values: list[str]) -> list[str]:
    """Strip, validate and deduplicate event names, keeping first-seen order."""
    cleaned: list[str] = []
    for raw in values:
        name = raw.strip()
        if not name:
            raise ValueError("event names must be non-empty")
        if len(name) > MAX_EVENT_NAME_LENGTH:
            raise ValueError(f"event names must be at most {MAX_EVENT_NAME_LENGTH} characters")
        if not name.isprintable():
            raise ValueError("event names must not contain control characters")
        cleaned.append(name)
    events = list(dict.fromkeys(cleaned))
    if not events:
        raise ValueError("events must be a non-empty list")
    if len(events) > MAX_EVENTS_PER_ENDPOINT:
        raise ValueError(f"at most {MAX_EVENTS_PER_ENDPOINT} events per endpoint")
    return events


class EndpointCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    events: list[str]

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return normalize_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return normalize_events(value)


class EndpointUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    enabled: bool | None = None
    events: list[str] | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        return None if value is None else normalize_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else normalize_events(value)

    @model_validator(mode="after")
    def require_one_field(self) -> "EndpointUpdateDTO":
        if self.url is None and self.enabled is None and self.events is None:
            raise ValueError("at least one of url, enabled, events is required")
        return self


class DeliveryListFilter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: DeliveryStatus | None = None
    endpoint_id: int | None = None
    event: str | None = None
    cursor: int | None = Field(default=None, gt=0)
    limit: int = Field(default=50, ge=1, le=MAX_LIST_LIMIT)

    @field_validator("status", mode="before")
    @classmethod
    def upper_status(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("event")
    @classmethod
    def blank_event(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class DeliveryReplayDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoint_id: int | None = None


class AttemptOutcomeDTO(BaseModel):
    """Everything the store needs to finish one claimed attempt atomically."""

    model_config = ConfigDict(extra="forbid")

    status: DeliveryStatus
    attempts: int
    attempted_at: datetime
    finished_at: datetime
    next_attempt: datetime | None = None
    delivered_at: datetime | None = None
    status_code: int | None = None
    error: str | None = None
    response_snippet: str | None = None
    retry_after: str | None = None
    endpoint_url: str | None = None

    @property
    def duration_ms(self) -> int:
        return max(0, int((self.finished_at - self.attempted_at).total_seconds() * 1000))
