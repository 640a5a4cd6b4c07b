"""Webhook endpoint registry persistence."""
from __future__ import annotations

from typing import List

from asyncpg import Record  # type: ignore[import-untyped]

from webhook_engine.core.exceptions import NotFoundError, RepositoryError
from webhook_engine.domain.models import WebhookEndpoint
from webhook_engine.repositories.base import BaseRepository


class WebhookEndpointRepository(BaseRepository):
    @staticmethod
    def _to_model(record: Record) -> WebhookEndpoint:
        return WebhookEndpoint.model_validate(dict(record))

    async def create(self, *, url: str, events: list[str], secret: str) -> WebhookEndpoint:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_endpoints (url, secret, enabled, events)
            VALUES ($1, $2, true, $3::text[])
            RETURNING *
            """,
            url,
            secret,
            events,
        )
        if record is None:
            raise RepositoryError("INSERT returned no row")
        return self._to_model(record)

    async def list_all(self) -> List[WebhookEndpoint]:
        records = await self._fetch("SELECT * FROM webhook_endpoints ORDER BY created_at DESC, id DESC")
        return [self._to_model(r) for r in records]

    async def get(self, endpoint_id: int) -> WebhookEndpoint:
        record = await self._fetchrow("SELECT * FROM webhook_endpoints WHERE id = $1", endpoint_id)
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
        return self._to_model(record)

    async def update(
        self,
        endpoint_id: int,
        *,
        url: str | None = None,
        enabled: bool | None = None,
        events: list[str] | None = None,
    ) -> WebhookEndpoint:
        record = await self._fetchrow(
            """
            UPDATE webhook_endpoints
            SET url = COALESCE($2, url),
                enabled = COALESCE($3, enabled),
                events = COALESCE($4::text[], events),
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            endpoint_id,
            url,
            enabled,
            events,
        )
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
        return self._to_model(record)

    async def set_secret(self, endpoint_id: int, secret: str) -> WebhookEndpoint:
        record = await self._fetchrow(
            """
            UPDATE webhook_endpoints
            SET secret = $2,
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            endpoint_id,
            secret,
        )
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
        return self._to_model(record)

    async def delete(self, endpoint_id: int) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhook_endpoints WHERE id = $1 RETURNING id",
            endpoint_id,
        )
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
