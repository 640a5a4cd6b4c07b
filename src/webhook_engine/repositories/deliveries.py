"""Webhook delivery store (durable outbox + attempt log)."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Record  # type: ignore[import-untyped]

from webhook_engine.core.exceptions import NotFoundError, RepositoryError
from webhook_engine.domain.dto import AttemptOutcomeDTO, DeliveryListFilter
from webhook_engine.domain.enums import DeliveryStatus
from webhook_engine.domain.models import DeliveryAttempt, WebhookDelivery
from webhook_engine.repositories.base import BaseRepository


class WebhookDeliveryRepository(BaseRepository):
    @staticmethod
    def _to_model(record: Record) -> WebhookDelivery:
        return WebhookDelivery.model_validate(WebhookDeliveryRepository._normalize(dict(record)))

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        value = payload.get("payload")
        if isinstance(value, str):
            payload["payload"] = json.loads(value)
        return payload

    async def enqueue_for_event(
        self,
        event: str,
        payload: Any,
        *,
        max_attempts: int,
        now: datetime,
    ) -> List[int]:
        """Fan out one PENDING delivery per enabled endpoint subscribed to ``event``.

        A single INSERT ... SELECT, so the set of matching endpoints is a
        snapshot taken atomically with the inserts.
        """
        records = await self._fetch(
            """
            INSERT INTO webhook_deliveries (
                endpoint_id,
                event,
                payload,
                status,
                attempts,
                max_attempts,
                next_attempt,
                created_at,
                updated_at
            )
            SELECT e.id, $1, $2::jsonb, 'PENDING', 0, $3, $4, $4, $4
            FROM webhook_endpoints e
            WHERE e.enabled = true
              AND e.events @> ARRAY[$1]::text[]
            ORDER BY e.id ASC
            RETURNING id
            """,
            event,
            json.dumps(payload),
            max_attempts,
            now,
        )
        return [int(r["id"]) for r in records]

    async def create(
        self,
        *,
        endpoint_id: int,
        event: str,
        payload: Any,
        max_attempts: int,
        now: datetime,
    ) -> WebhookDelivery:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                endpoint_id,
                event,
                payload,
                status,
                attempts,
                max_attempts,
                next_attempt,
                created_at,
                updated_at
            )
            VALUES ($1, $2, $3::jsonb, 'PENDING', 0, $4, $5, $5, $5)
            RETURNING *
            """,
            endpoint_id,
            event,
            json.dumps(payload),
            max_attempts,
            now,
        )
        if record is None:
            raise RepositoryError("INSERT returned no row")
        return self._to_model(record)

    async def get(self, delivery_id: int) -> WebhookDelivery:
        record = await self._fetchrow("SELECT * FROM webhook_deliveries WHERE id = $1", delivery_id)
        if record is None:
            raise NotFoundError("Webhook delivery not found")
        return self._to_model(record)

    async def list_due(self, now: datetime, *, limit: int) -> List[WebhookDelivery]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_deliveries
            WHERE status IN ('PENDING', 'FAILED')
              AND next_attempt <= $1
            ORDER BY next_attempt ASC, id ASC
            LIMIT $2
            """,
            now,
            limit,
        )
        return [self._to_model(r) for r in records]

    async def claim(
        self, delivery: WebhookDelivery, *, now: datetime, token: UUID
    ) -> WebhookDelivery | None:
        """Conditionally move a due row to PROCESSING.

        Succeeds only if the row still has the status we read and is still
        due; a concurrent dispatcher that got there first makes this a no-op.
        """
        record = await self._fetchrow(
            """
            UPDATE webhook_deliveries
            SET status = 'PROCESSING',
                locked_at = $3,
                claim_token = $4,
                updated_at = $3
            WHERE id = $1
              AND status = $2
              AND next_attempt <= $3
              AND attempts < max_attempts
            RETURNING *
            """,
            delivery.id,
            delivery.status.value,
            now,
            token,
        )
        if record is None:
            return None
        return self._to_model(record)

    async def complete_attempt(
        self,
        delivery: WebhookDelivery,
        *,
        token: UUID,
        outcome: AttemptOutcomeDTO,
    ) -> bool:
        """Record the attempt outcome and append the attempt log row in one transaction.

        Returns False when the claim was lost (row reclaimed by the liveness
        sweep and possibly re-claimed elsewhere); nothing is written then.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchrow(
                    """
                    UPDATE webhook_deliveries
                    SET status = $3,
                        attempts = $4,
                        last_error = $5,
                        last_status_code = $6,
                        last_attempt_at = $7,
                        next_attempt = $8,
                        delivered_at = COALESCE($9, delivered_at),
                        locked_at = NULL,
                        claim_token = NULL,
                        updated_at = $10
                    WHERE id = $1
                      AND status = 'PROCESSING'
                      AND claim_token = $2
                    RETURNING id
                    """,
                    delivery.id,
                    token,
                    outcome.status.value,
                    outcome.attempts,
                    outcome.error,
                    outcome.status_code,
                    outcome.attempted_at,
                    outcome.next_attempt,
                    outcome.delivered_at,
                    outcome.finished_at,
                )
                if updated is None:
                    return False
                await conn.execute(
                    """
                    INSERT INTO webhook_delivery_attempts (
                        delivery_id,
                        attempt_number,
                        started_at,
                        finished_at,
                        duration_ms,
                        status,
                        status_code,
                        error,
                        response_snippet,
                        retry_after,
                        endpoint_id,
                        endpoint_url
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                    """,
                    delivery.id,
                    outcome.attempts,
                    outcome.attempted_at,
                    outcome.finished_at,
                    outcome.duration_ms,
                    outcome.status.value,
                    outcome.status_code,
                    outcome.error,
                    outcome.response_snippet,
                    outcome.retry_after,
                    delivery.endpoint_id,
                    outcome.endpoint_url,
                )
        return True

    async def list(self, filters: DeliveryListFilter) -> Tuple[List[WebhookDelivery], int | None]:
        """Cursor page ordered by descending id. Returns ``(items, next_cursor)``."""
        where: list[str] = []
        values: list[Any] = []
        if filters.status is not None:
            values.append(filters.status.value)
            where.append(f"status = ${len(values)}")
        if filters.endpoint_id is not None:
            values.append(filters.endpoint_id)
            where.append(f"endpoint_id = ${len(values)}")
        if filters.event:
            values.append(filters.event)
            where.append(f"strpos(event, ${len(values)}) > 0")
        if filters.cursor is not None:
            values.append(filters.cursor)
            where.append(f"id < ${len(values)}")
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        values.append(filters.limit + 1)
        query = f"""
            SELECT *
            FROM webhook_deliveries
            {where_sql}
            ORDER BY id DESC
            LIMIT ${len(values)}
        """
        records = list(await self._fetch(query, *values))
        items = [self._to_model(r) for r in records[: filters.limit]]
        next_cursor = items[-1].id if len(records) > filters.limit else None
        return items, next_cursor

    async def reclaim_stuck(self, locked_before: datetime, now: datetime) -> int:
        """Release PROCESSING rows whose lease expired (crashed or stalled worker).

        Rows that were never attempted go back to PENDING, the rest to FAILED,
        both due immediately. The attempt count is untouched: whether the lost
        send reached the receiver is unknown, and receivers deduplicate by id.
        """
        result = await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = CASE WHEN attempts = 0 THEN 'PENDING' ELSE 'FAILED' END,
                locked_at = NULL,
                claim_token = NULL,
                next_attempt = $2,
                last_error = 'Requeued after processing lease expired',
                updated_at = $2
            WHERE status = 'PROCESSING'
              AND locked_at < $1
            """,
            locked_before,
            now,
        )
        return self._affected(result)

    async def delete_old_succeeded(self, created_before: datetime) -> int:
        """Purge SUCCESS deliveries older than *created_before*. Returns count."""
        result = await self._execute(
            "DELETE FROM webhook_deliveries WHERE status = $1 AND created_at < $2",
            DeliveryStatus.SUCCESS.value,
            created_before,
        )
        return self._affected(result)


class DeliveryAttemptRepository(BaseRepository):
    @staticmethod
    def _to_model(record: Record) -> DeliveryAttempt:
        return DeliveryAttempt.model_validate(dict(record))

    async def list_for_delivery(self, delivery_id: int) -> List[DeliveryAttempt]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_delivery_attempts
            WHERE delivery_id = $1
            ORDER BY attempt_number ASC, id ASC
            """,
            delivery_id,
        )
        return [self._to_model(r) for r in records]
