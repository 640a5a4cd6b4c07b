"""asyncpg repositories against a real PostgreSQL (set TEST_DATABASE_URL)."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from service_common.db.migrations import apply_pending, check_schema, load_migrations
from webhook_engine.domain.dto import AttemptOutcomeDTO, DeliveryListFilter
from webhook_engine.domain.enums import DeliveryStatus
from webhook_engine.repositories import (
    DeliveryAttemptRepository,
    InboundEventRepository,
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
)
from webhook_engine.services.dependencies import WEBHOOK_TABLES
from tests.conftest import MIGRATIONS_DIR

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def endpoints(pg_pool) -> WebhookEndpointRepository:
    return WebhookEndpointRepository(pg_pool)


@pytest.fixture
def deliveries(pg_pool) -> WebhookDeliveryRepository:
    return WebhookDeliveryRepository(pg_pool)


@pytest.fixture
def attempts(pg_pool) -> DeliveryAttemptRepository:
    return DeliveryAttemptRepository(pg_pool)


async def new_delivery(endpoints, deliveries, *, event="job.created", now=NOW, max_attempts=5):
    endpoint = await endpoints.create(url="https://a.test/hook", events=[event], secret="s")
    return await deliveries.create(
        endpoint_id=endpoint.id, event=event, payload={"jobId": 1}, max_attempts=max_attempts, now=now
    )


def failed_outcome(attempt: int, at: datetime) -> AttemptOutcomeDTO:
    return AttemptOutcomeDTO(
        status=DeliveryStatus.FAILED,
        attempts=attempt,
        attempted_at=at,
        finished_at=at,
        next_attempt=at + timedelta(seconds=30),
        status_code=500,
        error="HTTP 500",
    )


@pytest.mark.asyncio
async def test_migrations_are_idempotent_and_schema_is_ready(pg_pool):
    async with pg_pool.acquire() as conn:
        assert await apply_pending(conn, load_migrations(MIGRATIONS_DIR)) == []

    state = await check_schema(pg_pool, WEBHOOK_TABLES)

    assert state.ready is True
    assert state.missing == []


@pytest.mark.asyncio
async def test_fan_out_matches_whole_event_names_on_enabled_endpoints(endpoints, deliveries):
    exact = await endpoints.create(url="https://a.test/hook", events=["job.created"], secret="s")
    among_others = await endpoints.create(url="https://b.test/hook", events=["x", "job.created"], secret="s")
    await endpoints.create(url="https://c.test/hook", events=["job.created.v2", "job"], secret="s")
    await endpoints.create(url="https://d.test/hook", events=["job.deleted"], secret="s")
    disabled = await endpoints.create(url="https://e.test/hook", events=["job.created"], secret="s")
    await endpoints.update(disabled.id, enabled=False)

    ids = await deliveries.enqueue_for_event("job.created", {"jobId": 1}, max_attempts=5, now=NOW)

    rows = [await deliveries.get(delivery_id) for delivery_id in ids]
    assert sorted(row.endpoint_id for row in rows) == [exact.id, among_others.id]
    for row in rows:
        assert row.status is DeliveryStatus.PENDING
        assert row.attempts == 0
        assert row.max_attempts == 5
        assert row.next_attempt == NOW
        assert row.payload == {"jobId": 1}


@pytest.mark.asyncio
async def test_fan_out_with_no_subscribers_creates_nothing(endpoints, deliveries):
    await endpoints.create(url="https://a.test/hook", events=["job.deleted"], secret="s")

    assert await deliveries.enqueue_for_event("job.created", {}, max_attempts=5, now=NOW) == []
    items, _ = await deliveries.list(DeliveryListFilter())
    assert items == []


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(endpoints, deliveries, attempts):
    delivery = await new_delivery(endpoints, deliveries)
    tokens = [uuid4(), uuid4()]

    results = await asyncio.gather(
        *(deliveries.claim(delivery, now=NOW, token=token) for token in tokens)
    )

    winners = [(token, claimed) for token, claimed in zip(tokens, results) if claimed is not None]
    assert len(winners) == 1
    [(winner_token, claimed)] = winners
    loser_token = next(t for t in tokens if t != winner_token)
    assert claimed.status is DeliveryStatus.PROCESSING
    assert claimed.locked_at == NOW

    assert await deliveries.complete_attempt(claimed, token=loser_token, outcome=failed_outcome(1, NOW)) is False
    assert await deliveries.complete_attempt(claimed, token=winner_token, outcome=failed_outcome(1, NOW)) is True
    assert [a.attempt_number for a in await attempts.list_for_delivery(delivery.id)] == [1]


@pytest.mark.asyncio
async def test_claim_requires_due_row_with_unchanged_status(endpoints, deliveries):
    delivery = await new_delivery(endpoints, deliveries)

    assert await deliveries.claim(delivery, now=NOW - timedelta(seconds=1), token=uuid4()) is None
    assert await deliveries.claim(delivery, now=NOW, token=uuid4()) is not None
    # stale snapshot: the row is PROCESSING now
    assert await deliveries.claim(delivery, now=NOW, token=uuid4()) is None


@pytest.mark.asyncio
async def test_claim_refuses_exhausted_row(endpoints, deliveries):
    delivery = await new_delivery(endpoints, deliveries, max_attempts=1)
    token = uuid4()
    claimed = await deliveries.claim(delivery, now=NOW, token=token)
    outcome = failed_outcome(1, NOW).model_copy(update={"status": DeliveryStatus.DEAD, "next_attempt": None})
    assert await deliveries.complete_attempt(claimed, token=token, outcome=outcome)

    dead = await deliveries.get(delivery.id)
    assert dead.status is DeliveryStatus.DEAD
    assert await deliveries.list_due(NOW + timedelta(days=1), limit=10) == []
    assert await deliveries.claim(dead, now=NOW + timedelta(days=1), token=uuid4()) is None


@pytest.mark.asyncio
async def test_success_is_recorded_with_attempt_log(endpoints, deliveries, attempts):
    delivery = await new_delivery(endpoints, deliveries)
    token = uuid4()
    claimed = await deliveries.claim(delivery, now=NOW, token=token)
    finished = NOW + timedelta(milliseconds=250)
    outcome = AttemptOutcomeDTO(
        status=DeliveryStatus.SUCCESS,
        attempts=1,
        attempted_at=NOW,
        finished_at=finished,
        delivered_at=finished,
        status_code=204,
        response_snippet="ok",
        endpoint_url="https://a.test/hook",
    )

    assert await deliveries.complete_attempt(claimed, token=token, outcome=outcome)

    row = await deliveries.get(delivery.id)
    assert row.status is DeliveryStatus.SUCCESS
    assert row.attempts == 1
    assert row.delivered_at == finished
    assert row.last_status_code == 204
    assert row.locked_at is None and row.claim_token is None
    [attempt] = await attempts.list_for_delivery(delivery.id)
    assert attempt.status is DeliveryStatus.SUCCESS
    assert attempt.duration_ms == 250
    assert attempt.endpoint_id == delivery.endpoint_id
    assert attempt.endpoint_url == "https://a.test/hook"


@pytest.mark.asyncio
async def test_reclaim_returns_unattempted_rows_to_pending_and_rejects_late_completion(
    endpoints, deliveries, attempts
):
    delivery = await new_delivery(endpoints, deliveries)
    stale_token = uuid4()
    claimed = await deliveries.claim(delivery, now=NOW, token=stale_token)
    later = NOW + timedelta(seconds=30)

    assert await deliveries.reclaim_stuck(NOW + timedelta(seconds=10), later) == 1

    row = await deliveries.get(delivery.id)
    assert row.status is DeliveryStatus.PENDING
    assert row.attempts == 0
    assert row.next_attempt == later
    assert row.claim_token is None and row.locked_at is None
    assert await deliveries.complete_attempt(claimed, token=stale_token, outcome=failed_outcome(1, NOW)) is False
    assert await attempts.list_for_delivery(delivery.id) == []


@pytest.mark.asyncio
async def test_reclaim_returns_attempted_rows_to_failed(endpoints, deliveries):
    delivery = await new_delivery(endpoints, deliveries)
    token = uuid4()
    claimed = await deliveries.claim(delivery, now=NOW, token=token)
    await deliveries.complete_attempt(claimed, token=token, outcome=failed_outcome(1, NOW))
    retry_at = NOW + timedelta(seconds=30)
    again = await deliveries.claim(await deliveries.get(delivery.id), now=retry_at, token=uuid4())
    assert again is not None

    # lease not expired yet
    assert await deliveries.reclaim_stuck(retry_at - timedelta(seconds=1), retry_at) == 0
    assert await deliveries.reclaim_stuck(retry_at + timedelta(seconds=10), retry_at + timedelta(seconds=10)) == 1

    row = await deliveries.get(delivery.id)
    assert row.status is DeliveryStatus.FAILED
    assert row.attempts == 1


@pytest.mark.asyncio
async def test_list_pages_by_descending_id_with_filters(endpoints, deliveries):
    first = await endpoints.create(url="https://a.test/hook", events=["job.created"], secret="s")
    second = await endpoints.create(url="https://b.test/hook", events=["job.created"], secret="s")
    created = []
    for event in ("job.created", "job.updated", "invoice.paid"):
        for endpoint in (first, second):
            row = await deliveries.create(endpoint_id=endpoint.id, event=event, payload={}, max_attempts=5, now=NOW)
            created.append(row.id)

    seen: list[int] = []
    cursor = None
    while True:
        items, cursor = await deliveries.list(DeliveryListFilter(limit=4, cursor=cursor))
        seen.extend(item.id for item in items)
        if cursor is None:
            break
    assert seen == sorted(created, reverse=True)

    items, next_cursor = await deliveries.list(DeliveryListFilter(endpoint_id=first.id, event="job."))
    assert next_cursor is None
    assert {(i.endpoint_id, i.event) for i in items} == {(first.id, "job.created"), (first.id, "job.updated")}

    items, _ = await deliveries.list(DeliveryListFilter(status=DeliveryStatus.DEAD))
    assert items == []


@pytest.mark.asyncio
async def test_purge_keeps_recent_and_unfinished_rows(endpoints, deliveries):
    old = await new_delivery(endpoints, deliveries, now=NOW - timedelta(days=40))
    token = uuid4()
    claimed = await deliveries.claim(old, now=NOW, token=token)
    await deliveries.complete_attempt(
        claimed,
        token=token,
        outcome=AttemptOutcomeDTO(
            status=DeliveryStatus.SUCCESS, attempts=1, attempted_at=NOW, finished_at=NOW, delivered_at=NOW
        ),
    )
    old_pending = await new_delivery(endpoints, deliveries, now=NOW - timedelta(days=40))

    assert await deliveries.delete_old_succeeded(NOW - timedelta(days=30)) == 1
    assert (await deliveries.get(old_pending.id)).status is DeliveryStatus.PENDING


@pytest.mark.asyncio
async def test_deleting_endpoint_cascades_to_deliveries(endpoints, deliveries):
    delivery = await new_delivery(endpoints, deliveries)

    await endpoints.delete(delivery.endpoint_id)

    items, _ = await deliveries.list(DeliveryListFilter())
    assert items == []


@pytest.mark.asyncio
async def test_inbound_record_is_durable_and_releasable(pg_pool):
    repo = InboundEventRepository(pg_pool)

    assert await repo.record_once("evt_1", "order.paid", NOW) is True
    assert await repo.record_once("evt_1", "order.paid", NOW) is False

    await repo.release("evt_1")
    assert await repo.record_once("evt_1", "order.paid", NOW) is True

    await repo.record_once("evt_old", "order.paid", NOW - timedelta(hours=72))
    assert await repo.delete_older_than(NOW - timedelta(hours=48)) == 1
    assert await repo.record_once("evt_old", "order.paid", NOW) is True
