"""Shared fixtures for in-memory and PostgreSQL-backed tests."""
from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator
from uuid import uuid4

import asyncpg
import pytest
from aiohttp import web

from service_common.db.migrations import apply_pending, load_migrations
from tests.fakes import (
    FakeAttemptRepository,
    FakeClock,
    FakeDeliveryRepository,
    FakeEndpointRepository,
    FakeInboundRepository,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def endpoint_repo(clock: FakeClock) -> FakeEndpointRepository:
    return FakeEndpointRepository(clock)


@pytest.fixture
def delivery_repo(endpoint_repo: FakeEndpointRepository, clock: FakeClock) -> FakeDeliveryRepository:
    return FakeDeliveryRepository(endpoint_repo, clock)


@pytest.fixture
def attempt_repo(delivery_repo: FakeDeliveryRepository) -> FakeAttemptRepository:
    return FakeAttemptRepository(delivery_repo)


@pytest.fixture
def inbound_repo() -> FakeInboundRepository:
    return FakeInboundRepository()


@dataclass
class ReceivedRequest:
    headers: dict[str, str]
    body: bytes

    @property
    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class Receiver:
    """Local HTTP endpoint answering with scripted status codes (last one repeats)."""

    url: str
    statuses: list[int] = field(default_factory=lambda: [200])
    delay_seconds: float = 0.0
    response_text: str = "ok"
    response_headers: dict[str, str] = field(default_factory=dict)
    requests: list[ReceivedRequest] = field(default_factory=list)

    def next_status(self) -> int:
        index = min(len(self.requests) - 1, len(self.statuses) - 1)
        return self.statuses[index]


@pytest.fixture
async def receiver() -> AsyncIterator[Receiver]:
    state = Receiver(url="")

    async def handler(request: web.Request) -> web.Response:
        raw = await request.read()
        state.requests.append(ReceivedRequest(headers=dict(request.headers), body=raw))
        if state.delay_seconds:
            await asyncio.sleep(state.delay_seconds)
        return web.Response(
            status=state.next_status(),
            text=state.response_text,
            headers=state.response_headers,
        )

    app = web.Application()
    app.router.add_post("/hook", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    state.url = f"http://127.0.0.1:{port}/hook"
    try:
        yield state
    finally:
        await runner.cleanup()


MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"
TEST_DATABASE_URL_ENV = "TEST_DATABASE_URL"


@pytest.fixture
async def pg_pool() -> AsyncIterator[asyncpg.Pool]:
    """Pool bound to a fresh schema with all migrations applied; dropped afterwards."""
    dsn = os.environ.get(TEST_DATABASE_URL_ENV)
    if not dsn:
        pytest.skip(f"{TEST_DATABASE_URL_ENV} is not set")

    schema = f"test_{uuid4().hex[:12]}"
    admin = await asyncpg.connect(dsn)
    await admin.execute(f'CREATE SCHEMA "{schema}"')
    pool = await asyncpg.create_pool(
        dsn,
        min_size=1,
        max_size=4,
        server_settings={"search_path": schema},
    )
    try:
        async with pool.acquire() as conn:
            await apply_pending(conn, load_migrations(MIGRATIONS_DIR))
        yield pool
    finally:
        await pool.close()
        await admin.execute(f'DROP SCHEMA "{schema}" CASCADE')
        await admin.close()
