from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web

from service_common.aiohttp_app import add_healthcheck, add_readiness_check, create_base_app
from service_common.db.migrations import SchemaState
from webhook_engine import main
from webhook_engine.services.dependencies import SCHEMA_STATE_KEY
from webhook_engine.settings import settings


@pytest.mark.asyncio
async def test_health_endpoint(aiohttp_client):
    app, _cors = create_base_app(settings)
    add_healthcheck(app, settings)
    client = await aiohttp_client(app)

    resp = await client.get("/health")

    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "ok"
    assert body["service"] == settings.app_name


@pytest.mark.asyncio
@pytest.mark.parametrize("ok, status", [(True, 200), (False, 503)])
async def test_readiness_status_follows_probe(aiohttp_client, ok, status):
    async def probe(_app):
        return {"ok": ok}

    app, _cors = create_base_app(settings)
    add_readiness_check(app, probe)
    client = await aiohttp_client(app)

    resp = await client.get("/ready")

    assert resp.status == status
    assert (await resp.json())["ok"] is ok


@pytest.mark.asyncio
async def test_readiness_reports_missing_schema():
    app = web.Application()
    app[SCHEMA_STATE_KEY] = SchemaState(ready=False, missing=["webhook_deliveries"])

    with patch("webhook_engine.main.db_pool.ping", AsyncMock(return_value=True)):
        payload = await main.readiness(app)

    assert payload["ok"] is False
    assert payload["database"] is True
    assert payload["schema"] is False
    assert payload["dispatcher"] is False


@pytest.mark.asyncio
async def test_readiness_without_database():
    app = web.Application()
    app[SCHEMA_STATE_KEY] = SchemaState(ready=True)

    with patch("webhook_engine.main.db_pool.ping", AsyncMock(return_value=False)):
        payload = await main.readiness(app)

    assert payload["ok"] is False
    assert payload["schema"] is True
