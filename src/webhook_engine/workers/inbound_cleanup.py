"""Worker: forget inbound delivery ids past the replay window."""
from __future__ import annotations

from datetime import datetime, timedelta

from service_common.db.pool import get_pool
from webhook_engine.repositories.inbound import InboundEventRepository
from webhook_engine.settings import settings


async def inbound_events_cleanup(now: datetime) -> str | None:
    """Delete processed-records older than ``inbound_processed_ttl_hours``.

    Redeliveries that old already fail the timestamp tolerance check.
    """
    pool = await get_pool()
    cutoff = now - timedelta(hours=settings.inbound_processed_ttl_hours)
    deleted = await InboundEventRepository(pool).delete_older_than(cutoff)
    return f"deleted={deleted}" if deleted else None
