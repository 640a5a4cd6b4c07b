"""Maintenance workers for webhook-engine.

Each worker is a standalone module exporting a single async task function
compatible with :class:`service_common.worker.WorkerTask`.

The :data:`worker` instance aggregates all tasks and provides
``start_background_worker`` / ``stop_background_worker`` lifecycle hooks.
The delivery loop itself lives in :mod:`webhook_engine.dispatcher`.
"""
from __future__ import annotations

from service_common.worker import BackgroundWorker, WorkerTask
from webhook_engine.settings import settings
from webhook_engine.workers.inbound_cleanup import inbound_events_cleanup
from webhook_engine.workers.webhook_purge import webhook_purge_succeeded

worker = BackgroundWorker(
    name="maintenance",
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="webhook_purge_succeeded", fn=webhook_purge_succeeded),
        WorkerTask(name="inbound_events_cleanup", fn=inbound_events_cleanup),
    ],
)

start_background_worker = worker.start
stop_background_worker = worker.stop

__all__ = [
    "worker",
    "start_background_worker",
    "stop_background_worker",
]
