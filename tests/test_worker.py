"""Unit tests for service_common.worker.BackgroundWorker.

Pure asyncio: no database or HTTP server involved.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from aiohttp import web

from service_common.worker import BackgroundWorker, WorkerTask
from tests.fakes import FakeClock


@pytest.mark.asyncio
async def test_tasks_receive_aware_utc_time():
    seen: list[datetime] = []

    async def record(now: datetime) -> str | None:
        seen.append(now)
        return "ok"

    worker = BackgroundWorker(name="t", interval_seconds=0.05, tasks=[WorkerTask(name="record", fn=record)])
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert len(seen) >= 2
    assert all(now.tzinfo is not None for now in seen)


@pytest.mark.asyncio
async def test_failing_task_does_not_starve_the_next_one():
    good = AsyncMock(return_value=None)

    async def boom(now: datetime) -> str | None:
        raise RuntimeError("boom")

    worker = BackgroundWorker(
        name="t",
        interval_seconds=0.05,
        tasks=[WorkerTask(name="bad", fn=boom), WorkerTask(name="good", fn=good)],
    )
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert good.await_count >= 2


@pytest.mark.asyncio
async def test_run_once_uses_injected_clock():
    clock = FakeClock()
    fn = AsyncMock(return_value=None)
    worker = BackgroundWorker(name="t", tasks=[WorkerTask(name="fn", fn=fn)], clock=clock)

    await worker.run_once()

    fn.assert_awaited_once_with(clock.now)


@pytest.mark.asyncio
async def test_run_immediately_sweeps_before_first_interval():
    fn = AsyncMock(return_value=None)
    worker = BackgroundWorker(
        name="t",
        interval_seconds=60,
        tasks=[WorkerTask(name="fn", fn=fn)],
        run_immediately=True,
    )
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.05)
    await worker.stop(app)

    assert fn.await_count == 1


@pytest.mark.asyncio
async def test_stop_ends_the_loop():
    fn = AsyncMock(return_value=None)
    worker = BackgroundWorker(name="t", interval_seconds=0.05, tasks=[WorkerTask(name="fn", fn=fn)])
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.12)
    await worker.stop(app)

    calls = fn.await_count
    await asyncio.sleep(0.1)
    assert fn.await_count == calls
    assert not worker.running


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_sweep_within_grace():
    finished = asyncio.Event()

    async def slow(now: datetime) -> str | None:
        await asyncio.sleep(0.1)
        finished.set()
        return None

    worker = BackgroundWorker(
        name="t",
        interval_seconds=60,
        tasks=[WorkerTask(name="slow", fn=slow)],
        run_immediately=True,
        shutdown_grace_seconds=1.0,
    )
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.02)
    await worker.stop(app)

    assert finished.is_set()


@pytest.mark.asyncio
async def test_stop_cancels_after_grace_period():
    cancelled = asyncio.Event()

    async def hang(now: datetime) -> str | None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return None

    worker = BackgroundWorker(
        name="t",
        interval_seconds=60,
        tasks=[WorkerTask(name="hang", fn=hang)],
        run_immediately=True,
        shutdown_grace_seconds=0.05,
    )
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.02)
    await worker.stop(app)

    assert cancelled.is_set()
    assert not worker.running


@pytest.mark.asyncio
async def test_workers_register_under_their_own_keys():
    first = BackgroundWorker(name="first", interval_seconds=60)
    second = BackgroundWorker(name="second", interval_seconds=60)
    app = web.Application()
    await first.start(app)
    await second.start(app)

    assert app[first.app_key] is first
    assert app[second.app_key] is second

    await first.stop(app)
    await second.stop(app)


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    await BackgroundWorker(name="t").stop(web.Application())


@pytest.mark.asyncio
async def test_stop_before_start_is_a_no_op():
    worker = BackgroundWorker(name="t", interval_seconds=0.05, tasks=[])

    await worker.stop(web.Application())

    assert worker.running is False
