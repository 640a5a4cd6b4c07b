"""Reusable periodic background worker for aiohttp services.

Usage::

    from service_common.worker import BackgroundWorker, WorkerTask

    async def purge_old_rows(now: datetime) -> str | None:
        deleted = await repo.delete_older_than(now - timedelta(days=30))
        return f"deleted={deleted}" if deleted else None

    worker = BackgroundWorker(
        name="maintenance",
        interval_seconds=60.0,
        tasks=[WorkerTask(name="purge_old_rows", fn=purge_old_rows)],
    )

    # In create_app():
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# Type for a single task function: receives current UTC time, returns
# an optional human-readable summary string (logged when non-empty).
TaskFn = Callable[[datetime], Awaitable[str | None]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkerTask:
    """A named periodic task executed by :class:`BackgroundWorker`."""

    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """In-process async worker that runs a list of tasks on a fixed interval.

    Each task is executed independently: if one fails the others still run.
    Errors are logged via structlog and never break the loop.

    Shutdown is cooperative. :meth:`stop` sets a stop event, waits up to
    ``shutdown_grace_seconds`` for the current sweep to finish, then cancels
    whatever is still in flight.

    Lifecycle is managed through :meth:`start` / :meth:`stop` which are
    compatible with ``app.on_startup`` / ``app.on_cleanup``.
    """

    name: str = "background_worker"
    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)
    shutdown_grace_seconds: float = 5.0
    run_immediately: bool = False
    clock: Clock = utc_now

    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _stopping: asyncio.Event | None = field(default=None, init=False, repr=False)

    @property
    def app_key(self) -> str:
        return f"__background_worker_{self.name}__"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, app: web.Application) -> None:
        """Create the worker asyncio task. Register with ``app.on_startup``."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        app[self.app_key] = self

    async def stop(self, _app: web.Application | None = None) -> None:
        """Stop the worker task. Register with ``app.on_cleanup``."""
        task = self._task
        if task is None or self._stopping is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.shutdown_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "background_worker grace period elapsed, cancelling",
                worker=self.name,
                grace_seconds=self.shutdown_grace_seconds,
            )
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def run_once(self) -> None:
        """Run every task a single time (one sweep)."""
        now = self.clock()
        for task in self.tasks:
            try:
                summary = await task.fn(now)
                if summary:
                    logger.info(
                        "background_task completed",
                        worker=self.name,
                        task=task.name,
                        summary=summary,
                    )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "background_task failed",
                    worker=self.name,
                    task=task.name,
                )

    async def _wait_interval(self) -> bool:
        """Sleep for one interval. Returns True when a stop was requested."""
        if self._stopping is None:
            raise RuntimeError(f"Worker {self.name} is not started")
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _loop(self) -> None:
        task_names = [t.name for t in self.tasks]
        logger.info(
            "background_worker started",
            worker=self.name,
            interval_seconds=self.interval_seconds,
            tasks=task_names,
        )

        try:
            if not self.run_immediately and await self._wait_interval():
                return
            while True:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("background_worker sweep failed", worker=self.name)
                if await self._wait_interval():
                    return
        except asyncio.CancelledError:
            logger.info("background_worker cancelled", worker=self.name)
            raise
        finally:
            logger.info("background_worker stopped", worker=self.name)
