"""Background webhook dispatcher (claims due deliveries and sends signed HTTP POSTs)."""
from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from uuid import uuid4

import structlog
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout, web

from service_common.db.pool import get_pool
from service_common.worker import BackgroundWorker, Clock, WorkerTask, utc_now
from webhook_engine.core.exceptions import NotFoundError, TransientDeliveryError
from webhook_engine.domain.dto import AttemptOutcomeDTO
from webhook_engine.domain.enums import DeliveryStatus
from webhook_engine.domain.models import WebhookDelivery, WebhookEndpoint
from webhook_engine.otel import delivery_span
from webhook_engine.repositories.deliveries import WebhookDeliveryRepository
from webhook_engine.repositories.endpoints import WebhookEndpointRepository
from webhook_engine.services.dependencies import get_schema_state
from webhook_engine.services.signing import build_headers, encode_body
from webhook_engine.services.state_machine import (
    next_attempt_after_failure,
    status_after_failure,
    validate_delivery_transition,
)
from webhook_engine.settings import settings

logger = structlog.get_logger(__name__)

_WEBHOOK_SESSION_KEY = "webhook_http_session"
_WEBHOOK_WORKER_KEY = "webhook_dispatcher_worker"


class WebhookDispatcher:
    """One claim → sign → send → record cycle per due delivery.

    ``dispatch_due`` and ``reclaim_stuck`` have the :class:`WorkerTask`
    signature and are driven by a :class:`BackgroundWorker`.
    """

    def __init__(
        self,
        delivery_repository: WebhookDeliveryRepository,
        endpoint_repository: WebhookEndpointRepository,
        session: ClientSession,
        *,
        request_timeout_seconds: float = 5.0,
        backoff_base_seconds: float = 30.0,
        batch_size: int = 50,
        max_concurrency: int = 10,
        response_snippet_chars: int = 500,
        error_max_chars: int = 2000,
        clock: Clock = utc_now,
    ):
        self._deliveries = delivery_repository
        self._endpoints = endpoint_repository
        self._session = session
        self._request_timeout = request_timeout_seconds
        self._timeout = ClientTimeout(total=request_timeout_seconds)
        self._backoff_base = backoff_base_seconds
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency
        self._snippet_chars = response_snippet_chars
        self._error_max_chars = error_max_chars
        self._clock = clock

    @property
    def processing_lease(self) -> timedelta:
        return timedelta(seconds=2 * self._request_timeout)

    async def dispatch_due(self, now: datetime) -> str | None:
        due = await self._deliveries.list_due(now, limit=self._batch_size)
        if not due:
            return None

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(delivery: WebhookDelivery) -> str | None:
            async with semaphore:
                return await self._process_isolated(delivery)

        results = await asyncio.gather(*(run(d) for d in due))
        counts = Counter(r for r in results if r is not None)
        return " ".join(f"{key}={value}" for key, value in sorted(counts.items())) or None

    async def reclaim_stuck(self, now: datetime) -> str | None:
        """Requeue PROCESSING rows left behind by a crashed or cancelled send."""
        reclaimed = await self._deliveries.reclaim_stuck(now - self.processing_lease, now)
        if reclaimed:
            logger.warning("Reclaimed stuck webhook deliveries", count=reclaimed)
        return f"reclaimed={reclaimed}" if reclaimed else None

    async def _process_isolated(self, delivery: WebhookDelivery) -> str | None:
        try:
            return await self.process(delivery)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Webhook delivery processing failed", delivery_id=delivery.id)
            return "errors"

    async def process(self, delivery: WebhookDelivery) -> str | None:
        """Claim and attempt one delivery. Returns the outcome label, None if not claimed."""
        token = uuid4()
        claimed = await self._deliveries.claim(delivery, now=self._clock(), token=token)
        if claimed is None:
            return None

        outcome = await self._attempt(claimed)
        validate_delivery_transition(claimed.status, outcome.status)
        stored = await self._deliveries.complete_attempt(claimed, token=token, outcome=outcome)
        if not stored:
            logger.warning(
                "Webhook delivery claim lost before completion",
                delivery_id=claimed.id,
                attempt=outcome.attempts,
            )
            return "lost"

        log_fields = dict(
            delivery_id=claimed.id,
            endpoint_id=claimed.endpoint_id,
            event_type=claimed.event,
            attempt=outcome.attempts,
            status_code=outcome.status_code,
            outcome=outcome.status.value,
            duration_ms=outcome.duration_ms,
        )
        if outcome.status is DeliveryStatus.SUCCESS:
            logger.info("Webhook delivered", **log_fields)
        elif outcome.status is DeliveryStatus.DEAD:
            logger.error("Webhook delivery dead-lettered", error=outcome.error, **log_fields)
        else:
            logger.warning(
                "Webhook delivery failed, retry scheduled",
                error=outcome.error,
                next_attempt=outcome.next_attempt.isoformat() if outcome.next_attempt else None,
                **log_fields,
            )
        return outcome.status.value.lower()

    async def _attempt(self, delivery: WebhookDelivery) -> AttemptOutcomeDTO:
        started_at = self._clock()
        attempts = delivery.attempts + 1
        endpoint_url: str | None = None
        try:
            # current secret and url, never a value cached at enqueue time
            endpoint = await self._endpoints.get(delivery.endpoint_id)
            endpoint_url = endpoint.url
            if not endpoint.enabled:
                raise TransientDeliveryError("Endpoint disabled")
            status_code, snippet = await self._send(endpoint, delivery, started_at)
        except NotFoundError as exc:
            return self._failure(delivery, attempts, started_at, endpoint_url, TransientDeliveryError(str(exc)))
        except TransientDeliveryError as exc:
            return self._failure(delivery, attempts, started_at, endpoint_url, exc)

        finished_at = self._clock()
        return AttemptOutcomeDTO(
            status=DeliveryStatus.SUCCESS,
            attempts=attempts,
            attempted_at=started_at,
            finished_at=finished_at,
            delivered_at=finished_at,
            status_code=status_code,
            response_snippet=snippet,
            endpoint_url=endpoint_url,
        )

    def _failure(
        self,
        delivery: WebhookDelivery,
        attempts: int,
        started_at: datetime,
        endpoint_url: str | None,
        exc: TransientDeliveryError,
    ) -> AttemptOutcomeDTO:
        finished_at = self._clock()
        return AttemptOutcomeDTO(
            status=status_after_failure(attempts, delivery.max_attempts),
            attempts=attempts,
            attempted_at=started_at,
            finished_at=finished_at,
            next_attempt=next_attempt_after_failure(
                finished_at, attempts, delivery.max_attempts, self._backoff_base
            ),
            status_code=exc.status_code,
            error=str(exc)[: self._error_max_chars],
            response_snippet=exc.response_snippet,
            retry_after=exc.retry_after,
            endpoint_url=endpoint_url,
        )

    async def _send(
        self, endpoint: WebhookEndpoint, delivery: WebhookDelivery, now: datetime
    ) -> tuple[int, str | None]:
        body = encode_body(delivery.payload)
        headers = build_headers(
            delivery_id=delivery.id,
            event=delivery.event,
            body=body,
            secret=endpoint.secret,
            timestamp=int(now.timestamp()),
        )
        with delivery_span(delivery_id=delivery.id, endpoint_id=endpoint.id, event=delivery.event) as span:
            try:
                async with self._session.post(
                    endpoint.url,
                    data=body,
                    headers=headers,
                    timeout=self._timeout,
                ) as resp:
                    span.set_attribute("http.status_code", resp.status)
                    snippet = await self._read_snippet(resp)
                    if 200 <= resp.status < 300:
                        return resp.status, snippet
                    raise TransientDeliveryError(
                        f"HTTP {resp.status}",
                        status_code=resp.status,
                        response_snippet=snippet,
                        retry_after=resp.headers.get("Retry-After"),
                    )
            except asyncio.TimeoutError as exc:
                raise TransientDeliveryError(
                    f"Timed out after {self._request_timeout}s"
                ) from exc
            except ClientError as exc:
                raise TransientDeliveryError(f"{type(exc).__name__}: {exc}") from exc
            except ValueError as exc:
                # aiohttp refuses to build the request (bad header value, bad url)
                raise TransientDeliveryError(f"Invalid request: {exc}") from exc

    async def _read_snippet(self, resp: ClientResponse) -> str | None:
        raw = await resp.content.read(self._snippet_chars * 4)
        text = raw.decode("utf-8", errors="replace")[: self._snippet_chars]
        return text or None


def build_dispatcher_worker(dispatcher: WebhookDispatcher) -> BackgroundWorker:
    return BackgroundWorker(
        name="webhook_dispatcher",
        interval_seconds=settings.webhook_dispatch_interval_seconds,
        tasks=[
            WorkerTask(name="webhook_reclaim_stuck", fn=dispatcher.reclaim_stuck),
            WorkerTask(name="webhook_dispatch_due", fn=dispatcher.dispatch_due),
        ],
        shutdown_grace_seconds=settings.webhook_shutdown_grace_seconds,
        run_immediately=True,
    )


async def start_webhook_dispatcher(app: web.Application) -> None:
    schema = get_schema_state(app)
    if not schema.ready:
        logger.error("Webhook dispatcher not started, schema missing", missing=schema.missing)
        return
    pool = await get_pool()
    session = ClientSession(timeout=ClientTimeout(total=settings.webhook_request_timeout_seconds))
    dispatcher = WebhookDispatcher(
        WebhookDeliveryRepository(pool),
        WebhookEndpointRepository(pool),
        session,
        request_timeout_seconds=settings.webhook_request_timeout_seconds,
        backoff_base_seconds=settings.webhook_backoff_base_seconds,
        batch_size=settings.webhook_dispatch_batch_size,
        max_concurrency=settings.webhook_dispatch_max_concurrency,
        response_snippet_chars=settings.webhook_response_snippet_chars,
        error_max_chars=settings.webhook_error_max_chars,
    )
    worker = build_dispatcher_worker(dispatcher)
    app[_WEBHOOK_SESSION_KEY] = session
    app[_WEBHOOK_WORKER_KEY] = worker
    await worker.start(app)


async def stop_webhook_dispatcher(app: web.Application) -> None:
    worker: BackgroundWorker | None = app.get(_WEBHOOK_WORKER_KEY)
    if worker is not None:
        await worker.stop(app)
    session: ClientSession | None = app.get(_WEBHOOK_SESSION_KEY)
    if session is not None:
        await session.close()


def dispatcher_running(app: web.Application) -> bool:
    worker: BackgroundWorker | None = app.get(_WEBHOOK_WORKER_KEY)
    return worker is not None and worker.running
