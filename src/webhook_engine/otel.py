"""OpenTelemetry tracing for webhook-engine.

Disabled unless ``otel_exporter_endpoint`` is set. When enabled, inbound
admin/receiver requests get a span each from the aiohttp server
instrumentation, and every outbound send runs inside ``delivery_span``.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import structlog
from aiohttp import web

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor

from webhook_engine.settings import settings

logger = structlog.get_logger(__name__)

DELIVERY_SPAN_NAME = "webhook.deliver"

_provider: TracerProvider | None = None


def _build_provider(endpoint: str) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.app_name}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces"))
    )
    return provider


def setup_otel(app: web.Application) -> None:
    global _provider

    if not settings.otel_exporter_endpoint:
        logger.info("Tracing disabled, otel_exporter_endpoint not set")
        return
    endpoint = str(settings.otel_exporter_endpoint)
    _provider = _build_provider(endpoint)
    trace.set_tracer_provider(_provider)
    AioHttpServerInstrumentor().instrument(server=app)
    logger.info("Tracing enabled", endpoint=endpoint, service=settings.app_name)


async def shutdown_otel(_app: web.Application) -> None:
    """Cleanup hook: flush whatever the batch processor still holds."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logger.info("Tracer provider shut down")


def get_tracer(name: str = __name__) -> trace.Tracer:
    # no-op tracer until setup_otel installs a provider
    return trace.get_tracer(name)


@contextmanager
def delivery_span(*, delivery_id: int, endpoint_id: int, event: str) -> Iterator[trace.Span]:
    """Span around one outbound POST; the caller adds ``http.status_code``."""
    with get_tracer("webhook_engine.dispatcher").start_as_current_span(DELIVERY_SPAN_NAME) as span:
        span.set_attribute("webhook.delivery_id", delivery_id)
        span.set_attribute("webhook.endpoint_id", endpoint_id)
        span.set_attribute("webhook.event", event)
        yield span
