"""aiohttp application scaffolding shared by service entrypoints."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Literal, Protocol

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from service_common.middleware.trace import REQUEST_ID_HEADER, TRACE_ID_HEADER, create_trace_middleware

# aiohttp_cors wants a sequence of header names, not one comma-joined string.
_CORS_REQUEST_HEADERS = (
    "Accept",
    "Content-Type",
    TRACE_ID_HEADER,
    REQUEST_ID_HEADER,
    "X-User-Id",
    "X-User-Role",
)
_CORS_METHODS = ("GET", "HEAD", "POST", "PATCH", "DELETE", "OPTIONS")
_CORS_EXPOSED_HEADERS = (TRACE_ID_HEADER, REQUEST_ID_HEADER)

ReadinessProbe = Callable[[web.Application], Awaitable[dict[str, Any]]]


class SettingsProtocol(Protocol):
    app_name: str
    env: Literal["development", "staging", "production"]
    cors_allowed_origins: list[str]


def _cors_defaults(origins: Iterable[str]) -> dict[str, ResourceOptions]:
    options = ResourceOptions(
        allow_credentials=True,
        expose_headers=_CORS_EXPOSED_HEADERS,
        allow_headers=_CORS_REQUEST_HEADERS,
        allow_methods=_CORS_METHODS,
    )
    return {origin: options for origin in origins}


def create_base_app(settings: SettingsProtocol) -> tuple[web.Application, CorsConfig]:
    """Application with trace middleware installed and CORS configured (not yet applied)."""
    app = web.Application(middlewares=[create_trace_middleware(settings.app_name)])
    cors = cors_setup(app, defaults=_cors_defaults(settings.cors_allowed_origins))
    return app, cors


def add_healthcheck(app: web.Application, settings: SettingsProtocol) -> None:
    """Liveness: answers as long as the event loop does."""
    payload = {"status": "ok", "service": settings.app_name, "env": settings.env}

    async def healthcheck(_request: web.Request) -> web.Response:
        return web.json_response(payload)

    app.router.add_get("/health", healthcheck)


def add_readiness_check(app: web.Application, probe: ReadinessProbe) -> None:
    """Register ``/ready``; the probe returns a dict with a boolean ``ok`` key."""

    async def readiness(request: web.Request) -> web.Response:
        report = await probe(request.app)
        return web.json_response(report, status=200 if report.get("ok") else 503)

    app.router.add_get("/ready", readiness)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    """Call after every route is registered."""
    for route in list(app.router.routes()):
        cors.add(route)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Request body as a JSON object, or HTTP 400."""
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data
