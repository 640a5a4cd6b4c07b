"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from webhook_engine.api.routes import deliveries, endpoints, inbound

ROUTE_MODULES = [
    endpoints,
    deliveries,
    inbound,
]


def setup_routes(app: web.Application) -> None:
    """Attach webhook routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
