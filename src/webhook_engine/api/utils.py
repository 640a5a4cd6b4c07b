"""Helper utilities for API handlers."""
# pyright: reportMissingImports=false
from __future__ import annotations

from typing import Any

from aiohttp import web
from pydantic import ValidationError

from service_common.aiohttp_app import read_json as read_json  # noqa: F401
from webhook_engine.domain.dto import DeliveryListFilter


def parse_int_id(value: str, label: str) -> int:
    try:
        parsed = int(value)
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc
    if parsed <= 0:
        raise web.HTTPBadRequest(text=f"Invalid {label}")
    return parsed


def delivery_filter_params(request: web.Request, **overrides: Any) -> DeliveryListFilter:
    """Build the list filter from query params; unknown params are ignored."""
    query = request.rel_url.query
    data: dict[str, Any] = {
        key: query[key] for key in DeliveryListFilter.model_fields if key in query
    }
    data.update(overrides)
    try:
        return DeliveryListFilter.model_validate(data)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc


def cursor_response(items: list[Any], *, key: str, next_cursor: int | None) -> dict[str, Any]:
    return {key: items, "next_cursor": next_cursor}
