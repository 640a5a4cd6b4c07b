"""Admin introspection over webhook deliveries."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_engine.api.utils import cursor_response, delivery_filter_params, parse_int_id, read_json
from webhook_engine.core.exceptions import NotFoundError
from webhook_engine.domain.dto import DeliveryReplayDTO
from webhook_engine.domain.enums import DeliveryStatus
from webhook_engine.services.dependencies import get_delivery_query_service, require_admin

routes = web.RouteTableDef()


@routes.get("/api/v1/admin/webhooks/deliveries")
async def list_deliveries(request: web.Request):
    await require_admin(request)
    filters = delivery_filter_params(request)
    service = await get_delivery_query_service(request)
    items, next_cursor = await service.list_deliveries(filters)
    return web.json_response(
        cursor_response(
            [item.model_dump(mode="json") for item in items],
            key="deliveries",
            next_cursor=next_cursor,
        )
    )


# registered before /deliveries/{delivery_id} so "dead" is not parsed as an id
@routes.get("/api/v1/admin/webhooks/deliveries/dead")
async def list_dead_deliveries(request: web.Request):
    await require_admin(request)
    filters = delivery_filter_params(request, status=DeliveryStatus.DEAD)
    service = await get_delivery_query_service(request)
    items, next_cursor = await service.list_dead(filters)
    return web.json_response(
        cursor_response(
            [item.model_dump(mode="json") for item in items],
            key="deliveries",
            next_cursor=next_cursor,
        )
    )


@routes.get("/api/v1/admin/webhooks/deliveries/{delivery_id}")
async def get_delivery(request: web.Request):
    await require_admin(request)
    delivery_id = parse_int_id(request.match_info["delivery_id"], "delivery_id")
    service = await get_delivery_query_service(request)
    try:
        detail = await service.get_delivery(delivery_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(detail.to_response())


@routes.post("/api/v1/admin/webhooks/deliveries/{delivery_id}/replay")
async def replay_delivery(request: web.Request):
    await require_admin(request)
    delivery_id = parse_int_id(request.match_info["delivery_id"], "delivery_id")
    body = await read_json(request) if request.can_read_body else {}
    try:
        dto = DeliveryReplayDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_delivery_query_service(request)
    try:
        delivery = await service.replay(delivery_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response({"delivery": delivery.model_dump(mode="json")}, status=201)
