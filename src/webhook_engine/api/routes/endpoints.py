"""Admin endpoints for the webhook endpoint registry."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_engine.api.utils import parse_int_id, read_json
from webhook_engine.core.exceptions import NotFoundError
from webhook_engine.domain.dto import EndpointCreateDTO, EndpointUpdateDTO
from webhook_engine.services.dependencies import get_endpoint_service, require_admin

routes = web.RouteTableDef()


@routes.post("/api/v1/admin/webhooks/endpoints")
async def create_endpoint(request: web.Request):
    await require_admin(request)
    body = await read_json(request)
    try:
        dto = EndpointCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_endpoint_service(request)
    created = await service.create_endpoint(dto)
    return web.json_response(created.model_dump(mode="json"), status=201)


@routes.get("/api/v1/admin/webhooks/endpoints")
async def list_endpoints(request: web.Request):
    await require_admin(request)
    service = await get_endpoint_service(request)
    endpoints = await service.list_endpoints()
    return web.json_response({"endpoints": [e.model_dump(mode="json") for e in endpoints]})


@routes.patch("/api/v1/admin/webhooks/endpoints/{endpoint_id}")
async def update_endpoint(request: web.Request):
    await require_admin(request)
    endpoint_id = parse_int_id(request.match_info["endpoint_id"], "endpoint_id")
    body = await read_json(request)
    try:
        dto = EndpointUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_endpoint_service(request)
    try:
        endpoint = await service.update_endpoint(endpoint_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(endpoint.model_dump(mode="json"))


@routes.delete("/api/v1/admin/webhooks/endpoints/{endpoint_id}")
async def delete_endpoint(request: web.Request):
    await require_admin(request)
    endpoint_id = parse_int_id(request.match_info["endpoint_id"], "endpoint_id")
    service = await get_endpoint_service(request)
    try:
        await service.delete_endpoint(endpoint_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/admin/webhooks/endpoints/{endpoint_id}/rotate-secret")
async def rotate_secret(request: web.Request):
    await require_admin(request)
    endpoint_id = parse_int_id(request.match_info["endpoint_id"], "endpoint_id")
    service = await get_endpoint_service(request)
    try:
        rotated = await service.rotate_secret(endpoint_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(rotated.model_dump(mode="json"))


@routes.post("/api/v1/admin/webhooks/endpoints/{endpoint_id}/test")
async def send_test_event(request: web.Request):
    await require_admin(request)
    endpoint_id = parse_int_id(request.match_info["endpoint_id"], "endpoint_id")
    service = await get_endpoint_service(request)
    try:
        delivery = await service.send_test(endpoint_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response({"delivery_id": delivery.id}, status=202)
