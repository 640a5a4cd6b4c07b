"""Receiver for signed webhooks sent to this service."""
from __future__ import annotations

from aiohttp import web

from webhook_engine.core.exceptions import SignatureError, ValidationError
from webhook_engine.services.dependencies import get_inbound_service, get_inbound_verifier

routes = web.RouteTableDef()


@routes.post("/api/v1/webhooks/inbound")
async def receive_webhook(request: web.Request):
    verifier = get_inbound_verifier()
    if verifier is None:
        raise web.HTTPServiceUnavailable(text="Inbound webhooks are not configured")
    raw_body = await request.read()
    try:
        webhook = verifier.verify(request.headers, raw_body)
    except SignatureError as exc:
        raise web.HTTPUnauthorized(text=str(exc)) from exc
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc

    service = await get_inbound_service(request)
    deduped = await service.process(webhook)
    return web.json_response({"ok": True, "deduped": deduped})
