"""
aiohttp front door for the webhook dispatcher.

Every path and method is routed to the dispatcher, which owns the
method gate, so rejections look the same as in the proxy handler.
"""

import base64
from typing import Optional

import structlog
from aiohttp import web

from .dispatcher import WebhookDispatcher
from .events import InboundRequest

logger = structlog.get_logger(__name__)

DISPATCHER_KEY = web.AppKey("dispatcher", WebhookDispatcher)


async def request_to_inbound(request: web.Request, stage: Optional[str] = None) -> InboundRequest:
    """Convert an aiohttp request into an InboundRequest."""
    raw = await request.read()
    is_base64_encoded = False
    body: Optional[str] = None

    if raw:
        try:
            body = raw.decode("utf-8")
        except UnicodeDecodeError:
            body = base64.b64encode(raw).decode("ascii")
            is_base64_encoded = True

    return InboundRequest(
        method=request.method,
        path=request.path,
        headers=dict(request.headers),
        query_parameters=dict(request.query),
        body=body,
        is_base64_encoded=is_base64_encoded,
        source_ip=request.remote,
        domain=request.host,
        stage=stage,
    )


async def handle_webhook(request: web.Request) -> web.Response:
    dispatcher = request.app[DISPATCHER_KEY]
    inbound = await request_to_inbound(request)
    response = await dispatcher.handle(inbound)

    headers = {key: value for key, value in response.headers.items() if key != "Content-Type"}
    return web.json_response(response.body, status=response.status_code, headers=headers)


def create_app(dispatcher: WebhookDispatcher) -> web.Application:
    """Build the aiohttp application serving the webhook endpoint."""
    app = web.Application()
    app[DISPATCHER_KEY] = dispatcher
    app.router.add_route("*", "/{tail:.*}", handle_webhook)
    return app
