import json
import logging
from typing import Optional

from aiohttp import web

from social.graze.signin.app.config import MetricsClientAppKey, TicketStoreAppKey
from social.graze.signin.app.tickets import TicketException

logger = logging.getLogger(__name__)


async def handle_internal_me(request: web.Request):
    """
    Return the ticket referenced by the bearer auth token.

    Requires an `Authorization: Bearer <auth_token>` header carrying a token issued by
    the callback.
    """
    ticket_store = request.app[TicketStoreAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    authorizations: Optional[str] = request.headers.getone("Authorization", None)
    if (
        authorizations is None
        or not authorizations.startswith("Bearer ")
        or len(authorizations) < 8
    ):
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": "Not Authorized"}),
            content_type="application/json",
        )

    try:
        stored_ticket = await ticket_store.resolve(authorizations[7:])
    except TicketException as e:
        logger.info(f"Auth token rejected: {e}")
        metrics_client.increment(
            "signin.auth.exception", 1, tag_dict={"exception": type(e).__name__}
        )
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": "Not Authorized"}),
            content_type="application/json",
        )

    return web.json_response(stored_ticket.to_dict())


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)
