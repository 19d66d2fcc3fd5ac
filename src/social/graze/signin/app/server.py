import logging
import os
from time import time
from typing import Optional

import aiohttp
import aiohttp_jinja2
import jinja2
import redis.asyncio as redis
import sentry_sdk
from aiohttp import web
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.graze.signin.app.config import (
    AuthenticationHandlerAppKey,
    MetricsClientAppKey,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
    TicketStoreAppKey,
)
from social.graze.signin.app.handlers.apple import (
    handle_apple_callback,
    handle_apple_login,
)
from social.graze.signin.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_me,
)
from social.graze.signin.app.metrics import create_metrics_client
from social.graze.signin.app.tickets import TicketStore
from social.graze.signin.authentication.handler import AppleAuthenticationHandler
from social.graze.signin.authentication.options import AppleAuthenticationOptions

logger = logging.getLogger(__name__)

TEMPLATES_PATH = os.path.join(os.path.dirname(__file__), "templates")


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    trace_config = aiohttp.TraceConfig()

    if settings.debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logging.info("Starting request: %s", params)

        async def on_request_end(session, trace_config_ctx, params):
            logging.info("Ending request: %s", params)

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

    app[SessionAppKey] = aiohttp.ClientSession(trace_configs=[trace_config])

    app[RedisClientAppKey] = redis.Redis(
        connection_pool=redis.ConnectionPool.from_url(str(settings.redis_dsn))
    )

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    options = AppleAuthenticationOptions.from_settings(
        settings, app[SessionAppKey], metrics=metrics_client
    )
    app[AuthenticationHandlerAppKey] = AppleAuthenticationHandler(options)

    app[TicketStoreAppKey] = TicketStore(
        app[RedisClientAppKey],
        settings.json_web_keys,
        settings.service_auth_keys,
        settings.ticket_lifetime,
    )

    logger.info("Startup complete")

    yield

    logger.info("Shutting down")

    await app[SessionAppKey].close()
    await app[RedisClientAppKey].aclose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "signin.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "signin.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "signin.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


def configure_routes(app: web.Application, settings: Settings) -> None:
    app.add_routes([web.get("/auth/apple", handle_apple_login)])
    app.add_routes(
        [
            web.get(settings.callback_path, handle_apple_callback),
            web.post(settings.callback_path, handle_apple_callback),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/api/me", handle_internal_me),
        ]
    )

    _ = aiohttp_jinja2.setup(
        app,
        enable_async=True,
        loader=jinja2.FileSystemLoader(TEMPLATES_PATH),
    )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()]
        )
    app = web.Application(middlewares=[statsd_middleware, sentry_middleware])

    app[SettingsAppKey] = settings

    configure_routes(app, settings)

    app.cleanup_ctx.append(background_tasks)

    return app
