"""
Sign in with Apple Handlers

This module implements the web request handlers for Sign in with Apple.

OAuth Flow with Apple:
1. Client sends the user to GET /auth/apple with an optional destination
2. The service sets a correlation cookie and redirects to Apple's authorization endpoint
3. The user authenticates with Apple
4. Apple posts the authorization code (or an error) back to the callback path
5. The service exchanges the code for tokens and builds a ticket from the identity token
6. The ticket is stored and the user is redirected to the destination with an auth token

The handlers in this module provide the following endpoints:
- GET /auth/apple - Start the sign in
- GET|POST /auth/apple/callback - Callback from Apple (path is configurable)
"""

import logging
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import aiohttp_jinja2
import sentry_sdk
from aiohttp import hdrs, web

from social.graze.signin.app.config import (
    AuthenticationHandlerAppKey,
    SettingsAppKey,
    TicketStoreAppKey,
)
from social.graze.signin.app.cors import allowed_origins_from_setting, get_cors_headers
from social.graze.signin.authentication.errors import (
    AccessDeniedFailure,
    UnrecoverableAuthenticationError,
)
from social.graze.signin.authentication.parameters import CallbackRequest
from social.graze.signin.authentication.properties import AuthenticationProperties
from social.graze.signin.authentication.results import HandleRequestResult, ResultKind

logger = logging.getLogger(__name__)


def cors_headers(request: web.Request) -> dict[str, str]:
    settings = request.app[SettingsAppKey]
    return get_cors_headers(
        request.headers.get(hdrs.ORIGIN),
        request.path,
        settings.debug,
        allowed_origins_from_setting(settings.allowed_domains),
    )


def expire_cookies(response: web.StreamResponse, cookie_names: list[str]) -> None:
    for cookie_name in cookie_names:
        response.del_cookie(cookie_name, path="/", secure=True, samesite="None")


def add_auth_token(destination: str, serialized_auth_token: str) -> str:
    parsed_destination = urlparse(destination)
    query = dict(parse_qsl(parsed_destination.query))
    query.update({"auth_token": serialized_auth_token})
    parsed_destination = parsed_destination._replace(query=urlencode(query))
    return urlunparse(parsed_destination)


async def handle_apple_login(request: web.Request):
    """
    Start Sign in with Apple.

    Query Parameters:
        destination: Where the user is sent with the auth token after signing in

    Raises:
        HTTPFound: To redirect to Apple's authorization endpoint, setting the
            correlation cookie
    """
    settings = request.app[SettingsAppKey]
    authentication_handler = request.app[AuthenticationHandlerAppKey]

    properties = AuthenticationProperties()
    properties.redirect_uri = request.query.get(
        "destination", settings.default_destination
    )

    challenge_url, cookie = authentication_handler.challenge(properties)

    redirect = web.HTTPFound(challenge_url, headers=cors_headers(request))
    redirect.set_cookie(
        cookie.name,
        cookie.value,
        max_age=cookie.max_age,
        path="/",
        secure=cookie.secure,
        httponly=cookie.httponly,
        samesite=cookie.samesite,
    )
    raise redirect


async def handle_apple_callback(request: web.Request):
    """
    Handle the callback from Apple.

    Apple posts the callback as a form when `response_mode=form_post` was requested,
    which is always the case for challenges issued by this service. Correlation
    cookies consumed by the callback are expired on every response.

    Returns:
        The alert page describing the failure. A protocol violation by Apple is
        reported to sentry and rendered with a 500.

    Raises:
        HTTPFound: To redirect to the destination with an auth token, or to the
            location chosen by the access denied handling
    """
    authentication_handler = request.app[AuthenticationHandlerAppKey]

    callback_request = await CallbackRequest.from_request(request)

    try:
        result = await authentication_handler.handle_remote_authenticate(
            callback_request
        )
    except UnrecoverableAuthenticationError as e:
        logger.exception("callback error")
        sentry_sdk.capture_exception(e)

        response = await aiohttp_jinja2.render_template_async(
            "alert.html",
            request,
            context={"error_message": str(e), "error": ""},
            status=500,
        )
        expire_cookies(response, callback_request.expired_cookies)
        return response

    try:
        response = await callback_response(request, result)
    except web.HTTPFound as redirect:
        expire_cookies(redirect, callback_request.expired_cookies)
        raise

    expire_cookies(response, callback_request.expired_cookies)
    return response


async def callback_response(
    request: web.Request, result: HandleRequestResult
) -> web.StreamResponse:
    settings = request.app[SettingsAppKey]
    headers = cors_headers(request)

    if result.kind is ResultKind.SUCCESS and result.ticket is not None:
        ticket_store = request.app[TicketStoreAppKey]
        serialized_auth_token = await ticket_store.issue(result.ticket)

        destination = result.ticket.properties.redirect_uri or settings.default_destination
        raise web.HTTPFound(
            add_auth_token(destination, serialized_auth_token), headers=headers
        )

    if result.kind is ResultKind.HANDLED:
        if result.redirect:
            raise web.HTTPFound(result.redirect, headers=headers)
        return web.Response(status=200, headers=headers)

    if result.kind is ResultKind.SKIPPED:
        return web.Response(status=404, headers=headers)

    failure = result.failure
    status = 403 if isinstance(failure, AccessDeniedFailure) else 400
    return await aiohttp_jinja2.render_template_async(
        "alert.html",
        request,
        context={
            "error_message": failure.message if failure else "Authentication failed.",
            "error": failure.data.get("error", "") if failure else "",
        },
        status=status,
    )
