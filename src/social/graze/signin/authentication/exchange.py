"""
Authorization code exchange (RFC 6749 section 4.1.3).

The exchange never raises for ordinary protocol or transport errors. They are encoded
in the error field of the returned TokenBundle so the orchestrator can turn them into a
soft failure. Cancellation of the surrounding task propagates unchanged.
"""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List

from aiohttp import ClientError

from social.graze.signin.authentication.chain import (
    ChainMiddlewareClient,
    ChainResponse,
    ClientSecretMiddleware,
    RequestMiddlewareBase,
    StatsdMiddleware,
)
from social.graze.signin.authentication.errors import (
    OAuthTokenError,
    format_provider_error,
    provider_error_data,
)
from social.graze.signin.authentication.events import GenerateClientSecretContext
from social.graze.signin.authentication.properties import (
    CODE_VERIFIER_KEY,
    AuthenticationProperties,
)
from social.graze.signin.authentication.tokens import TokenBundle

if TYPE_CHECKING:
    from social.graze.signin.authentication.options import AppleAuthenticationOptions

logger = logging.getLogger(__name__)


@dataclass
class CodeExchangeContext:
    properties: AuthenticationProperties
    code: str
    redirect_uri: str


class TokenExchanger:
    def __init__(self, options: "AppleAuthenticationOptions") -> None:
        self._options = options

    async def exchange_code(self, context: CodeExchangeContext) -> TokenBundle:
        """
        Exchange an authorization code for tokens.

        When client secret generation is enabled the generate_client_secret event runs
        first and the produced secret is used for this request only.
        """
        options = self._options

        client_secret = options.client_secret
        if options.generate_client_secret:
            secret_context = GenerateClientSecretContext(options=options)
            await options.events.generate_client_secret(secret_context)
            client_secret = secret_context.client_secret

        data: Dict[str, str] = {
            "client_id": options.client_id,
            "redirect_uri": context.redirect_uri,
            "code": context.code,
            "grant_type": "authorization_code",
        }

        code_verifier = context.properties.items.pop(CODE_VERIFIER_KEY, None)
        if code_verifier:
            data["code_verifier"] = code_verifier

        middleware: List[RequestMiddlewareBase] = [StatsdMiddleware(options.metrics)]
        if client_secret:
            middleware.append(ClientSecretMiddleware(client_secret))

        chain_client = ChainMiddlewareClient(
            client_session=options.backchannel,
            raise_for_status=False,
            middleware=middleware,
        )

        try:
            async with chain_client.post(
                options.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            ) as (client_response, chain_response):
                return self._token_bundle(chain_response)
        except (ClientError, ValueError) as e:
            logger.warning(f"Token endpoint request failed: {type(e).__name__}: {e}")
            return TokenBundle.failed(
                OAuthTokenError(f"OAuth token endpoint failure: {type(e).__name__}: {e}")
            )

    @staticmethod
    def _token_bundle(chain_response: ChainResponse) -> TokenBundle:
        body = chain_response.body

        if 200 <= chain_response.status < 300 and isinstance(body, dict):
            return TokenBundle.success(body)

        if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
            error = body["error"]
            error_description = _as_text(body.get("error_description"))
            error_uri = _as_text(body.get("error_uri"))
            return TokenBundle.failed(
                OAuthTokenError(
                    format_provider_error(error, error_description, error_uri),
                    provider_error_data(error, error_description, error_uri),
                )
            )

        headers = "".join(
            f"{name}: {value}\n" for name, value in chain_response.headers.items()
        )
        return TokenBundle.failed(
            OAuthTokenError(
                "OAuth token endpoint failure: "
                f"Status: {chain_response.status};"
                f"Headers: {headers};"
                f"Body: {_body_text(chain_response)};"
            )
        )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _body_text(chain_response: ChainResponse) -> str:
    if isinstance(chain_response.body, (dict, list)):
        return json.dumps(chain_response.body)
    return chain_response.body_text()
