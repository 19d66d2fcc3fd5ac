"""
Shared test configuration and fixtures for the sign-in tests.

Provides keys, identity token helpers, authentication options wired to a stub token
exchanger, and a fake Redis client.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from aiohttp import ClientResponse, ClientSession, hdrs
from cryptography.fernet import Fernet
from jwcrypto import jwk, jwt
from multidict import CIMultiDict, CIMultiDictProxy, MultiDict, MultiDictProxy

from social.graze.signin.app.metrics import NoOpMetricsClient
from social.graze.signin.authentication.exchange import (
    CodeExchangeContext,
    TokenExchanger,
)
from social.graze.signin.authentication.handler import AppleAuthenticationHandler
from social.graze.signin.authentication.options import AppleAuthenticationOptions
from social.graze.signin.authentication.parameters import CallbackRequest
from social.graze.signin.authentication.properties import (
    AuthenticationProperties,
    PropertiesDataFormat,
)
from social.graze.signin.authentication.tokens import TokenBundle

CLIENT_ID = "social.graze.signin.test"
APPLE_ISSUER = "https://appleid.apple.com"
APPLE_KEY_ID = "apple-test-key"
SUBJECT = "001234.abcdef0123456789.0123"
EMAIL = "user@privaterelay.appleid.com"
DESTINATION = "https://app.example.com/done"

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class RecordingMetricsClient(NoOpMetricsClient):
    """Metrics client that records counters for assertions."""

    def __init__(self) -> None:
        self.increments: List[tuple] = []
        self.timers: List[tuple] = []

    def increment(self, name, value=1, tag_dict=None) -> None:
        self.increments.append((name, value, tag_dict or {}))

    def timer(self, name, value, tag_dict=None) -> None:
        self.timers.append((name, value, tag_dict or {}))

    def outcomes(self) -> List[str]:
        return [
            tags["outcome"]
            for name, _, tags in self.increments
            if name == "signin.callback.result"
        ]


class StubTokenExchanger(TokenExchanger):
    """Token exchanger returning a canned TokenBundle and recording its calls."""

    def __init__(
        self, options: AppleAuthenticationOptions, bundle: Optional[TokenBundle] = None
    ) -> None:
        super().__init__(options)
        self.bundle = bundle or TokenBundle.success({})
        self.contexts: List[CodeExchangeContext] = []
        self.exception: Optional[BaseException] = None

    async def exchange_code(self, context: CodeExchangeContext) -> TokenBundle:
        self.contexts.append(context)
        if self.exception is not None:
            raise self.exception
        return self.bundle


def create_mock_response(
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    content_type: str = "application/json",
    body: Any = None,
) -> ClientResponse:
    """Create a mock aiohttp ClientResponse."""
    mock_response = AsyncMock(spec=ClientResponse)
    mock_response.status = status

    headers_dict = dict(headers or {})
    if hdrs.CONTENT_TYPE not in headers_dict:
        headers_dict[hdrs.CONTENT_TYPE] = content_type
    mock_response.headers = CIMultiDictProxy(CIMultiDict(headers_dict))

    if content_type.startswith("application/json"):
        mock_response.json = AsyncMock(return_value=body)
        mock_response.text = AsyncMock(return_value=json.dumps(body))
        mock_response.read = AsyncMock(return_value=json.dumps(body).encode())
    else:
        text_body = str(body) if body is not None else ""
        mock_response.json = AsyncMock(side_effect=ValueError("Not JSON"))
        mock_response.text = AsyncMock(return_value=text_body)
        mock_response.read = AsyncMock(return_value=text_body.encode())

    mock_response.raise_for_status = Mock()
    mock_response.closed = False
    mock_response.close = Mock()

    return mock_response

def create_apple_key() -> jwk.JWK:
    return jwk.JWK.generate(kty="RSA", size=2048, kid=APPLE_KEY_ID, alg="RS256")


def create_ec_key(kid: str = "service-key") -> jwk.JWK:
    return jwk.JWK.generate(kty="EC", crv="P-256", kid=kid, alg="ES256")


def make_id_token(
    key: jwk.JWK,
    claims: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
    **overrides: Any,
) -> str:
    """Create a signed Apple style identity token."""
    if now is None:
        now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "iss": APPLE_ISSUER,
        "aud": CLIENT_ID,
        "exp": int((now + timedelta(minutes=10)).timestamp()),
        "iat": int(now.timestamp()),
        "sub": SUBJECT,
        "email": EMAIL,
        "email_verified": True,
        "is_private_email": "true",
        "auth_time": int(now.timestamp()),
    }
    if claims is not None:
        payload = claims
    payload.update(overrides)

    token = jwt.JWT(
        header={"alg": "RS256", "kid": key.key_id}, claims=payload
    )
    token.make_signed_token(key)
    return str(token.serialize())


def token_response(id_token: Optional[str], **overrides: Any) -> Dict[str, Any]:
    response: Dict[str, Any] = {
        "access_token": "a1b2c3.access",
        "token_type": "Bearer",
        "expires_in": 3600,
        "refresh_token": "r1b2c3.refresh",
    }
    if id_token is not None:
        response["id_token"] = id_token
    response.update(overrides)
    return response


def make_options(**overrides: Any) -> AppleAuthenticationOptions:
    values: Dict[str, Any] = {
        "client_id": CLIENT_ID,
        "client_secret": "static-secret",
        "backchannel": Mock(spec=ClientSession),
        "state_data_format": PropertiesDataFormat(
            Fernet(Fernet.generate_key()), ttl=900
        ),
        "external_hostname": "signin.example.com",
        "validate_tokens": False,
        "metrics": RecordingMetricsClient(),
    }
    values.update(overrides)
    return AppleAuthenticationOptions(**values)


def make_callback_request(
    options: AppleAuthenticationOptions,
    method: str = "POST",
    include_state: bool = True,
    include_cookie: bool = True,
    properties: Optional[AuthenticationProperties] = None,
    **parameters: str,
) -> CallbackRequest:
    """Create a callback carrying a valid state and the matching correlation cookie."""
    if properties is None:
        properties = AuthenticationProperties()
        properties.redirect_uri = DESTINATION

    assert options.correlation_validator is not None
    cookie = options.correlation_validator.generate(properties)

    values = MultiDict(parameters)
    if include_state:
        values.add("state", options.state_data_format.protect(properties))

    source = MultiDictProxy(values)
    empty: MultiDictProxy[str] = MultiDictProxy(MultiDict())
    return CallbackRequest(
        method=method,
        query=empty if method.upper() == "POST" else source,
        form=source if method.upper() == "POST" else empty,
        cookies={cookie.name: cookie.value} if include_cookie else {},
    )


@pytest.fixture(scope="session")
def apple_key() -> jwk.JWK:
    return create_apple_key()


@pytest.fixture
def options() -> AppleAuthenticationOptions:
    return make_options()


@pytest.fixture
def exchanger(options) -> StubTokenExchanger:
    return StubTokenExchanger(options)


@pytest.fixture
def handler(options, exchanger) -> AppleAuthenticationHandler:
    return AppleAuthenticationHandler(options, exchanger=exchanger, clock=fixed_clock)


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()
