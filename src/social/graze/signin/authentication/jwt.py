"""
Identity token decoding and validation.

TokenDecoder reads the claims of a compact JWS without verifying its signature; the
signature is verified separately by a TokenValidator when token validation is enabled.
AppleIdTokenValidator verifies signature, issuer, audience and expiry against Apple's
published JSON Web Key Set.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from time import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from aiohttp import ClientError, ClientSession
from jwcrypto import jwk, jwt
from jwcrypto.common import JWException, base64url_decode, json_decode

from social.graze.signin.authentication.claims import (
    DEFAULT_ISSUER,
    Claim,
    json_value_to_string,
    json_value_type,
)
from social.graze.signin.authentication.errors import (
    TokenDecodeError,
    TokenValidationError,
)

if TYPE_CHECKING:
    from social.graze.signin.authentication.events import ValidateIdTokenContext

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_SKEW = timedelta(minutes=5)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DecodedToken:
    subject: str
    claims: List[Claim] = field(default_factory=list)
    header: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)


class TokenDecoder:
    """
    Decode a compact JWS identity token into an ordered claim sequence.

    Args:
        validate_lifetime: Reject tokens outside of their `nbf`/`exp` window
        clock_skew: Tolerance applied to the lifetime checks
        clock: Source of the current time
    """

    def __init__(
        self,
        validate_lifetime: bool = True,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._validate_lifetime = validate_lifetime
        self._clock_skew = clock_skew
        self._clock = clock

    def decode(self, token: str) -> DecodedToken:
        segments = token.split(".") if token else []
        if len(segments) != 3:
            raise TokenDecodeError(
                "error-signin-2100 Identity token is not a compact JWS"
            )

        try:
            header = json_decode(base64url_decode(segments[0]))
            payload = json_decode(base64url_decode(segments[1]))
        except (ValueError, TypeError) as e:
            raise TokenDecodeError(
                "error-signin-2101 Identity token segments are not base64url JSON"
            ) from e

        if not isinstance(header, dict) or not isinstance(header.get("alg"), str):
            raise TokenDecodeError("error-signin-2102 Identity token header is invalid")

        if not isinstance(payload, dict):
            raise TokenDecodeError("error-signin-2103 Identity token payload is invalid")

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenDecodeError("error-signin-2104 Identity token has no subject")

        if self._validate_lifetime:
            self._check_lifetime(payload)

        issuer = payload.get("iss")
        if not isinstance(issuer, str) or not issuer:
            issuer = DEFAULT_ISSUER

        claims: List[Claim] = []
        for name, value in payload.items():
            values = value if isinstance(value, list) else [value]
            for item in values:
                text = json_value_to_string(item)
                if text is None:
                    continue
                claims.append(Claim(name, text, json_value_type(item), issuer))

        return DecodedToken(
            subject=subject, claims=claims, header=header, payload=payload
        )

    def _check_lifetime(self, payload: Dict[str, Any]) -> None:
        now = self._clock()

        expires = self._numeric_date(payload, "exp")
        if expires is not None and expires + self._clock_skew < now:
            raise TokenDecodeError("error-signin-2105 Identity token has expired")

        not_before = self._numeric_date(payload, "nbf")
        if not_before is not None and not_before - self._clock_skew > now:
            raise TokenDecodeError("error-signin-2106 Identity token is not yet valid")

    @staticmethod
    def _numeric_date(payload: Dict[str, Any], name: str) -> Optional[datetime]:
        value = payload.get(name)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TokenDecodeError(
                f"error-signin-2107 Identity token claim {name} is not a NumericDate"
            )
        return datetime.fromtimestamp(value, tz=timezone.utc)


class TokenValidator(ABC):
    @abstractmethod
    async def validate(self, context: "ValidateIdTokenContext") -> None:
        """Raise TokenValidationError when the identity token must be rejected."""
        pass


class AppleIdTokenValidator(TokenValidator):
    """
    Validate Apple identity tokens against the published JSON Web Key Set.

    Keys are cached for `cache_lifetime` seconds and refreshed early when a token is
    signed with a key id that is not in the cached set, which handles key rotation.
    """

    def __init__(
        self,
        http_session: ClientSession,
        jwks_endpoint: str,
        issuer: str,
        audience: str,
        algorithms: Optional[List[str]] = None,
        cache_lifetime: int = 3600,
    ) -> None:
        self._http_session = http_session
        self._jwks_endpoint = jwks_endpoint
        self._issuer = issuer
        self._audience = audience
        self._algorithms = algorithms or ["RS256"]
        self._cache_lifetime = cache_lifetime
        self._key_set: Optional[jwk.JWKSet] = None
        self._key_set_expires_at = 0.0

    async def validate(self, context: "ValidateIdTokenContext") -> None:
        key_set = await self._get_key_set()

        kid = self._unverified_kid(context.id_token)
        if kid is not None and key_set.get_key(kid) is None:
            logger.info(f"Key {kid} not found in cached key set, refreshing")
            key_set = await self._get_key_set(force_refresh=True)

        try:
            jwt.JWT(
                jwt=context.id_token,
                key=key_set,
                algs=self._algorithms,
                check_claims={
                    "iss": self._issuer,
                    "aud": self._audience,
                    "sub": None,
                    "exp": None,
                },
            )
        except (JWException, ValueError) as e:
            raise TokenValidationError(
                f"error-signin-2200 Apple ID token validation failed: {e}"
            ) from e

    async def _get_key_set(self, force_refresh: bool = False) -> jwk.JWKSet:
        if (
            not force_refresh
            and self._key_set is not None
            and time() < self._key_set_expires_at
        ):
            return self._key_set

        try:
            async with self._http_session.get(self._jwks_endpoint) as resp:
                if resp.status != 200:
                    raise TokenValidationError(
                        f"error-signin-2201 Unable to retrieve signing keys: HTTP {resp.status}"
                    )
                body = await resp.text()
        except ClientError as e:
            raise TokenValidationError(
                "error-signin-2201 Unable to retrieve signing keys"
            ) from e

        try:
            key_set = jwk.JWKSet.from_json(body)
        except (JWException, ValueError) as e:
            raise TokenValidationError(
                "error-signin-2202 Signing key set is invalid"
            ) from e

        self._key_set = key_set
        self._key_set_expires_at = time() + self._cache_lifetime
        return key_set

    @staticmethod
    def _unverified_kid(token: str) -> Optional[str]:
        try:
            header = json_decode(base64url_decode(token.split(".")[0]))
        except (ValueError, TypeError, IndexError):
            return None
        kid = header.get("kid") if isinstance(header, dict) else None
        return kid if isinstance(kid, str) else None
