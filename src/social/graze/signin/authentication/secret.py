"""
Apple client secret generation.

Apple does not issue static client secrets. Instead the client secret is a short-lived
ES256 JWT signed with a private key downloaded from the Apple developer account:

    header: {"alg": "ES256", "kid": <key id>}
    claims: {"iss": <team id>, "sub": <client id>, "aud": "https://appleid.apple.com",
             "iat": <now>, "exp": <now + lifetime>}

Apple accepts a lifetime of at most six months. Generated secrets are cached and reused
until shortly before they expire.
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from jwcrypto import jwk, jwt

from social.graze.signin.authentication.jwt import utc_now

if TYPE_CHECKING:
    from social.graze.signin.authentication.events import GenerateClientSecretContext

logger = logging.getLogger(__name__)

APPLE_AUDIENCE = "https://appleid.apple.com"
MAXIMUM_LIFETIME = timedelta(days=180)
RENEWAL_MARGIN = timedelta(minutes=1)


class ClientSecretGenerator:
    """
    Generate Apple client secrets.

    Args:
        private_key: The EC P-256 key used to sign secrets
        key_id: Identifier of the private key in the Apple developer account
        team_id: Apple developer team identifier
        client_id: The Services ID the secret is issued for
        lifetime: Validity period of a generated secret
        clock: Source of the current time
    """

    def __init__(
        self,
        private_key: jwk.JWK,
        key_id: str,
        team_id: str,
        client_id: str,
        lifetime: timedelta = MAXIMUM_LIFETIME,
        audience: str = APPLE_AUDIENCE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if lifetime <= timedelta(0) or lifetime > MAXIMUM_LIFETIME:
            raise ValueError("client secret lifetime must be between 0 and 180 days")

        self._private_key = private_key
        self._key_id = key_id
        self._team_id = team_id
        self._client_id = client_id
        self._lifetime = lifetime
        self._audience = audience
        self._clock = clock
        self._cached: Optional[Tuple[str, datetime]] = None

    async def generate(
        self, context: Optional["GenerateClientSecretContext"] = None
    ) -> str:
        now = self._clock()

        if self._cached is not None:
            secret, expires_at = self._cached
            if now < expires_at - RENEWAL_MARGIN:
                return secret

        expires_at = now + self._lifetime
        token = jwt.JWT(
            header={"alg": "ES256", "kid": self._key_id},
            claims={
                "iss": self._team_id,
                "sub": self._client_id,
                "aud": self._audience,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
        )
        token.make_signed_token(self._private_key)
        secret = token.serialize()

        logger.debug(f"Generated new client secret for {self._client_id} expiring at {expires_at.isoformat()}")

        self._cached = (secret, expires_at)
        return secret
