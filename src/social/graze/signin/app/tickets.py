"""
Issued authentication tickets.

A successful Sign in with Apple callback produces an AuthenticationTicket. The ticket's
claims and tokens are stored in Redis under a ULID, and the client receives a signed
auth token whose `sub` is the Apple subject identifier and whose `grp` is the ticket
id. Internal services exchange the auth token for the stored ticket.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException
from redis import asyncio as redis
from ulid import ULID

from social.graze.signin.authentication.claims import ClaimTypes
from social.graze.signin.authentication.results import AuthenticationTicket

logger = logging.getLogger(__name__)

TICKET_KEY_PREFIX = "auth_ticket:"


class TicketException(Exception):
    """
    Raised when an auth token cannot be issued or resolved.

    This exception class provides static methods for creating specific instances with
    stable messages.
    """

    @staticmethod
    def subject_missing() -> "TicketException":
        return TicketException(
            "error-signin-3000 Authentication ticket has no name identifier"
        )

    @staticmethod
    def no_signing_key() -> "TicketException":
        return TicketException("error-signin-3001 No service auth key available")

    @staticmethod
    def invalid_auth_token() -> "TicketException":
        return TicketException("error-signin-3002 Auth token is invalid")

    @staticmethod
    def ticket_not_found() -> "TicketException":
        return TicketException("error-signin-3003 Ticket not found or expired")


@dataclass
class StoredTicket:
    ticket_id: str
    subject: str
    scheme: str
    issued_at: str
    claims: List[Dict[str, str]] = field(default_factory=list)
    tokens: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "subject": self.subject,
            "scheme": self.scheme,
            "issued_at": self.issued_at,
            "claims": self.claims,
            "tokens": self.tokens,
        }

    @staticmethod
    def from_dict(value: Dict[str, Any]) -> "StoredTicket":
        return StoredTicket(
            ticket_id=value["ticket_id"],
            subject=value["subject"],
            scheme=value["scheme"],
            issued_at=value["issued_at"],
            claims=list(value.get("claims", [])),
            tokens=dict(value.get("tokens", {})),
        )


class TicketStore:
    """
    Args:
        redis_session: Redis client
        json_web_keys: Key set holding the service auth keys
        service_auth_keys: Key IDs usable for signing, the first one is used
        ticket_lifetime: Seconds a stored ticket remains resolvable
    """

    def __init__(
        self,
        redis_session: redis.Redis,
        json_web_keys: jwk.JWKSet,
        service_auth_keys: List[str],
        ticket_lifetime: int,
    ) -> None:
        self._redis = redis_session
        self._json_web_keys = json_web_keys
        self._service_auth_keys = service_auth_keys
        self._ticket_lifetime = ticket_lifetime

    async def issue(
        self, ticket: AuthenticationTicket, now: Optional[datetime] = None
    ) -> str:
        """Store the ticket and return a serialized auth token referencing it."""
        if now is None:
            now = datetime.now(timezone.utc)

        subject_claim = ticket.principal.find_first(ClaimTypes.NAME_IDENTIFIER)
        if subject_claim is None:
            raise TicketException.subject_missing()

        service_auth_key_id = next(iter(self._service_auth_keys), None)
        if service_auth_key_id is None:
            raise TicketException.no_signing_key()

        service_auth_key = self._json_web_keys.get_key(service_auth_key_id)
        if service_auth_key is None:
            raise TicketException.no_signing_key()

        stored = StoredTicket(
            ticket_id=str(ULID()),
            subject=subject_claim.value,
            scheme=ticket.authentication_scheme,
            issued_at=now.isoformat(),
            claims=[claim.to_dict() for claim in ticket.principal.claims],
            tokens={
                token.name: token.value for token in ticket.properties.get_tokens()
            },
        )

        await self._redis.set(
            f"{TICKET_KEY_PREFIX}{stored.ticket_id}",
            json.dumps(stored.to_dict()),
            ex=self._ticket_lifetime,
        )

        auth_token = jwt.JWT(
            header={"alg": "ES256", "kid": service_auth_key_id},
            claims={
                "sub": stored.subject,
                "grp": stored.ticket_id,
                "iat": int(now.timestamp()),
                "exp": int(now.timestamp()) + self._ticket_lifetime,
            },
        )
        auth_token.make_signed_token(service_auth_key)
        return str(auth_token.serialize())

    async def resolve(self, serialized_auth_token: str) -> StoredTicket:
        """Validate an auth token and return the ticket it references."""
        try:
            validated_auth_token = jwt.JWT(
                jwt=serialized_auth_token, key=self._json_web_keys, algs=["ES256"]
            )
            auth_token_claims: Dict[str, Any] = json.loads(validated_auth_token.claims)
        except (JWException, ValueError) as e:
            raise TicketException.invalid_auth_token() from e

        subject = auth_token_claims.get("sub", None)
        ticket_id = auth_token_claims.get("grp", None)
        if not isinstance(subject, str) or not isinstance(ticket_id, str):
            raise TicketException.invalid_auth_token()

        value = await self._redis.get(f"{TICKET_KEY_PREFIX}{ticket_id}")
        if value is None:
            raise TicketException.ticket_not_found()

        stored = StoredTicket.from_dict(json.loads(value))
        if stored.subject != subject:
            raise TicketException.invalid_auth_token()

        return stored
