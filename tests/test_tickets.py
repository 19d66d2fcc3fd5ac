"""Tests for issuing and resolving authentication tickets."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from jwcrypto import jwk, jwt

from social.graze.signin.app.tickets import (
    TICKET_KEY_PREFIX,
    StoredTicket,
    TicketException,
    TicketStore,
)
from social.graze.signin.authentication.claims import (
    Claim,
    ClaimsIdentity,
    ClaimsPrincipal,
    ClaimTypes,
)
from social.graze.signin.authentication.properties import (
    AuthenticationProperties,
    AuthenticationToken,
)
from social.graze.signin.authentication.results import AuthenticationTicket

from conftest import EMAIL, SUBJECT, create_ec_key


def make_ticket(subject=SUBJECT) -> AuthenticationTicket:
    identity = ClaimsIdentity(authentication_type="Apple")
    if subject is not None:
        identity.add_claim(Claim(ClaimTypes.NAME_IDENTIFIER, subject, issuer="Apple"))
    identity.add_claim(Claim(ClaimTypes.EMAIL, EMAIL, issuer="Apple"))

    properties = AuthenticationProperties()
    properties.store_tokens(
        [
            AuthenticationToken("access_token", "a1b2c3.access"),
            AuthenticationToken("refresh_token", "r1b2c3.refresh"),
        ]
    )
    return AuthenticationTicket(
        principal=ClaimsPrincipal.from_identity(identity),
        properties=properties,
        authentication_scheme="Apple",
    )


@pytest.fixture
def service_key() -> jwk.JWK:
    return create_ec_key("service-key-1")


@pytest.fixture
def ticket_store(fake_redis_client, service_key) -> TicketStore:
    key_set = jwk.JWKSet()
    key_set.add(service_key)
    return TicketStore(fake_redis_client, key_set, ["service-key-1"], 3600)


class TestTicketStore:
    @pytest.mark.asyncio
    async def test_issue_and_resolve(self, ticket_store, fake_redis_client):
        auth_token = await ticket_store.issue(make_ticket())

        stored = await ticket_store.resolve(auth_token)

        assert stored.subject == SUBJECT
        assert stored.scheme == "Apple"
        assert stored.tokens == {
            "access_token": "a1b2c3.access",
            "refresh_token": "r1b2c3.refresh",
        }
        assert {"type": ClaimTypes.EMAIL, "value": EMAIL} in [
            {"type": c["type"], "value": c["value"]} for c in stored.claims
        ]

        ttl = await fake_redis_client.ttl(f"{TICKET_KEY_PREFIX}{stored.ticket_id}")
        assert 0 < ttl <= 3600

    @pytest.mark.asyncio
    async def test_auth_token_claims(self, ticket_store, service_key):
        now = datetime.now(timezone.utc)

        auth_token = await ticket_store.issue(make_ticket(), now=now)

        validated = jwt.JWT(jwt=auth_token, key=service_key, algs=["ES256"])
        header = validated.token.jose_header
        claims = json.loads(validated.claims)
        assert header == {"alg": "ES256", "kid": "service-key-1"}
        assert claims["sub"] == SUBJECT
        assert claims["iat"] == int(now.timestamp())
        assert claims["exp"] == int(now.timestamp()) + 3600
        assert len(claims["grp"]) == 26

    @pytest.mark.asyncio
    async def test_ticket_without_subject(self, ticket_store):
        with pytest.raises(TicketException, match="error-signin-3000"):
            await ticket_store.issue(make_ticket(subject=None))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("service_auth_keys", [[], ["unknown-key"]])
    async def test_no_signing_key(self, fake_redis_client, service_key, service_auth_keys):
        key_set = jwk.JWKSet()
        key_set.add(service_key)
        store = TicketStore(fake_redis_client, key_set, service_auth_keys, 3600)

        with pytest.raises(TicketException, match="error-signin-3001"):
            await store.issue(make_ticket())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("auth_token", ["", "not-a-token", "a.b.c"])
    async def test_malformed_auth_token(self, ticket_store, auth_token):
        with pytest.raises(TicketException, match="error-signin-3002"):
            await ticket_store.resolve(auth_token)

    @pytest.mark.asyncio
    async def test_auth_token_signed_by_other_key(self, fake_redis_client, ticket_store):
        other_keys = jwk.JWKSet()
        other_keys.add(create_ec_key("service-key-1"))
        other_store = TicketStore(fake_redis_client, other_keys, ["service-key-1"], 3600)

        auth_token = await other_store.issue(make_ticket())

        with pytest.raises(TicketException, match="error-signin-3002"):
            await ticket_store.resolve(auth_token)

    @pytest.mark.asyncio
    async def test_expired_auth_token(self, ticket_store):
        issued = datetime.now(timezone.utc) - timedelta(hours=2)

        auth_token = await ticket_store.issue(make_ticket(), now=issued)

        with pytest.raises(TicketException, match="error-signin-3002"):
            await ticket_store.resolve(auth_token)

    @pytest.mark.asyncio
    async def test_ticket_not_found(self, ticket_store, fake_redis_client):
        auth_token = await ticket_store.issue(make_ticket())
        await fake_redis_client.flushall()

        with pytest.raises(TicketException, match="error-signin-3003"):
            await ticket_store.resolve(auth_token)

    @pytest.mark.asyncio
    async def test_subject_mismatch(self, ticket_store, fake_redis_client):
        auth_token = await ticket_store.issue(make_ticket())
        stored = await ticket_store.resolve(auth_token)

        stored.subject = "someone-else"
        await fake_redis_client.set(
            f"{TICKET_KEY_PREFIX}{stored.ticket_id}", json.dumps(stored.to_dict())
        )

        with pytest.raises(TicketException, match="error-signin-3002"):
            await ticket_store.resolve(auth_token)


def test_stored_ticket_from_dict_defaults():
    stored = StoredTicket.from_dict(
        {
            "ticket_id": "01J0000000000000000000000",
            "subject": SUBJECT,
            "scheme": "Apple",
            "issued_at": "2026-03-01T12:00:00+00:00",
        }
    )

    assert stored.claims == []
    assert stored.tokens == {}
