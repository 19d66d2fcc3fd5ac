"""Tests for Apple client secret generation."""

import json
from datetime import timedelta

import pytest
from jwcrypto import jws

from social.graze.signin.authentication.secret import ClientSecretGenerator

from conftest import CLIENT_ID, FIXED_NOW, create_ec_key


def read_secret(secret: str, key) -> tuple:
    token = jws.JWS()
    token.deserialize(secret, key=key)
    return token.jose_header, json.loads(token.payload)


class MutableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def ec_key():
    return create_ec_key("ABC123DEFG")


class TestClientSecretGenerator:
    @pytest.mark.asyncio
    async def test_generate(self, ec_key):
        generator = ClientSecretGenerator(
            private_key=ec_key,
            key_id="ABC123DEFG",
            team_id="TEAM123456",
            client_id=CLIENT_ID,
            lifetime=timedelta(days=1),
            clock=MutableClock(FIXED_NOW),
        )

        secret = await generator.generate()

        header, claims = read_secret(secret, ec_key)
        assert header == {"alg": "ES256", "kid": "ABC123DEFG"}
        assert claims == {
            "iss": "TEAM123456",
            "sub": CLIENT_ID,
            "aud": "https://appleid.apple.com",
            "iat": int(FIXED_NOW.timestamp()),
            "exp": int((FIXED_NOW + timedelta(days=1)).timestamp()),
        }

    @pytest.mark.asyncio
    async def test_secret_is_cached(self, ec_key):
        clock = MutableClock(FIXED_NOW)
        generator = ClientSecretGenerator(
            private_key=ec_key,
            key_id="ABC123DEFG",
            team_id="TEAM123456",
            client_id=CLIENT_ID,
            lifetime=timedelta(hours=1),
            clock=clock,
        )

        first = await generator.generate()
        clock.now = FIXED_NOW + timedelta(minutes=58)
        second = await generator.generate()

        assert first == second

    @pytest.mark.asyncio
    async def test_secret_is_renewed_before_expiry(self, ec_key):
        clock = MutableClock(FIXED_NOW)
        generator = ClientSecretGenerator(
            private_key=ec_key,
            key_id="ABC123DEFG",
            team_id="TEAM123456",
            client_id=CLIENT_ID,
            lifetime=timedelta(hours=1),
            clock=clock,
        )

        first = await generator.generate()
        clock.now = FIXED_NOW + timedelta(minutes=59, seconds=30)
        second = await generator.generate()

        assert first != second
        _, claims = read_secret(second, ec_key)
        assert claims["iat"] == int(clock.now.timestamp())

    @pytest.mark.parametrize(
        "lifetime",
        [timedelta(0), timedelta(seconds=-1), timedelta(days=181)],
    )
    def test_invalid_lifetime(self, ec_key, lifetime):
        with pytest.raises(ValueError):
            ClientSecretGenerator(
                private_key=ec_key,
                key_id="ABC123DEFG",
                team_id="TEAM123456",
                client_id=CLIENT_ID,
                lifetime=lifetime,
            )

    def test_maximum_lifetime_is_accepted(self, ec_key):
        ClientSecretGenerator(
            private_key=ec_key,
            key_id="ABC123DEFG",
            team_id="TEAM123456",
            client_id=CLIENT_ID,
            lifetime=timedelta(days=180),
        )
