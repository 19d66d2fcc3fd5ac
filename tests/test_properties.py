"""Tests for AuthenticationProperties and state protection."""

import json
from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

from social.graze.signin.authentication.properties import (
    AuthenticationProperties,
    AuthenticationToken,
    PropertiesDataFormat,
)


@pytest.fixture
def fernet() -> Fernet:
    return Fernet(Fernet.generate_key())


class TestAuthenticationProperties:
    def test_well_known_items(self):
        properties = AuthenticationProperties()
        issued = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        properties.redirect_uri = "https://app.example.com/"
        properties.issued_utc = issued
        properties.is_persistent = True

        assert properties.items[".redirect"] == "https://app.example.com/"
        assert properties.issued_utc == issued
        assert properties.is_persistent
        assert properties.expires_utc is None

        properties.redirect_uri = None
        properties.is_persistent = False
        assert ".redirect" not in properties.items
        assert not properties.is_persistent

    def test_store_tokens(self):
        properties = AuthenticationProperties()

        properties.store_tokens(
            [
                AuthenticationToken("access_token", "a"),
                AuthenticationToken("refresh_token", "r"),
            ]
        )

        assert properties.items[".TokenNames"] == "access_token;refresh_token"
        assert properties.items[".Token.access_token"] == "a"
        assert properties.get_token_value("refresh_token") == "r"
        assert [t.name for t in properties.get_tokens()] == [
            "access_token",
            "refresh_token",
        ]

    def test_store_tokens_replaces_previous(self):
        properties = AuthenticationProperties()
        properties.store_tokens([AuthenticationToken("refresh_token", "old")])

        properties.store_tokens([AuthenticationToken("access_token", "new")])

        assert properties.get_token_value("refresh_token") is None
        assert ".Token.refresh_token" not in properties.items
        assert properties.get_tokens() == [AuthenticationToken("access_token", "new")]

    def test_store_no_tokens(self):
        properties = AuthenticationProperties()
        properties.store_tokens([AuthenticationToken("access_token", "a")])

        properties.store_tokens([])

        assert properties.items == {}


class TestPropertiesDataFormat:
    def test_protect_unprotect(self, fernet):
        data_format = PropertiesDataFormat(fernet, ttl=900)
        properties = AuthenticationProperties()
        properties.redirect_uri = "https://app.example.com/"
        properties.items[".xsrf"] = "correlation"

        protected = data_format.protect(properties)

        assert "app.example.com" not in protected
        unprotected = data_format.unprotect(protected)
        assert unprotected.items == properties.items

    def test_parameters_are_not_serialized(self, fernet):
        data_format = PropertiesDataFormat(fernet)
        properties = AuthenticationProperties(parameters={"transient": object()})

        unprotected = data_format.unprotect(data_format.protect(properties))

        assert unprotected.parameters == {}

    @pytest.mark.parametrize("value", [None, "", "garbage", "gAAAAA"])
    def test_invalid_values(self, fernet, value):
        assert PropertiesDataFormat(fernet).unprotect(value) is None

    def test_other_key(self, fernet):
        protected = PropertiesDataFormat(fernet).protect(AuthenticationProperties())
        other = PropertiesDataFormat(Fernet(Fernet.generate_key()))

        assert other.unprotect(protected) is None

    def test_expired(self, fernet):
        issued_at = 1_700_000_000
        token = fernet.encrypt_at_time(
            json.dumps({"v": 1, "items": {}}).encode("utf-8"), issued_at
        ).decode("ascii")

        data_format = PropertiesDataFormat(fernet, ttl=900)

        assert data_format.unprotect(token) is None

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[]",
            b'{"v": 2, "items": {}}',
            b'{"v": 1, "items": []}',
            b'{"v": 1, "items": {"a": 1}}',
        ],
    )
    def test_unsupported_payloads(self, fernet, payload):
        token = fernet.encrypt(payload).decode("ascii")

        assert PropertiesDataFormat(fernet).unprotect(token) is None
