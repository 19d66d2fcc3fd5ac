"""
Configuration Module for the Sign-in Service

Settings are loaded from environment variables with pydantic-settings. Shared resources
are exposed to request handlers through typed AppKeys.

Key configuration areas include:
- Service identification and networking
- Redis connection for issued tickets
- Cryptographic materials (state protection key, service signing keys, Apple key)
- Sign in with Apple client registration and flow toggles
- Monitoring and observability
"""

import base64
import logging
import os
from typing import Annotated, Dict, Final, List, Optional

from aiohttp import ClientSession, web
from cryptography.fernet import Fernet
from jwcrypto import jwk
from pydantic import AliasChoices, Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode
from redis import asyncio as redis

from social.graze.signin.app.metrics import MetricsClient
from social.graze.signin.app.tickets import TicketStore
from social.graze.signin.authentication.handler import AppleAuthenticationHandler
from social.graze.signin.authentication.options import (
    APPLE_AUTHORIZATION_ENDPOINT,
    APPLE_ISSUER,
    APPLE_JWKS_ENDPOINT,
    APPLE_TOKEN_ENDPOINT,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the sign-in service.

    Environment variables are mapped to settings fields by name, with aliases where an
    established variable name exists (PORT, REDIS_URL, TELEGRAF_HOST).
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging and development features.
    Set with DEBUG=true environment variable.
    """

    allowed_domains: str = "https://www.graze.social, https://graze.social"
    """
    Comma-separated list of origins allowed for CORS.
    Set with ALLOWED_DOMAINS environment variable.
    """

    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    external_hostname: str = "signin_service"
    """
    Public hostname for the service, used for generating callback URLs.
    Set with EXTERNAL_HOSTNAME environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for issued authentication tickets.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    json_web_keys: Annotated[jwk.JWKSet, NoDecode] = jwk.JWKSet()
    """
    JSON Web Key Set containing the keys used to sign auth tokens handed to clients.
    Can be set to a JWKSet object or path to a JSON file containing keys.
    Set with JSON_WEB_KEYS environment variable.
    """

    service_auth_keys: List[str] = list()
    """
    List of key IDs (kid) from json_web_keys used to sign auth tokens.
    Set with SERVICE_AUTH_KEYS environment variable.
    """

    encryption_key: Fernet = Fernet(Fernet.generate_key())
    """
    Fernet key protecting the OAuth state parameter.
    Can be set to a Fernet object or base64-encoded key string.
    Set with ENCRYPTION_KEY environment variable.
    """

    # Sign in with Apple client registration
    client_id: str = ""
    """The Services ID registered with Apple. Set with CLIENT_ID."""

    client_secret: Optional[str] = None
    """Static client secret, used when client secret generation is disabled."""

    team_id: Optional[str] = None
    """The Apple developer team ID, the issuer of generated client secrets."""

    key_id: Optional[str] = None
    """The ID of the Sign in with Apple private key."""

    private_key: Annotated[Optional[jwk.JWK], NoDecode] = None
    """
    The Sign in with Apple private key (.p8), as PEM text or a path to a PEM file.
    Set with PRIVATE_KEY environment variable.
    """

    generate_client_secret: bool = False
    validate_tokens: bool = True
    save_tokens: bool = False
    use_pkce: bool = False

    scopes: List[str] = ["openid", "name", "email"]
    """Requested scopes. Set with SCOPES as a JSON list."""

    callback_path: str = "/auth/apple/callback"
    authorization_endpoint: str = APPLE_AUTHORIZATION_ENDPOINT
    token_endpoint: str = APPLE_TOKEN_ENDPOINT
    jwks_endpoint: str = APPLE_JWKS_ENDPOINT
    apple_issuer: str = APPLE_ISSUER

    access_denied_path: Optional[str] = None
    """
    Path users are redirected to when they cancel the sign in. When unset the
    failure page is rendered instead.
    """

    remote_authentication_timeout: int = 900
    """Lifetime in seconds of the state parameter and the correlation cookie."""

    correlation_cookie_prefix: str = ".signin.correlation."

    client_secret_lifetime: int = 15552000  # 180 days
    """Lifetime in seconds of generated client secrets. Apple allows at most 180 days."""

    claim_mappings: Dict[str, str] = dict()
    """
    Additional claims mapped from the token response, as a JSON object of claim type
    to JSON key. Set with CLAIM_MAPPINGS environment variable.
    """

    default_destination: str = "https://localhost:5100/internal/api/me"
    """
    Default redirect destination after authentication if none specified.
    Set with DEFAULT_DESTINATION environment variable.
    """

    ticket_lifetime: int = 3600
    """Lifetime in seconds of issued tickets."""

    metrics_backend: str = "telegraf"
    """Metrics backend, 'telegraf' or 'none'. Set with METRICS_BACKEND."""

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)

    @field_validator("json_web_keys", mode="before")
    @classmethod
    def decode_json_web_keys(cls, v) -> jwk.JWKSet:
        """
        Validate and process the json_web_keys setting.

        This validator accepts either:
        - An existing JWKSet object (for programmatic configuration)
        - A file path to a JSON file containing a JWK Set
        """
        if isinstance(v, jwk.JWKSet):
            return v
        elif isinstance(v, str):
            with open(v) as fd:
                data = fd.read()
                return jwk.JWKSet.from_json(data)
        raise ValueError(
            "json_web_keys must be a JWKSet object or a valid JSON file path"
        )

    @field_validator("encryption_key", mode="before")
    @classmethod
    def decode_encryption_key(cls, v) -> Fernet:
        """
        Validate and process the encryption_key setting.

        This validator accepts either:
        - An existing Fernet object (for programmatic configuration)
        - A base64-encoded string containing a Fernet key
        """
        if isinstance(v, Fernet):
            return v
        elif isinstance(v, str):
            key_data = base64.b64decode(v)
            return Fernet(key_data)
        raise ValueError(
            "encryption_key must be a Fernet object or a base64-encoded key string"
        )

    @field_validator("private_key", mode="before")
    @classmethod
    def decode_private_key(cls, v) -> Optional[jwk.JWK]:
        """
        Validate and process the private_key setting.

        This validator accepts either:
        - An existing JWK object
        - PEM encoded key text
        - A file path to a PEM file
        """
        if v is None or isinstance(v, jwk.JWK):
            return v
        elif isinstance(v, str):
            if len(v) == 0:
                return None
            if "-----BEGIN" in v:
                return jwk.JWK.from_pem(v.encode("utf-8"))
            if os.path.isfile(v):
                with open(v, "rb") as fd:
                    return jwk.JWK.from_pem(fd.read())
        raise ValueError("private_key must be a JWK object, PEM text or a PEM file path")


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""

AuthenticationHandlerAppKey: Final = web.AppKey(
    "authentication_handler", AppleAuthenticationHandler
)
"""AppKey for the Sign in with Apple authentication handler"""

TicketStoreAppKey: Final = web.AppKey("ticket_store", TicketStore)
"""AppKey for the store of issued authentication tickets"""
