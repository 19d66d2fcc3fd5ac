"""Per-scheme configuration and collaborators of the Apple authentication handler."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, List, Optional

from aiohttp import ClientSession
from jwcrypto import jwk

from social.graze.signin.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.signin.authentication.claims import ClaimActionCollection
from social.graze.signin.authentication.correlation import CorrelationValidator
from social.graze.signin.authentication.events import (
    AppleAuthenticationEvents,
    AuthenticationEvents,
)
from social.graze.signin.authentication.jwt import (
    AppleIdTokenValidator,
    TokenDecoder,
    TokenValidator,
)
from social.graze.signin.authentication.properties import PropertiesDataFormat
from social.graze.signin.authentication.secret import ClientSecretGenerator

if TYPE_CHECKING:
    from social.graze.signin.app.config import Settings

APPLE_SCHEME = "Apple"
APPLE_AUTHORIZATION_ENDPOINT = "https://appleid.apple.com/auth/authorize"
APPLE_TOKEN_ENDPOINT = "https://appleid.apple.com/auth/token"
APPLE_JWKS_ENDPOINT = "https://appleid.apple.com/auth/keys"
APPLE_ISSUER = "https://appleid.apple.com"


@dataclass
class AppleAuthenticationOptions:
    client_id: str
    backchannel: ClientSession
    state_data_format: PropertiesDataFormat
    external_hostname: str

    client_secret: Optional[str] = None
    team_id: Optional[str] = None
    key_id: Optional[str] = None
    private_key: Optional[jwk.JWK] = None

    scheme_name: str = APPLE_SCHEME
    claims_issuer: str = APPLE_SCHEME
    authorization_endpoint: str = APPLE_AUTHORIZATION_ENDPOINT
    token_endpoint: str = APPLE_TOKEN_ENDPOINT
    scopes: List[str] = field(default_factory=lambda: ["openid", "name", "email"])
    callback_path: str = "/auth/apple/callback"

    save_tokens: bool = False
    validate_tokens: bool = True
    generate_client_secret: bool = False
    use_pkce: bool = False

    access_denied_path: Optional[str] = None
    return_url_parameter: str = "ReturnUrl"
    remote_authentication_timeout: timedelta = timedelta(minutes=15)

    claim_actions: ClaimActionCollection = field(default_factory=ClaimActionCollection)
    events: AuthenticationEvents = field(default_factory=AppleAuthenticationEvents)
    token_decoder: TokenDecoder = field(default_factory=TokenDecoder)
    token_validator: Optional[TokenValidator] = None
    client_secret_generator: Optional[ClientSecretGenerator] = None
    correlation_validator: Optional[CorrelationValidator] = None
    metrics: MetricsClient = field(default_factory=NoOpMetricsClient)

    def __post_init__(self) -> None:
        if self.correlation_validator is None:
            self.correlation_validator = CorrelationValidator(
                cookie_prefix=".signin.correlation.",
                max_age=int(self.remote_authentication_timeout.total_seconds()),
            )

    def validate(self) -> None:
        """Raise ValueError when the configuration cannot work."""
        if not self.client_id:
            raise ValueError("The 'client_id' option must be provided.")

        if self.generate_client_secret:
            if not self.key_id:
                raise ValueError(
                    "The 'key_id' option must be provided if the 'generate_client_secret' option is set to true."
                )
            if not self.team_id:
                raise ValueError(
                    "The 'team_id' option must be provided if the 'generate_client_secret' option is set to true."
                )
            if self.private_key is None and self.client_secret_generator is None:
                raise ValueError(
                    "The 'private_key' option must be provided if the 'generate_client_secret' option is set to true."
                )
        elif not self.client_secret:
            raise ValueError(
                "The 'client_secret' option must be provided if the 'generate_client_secret' option is set to false."
            )

        # Custom events may validate identity tokens without a TokenValidator.
        if (
            self.validate_tokens
            and self.token_validator is None
            and type(self.events) is AppleAuthenticationEvents
        ):
            raise ValueError(
                "The 'token_validator' option must be provided if the 'validate_tokens' option is set to true."
            )

        if self.correlation_validator is None:
            raise ValueError("The 'correlation_validator' option must be provided.")

        if not self.callback_path.startswith("/"):
            raise ValueError("The 'callback_path' option must start with '/'.")

    @staticmethod
    def from_settings(
        settings: "Settings",
        backchannel: ClientSession,
        metrics: Optional[MetricsClient] = None,
    ) -> "AppleAuthenticationOptions":
        timeout = timedelta(seconds=settings.remote_authentication_timeout)

        options = AppleAuthenticationOptions(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            team_id=settings.team_id,
            key_id=settings.key_id,
            private_key=settings.private_key,
            backchannel=backchannel,
            state_data_format=PropertiesDataFormat(
                settings.encryption_key, ttl=settings.remote_authentication_timeout
            ),
            external_hostname=settings.external_hostname,
            authorization_endpoint=settings.authorization_endpoint,
            token_endpoint=settings.token_endpoint,
            scopes=list(settings.scopes),
            callback_path=settings.callback_path,
            save_tokens=settings.save_tokens,
            validate_tokens=settings.validate_tokens,
            generate_client_secret=settings.generate_client_secret,
            use_pkce=settings.use_pkce,
            access_denied_path=settings.access_denied_path,
            remote_authentication_timeout=timeout,
            correlation_validator=CorrelationValidator(
                cookie_prefix=settings.correlation_cookie_prefix,
                max_age=settings.remote_authentication_timeout,
            ),
            metrics=metrics or NoOpMetricsClient(),
        )

        for claim_type, json_key in settings.claim_mappings.items():
            options.claim_actions.map_json_key(claim_type, json_key)

        if settings.validate_tokens:
            options.token_validator = AppleIdTokenValidator(
                http_session=backchannel,
                jwks_endpoint=settings.jwks_endpoint,
                issuer=settings.apple_issuer,
                audience=settings.client_id,
            )

        if settings.generate_client_secret and settings.private_key is not None:
            options.client_secret_generator = ClientSecretGenerator(
                private_key=settings.private_key,
                key_id=settings.key_id or "",
                team_id=settings.team_id or "",
                client_id=settings.client_id,
                lifetime=timedelta(seconds=settings.client_secret_lifetime),
            )

        options.validate()
        return options
