"""
Extensibility hooks invoked at specific points of the remote authentication flow.

Applications subclass AuthenticationEvents (or AppleAuthenticationEvents to keep the
Apple defaults) and override the hooks they care about. Every hook receives a context
dataclass and may mutate it.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from social.graze.signin.authentication.claims import ClaimsIdentity, ClaimsPrincipal
from social.graze.signin.authentication.properties import AuthenticationProperties
from social.graze.signin.authentication.results import HandleRequestResult
from social.graze.signin.authentication.tokens import TokenBundle

if TYPE_CHECKING:
    from social.graze.signin.authentication.options import AppleAuthenticationOptions


@dataclass
class ValidateIdTokenContext:
    options: "AppleAuthenticationOptions"
    id_token: str


@dataclass
class GenerateClientSecretContext:
    """The hook stores the generated secret in `client_secret`."""

    options: "AppleAuthenticationOptions"
    client_secret: Optional[str] = None


@dataclass
class CreatingTicketContext:
    """A hook may set `principal` to None to reject the sign-in."""

    principal: Optional[ClaimsPrincipal]
    properties: AuthenticationProperties
    options: "AppleAuthenticationOptions"
    tokens: TokenBundle
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> Optional[ClaimsIdentity]:
        if self.principal is None:
            return None
        return self.principal.identity

    @property
    def access_token(self) -> Optional[str]:
        return self.tokens.access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self.tokens.refresh_token

    @property
    def id_token(self) -> Optional[str]:
        return self.tokens.id_token

    def run_claim_actions(self, user_data: Optional[Dict[str, Any]] = None) -> None:
        """Apply the registered claim actions to the identity, in registration order."""
        identity = self.identity
        if identity is None:
            return
        data = self.user if user_data is None else user_data
        for action in self.options.claim_actions:
            action.run(data, identity, self.options.claims_issuer)


@dataclass
class AccessDeniedContext:
    """
    Context for a denied authorization request.

    A hook may call `handle_response` after producing its own response, `skip_handler`
    to let the request continue, or adjust `access_denied_path` and `return_url`.
    """

    options: "AppleAuthenticationOptions"
    properties: AuthenticationProperties
    access_denied_path: Optional[str] = None
    return_url: Optional[str] = None
    return_url_parameter: str = "ReturnUrl"
    result: Optional[HandleRequestResult] = None

    def handle_response(self, redirect: Optional[str] = None) -> None:
        self.result = HandleRequestResult.handle(redirect)

    def skip_handler(self) -> None:
        self.result = HandleRequestResult.skip()


class AuthenticationEvents:
    """Hooks with no-op defaults."""

    async def validate_id_token(self, context: ValidateIdTokenContext) -> None:
        pass

    async def creating_ticket(self, context: CreatingTicketContext) -> None:
        pass

    async def generate_client_secret(self, context: GenerateClientSecretContext) -> None:
        pass

    async def access_denied(self, context: AccessDeniedContext) -> None:
        pass


class AppleAuthenticationEvents(AuthenticationEvents):
    """
    Default events for Sign in with Apple.

    Client secrets come from the configured ClientSecretGenerator and identity tokens
    are validated by the configured TokenValidator.
    """

    async def validate_id_token(self, context: ValidateIdTokenContext) -> None:
        if context.options.token_validator is None:
            raise ValueError("token validation is enabled but no token validator is configured")
        await context.options.token_validator.validate(context)

    async def generate_client_secret(self, context: GenerateClientSecretContext) -> None:
        if context.options.client_secret_generator is None:
            raise ValueError(
                "client secret generation is enabled but no generator is configured"
            )
        context.client_secret = await context.options.client_secret_generator.generate(
            context
        )
