"""
Sign in with Apple remote authentication handler.

The handler implements both legs of the OAuth 2.0 authorization code flow against
Apple:

1. The challenge leg builds the authorization URL. A correlation id is generated and
   stored in the authentication properties, the properties are protected into the
   `state` parameter and `response_mode=form_post` is always requested because Apple
   only returns the user's name and email address to a form post.

2. The callback leg (`handle_remote_authenticate`) validates the state and the
   correlation cookie, classifies provider errors, exchanges the authorization code for
   tokens and builds an authentication ticket from the claims of the identity token.

Soft failures are returned as HandleRequestResult values. A missing or malformed
identity token is a provider contract violation and raises an
UnrecoverableAuthenticationError instead.
"""

import base64
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from social.graze.signin.authentication.claims import (
    Claim,
    ClaimsIdentity,
    ClaimsPrincipal,
    ClaimTypes,
    ClaimValueTypes,
)
from social.graze.signin.authentication.correlation import (
    CorrelationCookie,
    CorrelationValidator,
)
from social.graze.signin.authentication.errors import (
    AccessDeniedFailure,
    AuthenticationFailure,
    UnrecoverableAuthenticationError,
    provider_error_data,
)
from social.graze.signin.authentication.events import (
    AccessDeniedContext,
    CreatingTicketContext,
    ValidateIdTokenContext,
)
from social.graze.signin.authentication.exchange import (
    CodeExchangeContext,
    TokenExchanger,
)
from social.graze.signin.authentication.jwt import utc_now
from social.graze.signin.authentication.options import AppleAuthenticationOptions
from social.graze.signin.authentication.parameters import (
    CallbackRequest,
    extract_callback_parameters,
    first_value,
)
from social.graze.signin.authentication.properties import (
    CODE_VERIFIER_KEY,
    AuthenticationProperties,
    AuthenticationToken,
)
from social.graze.signin.authentication.results import (
    AuthenticationTicket,
    HandleRequestResult,
    ResultKind,
)
from social.graze.signin.authentication.tokens import TokenBundle

logger = logging.getLogger(__name__)

ACCESS_DENIED_ERRORS = ("access_denied", "user_cancelled_authorize")

# Optional sign, ASCII digits and surrounding whitespace only.
EXPIRES_IN_PATTERN = re.compile(r"^[ \t\n\v\f\r]*[+-]?[0-9]+[ \t\n\v\f\r]*$")
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


def generate_pkce_verifier() -> Tuple[str, str]:
    """
    Generate a PKCE (RFC 7636) verifier and its S256 challenge.

    Returns:
        Tuple[str, str]: A tuple containing (pkce_verifier, pkce_challenge)
    """
    pkce_token = secrets.token_urlsafe(32)

    hashed = hashlib.sha256(pkce_token.encode("ascii")).digest()
    encoded = base64.urlsafe_b64encode(hashed)
    pkce_challenge = encoded.decode("ascii").rstrip("=")
    return (pkce_token, pkce_challenge)


def add_query_string(url: str, parameters: Sequence[Tuple[str, str]]) -> str:
    """
    Append parameters to a URL, preserving its existing query and fragment.

    Keys and values are percent-encoded with no safe characters.
    """
    scheme, netloc, path, query, fragment = urlsplit(url)
    encoded = "&".join(
        f"{quote(name, safe='')}={quote(value, safe='')}" for name, value in parameters
    )
    if not encoded:
        return url
    query = f"{query}&{encoded}" if query else encoded
    return urlunsplit((scheme, netloc, path, query, fragment))


def parse_expires_in(value: Optional[str]) -> Optional[int]:
    """Parse an `expires_in` value as a 32-bit integer, or return None."""
    if not value or not EXPIRES_IN_PATTERN.match(value):
        return None
    seconds = int(value)
    if seconds < INT32_MIN or seconds > INT32_MAX:
        return None
    return seconds


class AppleAuthenticationHandler:
    """
    Orchestrates Sign in with Apple for a single authentication scheme.

    Args:
        options: Configuration and collaborators of the scheme
        exchanger: Performs the authorization code exchange, defaults to TokenExchanger
        clock: Source of the current time, used for the persisted token expiry
    """

    def __init__(
        self,
        options: AppleAuthenticationOptions,
        exchanger: Optional[TokenExchanger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.options = options
        self._exchanger = exchanger or TokenExchanger(options)
        self._clock = clock

    @property
    def correlation_validator(self) -> CorrelationValidator:
        validator = self.options.correlation_validator
        if validator is None:
            raise ValueError("The 'correlation_validator' option must be provided.")
        return validator

    def build_redirect_uri(self, target_path: str) -> str:
        return f"https://{self.options.external_hostname}{target_path}"

    def challenge(
        self, properties: AuthenticationProperties
    ) -> Tuple[str, CorrelationCookie]:
        """
        Start the authorization flow.

        Returns the URL to redirect the user agent to and the correlation cookie that
        must be set on that redirect.
        """
        if not properties.redirect_uri:
            properties.redirect_uri = "/"

        cookie = self.correlation_validator.generate(properties)

        challenge_url = self.build_challenge_url(
            properties, self.build_redirect_uri(self.options.callback_path)
        )
        return challenge_url, cookie

    def build_challenge_url(
        self, properties: AuthenticationProperties, redirect_uri: str
    ) -> str:
        parameters: List[Tuple[str, str]] = [
            ("client_id", self.options.client_id),
            ("scope", " ".join(self.options.scopes)),
            ("response_type", "code"),
            ("redirect_uri", redirect_uri),
        ]

        if self.options.use_pkce:
            (pkce_verifier, code_challenge) = generate_pkce_verifier()
            properties.items[CODE_VERIFIER_KEY] = pkce_verifier
            parameters.append(("code_challenge", code_challenge))
            parameters.append(("code_challenge_method", "S256"))

        parameters.append(("state", self.options.state_data_format.protect(properties)))

        challenge_url = add_query_string(self.options.authorization_endpoint, parameters)

        # Apple only returns the user's name and email to a form post.
        return add_query_string(challenge_url, [("response_mode", "form_post")])

    async def handle_remote_authenticate(
        self, request: CallbackRequest
    ) -> HandleRequestResult:
        """
        Handle the provider callback.

        Exactly one result is returned for every invocation. Unrecoverable errors and
        cancellation propagate to the caller.
        """
        try:
            result = await self._handle_remote_authenticate(request)
        except UnrecoverableAuthenticationError:
            self._record_outcome("error")
            raise

        self._record_outcome(result.kind.value)
        if result.kind is ResultKind.FAILURE and result.failure is not None:
            logger.info(f"Remote authentication failed: {result.failure.message}")
        return result

    async def _handle_remote_authenticate(
        self, request: CallbackRequest
    ) -> HandleRequestResult:
        parameters = extract_callback_parameters(
            request.method, request.query, request.form
        )

        state = first_value(parameters, "state")
        properties = self.options.state_data_format.unprotect(state)
        if properties is None:
            return HandleRequestResult.fail("The oauth state was missing or invalid.")

        if not self.correlation_validator.validate(properties, request):
            return HandleRequestResult.fail("Correlation failed.", properties)

        error = first_value(parameters, "error")
        if error:
            error_description = first_value(parameters, "error_description")
            error_uri = first_value(parameters, "error_uri")

            if error in ACCESS_DENIED_ERRORS:
                result = await self.handle_access_denied(properties)
                if not result.none:
                    return result

                return HandleRequestResult.fail(
                    AccessDeniedFailure(
                        provider_error_data(error, error_description, error_uri)
                    ),
                    properties,
                )

            return HandleRequestResult.fail(
                AuthenticationFailure.from_provider_error(
                    error, error_description, error_uri
                ),
                properties,
            )

        code = first_value(parameters, "code")
        if not code:
            return HandleRequestResult.fail("Code was not found.", properties)

        exchange_context = CodeExchangeContext(
            properties=properties,
            code=code,
            redirect_uri=self.build_redirect_uri(self.options.callback_path),
        )

        tokens = await self._exchanger.exchange_code(exchange_context)
        with tokens:
            if tokens.error is not None:
                return HandleRequestResult.fail(tokens.error, properties)

            if not tokens.access_token:
                return HandleRequestResult.fail(
                    "Failed to retrieve access token.", properties
                )

            identity = ClaimsIdentity(authentication_type=self.options.claims_issuer)

            if self.options.save_tokens:
                properties.store_tokens(self.authentication_tokens(tokens))

            ticket = await self.create_ticket(identity, properties, tokens)
            if ticket is not None:
                return HandleRequestResult.success(ticket)

            return HandleRequestResult.fail(
                "Failed to retrieve user information from remote server.", properties
            )

    async def handle_access_denied(
        self, properties: AuthenticationProperties
    ) -> HandleRequestResult:
        """
        Give the access_denied event and the configured access denied path a chance to
        handle a denied authorization request.
        """
        context = AccessDeniedContext(
            options=self.options,
            properties=properties,
            access_denied_path=self.options.access_denied_path,
            return_url=properties.redirect_uri,
            return_url_parameter=self.options.return_url_parameter,
        )
        await self.options.events.access_denied(context)

        if context.result is not None and not context.result.none:
            return context.result

        if context.access_denied_path:
            redirect = context.access_denied_path
            if redirect.startswith("/"):
                redirect = self.build_redirect_uri(redirect)
            if context.return_url_parameter and context.return_url:
                redirect = add_query_string(
                    redirect, [(context.return_url_parameter, context.return_url)]
                )
            return HandleRequestResult.handle(redirect=redirect)

        return HandleRequestResult.no_result()

    def authentication_tokens(self, tokens: TokenBundle) -> List[AuthenticationToken]:
        """Build the token records persisted in the authentication properties."""
        records: List[AuthenticationToken] = [
            AuthenticationToken("access_token", tokens.access_token or "")
        ]

        if tokens.refresh_token:
            records.append(AuthenticationToken("refresh_token", tokens.refresh_token))

        if tokens.token_type:
            records.append(AuthenticationToken("token_type", tokens.token_type))

        if tokens.expires_in:
            seconds = parse_expires_in(tokens.expires_in)
            if seconds is None:
                logger.debug("Ignoring expires_in value that is not an integer")
            else:
                expires_at = self._clock() + timedelta(seconds=seconds)
                records.append(AuthenticationToken("expires_at", expires_at.isoformat()))

        id_token = tokens.id_token
        if id_token:
            records.append(AuthenticationToken("id_token", id_token))

        return records

    async def create_ticket(
        self,
        identity: ClaimsIdentity,
        properties: AuthenticationProperties,
        tokens: TokenBundle,
    ) -> Optional[AuthenticationTicket]:
        id_token = tokens.id_token

        logger.info("Creating ticket for Sign in with Apple.")
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Access token: {tokens.access_token}")
            logger.debug(f"Refresh token: {tokens.refresh_token}")
            logger.debug(f"Token type: {tokens.token_type}")
            logger.debug(f"Expires in: {tokens.expires_in}")
            logger.debug(f"Response: {tokens.response}")
            logger.debug(f"ID token: {id_token}")

        if not id_token or not id_token.strip():
            raise UnrecoverableAuthenticationError.missing_id_token()

        if self.options.validate_tokens:
            await self.options.events.validate_id_token(
                ValidateIdTokenContext(options=self.options, id_token=id_token)
            )

        identity.add_claims(self.extract_claims_from_token(id_token))

        principal = ClaimsPrincipal.from_identity(identity)
        context = CreatingTicketContext(
            principal=principal,
            properties=properties,
            options=self.options,
            tokens=tokens,
            user=tokens.response or {},
        )
        context.run_claim_actions()

        await self.options.events.creating_ticket(context)

        if context.principal is None:
            return None

        return AuthenticationTicket(
            principal=context.principal,
            properties=context.properties,
            authentication_scheme=self.options.scheme_name,
        )

    def extract_claims_from_token(self, token: str) -> List[Claim]:
        try:
            decoded = self.options.token_decoder.decode(token)
        except Exception as e:
            raise UnrecoverableAuthenticationError.malformed_id_token() from e

        claims = list(decoded.claims)
        claims.append(
            Claim(
                ClaimTypes.NAME_IDENTIFIER,
                decoded.subject,
                ClaimValueTypes.STRING,
                self.options.claims_issuer,
            )
        )

        email = next((claim for claim in claims if claim.type == "email"), None)
        if email is not None:
            claims.append(
                Claim(
                    ClaimTypes.EMAIL,
                    email.value or "",
                    ClaimValueTypes.STRING,
                    self.options.claims_issuer,
                )
            )

        return claims

    def _record_outcome(self, outcome: str) -> None:
        self.options.metrics.increment(
            "signin.callback.result", 1, tag_dict={"outcome": outcome}
        )
