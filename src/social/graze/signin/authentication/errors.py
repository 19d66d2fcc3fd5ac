"""
Authentication error taxonomy.

Soft failures are carried as values inside a HandleRequestResult so the web layer can
render a denial page. Unrecoverable errors signal a provider contract violation or a
security anomaly and always propagate to the caller.
"""

from typing import Any, Dict, Optional


class AuthenticationFailure(Exception):
    """
    A soft authentication failure.

    The `data` dictionary carries structured details for programmatic inspection. For
    provider-reported errors it holds the `error`, `error_description` and `error_uri`
    callback parameters.
    """

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = dict(data or {})

    @classmethod
    def from_provider_error(
        cls, error: str, error_description: str = "", error_uri: str = ""
    ) -> "AuthenticationFailure":
        return cls(
            format_provider_error(error, error_description, error_uri),
            provider_error_data(error, error_description, error_uri),
        )


class AccessDeniedFailure(AuthenticationFailure):
    """The resource owner or the authorization server denied the request."""

    MESSAGE = "Access was denied by the resource owner or by the remote server."

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(self.MESSAGE, data)


class OAuthTokenError(AuthenticationFailure):
    """The token endpoint rejected the code exchange."""


class UnrecoverableAuthenticationError(Exception):
    """
    Raised when the provider violates the protocol contract.

    These errors must never be downgraded to a soft failure. This exception class
    provides static methods for creating specific instances with stable messages.
    """

    @staticmethod
    def missing_id_token() -> "UnrecoverableAuthenticationError":
        """The token response did not contain an identity token."""
        return UnrecoverableAuthenticationError(
            "error-signin-2000 No Apple ID token was returned in the OAuth token response."
        )

    @staticmethod
    def malformed_id_token() -> "UnrecoverableAuthenticationError":
        """The identity token could not be decoded into claims."""
        return UnrecoverableAuthenticationError(
            "error-signin-2001 Failed to parse JWT for claims from Apple ID token."
        )


class TokenDecodeError(UnrecoverableAuthenticationError):
    """The identity token is structurally or temporally invalid."""


class TokenValidationError(UnrecoverableAuthenticationError):
    """The identity token failed signature, issuer, audience or lifetime validation."""


def format_provider_error(error: str, error_description: str, error_uri: str) -> str:
    message = error
    if error_description:
        message += f";Description={error_description}"
    if error_uri:
        message += f";Uri={error_uri}"
    return message


def provider_error_data(
    error: str, error_description: str, error_uri: str
) -> Dict[str, str]:
    return {
        "error": error,
        "error_description": error_description,
        "error_uri": error_uri,
    }
