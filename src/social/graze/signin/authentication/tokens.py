"""OAuth 2.0 token endpoint response."""

from dataclasses import dataclass
from types import TracebackType
from typing import Any, Dict, Optional

from social.graze.signin.authentication.claims import json_value_to_string


@dataclass
class TokenBundle:
    """
    Result of the authorization code exchange.

    Either `error` is set, or the token fields are populated from the raw response
    document. The identity token is always read from the raw response so it can be
    re-derived at any time. The bundle is scoped to a single callback and releases the
    raw document when disposed.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = None

    @staticmethod
    def success(response: Dict[str, Any]) -> "TokenBundle":
        return TokenBundle(
            access_token=json_value_to_string(response.get("access_token")),
            refresh_token=json_value_to_string(response.get("refresh_token")),
            token_type=json_value_to_string(response.get("token_type")),
            expires_in=json_value_to_string(response.get("expires_in")),
            response=response,
        )

    @staticmethod
    def failed(error: Exception) -> "TokenBundle":
        return TokenBundle(error=error)

    @property
    def id_token(self) -> Optional[str]:
        if self.response is None:
            return None
        return json_value_to_string(self.response.get("id_token"))

    def dispose(self) -> None:
        self.response = None

    def __enter__(self) -> "TokenBundle":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.dispose()
