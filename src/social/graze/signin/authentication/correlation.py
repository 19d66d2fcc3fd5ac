"""
Correlation cookie handling (RFC 6749 section 10.12, CSRF).

At challenge time a random correlation id is stored in the protected properties and
mirrored in a short-lived cookie. The callback is only accepted when both agree.
"""

import base64
import logging
import secrets
from dataclasses import dataclass

from social.graze.signin.authentication.parameters import CallbackRequest
from social.graze.signin.authentication.properties import (
    CORRELATION_KEY,
    AuthenticationProperties,
)

logger = logging.getLogger(__name__)

CORRELATION_MARKER = "N"


@dataclass(frozen=True)
class CorrelationCookie:
    """
    Cookie the web layer sets on the challenge response.

    SameSite=None is required because Apple submits the callback as a cross-site POST.
    """

    name: str
    value: str
    max_age: int
    httponly: bool = True
    secure: bool = True
    samesite: str = "None"


class CorrelationValidator:
    def __init__(self, cookie_prefix: str, max_age: int) -> None:
        self._cookie_prefix = cookie_prefix
        self._max_age = max_age

    def cookie_name(self, correlation_id: str) -> str:
        return f"{self._cookie_prefix}{correlation_id}"

    def generate(self, properties: AuthenticationProperties) -> CorrelationCookie:
        nonce = secrets.token_bytes(32)
        correlation_id = base64.urlsafe_b64encode(nonce).decode("ascii").rstrip("=")
        properties.items[CORRELATION_KEY] = correlation_id

        return CorrelationCookie(
            name=self.cookie_name(correlation_id),
            value=CORRELATION_MARKER,
            max_age=self._max_age,
        )

    def validate(
        self, properties: AuthenticationProperties, request: CallbackRequest
    ) -> bool:
        """
        Validate the correlation id against the request cookies.

        The correlation id is consumed from the properties and the cookie is scheduled
        for deletion whenever it was present. A mismatch is reported as False.
        """
        correlation_id = properties.items.pop(CORRELATION_KEY, None)
        if not correlation_id:
            logger.warning(f"{CORRELATION_KEY} state property not found.")
            return False

        cookie_name = self.cookie_name(correlation_id)
        cookie_value = request.cookies.get(cookie_name)
        if cookie_value is None:
            logger.warning(f"'{cookie_name}' cookie not found.")
            return False

        request.expired_cookies.append(cookie_name)

        if cookie_value != CORRELATION_MARKER:
            logger.warning(
                f"The correlation cookie value '{cookie_name}' did not match the expected value '{CORRELATION_MARKER}'."
            )
            return False

        return True
