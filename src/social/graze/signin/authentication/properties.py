"""
Authentication properties and state protection.

AuthenticationProperties is the bag of state that is set before redirecting the user to
Apple. It round-trips through the provider inside the `state` parameter, so it is
protected with Fernet (AES-CBC + HMAC-SHA256) which gives both integrity and
confidentiality. The Fernet timestamp doubles as the remote authentication timeout.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

REDIRECT_URI_KEY = ".redirect"
ISSUED_UTC_KEY = ".issued"
EXPIRES_UTC_KEY = ".expires"
IS_PERSISTENT_KEY = ".persistent"
CORRELATION_KEY = ".xsrf"
CODE_VERIFIER_KEY = ".code_verifier"

TOKEN_KEY_PREFIX = ".Token."
TOKEN_NAMES_KEY = ".TokenNames"

FORMAT_VERSION = 1


@dataclass
class AuthenticationToken:
    name: str
    value: str


@dataclass
class AuthenticationProperties:
    """
    State carried across the challenge and the callback.

    `items` is serialized into the protected state. `parameters` is for values that only
    live for the current request and are never serialized.
    """

    items: Dict[str, str] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def redirect_uri(self) -> Optional[str]:
        return self.items.get(REDIRECT_URI_KEY)

    @redirect_uri.setter
    def redirect_uri(self, value: Optional[str]) -> None:
        self._set_item(REDIRECT_URI_KEY, value)

    @property
    def issued_utc(self) -> Optional[datetime]:
        return self._get_datetime(ISSUED_UTC_KEY)

    @issued_utc.setter
    def issued_utc(self, value: Optional[datetime]) -> None:
        self._set_item(ISSUED_UTC_KEY, value.isoformat() if value else None)

    @property
    def expires_utc(self) -> Optional[datetime]:
        return self._get_datetime(EXPIRES_UTC_KEY)

    @expires_utc.setter
    def expires_utc(self, value: Optional[datetime]) -> None:
        self._set_item(EXPIRES_UTC_KEY, value.isoformat() if value else None)

    @property
    def is_persistent(self) -> bool:
        return IS_PERSISTENT_KEY in self.items

    @is_persistent.setter
    def is_persistent(self, value: bool) -> None:
        self._set_item(IS_PERSISTENT_KEY, "" if value else None)

    def store_tokens(self, tokens: Iterable[AuthenticationToken]) -> None:
        """Store tokens in the items bag, replacing any previously stored tokens."""
        for old_name in self._token_names():
            self.items.pop(TOKEN_KEY_PREFIX + old_name, None)
        self.items.pop(TOKEN_NAMES_KEY, None)

        names: List[str] = []
        for token in tokens:
            self.items[TOKEN_KEY_PREFIX + token.name] = token.value
            names.append(token.name)

        if names:
            self.items[TOKEN_NAMES_KEY] = ";".join(names)

    def get_tokens(self) -> List[AuthenticationToken]:
        tokens = []
        for name in self._token_names():
            value = self.get_token_value(name)
            if value is not None:
                tokens.append(AuthenticationToken(name=name, value=value))
        return tokens

    def get_token_value(self, name: str) -> Optional[str]:
        return self.items.get(TOKEN_KEY_PREFIX + name)

    def _token_names(self) -> List[str]:
        value = self.items.get(TOKEN_NAMES_KEY)
        if not value:
            return []
        return value.split(";")

    def _set_item(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self.items.pop(key, None)
        else:
            self.items[key] = value

    def _get_datetime(self, key: str) -> Optional[datetime]:
        value = self.items.get(key)
        if value is None:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None


class PropertiesDataFormat:
    """
    Serializes and protects AuthenticationProperties for the `state` parameter.

    Args:
        fernet: The symmetric key used to protect the state
        ttl: Maximum age in seconds of a protected value, None to disable
    """

    def __init__(self, fernet: Fernet, ttl: Optional[int] = None) -> None:
        self._fernet = fernet
        self._ttl = ttl

    def protect(self, properties: AuthenticationProperties) -> str:
        payload = json.dumps(
            {"v": FORMAT_VERSION, "items": properties.items}, separators=(",", ":")
        )
        return self._fernet.encrypt(payload.encode("utf-8")).decode("ascii")

    def unprotect(self, value: Optional[str]) -> Optional[AuthenticationProperties]:
        """
        Unprotect a state value.

        Returns None when the value is missing, was tampered with, was protected with
        another key, has expired or does not contain a supported payload.
        """
        if not value:
            return None

        try:
            payload = self._fernet.decrypt(value.encode("utf-8"), ttl=self._ttl)
        except (InvalidToken, UnicodeEncodeError):
            logger.debug("Unable to unprotect state value")
            return None

        try:
            document = json.loads(payload)
        except ValueError:
            logger.debug("Protected state does not contain JSON")
            return None

        if not isinstance(document, dict) or document.get("v") != FORMAT_VERSION:
            return None

        items = document.get("items")
        if not isinstance(items, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in items.items()
        ):
            return None

        return AuthenticationProperties(items=dict(items))
