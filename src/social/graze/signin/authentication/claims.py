"""
Claims model and declarative claim mapping.

Claims are (type, value) assertions about the authenticated subject. Claim types use the
standard identity claim URIs so tickets interoperate with other relying parties.

Claim actions map fields of the raw token response onto claims. They are applied in
registration order, which makes the result deterministic.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional


class ClaimTypes:
    NAME_IDENTIFIER = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier"
    EMAIL = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress"
    NAME = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name"
    GIVEN_NAME = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/givenname"
    SURNAME = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/surname"


class ClaimValueTypes:
    STRING = "http://www.w3.org/2001/XMLSchema#string"
    BOOLEAN = "http://www.w3.org/2001/XMLSchema#boolean"
    INTEGER = "http://www.w3.org/2001/XMLSchema#integer"
    DOUBLE = "http://www.w3.org/2001/XMLSchema#double"
    JSON = "JSON"
    JSON_ARRAY = "JSON_ARRAY"


DEFAULT_ISSUER = "LOCAL AUTHORITY"


@dataclass(frozen=True)
class Claim:
    type: str
    value: str
    value_type: str = ClaimValueTypes.STRING
    issuer: str = DEFAULT_ISSUER
    original_issuer: Optional[str] = None

    def __post_init__(self) -> None:
        if self.original_issuer is None:
            object.__setattr__(self, "original_issuer", self.issuer)

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type,
            "value": self.value,
            "value_type": self.value_type,
            "issuer": self.issuer,
        }


@dataclass
class ClaimsIdentity:
    """A set of claims tagged with the authentication type that produced them."""

    authentication_type: Optional[str] = None
    claims: List[Claim] = field(default_factory=list)

    def add_claim(self, claim: Claim) -> None:
        self.claims.append(claim)

    def add_claims(self, claims: List[Claim]) -> None:
        self.claims.extend(claims)

    def remove_claims(self, claim_type: str) -> None:
        self.claims = [claim for claim in self.claims if claim.type != claim_type]

    def find_first(self, claim_type: str) -> Optional[Claim]:
        return next((c for c in self.claims if c.type == claim_type), None)

    def find_all(self, claim_type: str) -> List[Claim]:
        return [c for c in self.claims if c.type == claim_type]

    def has_claim(self, claim_type: str, value: str) -> bool:
        return any(c.type == claim_type and c.value == value for c in self.claims)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.authentication_type)

    @property
    def name(self) -> Optional[str]:
        claim = self.find_first(ClaimTypes.NAME)
        return claim.value if claim else None


@dataclass
class ClaimsPrincipal:
    identities: List[ClaimsIdentity] = field(default_factory=list)

    @staticmethod
    def from_identity(identity: ClaimsIdentity) -> "ClaimsPrincipal":
        return ClaimsPrincipal(identities=[identity])

    @property
    def identity(self) -> Optional[ClaimsIdentity]:
        return next(iter(self.identities), None)

    @property
    def claims(self) -> List[Claim]:
        return [claim for identity in self.identities for claim in identity.claims]

    def find_first(self, claim_type: str) -> Optional[Claim]:
        return next((c for c in self.claims if c.type == claim_type), None)


class ClaimAction(ABC):
    """A single claim mapping rule run against a JSON document."""

    def __init__(self, claim_type: str, value_type: str = ClaimValueTypes.STRING) -> None:
        self.claim_type = claim_type
        self.value_type = value_type

    @abstractmethod
    def run(
        self, user_data: Dict[str, Any], identity: ClaimsIdentity, issuer: str
    ) -> None:
        pass


class JsonKeyClaimAction(ClaimAction):
    """Map a top-level JSON key to a claim. Arrays produce one claim per element."""

    def __init__(
        self, claim_type: str, value_type: str, json_key: str
    ) -> None:
        super().__init__(claim_type, value_type)
        self.json_key = json_key

    def run(
        self, user_data: Dict[str, Any], identity: ClaimsIdentity, issuer: str
    ) -> None:
        value = user_data.get(self.json_key)
        if isinstance(value, list):
            for item in value:
                self._add(identity, json_value_to_string(item), issuer)
        else:
            self._add(identity, json_value_to_string(value), issuer)

    def _add(self, identity: ClaimsIdentity, value: Optional[str], issuer: str) -> None:
        if value:
            identity.add_claim(
                Claim(self.claim_type, value, self.value_type, issuer)
            )


class JsonSubKeyClaimAction(JsonKeyClaimAction):
    """Map `json_key.sub_key` to a claim."""

    def __init__(
        self, claim_type: str, value_type: str, json_key: str, sub_key: str
    ) -> None:
        super().__init__(claim_type, value_type, json_key)
        self.sub_key = sub_key

    def run(
        self, user_data: Dict[str, Any], identity: ClaimsIdentity, issuer: str
    ) -> None:
        container = user_data.get(self.json_key)
        if not isinstance(container, dict):
            return
        self._add(identity, json_value_to_string(container.get(self.sub_key)), issuer)


class CustomJsonClaimAction(ClaimAction):
    """Map a claim from a value computed by `resolver` over the whole document."""

    def __init__(
        self,
        claim_type: str,
        value_type: str,
        resolver: Callable[[Dict[str, Any]], Optional[str]],
    ) -> None:
        super().__init__(claim_type, value_type)
        self.resolver = resolver

    def run(
        self, user_data: Dict[str, Any], identity: ClaimsIdentity, issuer: str
    ) -> None:
        value = self.resolver(user_data)
        if value:
            identity.add_claim(Claim(self.claim_type, value, self.value_type, issuer))


class DeleteClaimAction(ClaimAction):
    """Remove every claim of the given type from the identity."""

    def run(
        self, user_data: Dict[str, Any], identity: ClaimsIdentity, issuer: str
    ) -> None:
        identity.remove_claims(self.claim_type)


class ClaimActionCollection:
    def __init__(self) -> None:
        self._actions: List[ClaimAction] = []

    def __iter__(self) -> Iterator[ClaimAction]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def add(self, action: ClaimAction) -> None:
        self._actions.append(action)

    def remove(self, claim_type: str) -> None:
        self._actions = [a for a in self._actions if a.claim_type != claim_type]

    def clear(self) -> None:
        self._actions.clear()

    def map_json_key(
        self, claim_type: str, json_key: str, value_type: str = ClaimValueTypes.STRING
    ) -> None:
        self.add(JsonKeyClaimAction(claim_type, value_type, json_key))

    def map_json_sub_key(
        self,
        claim_type: str,
        json_key: str,
        sub_key: str,
        value_type: str = ClaimValueTypes.STRING,
    ) -> None:
        self.add(JsonSubKeyClaimAction(claim_type, value_type, json_key, sub_key))

    def map_custom_json(
        self,
        claim_type: str,
        resolver: Callable[[Dict[str, Any]], Optional[str]],
        value_type: str = ClaimValueTypes.STRING,
    ) -> None:
        self.add(CustomJsonClaimAction(claim_type, value_type, resolver))

    def delete_claim(self, claim_type: str) -> None:
        self.add(DeleteClaimAction(claim_type))


def json_value_to_string(value: Any) -> Optional[str]:
    """Render a JSON value the way it is exposed as a claim value."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"))


def json_value_type(value: Any) -> str:
    if isinstance(value, bool):
        return ClaimValueTypes.BOOLEAN
    if isinstance(value, int):
        return ClaimValueTypes.INTEGER
    if isinstance(value, float):
        return ClaimValueTypes.DOUBLE
    if isinstance(value, dict):
        return ClaimValueTypes.JSON
    if isinstance(value, list):
        return ClaimValueTypes.JSON_ARRAY
    return ClaimValueTypes.STRING
