"""Outcomes of the remote authentication flow."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from social.graze.signin.authentication.claims import ClaimsPrincipal
from social.graze.signin.authentication.errors import AuthenticationFailure
from social.graze.signin.authentication.properties import AuthenticationProperties


@dataclass
class AuthenticationTicket:
    principal: ClaimsPrincipal
    properties: AuthenticationProperties
    authentication_scheme: str


class ResultKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    HANDLED = "handled"
    SKIPPED = "skipped"
    NONE = "none"


@dataclass
class HandleRequestResult:
    """
    Exactly one outcome of a callback.

    `failure` is set for FAILURE, `ticket` for SUCCESS and `redirect` may be set for
    HANDLED when the handler already decided where the user goes next.
    """

    kind: ResultKind
    ticket: Optional[AuthenticationTicket] = None
    failure: Optional[AuthenticationFailure] = None
    properties: Optional[AuthenticationProperties] = None
    redirect: Optional[str] = None

    @staticmethod
    def success(ticket: AuthenticationTicket) -> "HandleRequestResult":
        return HandleRequestResult(
            kind=ResultKind.SUCCESS, ticket=ticket, properties=ticket.properties
        )

    @staticmethod
    def fail(
        failure: Union[str, Exception],
        properties: Optional[AuthenticationProperties] = None,
    ) -> "HandleRequestResult":
        if isinstance(failure, AuthenticationFailure):
            error = failure
        elif isinstance(failure, Exception):
            error = AuthenticationFailure(str(failure))
        else:
            error = AuthenticationFailure(failure)
        return HandleRequestResult(
            kind=ResultKind.FAILURE, failure=error, properties=properties
        )

    @staticmethod
    def handle(redirect: Optional[str] = None) -> "HandleRequestResult":
        return HandleRequestResult(kind=ResultKind.HANDLED, redirect=redirect)

    @staticmethod
    def skip() -> "HandleRequestResult":
        return HandleRequestResult(kind=ResultKind.SKIPPED)

    @staticmethod
    def no_result() -> "HandleRequestResult":
        return HandleRequestResult(kind=ResultKind.NONE)

    @property
    def succeeded(self) -> bool:
        return self.kind is ResultKind.SUCCESS

    @property
    def none(self) -> bool:
        return self.kind is ResultKind.NONE
