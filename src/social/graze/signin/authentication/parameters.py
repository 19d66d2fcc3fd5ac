"""
Callback request and protocol parameter extraction.

Apple delivers the callback either as a redirect with a query string, or as a form post
when `response_mode=form_post` was requested. Parameters are read from exactly one of
the two sources, decided by the request method.
"""

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from aiohttp import hdrs, web
from multidict import MultiDict, MultiDictProxy


@dataclass
class CallbackRequest:
    """
    Framework-neutral view of the inbound callback.

    Attributes:
        method: HTTP method of the callback
        query: Query string parameters
        form: Form body parameters, only populated for POST
        cookies: Request cookies
        expired_cookies: Cookie names the handler consumed and the response must delete
    """

    method: str
    query: MultiDictProxy[str] = field(
        default_factory=lambda: MultiDictProxy(MultiDict())
    )
    form: MultiDictProxy[str] = field(
        default_factory=lambda: MultiDictProxy(MultiDict())
    )
    cookies: Mapping[str, str] = field(default_factory=dict)
    expired_cookies: List[str] = field(default_factory=list)

    @staticmethod
    async def from_request(request: web.Request) -> "CallbackRequest":
        form: MultiDict[str] = MultiDict()
        if request.method.upper() == hdrs.METH_POST:
            for key, value in (await request.post()).items():
                # File uploads have no meaning in the protocol.
                if isinstance(value, str):
                    form.add(key, value)

        return CallbackRequest(
            method=request.method,
            query=MultiDictProxy(MultiDict(request.query)),
            form=MultiDictProxy(form),
            cookies=dict(request.cookies),
        )


def extract_callback_parameters(
    method: str,
    query: Mapping[str, str],
    form: Mapping[str, str],
) -> MultiDictProxy[str]:
    """
    Extract protocol parameters from the callback.

    POST reads exclusively from the form body, every other method reads exclusively
    from the query string. No validation is performed.
    """
    source = form if method.upper() == hdrs.METH_POST else query
    return MultiDictProxy(MultiDict(source))


def first_value(parameters: MultiDictProxy[str], name: str) -> str:
    """
    Return the value of a parameter, or an empty string when it is absent.

    Multiple values are joined with a comma.
    """
    values: Optional[List[str]] = parameters.getall(name, None)
    if not values:
        return ""
    return ",".join(values)
