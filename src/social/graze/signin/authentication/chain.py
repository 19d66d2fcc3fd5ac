"""
Middleware chain for backchannel requests.

Requests to Apple are sent through a chain of middleware wrapping a shared aiohttp
ClientSession. Each middleware may modify the request before passing it on and inspect
the response afterwards. The end of the chain performs the actual HTTP request.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Sequence,
    Tuple,
)
from aiohttp import ClientResponse, ClientSession, hdrs
from aiohttp.typedefs import StrOrURL
from multidict import CIMultiDictProxy

from social.graze.signin.app.metrics import MetricsClient

RequestFunc = Callable[..., Awaitable[ClientResponse]]

logger = logging.getLogger(__name__)


@dataclass
class ChainRequest:
    method: str
    url: StrOrURL
    headers: dict[str, Any] | None = None
    kwargs: dict[str, Any] | None = None


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: str | bytes | dict[str, Any] | list[Any] | None = None

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        status = response.status
        headers = response.headers

        content_type = response.headers.get(hdrs.CONTENT_TYPE, "")

        if content_type.startswith("application/json"):
            try:
                body = await response.json()
            except ValueError:
                logger.debug(f"Response declared JSON but did not decode: {status}")
                return ChainResponse(
                    status=status, headers=headers, body=await response.text()
                )
            return ChainResponse(status=status, headers=headers, body=body)
        elif content_type.startswith("text/"):
            return ChainResponse(
                status=status, headers=headers, body=await response.text()
            )
        else:
            return ChainResponse(
                status=status, headers=headers, body=await response.read()
            )

    def body_text(self) -> str:
        if self.body is None:
            return ""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8", errors="replace")
        return str(self.body)


NextChainResponseCallbackType = Tuple[ClientResponse, ChainResponse]

NextChainCallbackType = Callable[
    [ChainRequest], Awaitable[NextChainResponseCallbackType]
]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> NextChainResponseCallbackType:
            return await self.handle(next, request)

        return next_invoke


class StatsdMiddleware(RequestMiddlewareBase):
    """Record request count, timing and exceptions for every backchannel request."""

    def __init__(self, metrics_client: MetricsClient) -> None:
        super().__init__()
        self._metrics_client = metrics_client

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        start_time = time()
        tags = {"method": request.method, "url": str(request.url)}
        try:
            response = await next(request)
        except Exception as e:
            self._metrics_client.increment(
                "signin.client.request.exception",
                1,
                tag_dict={**tags, "exception": type(e).__name__},
            )
            raise
        finally:
            self._metrics_client.timer(
                "signin.client.request.time", time() - start_time, tag_dict=tags
            )

        self._metrics_client.increment(
            "signin.client.request.count",
            1,
            tag_dict={**tags, "status": response[1].status},
        )
        return response


class ClientSecretMiddleware(RequestMiddlewareBase):
    """Add the client secret to the form body of the request."""

    def __init__(self, client_secret: str) -> None:
        super().__init__()
        self._client_secret = client_secret

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        if request.kwargs is None:
            request.kwargs = {}

        data: Optional[dict[str, str]] = request.kwargs.get("data", None)
        data = dict(data or {})
        data["client_secret"] = self._client_secret
        request.kwargs["data"] = data

        return await next(request)


class EndOfLineChainMiddleware:
    def __init__(
        self,
        request_func: RequestFunc,
        raise_for_status: bool = False,
    ) -> None:
        super().__init__()
        self._request_func = request_func
        self._raise_for_status = raise_for_status

    async def handle(self, request: ChainRequest) -> NextChainResponseCallbackType:
        logger.debug(f"Making request: {request.method} {request.url}")

        response: ClientResponse = await self._request_func(
            request.method.lower(),
            request.url,
            headers=request.headers,
            **(request.kwargs or {}),
        )

        if self._raise_for_status:
            response.raise_for_status()

        return response, await ChainResponse.from_aiohttp_response(response)


class ChainMiddlewareContext:
    def __init__(
        self,
        chain_callback: NextChainCallbackType,
        chain_request: ChainRequest,
    ) -> None:
        self._chain_callback = chain_callback
        self._chain_request = chain_request
        self.client_response: ClientResponse | None = None

    async def _do_request(self) -> Tuple[ClientResponse, ChainResponse]:
        client_response, chain_response = await self._chain_callback(
            self._chain_request
        )
        self.client_response = client_response
        return client_response, chain_response

    async def __aenter__(self) -> Tuple[ClientResponse, ChainResponse]:
        return await self._do_request()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.client_response is not None and not self.client_response.closed:
            self.client_response.close()


class ChainMiddlewareClient:
    def __init__(
        self,
        client_session: ClientSession,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
        raise_for_status: bool = False,
    ) -> None:
        self._client = client_session
        self._middleware = middleware
        self._raise_for_status = raise_for_status

    def post(self, url: StrOrURL, **kwargs: Any) -> ChainMiddlewareContext:
        return self._make_request(method=hdrs.METH_POST, url=url, **kwargs)

    def _make_request(
        self,
        method: str,
        url: StrOrURL,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        chain_request = ChainRequest(
            method=method,
            url=url,
            headers=kwargs.pop("headers", {}),
            kwargs=kwargs,
        )

        end_of_line_middleware = EndOfLineChainMiddleware(
            request_func=self._client.request,
            raise_for_status=self._raise_for_status,
        )

        chain_callback: NextChainCallbackType = end_of_line_middleware.handle

        for mw in reversed(self._middleware or []):
            chain_callback = mw.handle_gen(chain_callback)

        return ChainMiddlewareContext(
            chain_callback=chain_callback,
            chain_request=chain_request,
        )
