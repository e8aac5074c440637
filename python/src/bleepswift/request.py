"""Request envelope for the Swift API.

Every HTTP request that BleepSwift sends goes through ``Request.do()``, which
builds the URL from the backend's endpoint, the container and object names
and the query values, sends the request through the backend, and checks the
response status against the set of expected status codes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import IO, Any, Union
from urllib.parse import quote, urlencode

import httpx

from bleepswift import metrics
from bleepswift.errors import (
    MalformedContainerNameError,
    NoContainerNameError,
    UnexpectedStatusCodeError,
)
from bleepswift.headers import Headers

logger = logging.getLogger(__name__)

# Read size when streaming file objects into a request body: 64 KB
_CHUNK_SIZE = 64 * 1024

Body = Union[bytes, bytearray, memoryview, IO[bytes], AsyncIterable[bytes], Iterable[bytes], None]


@dataclass
class RequestOptions:
    """Additional headers and query values for a request.

    Headers given here override headers computed from typed header arguments.
    """

    headers: Headers = field(default_factory=Headers)
    values: dict[str, str] = field(default_factory=dict)

    def copy(self) -> RequestOptions:
        return RequestOptions(headers=self.headers.copy(), values=dict(self.values))


def clone_request_options(opts: RequestOptions | None) -> RequestOptions:
    """Return a copy of ``opts`` (or empty options) that can be modified freely."""
    if opts is None:
        return RequestOptions()
    return opts.copy()


@dataclass
class Request:
    """Parameters of a single request to the Swift API.

    Attributes:
        method: "GET", "HEAD", "PUT", "POST", "DELETE" or "COPY".
        container_name: Empty for requests on accounts.
        object_name: Empty for requests on accounts and containers.
        headers: Request headers computed from typed header arguments.
        options: Extra headers and query values (override ``headers``).
        body: Request body.
        expect_status_codes: Accepted status codes; empty disables the check.
        drain_response_body: Read and close the body of a successful response.
    """

    method: str
    container_name: str = ""
    object_name: str = ""
    headers: Headers | None = None
    options: RequestOptions | None = None
    body: Body = None
    expect_status_codes: tuple[int, ...] = ()
    drain_response_body: bool = False

    def url(self, endpoint_url: str) -> str:
        """Return the full URL for this request.

        Raises:
            NoContainerNameError: If an object name is given without a container name.
            MalformedContainerNameError: If the container name contains a slash.
        """
        url = endpoint_url if endpoint_url.endswith("/") else endpoint_url + "/"

        if not self.container_name:
            if self.object_name:
                raise NoContainerNameError()
        else:
            if "/" in self.container_name:
                raise MalformedContainerNameError()
            url += quote(self.container_name, safe="") + "/" + quote(self.object_name, safe="/")

        values = self.options.values if self.options else {}
        if values:
            url += "?" + urlencode(sorted(values.items()))
        return url

    def build(self, endpoint_url: str) -> httpx.Request:
        """Build the httpx.Request without sending it."""
        headers = Headers()
        headers.update_from(self.headers)
        if self.options:
            headers.update_from(self.options.headers)

        return httpx.Request(
            self.method,
            self.url(endpoint_url),
            headers=headers.to_http(),
            content=encode_body(self.body),
        )

    def rebuilder(self, endpoint_url: str) -> Callable[[], httpx.Request] | None:
        """Return a function that builds this request again for a retry.

        Seekable file bodies are rewound to their current position first.
        Returns None if the body is a stream that cannot be replayed. Must be
        called before the request is sent.
        """
        body = self.body
        if body is None or isinstance(body, (bytes, bytearray, memoryview)):
            return lambda: self.build(endpoint_url)
        if not is_seekable(body):
            return None

        start = body.tell()  # type: ignore[union-attr]

        def rebuild() -> httpx.Request:
            body.seek(start)  # type: ignore[union-attr]
            return self.build(endpoint_url)

        return rebuild

    async def do(self, backend) -> httpx.Response:
        """Send this request through ``backend``.

        Returns:
            The response. Unless the body was drained (``drain_response_body``
            or status 204), the response is streaming and the caller must read
            and close it.

        Raises:
            UnexpectedStatusCodeError: If the status is not one of
                ``expect_status_codes``. The response body is collected into
                the error.
        """
        endpoint_url = backend.endpoint_url
        rebuild = self.rebuilder(endpoint_url)
        request = self.build(endpoint_url)

        started = time.perf_counter()
        response = await backend.do(request, rebuild)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        logger.debug(
            "%s %s -> %d",
            self.method,
            request.url.path,
            response.status_code,
            extra={
                "method": self.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "container": self.container_name or None,
                "object": self.object_name or None,
            },
        )
        if metrics.requests_total is not None:
            metrics.requests_total.labels(
                method=self.method, status=str(response.status_code)
            ).inc()

        if not self.expect_status_codes or response.status_code in self.expect_status_codes:
            if self.drain_response_body or response.status_code == 204:
                await response.aread()
                await response.aclose()
            return response

        body = await response.aread()
        await response.aclose()
        raise UnexpectedStatusCodeError(self.expect_status_codes, response, body)


def encode_body(body: Body) -> bytes | AsyncIterator[bytes] | None:
    """Convert any supported body type into something httpx.AsyncClient can send."""
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "read"):
        return _iter_file(body)  # type: ignore[arg-type]
    if isinstance(body, AsyncIterable):
        return _iter_async(body)
    return _iter_sync(body)


def is_seekable(body: Any) -> bool:
    """Return True for file objects that can be rewound with seek()."""
    if not (hasattr(body, "read") and hasattr(body, "seek") and hasattr(body, "tell")):
        return False
    seekable = getattr(body, "seekable", None)
    return seekable() if callable(seekable) else True


async def _iter_file(fileobj: IO[bytes]) -> AsyncIterator[bytes]:
    while True:
        chunk = fileobj.read(_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


async def _iter_async(iterable: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    async for chunk in iterable:
        yield chunk


async def _iter_sync(iterable: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in iterable:
        yield chunk
