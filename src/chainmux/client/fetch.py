"""fetch(): one request over HTTP/1.1, HTTPS or HTTP/2 with abort support."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Coroutine, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from chainmux.errors import AbortError, TransportError

from .response import HTTPResponse, StreamingBody
from .transport import build_client, select_transport

logger = logging.getLogger(__name__)

BODY_TYPES = frozenset({"json", "binary", "text", "sockets"})
PROTOCOLS = frozenset({"http", "https", "http2"})
_DEFAULT_CONTENT_TYPES = {
    "json": "application/json",
    "binary": "application/octet-stream",
}


@dataclass(slots=True, frozen=True)
class FetchOptions:
    """Options for a single fetch.

    Args:
        method: HTTP method, case-insensitive.
        headers: Request headers. Content-Type is derived from `type` when a
            body is sent and none is given.
        body: bytes/str are sent as-is, iterators and async iterables are
            streamed, anything else is JSON-serialized.
        type: "json", "binary", "text", or "sockets". "sockets" resolves as
            soon as the response headers arrive and leaves the body streaming.
        protocol: "http", "https", or "http2". HTTP/2 needs an https URL.
        timeout: Seconds before the request is aborted. 0 disables the timer.
        reject_unauthorized: Verify the server's TLS certificate.
        abort: Event that aborts the request when set.
        transport: httpx transport to send through instead of the network.
    """

    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    type: str = "json"
    protocol: str = "http"
    timeout: float = 0
    reject_unauthorized: bool = True
    abort: asyncio.Event | None = None
    transport: httpx.AsyncBaseTransport | None = None

    def __post_init__(self) -> None:
        if self.timeout < 0:
            msg = f"timeout must be >= 0, got {self.timeout}"
            raise ValueError(msg)
        if self.type not in BODY_TYPES:
            msg = f"type must be one of {sorted(BODY_TYPES)}, got {self.type!r}"
            raise ValueError(msg)
        if self.protocol not in PROTOCOLS:
            msg = f"protocol must be one of {sorted(PROTOCOLS)}, got {self.protocol!r}"
            raise ValueError(msg)
        object.__setattr__(self, "method", self.method.upper())


async def fetch(url: str, **options: Any) -> HTTPResponse:
    """Sends one request and returns its response.

    Raises:
        AbortError: the timeout elapsed or `abort` was set first.
        TransportError: the connection failed.
    """
    opts = FetchOptions(**options)
    target = httpx.URL(url)
    transport = select_transport(target.scheme, opts.protocol)
    client = build_client(
        transport,
        reject_unauthorized=opts.reject_unauthorized,
        custom_transport=opts.transport,
    )
    logger.debug("%s %s via %r", opts.method, url, transport)
    try:
        request = client.build_request(
            opts.method,
            target,
            headers=_request_headers(opts),
            content=_encode_body(opts.body),
        )
    except BaseException:
        await client.aclose()
        raise

    try:
        return await _race(_send(client, request, url, opts), opts)
    except httpx.HTTPError as e:
        logger.debug("%s %s failed: %s", opts.method, url, e)
        msg = f"{opts.method} {url} failed: {str(e) or type(e).__name__}"
        raise TransportError(msg) from e


async def _send(
    client: httpx.AsyncClient, request: httpx.Request, url: str, opts: FetchOptions
) -> HTTPResponse:
    try:
        response = await client.send(request, stream=True)
    except BaseException:
        await client.aclose()
        raise
    logger.debug(
        "%s %s: %s (%s)", opts.method, url, response.status_code, response.http_version
    )

    body: bytes | StreamingBody
    if opts.type == "sockets":
        body = StreamingBody(response, client)
    else:
        try:
            body = await response.aread()
        finally:
            await response.aclose()
            await client.aclose()

    return HTTPResponse(
        body,
        status=response.status_code,
        status_text=status_text(response),
        headers=response.headers.multi_items(),
        url=url,
        type=opts.type,
    )


async def _race(
    sending: Coroutine[Any, Any, HTTPResponse], opts: FetchOptions
) -> HTTPResponse:
    """Awaits the request unless the timer or abort event wins first.

    The first to settle wins. A request that already completed is returned
    even if the abort fires concurrently.
    """
    task = asyncio.ensure_future(sending)
    waiters: set[asyncio.Future[Any]] = {task}
    aborted: asyncio.Future[Any] | None = None
    if opts.abort is not None:
        aborted = asyncio.ensure_future(opts.abort.wait())
        waiters.add(aborted)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=opts.timeout or None,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except BaseException:
        task.cancel()
        raise
    finally:
        if aborted is not None:
            aborted.cancel()

    if task in done:
        return task.result()

    logger.debug("%s request aborted", opts.method)
    task.cancel()
    try:
        late = await task
    except (asyncio.CancelledError, httpx.HTTPError):
        pass
    else:
        await late.aclose()  # finished while being cancelled; release it
    raise AbortError


def status_text(response: httpx.Response) -> str:
    """Reason phrase from the transport, else the status table, else "Unknown"."""
    phrase = response.extensions.get("reason_phrase", b"")
    if phrase:
        return phrase.decode("ascii", errors="replace")
    return httpx.codes.get_reason_phrase(response.status_code) or "Unknown"


def _request_headers(opts: FetchOptions) -> dict[str, str]:
    headers = dict(opts.headers)
    if opts.body is None or any(k.lower() == "content-type" for k in headers):
        return headers
    content_type = _DEFAULT_CONTENT_TYPES.get(opts.type)
    if content_type is not None:
        headers["Content-Type"] = content_type
    return headers


def _encode_body(body: Any) -> bytes | str | AsyncIterable[bytes] | None:
    if body is None:
        return None
    if isinstance(body, (bytes, str)):
        return body
    if isinstance(body, bytearray):
        return bytes(body)
    if isinstance(body, AsyncIterable):
        return body
    if isinstance(body, Iterator):
        return _aiter(body)
    return json.dumps(body).encode("utf-8")


async def _aiter(chunks: Iterator[bytes | str]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk


async def get(url: str, **options: Any) -> HTTPResponse:
    """Sends a GET request."""
    return await fetch(url, **{**options, "method": "GET"})


async def head(url: str, **options: Any) -> HTTPResponse:
    """Sends a HEAD request."""
    return await fetch(url, **{**options, "method": "HEAD"})


async def delete(url: str, **options: Any) -> HTTPResponse:
    """Sends a DELETE request."""
    return await fetch(url, **{**options, "method": "DELETE"})


async def options(url: str, **options: Any) -> HTTPResponse:
    """Sends an OPTIONS request."""
    return await fetch(url, **{**options, "method": "OPTIONS"})


async def post(url: str, body: Any = None, **options: Any) -> HTTPResponse:
    """Sends a POST request."""
    return await fetch(url, **{**options, "method": "POST", "body": body})


async def put(url: str, body: Any = None, **options: Any) -> HTTPResponse:
    """Sends a PUT request."""
    return await fetch(url, **{**options, "method": "PUT", "body": body})


async def patch(url: str, body: Any = None, **options: Any) -> HTTPResponse:
    """Sends a PATCH request."""
    return await fetch(url, **{**options, "method": "PATCH", "body": body})
