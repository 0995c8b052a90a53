"""Fetch-style response with a read-once body.

The body is either the fully buffered bytes or a `StreamingBody` still
attached to its connection (``type="sockets"``). Whichever accessor is used
first consumes it; a second read raises BodyUsedError.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from chainmux.errors import BodyUsedError

if TYPE_CHECKING:
    import httpx


class StreamingBody:
    """Response body still being received.

    Owns the httpx response and client; both are closed once the body has
    been read to the end or `aclose` is called.
    """

    __slots__ = ("_client", "_closed", "_response")

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient | None = None) -> None:
        self._response = response
        self._client = client
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        try:
            return await self._response.aread()
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()


def _capitalize(name: str) -> str:
    return "-".join(word[:1].upper() + word[1:] for word in name.lower().split("-"))


def normalize_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> dict[str, str]:
    """Capitalizes header names and joins repeated headers with ", "."""
    items = headers.items() if isinstance(headers, Mapping) else headers
    normalized: dict[str, str] = {}
    for name, value in items:
        key = _capitalize(name)
        normalized[key] = f"{normalized[key]}, {value}" if key in normalized else value
    return normalized


class HTTPResponse:
    __slots__ = (
        "_body",
        "_body_used",
        "headers",
        "status",
        "status_text",
        "type",
        "url",
    )

    def __init__(
        self,
        body: bytes | StreamingBody | None = None,
        *,
        status: int = 200,
        status_text: str = "OK",
        headers: Mapping[str, str] | Iterable[tuple[str, str]] = (),
        url: str = "",
        type: str = "basic",  # noqa: A002  - mirrors the fetch option name
    ) -> None:
        self._body = body
        self._body_used = False
        self.status = int(status)
        self.status_text = status_text
        self.headers = normalize_headers(headers)
        self.url = url
        self.type = type

    def __repr__(self) -> str:
        return f"<HTTPResponse [{self.status} {self.status_text}] {self.url}>"

    async def __aenter__(self) -> HTTPResponse:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body_used(self) -> bool:
        return self._body_used

    @property
    def streaming(self) -> bool:
        return isinstance(self._body, StreamingBody)

    def _consume(self) -> bytes | StreamingBody | None:
        if self._body_used:
            raise BodyUsedError
        self._body_used = True
        return self._body

    async def read(self) -> bytes:
        body = self._consume()
        if isinstance(body, StreamingBody):
            return await body.read()
        return body or b""

    async def text(self, encoding: str = "utf-8") -> str:
        return (await self.read()).decode(encoding)

    async def json(self) -> Any:
        return json.loads(await self.text())

    def stream(self) -> AsyncIterator[bytes]:
        """Returns the raw body iterator of a streaming response."""
        if self._body_used:
            raise BodyUsedError
        if not isinstance(self._body, StreamingBody):
            msg = "Response body is not a stream"
            raise TypeError(msg)
        self._body_used = True
        return self._body.iter_bytes()

    def clone(self) -> HTTPResponse:
        if self._body_used:
            raise BodyUsedError
        if isinstance(self._body, StreamingBody):
            msg = "streaming responses cannot be cloned"
            raise TypeError(msg)
        return HTTPResponse(
            self._body,
            status=self.status,
            status_text=self.status_text,
            headers=self.headers,
            url=self.url,
            type=self.type,
        )

    async def aclose(self) -> None:
        """Releases the connection of an unread streaming body."""
        if isinstance(self._body, StreamingBody):
            await self._body.aclose()
