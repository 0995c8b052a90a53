"""Request and response objects handed to middleware and route handlers.

These are thin value objects: the response writes through an ASGI ``send``
callable and only tracks enough state for the dispatcher to know whether a
response has already been started.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlsplit

type Send = Callable[[dict[str, Any]], Awaitable[None]]


def split_target(url: str) -> tuple[str, str]:
    """Splits a request target into (path, query).

    Origin-form targets ("/a/b?x=1") are cut at "?" and "#" and the path is
    kept verbatim, so a leading "//" is never read as a host. Absolute URLs go
    through urlsplit, which raises ValueError for malformed ones.
    """
    if url.startswith("/"):
        path, _, query = url.partition("#")[0].partition("?")
        return path or "/", query
    parts = urlsplit(url)
    return parts.path or "/", parts.query


@dataclass(slots=True)
class Request:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)  # lower-cased names
    raw_body: bytes = b""
    client: str = ""
    scheme: str = "http"
    http_version: str = "1.1"
    params: dict[str, str] = field(default_factory=dict)
    body: Any = None  # set by body parsing middleware
    state: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    @property
    def path(self) -> str:
        return split_target(self.url)[0]

    @property
    def query_string(self) -> str:
        return split_target(self.url)[1]

    @property
    def query(self) -> dict[str, str]:
        return dict(parse_qsl(self.query_string, keep_blank_values=True))

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)


class Response:
    """Outgoing response.

    Status and headers are buffered until `send`/`end`, which emits the whole
    response in one go. A response can only be sent once.
    """

    __slots__ = ("_headers", "_send", "_sent", "body", "status_code")

    def __init__(self, send: Send) -> None:
        self._send = send
        self._headers: dict[str, str] = {}
        self._sent = False
        self.status_code = 200
        self.body = b""

    @property
    def headers_sent(self) -> bool:
        return self._sent

    @property
    def headers(self) -> Mapping[str, str]:
        return self._headers

    def status(self, code: int) -> Response:
        self.status_code = code
        return self

    def set(self, name: str, value: str) -> Response:
        self._headers[name.lower()] = value
        return self

    def get(self, name: str) -> str | None:
        return self._headers.get(name.lower())

    async def send(self, body: str | bytes | Mapping[str, Any] | list[Any] | None = None) -> None:
        if isinstance(body, (dict, list)):
            await self.json(body)
            return
        if isinstance(body, str):
            self._headers.setdefault("content-type", "text/plain; charset=utf-8")
            await self.end(body.encode("utf-8"))
            return
        if body is not None:
            self._headers.setdefault("content-type", "application/octet-stream")
        await self.end(body or b"")

    async def json(self, obj: Any) -> None:
        self._headers["content-type"] = "application/json"
        await self.end(json.dumps(obj).encode("utf-8"))

    async def end(self, body: bytes | str = b"") -> None:
        if self._sent:
            msg = "response has already been sent"
            raise RuntimeError(msg)
        self._sent = True
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self._headers["content-length"] = str(len(self.body))
        await self._send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": [
                    (k.encode("latin-1"), v.encode("latin-1"))
                    for k, v in self._headers.items()
                ],
            }
        )
        await self._send({"type": "http.response.body", "body": self.body})
