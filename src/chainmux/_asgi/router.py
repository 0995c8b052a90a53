"""ASGI glue: turns ASGI http scopes into Request/Response and drives lifespan."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from chainmux.http import Request, Response

from .types import (
    HTTPScope,
    LifespanShutdownCompleteEvent,
    LifespanStartupCompleteEvent,
    LifespanStartupFailedEvent,
)

if TYPE_CHECKING:
    from chainmux.router import Router

    from .types import ASGIReceive, ASGIScope, ASGISend

logger = logging.getLogger(__name__)


async def serve_asgi(
    router: Router, scope: ASGIScope, receive: ASGIReceive, send: ASGISend
) -> None:
    if scope["type"] == "lifespan":
        await _handle_lifespan(router, receive, send)
        return
    if scope["type"] != "http":
        msg = f"unsupported ASGI scope type {scope['type']!r}"
        raise ValueError(msg)

    http_scope = cast("HTTPScope", scope)
    request = _build_request(http_scope, await _read_body(receive))
    await router.handle(request, Response(send))


async def _handle_lifespan(
    router: Router, receive: ASGIReceive, send: ASGISend
) -> None:
    """Handle ASGI lifespan events."""
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            try:
                router.freeze()
                await send(
                    dict(LifespanStartupCompleteEvent(type="lifespan.startup.complete"))
                )
            except Exception as e:  # noqa: BLE001  - ASGI requires reporting any failure
                await send(
                    dict(
                        LifespanStartupFailedEvent(
                            type="lifespan.startup.failed", message=str(e)
                        )
                    )
                )
                return
        elif message["type"] == "lifespan.shutdown":
            await send(
                dict(LifespanShutdownCompleteEvent(type="lifespan.shutdown.complete"))
            )
            return


async def _read_body(receive: ASGIReceive) -> bytes:
    chunks: list[bytes] = []
    while True:
        message: dict[str, Any] = await receive()
        if message["type"] == "http.disconnect":
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


def _build_request(scope: HTTPScope, body: bytes) -> Request:
    path = scope.get("path", "/") or "/"
    query = scope.get("query_string", b"")
    url = path + ("?" + query.decode("latin-1") if query else "")

    headers: dict[str, str] = {}
    for raw_name, raw_value in scope.get("headers", ()):
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        headers[name] = f"{headers[name]}, {value}" if name in headers else value

    client = scope.get("client")
    return Request(
        method=scope.get("method", "GET"),
        url=url,
        headers=headers,
        raw_body=body,
        client=f"{client[0]}:{client[1]}" if client else "",
        scheme=scope.get("scheme", "http"),
        http_version=scope.get("http_version", "1.1"),
    )
