"""Request body parsing middleware.

Decodes JSON and urlencoded bodies into ``request.body``. Other content types
(and bodies that fail to parse) are exposed as text.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chainmux.http import Request, Response

logger = logging.getLogger(__name__)

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def parse_body(raw: bytes, content_type: str | None) -> Any:
    text = raw.decode("utf-8", errors="replace")
    content_type = (content_type or "").lower()
    if "application/json" in content_type:
        try:
            return json.loads(text or "{}")
        except json.JSONDecodeError:
            logger.debug("invalid JSON body, keeping raw text")
            return text
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(text, keep_blank_values=True))
    return text


def body_parser(
    *, methods: frozenset[str] = _BODY_METHODS
) -> Callable[[Request, Response, Callable[[], Awaitable[None]]], Awaitable[None]]:
    """Create body parsing middleware for requests using one of `methods`."""
    methods = frozenset(m.upper() for m in methods)

    async def parse(
        request: Request,
        response: Response,
        next: Callable[[], Awaitable[None]],  # noqa: A002
    ) -> None:
        if request.method in methods:
            request.body = parse_body(request.raw_body, request.header("content-type"))
        await next()

    return parse
