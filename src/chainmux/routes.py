"""Per-method route table with first-registered-wins matching.

Match priority is registration order only. There is no specificity scoring:
a `/:id` route registered before `/special` shadows it for `/special`.
"""

from __future__ import annotations

from collections.abc import Callable
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from chainmux.http import split_target
from chainmux.pattern import PathPattern, compile_pattern

http_route: ContextVar[str] = ContextVar("http_route")

type Handler = Callable[..., Any]


class HTTPMethod(Enum):
    """HTTP methods routes can be registered for.

    Methods from the following RFCs are all observed:

        * RFC 9110: HTTP Semantics
        * RFC 5789: PATCH Method for HTTP
    """

    CONNECT = "CONNECT"
    DELETE = "DELETE"
    GET = "GET"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PATCH = "PATCH"
    POST = "POST"
    PUT = "PUT"
    TRACE = "TRACE"

    def __repr__(self) -> str:
        return str(self.value)

    @classmethod
    def parse(cls, method: str | HTTPMethod) -> HTTPMethod | None:
        """Returns the member for `method` (case-insensitive), None if unknown."""
        if isinstance(method, HTTPMethod):
            return method
        try:
            return cls(method.upper())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class Route:
    method: HTTPMethod
    pattern: PathPattern
    handlers: tuple[Handler, ...]

    @property
    def template(self) -> str:
        return self.pattern.template


@dataclass(slots=True, frozen=True)
class Match:
    route: Route
    params: dict[str, str] = field(default_factory=dict)

    @property
    def handlers(self) -> tuple[Handler, ...]:
        return self.route.handlers


class RouteTable:
    __slots__ = ("_routes",)
    _routes: dict[HTTPMethod, list[Route]]

    def __init__(self) -> None:
        self._routes = {}

    def __len__(self) -> int:
        return sum(len(routes) for routes in self._routes.values())

    def __iter__(self):
        for routes in self._routes.values():
            yield from routes

    def routes(self, method: str | HTTPMethod) -> tuple[Route, ...]:
        key = HTTPMethod.parse(method)
        if key is None:
            return ()
        return tuple(self._routes.get(key, ()))

    def add(self, method: str | HTTPMethod, path: str, *handlers: Handler) -> Route:
        """Compiles path and appends a route for method; duplicates are kept."""
        key = HTTPMethod.parse(method)
        if key is None:
            msg = f"unsupported HTTP method {method!r}"
            raise ValueError(msg)
        if not handlers:
            msg = f"route {key.value} {path} needs at least one handler"
            raise ValueError(msg)
        route = Route(method=key, pattern=compile_pattern(path), handlers=handlers)
        self._routes.setdefault(key, []).append(route)
        return route

    def match(self, method: str | HTTPMethod, url: str) -> Match | None:
        """Finds the first route registered for method whose pattern matches url.

        url may be a bare path, a path with a query string, or an absolute URL.
        Returns None when nothing matches.
        """
        key = HTTPMethod.parse(method)
        if key is None:
            return None
        try:
            path, _ = split_target(url)
        except ValueError:
            return None  # malformed absolute URL
        for route in self._routes.get(key, ()):
            params = route.pattern.match(path)
            if params is not None:
                return Match(route=route, params=params)
        return None


def format_routes(table: RouteTable, middleware: tuple[Handler, ...] = ()) -> str:
    """Format registered routes as a column-aligned list in match order.

        [logger]
        GET    /user/:id   load_user > show_user
        GET    /files/*    send_file
        POST   /user       create_user

    Global middleware, when given, is listed first in brackets.
    """
    lines: list[str] = []
    if middleware:
        lines.append("[" + " > ".join(_qualname(m) for m in middleware) + "]")
    routes = list(table)
    if not routes:
        return "\n".join(lines)

    method_w = max(len(r.method.value) for r in routes)
    path_w = max(len(r.template) for r in routes)
    for route in routes:
        handlers = " > ".join(_qualname(h) for h in route.handlers)
        lines.append(
            f"{route.method.value:<{method_w}}   {route.template:<{path_w}}   {handlers}"
        )
    return "\n".join(lines)


def _qualname(obj: object) -> str:
    """Extract __qualname__ from a callable, falling back to repr."""
    return str(obj.__qualname__) if hasattr(obj, "__qualname__") else repr(obj)
