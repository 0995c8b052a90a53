"""Express-style router: global middleware plus per-method routes.

Inspired by connect/express's Router
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chainmux._asgi.router import serve_asgi
from chainmux.chain import Chain, NotFoundHandler, run_chain
from chainmux.routes import (
    Handler,
    HTTPMethod,
    Match,
    RouteTable,
    format_routes,
    http_route,
)

if TYPE_CHECKING:
    from chainmux._asgi.types import ASGIReceive, ASGIScope, ASGISend
    from chainmux.http import Request, Response

logger = logging.getLogger(__name__)


async def not_found(request: Request, response: Response) -> None:
    """Default not-found handler."""
    if not response.headers_sent:
        await response.status(404).set("content-type", "text/plain").send("Not Found")


class Router:
    __slots__ = ("_frozen", "_logger", "_middleware", "_not_found", "_routes")
    _routes: RouteTable
    _middleware: list[Handler]
    _frozen: bool

    def __init__(
        self,
        *,
        not_found_handler: NotFoundHandler | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._routes = RouteTable()
        self._middleware = []
        self._not_found = not_found_handler or not_found
        self._logger = logger
        self._frozen = False

    async def __call__(
        self, scope: ASGIScope, receive: ASGIReceive, send: ASGISend
    ) -> None:
        await serve_asgi(self, scope, receive, send)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def middleware(self) -> tuple[Handler, ...]:
        return tuple(self._middleware)

    @property
    def routes(self) -> RouteTable:
        return self._routes

    def freeze(self) -> None:
        """Makes the route table and middleware list read-only.

        Called automatically during ASGI lifespan startup and on the first
        dispatched request. Idempotent.
        """
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            msg = "router is serving requests, routes and middleware are read-only"
            raise RuntimeError(msg)

    def use(self, *middleware: Handler) -> Router:
        """Appends global middleware, run for every request in order."""
        self._check_mutable()
        self._middleware.extend(middleware)
        return self

    def route(self, method: str | HTTPMethod, path: str, *handlers: Handler) -> Router:
        """Registers handlers for method on path. Earlier registrations win."""
        self._check_mutable()
        self._routes.add(method, path, *handlers)
        return self

    def connect(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for CONNECT."""
        return self.route(HTTPMethod.CONNECT, path, *handlers)

    def delete(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for DELETE."""
        return self.route(HTTPMethod.DELETE, path, *handlers)

    def get(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for GET."""
        return self.route(HTTPMethod.GET, path, *handlers)

    def head(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for HEAD."""
        return self.route(HTTPMethod.HEAD, path, *handlers)

    def options(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for OPTIONS."""
        return self.route(HTTPMethod.OPTIONS, path, *handlers)

    def patch(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for PATCH."""
        return self.route(HTTPMethod.PATCH, path, *handlers)

    def post(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for POST."""
        return self.route(HTTPMethod.POST, path, *handlers)

    def put(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for PUT."""
        return self.route(HTTPMethod.PUT, path, *handlers)

    def trace(self, path: str, *handlers: Handler) -> Router:
        """Registers handlers at path for TRACE."""
        return self.route(HTTPMethod.TRACE, path, *handlers)

    def match(self, method: str, url: str) -> Match | None:
        return self._routes.match(method, url)

    async def handle(
        self,
        request: Request,
        response: Response,
        not_found: NotFoundHandler | None = None,
    ) -> Chain:
        """Dispatches one request through middleware and the matched route.

        Never raises for middleware or handler failures: they are logged and
        turned into an error response.
        """
        self.freeze()
        match = self._routes.match(request.method, request.url)
        token = http_route.set(match.route.template if match is not None else "")
        try:
            return await run_chain(
                request,
                response,
                tuple(self._middleware),
                match,
                not_found or self._not_found,
                logger=self._logger,
            )
        finally:
            http_route.reset(token)

    def format_routes(self) -> str:
        return format_routes(self._routes, tuple(self._middleware))
