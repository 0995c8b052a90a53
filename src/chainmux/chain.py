"""Onion-order execution of global middleware and route handlers.

Every middleware and handler is called as ``fn(request, response, next)``
(handlers declaring only two positional parameters are called without
``next``). ``await next()`` runs the rest of the chain and returns once the
inner layers are finished, so code after it observes their effects.
``next(err)`` abandons the chain and emits the error response. Not calling
``next`` at all stops the chain.

Global middleware runs first. When it is exhausted the matched route's
handlers run with their own continuation, scoped to the handler list; when
that list is exhausted the request is done. Without a match the not-found
handler runs instead.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine, Generator
from enum import Enum
from functools import lru_cache
from typing import Any

from chainmux.errors import HTTPError, RouteError
from chainmux.http import Request, Response
from chainmux.routes import Handler, Match

logger = logging.getLogger(__name__)

type NotFoundHandler = Callable[[Request, Response], Any]
type _Advance = Callable[[object | None], Coroutine[Any, Any, None]]


class ChainState(Enum):
    RUNNING_MIDDLEWARE = "running_middleware"
    RUNNING_HANDLER = "running_handler"
    ERROR = "error"
    NOT_FOUND = "not_found"
    DONE = "done"

    def __repr__(self) -> str:
        return str(self.value)


class _Completed:
    """Awaitable that is already finished."""

    __slots__ = ()

    def __await__(self) -> Generator[Any, None, None]:
        return iter(())


_COMPLETED = _Completed()


class Next:
    """Continuation handed to a single middleware or handler call.

    Advances the chain at most once. If it is called but never awaited (a
    plain function middleware, or a coroutine that forgot ``await``), the
    chain drives it after the caller returns.
    """

    __slots__ = ("_advance", "_called", "_pending")

    def __init__(self, advance: _Advance) -> None:
        self._advance = advance
        self._called = False
        self._pending: Coroutine[Any, Any, None] | None = None

    def __call__(self, err: object | None = None) -> Awaitable[None]:
        if self._called:
            logger.warning("next() called more than once, ignoring")
            return _COMPLETED
        self._called = True
        self._pending = self._advance(err)
        return self._pending

    @property
    def called(self) -> bool:
        return self._called

    async def settle(self) -> None:
        if self._pending is not None and _not_started(self._pending):
            await self._pending

    def discard(self) -> None:
        if self._pending is not None and _not_started(self._pending):
            self._pending.close()


def _not_started(coro: Coroutine[Any, Any, None]) -> bool:
    return inspect.getcoroutinestate(coro) == inspect.CORO_CREATED


def _accepts_next(fn: Callable[..., Any]) -> bool:
    try:
        return _accepts_next_cached(fn)
    except TypeError:  # unhashable callable, e.g. a dataclass instance
        return _inspect_accepts_next(fn)


@lru_cache(maxsize=1024)
def _accepts_next_cached(fn: Callable[..., Any]) -> bool:
    return _inspect_accepts_next(fn)


def _inspect_accepts_next(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):  # builtins without signatures
        return True
    positional = 0
    for p in params:
        if p.kind is p.VAR_POSITIONAL:
            return True
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 3


async def _invoke(fn: Callable[..., Any], *args: Any) -> None:
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


class Chain:
    """Per-request dispatcher. Instances are never shared between requests."""

    __slots__ = (
        "_index",
        "_logger",
        "_match",
        "_middleware",
        "_not_found",
        "request",
        "response",
        "state",
    )

    def __init__(
        self,
        request: Request,
        response: Response,
        middleware: tuple[Handler, ...],
        match: Match | None,
        not_found: NotFoundHandler,
        *,
        logger: logging.Logger = logger,
    ) -> None:
        self.request = request
        self.response = response
        self.state = ChainState.RUNNING_MIDDLEWARE
        self._middleware = middleware
        self._match = match
        self._not_found = not_found
        self._logger = logger
        self._index = 0

    async def run(self) -> None:
        """Runs the chain to completion. Never raises for handler failures."""
        await self._advance(None)
        if self.state is not ChainState.ERROR:
            self.state = ChainState.DONE

    async def _advance(self, err: object | None) -> None:
        if err is not None:
            await self._fail(err)
            return
        if self.state is not ChainState.RUNNING_MIDDLEWARE:
            return  # outer continuation after the handlers ran: no-op

        if self._index < len(self._middleware):
            middleware = self._middleware[self._index]
            self._index += 1
            await self._call(middleware, self._advance)
            return

        if self._match is None:
            self.state = ChainState.NOT_FOUND
            try:
                await _invoke(self._not_found, self.request, self.response)
            except Exception as e:  # noqa: BLE001  - every failure becomes an error response
                await self._fail(e)
            return

        self.state = ChainState.RUNNING_HANDLER
        self.request.params = dict(self._match.params)
        await self._run_handlers(self._match.handlers)

    async def _run_handlers(self, handlers: tuple[Handler, ...]) -> None:
        index = 0

        async def advance(err: object | None) -> None:
            nonlocal index
            if err is not None:
                await self._fail(err)
                return
            if self.state is not ChainState.RUNNING_HANDLER:
                return
            if index < len(handlers):
                handler = handlers[index]
                index += 1
                await self._call(handler, advance)
                return
            self.state = ChainState.DONE

        await advance(None)

    async def _call(self, fn: Handler, advance: _Advance) -> None:
        nxt = Next(advance)
        try:
            if _accepts_next(fn):
                await _invoke(fn, self.request, self.response, nxt)
            else:
                await _invoke(fn, self.request, self.response)
            await nxt.settle()
        except Exception as e:  # noqa: BLE001  - every failure becomes an error response
            nxt.discard()
            await self._fail(e)

    async def _fail(self, err: object) -> None:
        exc = err if isinstance(err, BaseException) else RouteError(str(err))
        if self.state is ChainState.ERROR:
            self._logger.error(
                "%s %s: further error after error response",
                self.request.method,
                self.request.url,
                exc_info=exc,
            )
            return
        self.state = ChainState.ERROR
        self._logger.error(
            "%s %s failed: %s",
            self.request.method,
            self.request.url,
            exc,
            exc_info=exc,
        )
        if self.response.headers_sent:
            return  # handler responded before failing; nothing more to emit

        status = 500
        if isinstance(exc, HTTPError) and 400 <= exc.status < 600:
            status = exc.status
        try:
            await (
                self.response.status(status)
                .set("content-type", "text/plain")
                .send(f"Error: {exc}")
            )
        except Exception:
            self._logger.exception("failed to send error response")


async def run_chain(
    request: Request,
    response: Response,
    middleware: tuple[Handler, ...],
    match: Match | None,
    not_found: NotFoundHandler,
    *,
    logger: logging.Logger = logger,
) -> Chain:
    """Builds a Chain for one request, runs it, and returns it."""
    chain = Chain(request, response, middleware, match, not_found, logger=logger)
    await chain.run()
    return chain
