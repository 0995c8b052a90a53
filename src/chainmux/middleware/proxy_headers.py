"""Proxy headers middleware for applications behind reverse proxies (e.g. AWS ALB).

Parses X-Forwarded-For and X-Forwarded-Proto headers from trusted proxies and
overrides request.client and request.scheme so downstream handlers see the
real client information.

Headers left in request.headers for direct access:
    - x-forwarded-port
    - x-amzn-trace-id
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chainmux.http import Request, Response


def _client_host(client: str) -> str:
    """Strips the port from "host:port" / "[v6]:port" client strings."""
    if client.startswith("["):
        return client[1:].split("]", 1)[0]
    if client.count(":") == 1:
        return client.rsplit(":", 1)[0]
    return client


def proxy_headers(
    *,
    trusted_proxies: frozenset[str],
    num_proxies: int = 1,
) -> Callable[[Request, Response, Callable[[], Awaitable[None]]], Awaitable[None]]:
    """Create proxy headers middleware.

    Args:
        trusted_proxies: Set of proxy IP addresses to trust. Use
            `frozenset({"*"})` to trust all connecting clients.
        num_proxies: Number of proxy hops. The real client IP is extracted
            from X-Forwarded-For at position `-(num_proxies)` from the right.
            Default `1` is correct for a single proxy (e.g. ALB only).
            Use `2` for two proxy layers (e.g. CloudFront + ALB).

    Example:
        router.use(proxy_headers(trusted_proxies=frozenset({"10.0.0.1"})))
    """
    if num_proxies < 1:
        msg = f"num_proxies must be >= 1, got {num_proxies}"
        raise ValueError(msg)
    if not trusted_proxies:
        msg = "trusted_proxies must not be empty"
        raise ValueError(msg)

    # Pre-compute at creation time
    trust_all = "*" in trusted_proxies
    xff_index = -num_proxies

    def pick(header: str) -> str | None:
        # rsplit with maxsplit avoids splitting the full string
        parts = header.rsplit(",", maxsplit=num_proxies)
        idx = xff_index if len(parts) >= num_proxies else 0
        return parts[idx].strip() or None

    async def proxied(
        request: Request,
        response: Response,
        next: Callable[[], Awaitable[None]],  # noqa: A002
    ) -> None:
        trusted = (
            trust_all
            or request.client in trusted_proxies
            or _client_host(request.client) in trusted_proxies
        )
        if trusted:
            xff = request.header("x-forwarded-for")
            if xff is not None:
                request.client = pick(xff) or request.client
            # comma-separated in multi-hop, like XFF
            xfp = request.header("x-forwarded-proto")
            if xfp is not None:
                request.scheme = pick(xfp) or request.scheme
        await next()

    return proxied
