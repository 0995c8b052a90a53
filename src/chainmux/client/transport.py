"""Per-request transport selection."""

import logging
from enum import Enum

import httpx

logger = logging.getLogger(__name__)


class Transport(Enum):
    HTTP1 = "http/1.1"  # plaintext HTTP/1.1
    HTTPS = "https"  # HTTP/1.1 over TLS
    HTTP2 = "h2"  # HTTP/2 over TLS (negotiated with ALPN)

    def __repr__(self) -> str:
        return str(self.value)


def select_transport(scheme: str, protocol: str = "http") -> Transport:
    """Picks the transport for a URL scheme and the requested protocol.

    HTTP/2 is only used over https; asking for it on a plaintext URL falls
    back to HTTP/1.1.
    """
    if scheme not in ("http", "https"):
        msg = f"unsupported URL scheme {scheme!r}"
        raise ValueError(msg)
    if scheme == "https":
        return Transport.HTTP2 if protocol == "http2" else Transport.HTTPS
    if protocol == "http2":
        logger.debug("HTTP/2 over plaintext is not supported, using HTTP/1.1")
    return Transport.HTTP1


def build_client(
    transport: Transport,
    *,
    reject_unauthorized: bool = True,
    custom_transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Creates a one-off client for a single request.

    Timeouts are disabled at the httpx level; the caller's abort timer is the
    only deadline.
    """
    return httpx.AsyncClient(
        http1=True,
        http2=transport is Transport.HTTP2,
        verify=reject_unauthorized,
        timeout=None,
        follow_redirects=False,
        transport=custom_transport,
    )
