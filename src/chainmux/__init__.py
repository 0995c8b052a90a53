from importlib.metadata import version

from .client.api import APIClient
from .client.fetch import fetch
from .client.response import HTTPResponse
from .errors import AbortError, HTTPError, RouteError, TransportError
from .http import Request, Response
from .router import Router
from .routes import http_route

__all__ = [
    "APIClient",
    "AbortError",
    "HTTPError",
    "HTTPResponse",
    "Request",
    "Response",
    "RouteError",
    "Router",
    "TransportError",
    "__version__",
    "fetch",
    "http_route",
]

__version__ = version("chainmux")
