"""Client bound to a base URL with default headers and options."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from .fetch import fetch
from .response import HTTPResponse


class APIClient:
    """Sends requests relative to `base_url`.

    Example:
        api = APIClient("https://api.example.com/v1/", {"Authorization": "Bearer t"})
        users = await (await api.get("users")).json()
    """

    __slots__ = (
        "base_url",
        "default_headers",
        "protocol",
        "reject_unauthorized",
        "timeout",
        "transport",
    )

    def __init__(
        self,
        base_url: str,
        default_headers: Mapping[str, str] | None = None,
        *,
        timeout: float = 0,
        reject_unauthorized: bool = True,
        protocol: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            msg = "base_url is not defined"
            raise ValueError(msg)
        self.base_url = base_url
        self.default_headers = dict(default_headers or {})
        self.timeout = timeout
        self.reject_unauthorized = reject_unauthorized
        self.protocol = protocol
        self.transport = transport

    def url_for(self, path: str) -> str:
        """Resolves path against the base URL."""
        try:
            return str(httpx.URL(self.base_url).join(path))
        except httpx.InvalidURL as e:
            msg = f"Invalid URL construction: {e}"
            raise ValueError(msg) from e

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> HTTPResponse:
        url = self.url_for(path)
        protocol = self.protocol or ("https" if url.startswith("https://") else "http")
        return await fetch(
            url,
            method=method,
            headers={**self.default_headers, **(headers or {})},
            body=body,
            type="json",
            protocol=protocol,
            timeout=self.timeout,
            reject_unauthorized=self.reject_unauthorized,
            transport=self.transport,
        )

    async def get(self, path: str, headers: Mapping[str, str] | None = None) -> HTTPResponse:
        return await self.request("GET", path, headers=headers)

    async def head(self, path: str, headers: Mapping[str, str] | None = None) -> HTTPResponse:
        return await self.request("HEAD", path, headers=headers)

    async def delete(self, path: str, headers: Mapping[str, str] | None = None) -> HTTPResponse:
        return await self.request("DELETE", path, headers=headers)

    async def options(self, path: str, headers: Mapping[str, str] | None = None) -> HTTPResponse:
        return await self.request("OPTIONS", path, headers=headers)

    async def post(
        self, path: str, body: Any = None, headers: Mapping[str, str] | None = None
    ) -> HTTPResponse:
        return await self.request("POST", path, body, headers)

    async def put(
        self, path: str, body: Any = None, headers: Mapping[str, str] | None = None
    ) -> HTTPResponse:
        return await self.request("PUT", path, body, headers)

    async def patch(
        self, path: str, body: Any = None, headers: Mapping[str, str] | None = None
    ) -> HTTPResponse:
        return await self.request("PATCH", path, body, headers)
