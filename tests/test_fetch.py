import asyncio
import json
from typing import Any

import httpx
import pytest

from chainmux.client import fetch as fetch_module
from chainmux.client.api import APIClient
from chainmux.client.fetch import FetchOptions, fetch
from chainmux.client.transport import Transport, select_transport
from chainmux.errors import AbortError, BodyUsedError, TransportError
from chainmux.router import Router


class Recorder:
    """MockTransport handler that records requests and replies with a fixed response."""

    def __init__(self, response: httpx.Response | None = None, delay: float = 0) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []
        self.response = response or httpx.Response(200, json={"ok": True})
        self.delay = delay

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(await request.aread())
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


# --- basics -------------------------------------------------------------------
@pytest.mark.asyncio
async def test_fetch_json() -> None:
    recorder = Recorder()
    response = await fetch("http://api.test/items", transport=recorder.transport)
    assert response.status == 200
    assert response.status_text == "OK"
    assert response.ok
    assert response.url == "http://api.test/items"
    assert response.type == "json"
    assert response.headers["Content-Type"] == "application/json"
    assert await response.json() == {"ok": True}
    assert recorder.requests[0].method == "GET"


@pytest.mark.asyncio
async def test_fetch_error_status_is_not_raised() -> None:
    recorder = Recorder(httpx.Response(503, text="down"))
    response = await fetch("http://api.test/", transport=recorder.transport)
    assert response.status == 503
    assert response.status_text == "Service Unavailable"
    assert not response.ok
    assert await response.text() == "down"


@pytest.mark.asyncio
async def test_unknown_status_text() -> None:
    recorder = Recorder(httpx.Response(599))
    response = await fetch("http://api.test/", transport=recorder.transport)
    assert response.status_text == "Unknown"


@pytest.mark.asyncio
async def test_method_is_upper_cased() -> None:
    recorder = Recorder()
    await fetch("http://api.test/", method="put", body=b"x", transport=recorder.transport)
    assert recorder.requests[0].method == "PUT"


@pytest.mark.asyncio
async def test_body_read_once() -> None:
    response = await fetch("http://api.test/", transport=Recorder().transport)
    await response.read()
    with pytest.raises(BodyUsedError):
        await response.json()


# --- request bodies and headers -------------------------------------------------
@pytest.mark.asyncio
async def test_json_body_gets_default_content_type() -> None:
    recorder = Recorder()
    await fetch(
        "http://api.test/",
        method="POST",
        body={"name": "a"},
        transport=recorder.transport,
    )
    assert recorder.requests[0].headers["content-type"] == "application/json"
    assert json.loads(recorder.bodies[0]) == {"name": "a"}


@pytest.mark.asyncio
async def test_binary_body_gets_octet_stream() -> None:
    recorder = Recorder()
    await fetch(
        "http://api.test/",
        method="POST",
        body=b"\x00\x01",
        type="binary",
        transport=recorder.transport,
    )
    assert recorder.requests[0].headers["content-type"] == "application/octet-stream"
    assert recorder.bodies[0] == b"\x00\x01"


@pytest.mark.asyncio
async def test_explicit_content_type_is_kept() -> None:
    recorder = Recorder()
    await fetch(
        "http://api.test/",
        method="POST",
        body="a=1",
        headers={"content-type": "application/x-www-form-urlencoded"},
        transport=recorder.transport,
    )
    request = recorder.requests[0]
    assert request.headers.get_list("content-type") == [
        "application/x-www-form-urlencoded"
    ]
    assert recorder.bodies[0] == b"a=1"


@pytest.mark.asyncio
async def test_no_content_type_without_body() -> None:
    recorder = Recorder()
    await fetch("http://api.test/", transport=recorder.transport)
    assert "content-type" not in recorder.requests[0].headers


@pytest.mark.asyncio
async def test_text_type_sets_no_content_type() -> None:
    recorder = Recorder()
    await fetch(
        "http://api.test/",
        method="POST",
        body="plain",
        type="text",
        transport=recorder.transport,
    )
    assert "content-type" not in recorder.requests[0].headers


@pytest.mark.asyncio
async def test_iterator_body_is_streamed() -> None:
    recorder = Recorder()
    await fetch(
        "http://api.test/upload",
        method="POST",
        body=iter([b"chunk-1,", "chunk-2"]),
        type="binary",
        transport=recorder.transport,
    )
    assert recorder.bodies[0] == b"chunk-1,chunk-2"


# --- streaming responses ------------------------------------------------------
@pytest.mark.asyncio
async def test_sockets_type_streams_body() -> None:
    recorder = Recorder(httpx.Response(200, content=b"streamed data"))
    response = await fetch(
        "http://api.test/", type="sockets", transport=recorder.transport
    )
    assert response.streaming
    chunks = [chunk async for chunk in response.stream()]
    assert b"".join(chunks) == b"streamed data"
    assert response.body_used
    with pytest.raises(BodyUsedError):
        await response.read()


@pytest.mark.asyncio
async def test_sockets_type_read() -> None:
    recorder = Recorder(httpx.Response(200, text="whole"))
    async with await fetch(
        "http://api.test/", type="sockets", transport=recorder.transport
    ) as response:
        assert await response.text() == "whole"


# --- timeouts and abort -------------------------------------------------------
@pytest.mark.asyncio
async def test_timeout_aborts() -> None:
    recorder = Recorder(delay=0.5)
    with pytest.raises(AbortError, match="The operation was aborted"):
        await fetch("http://api.test/slow", timeout=0.1, transport=recorder.transport)


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout", [0, 1.0])
async def test_slow_response_within_timeout(timeout: float) -> None:
    """0 arms no timer; 1s outlasts a 500ms endpoint."""
    recorder = Recorder(delay=0.5)
    response = await fetch(
        "http://api.test/", timeout=timeout, transport=recorder.transport
    )
    assert response.status == 200


class ClosingTransport(httpx.MockTransport):
    closed = False

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_abort_closes_client_transport() -> None:
    transport = ClosingTransport(Recorder(delay=0.5))
    with pytest.raises(AbortError):
        await fetch("http://api.test/slow", timeout=0.05, transport=transport)
    assert transport.closed


@pytest.mark.asyncio
async def test_completed_request_closes_client_transport() -> None:
    transport = ClosingTransport(Recorder())
    response = await fetch("http://api.test/", transport=transport)
    assert transport.closed
    assert await response.json() == {"ok": True}


@pytest.mark.asyncio
async def test_abort_event() -> None:
    recorder = Recorder(delay=0.5)
    abort = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, abort.set)
    with pytest.raises(AbortError):
        await fetch("http://api.test/slow", abort=abort, transport=recorder.transport)


@pytest.mark.asyncio
async def test_abort_event_not_set_does_not_interfere() -> None:
    response = await fetch(
        "http://api.test/", abort=asyncio.Event(), transport=Recorder().transport
    )
    assert response.ok


@pytest.mark.asyncio
async def test_connection_error_is_transport_error() -> None:
    async def refuse(request: httpx.Request) -> httpx.Response:
        msg = "connection refused"
        raise httpx.ConnectError(msg, request=request)

    with pytest.raises(TransportError, match="GET http://api.test/ failed") as info:
        await fetch(
            "http://api.test/", timeout=1.0, transport=httpx.MockTransport(refuse)
        )
    assert not isinstance(info.value, AbortError)
    assert isinstance(info.value.__cause__, httpx.ConnectError)


# --- options and transport selection --------------------------------------------
@pytest.mark.parametrize(
    "scheme,protocol,expected",
    [
        ("http", "http", Transport.HTTP1),
        ("http", "http2", Transport.HTTP1),
        ("https", "http", Transport.HTTPS),
        ("https", "https", Transport.HTTPS),
        ("https", "http2", Transport.HTTP2),
    ],
)
def test_select_transport(scheme: str, protocol: str, expected: Transport) -> None:
    assert select_transport(scheme, protocol) is expected


def test_select_transport_rejects_other_schemes() -> None:
    with pytest.raises(ValueError, match="unsupported URL scheme"):
        select_transport("ftp")


@pytest.mark.parametrize(
    "options,error",
    [
        ({"timeout": -1}, "timeout must be >= 0"),
        ({"type": "xml"}, "type must be one of"),
        ({"protocol": "spdy"}, "protocol must be one of"),
    ],
)
def test_invalid_options(options: dict[str, Any], error: str) -> None:
    with pytest.raises(ValueError, match=error):
        FetchOptions(**options)


@pytest.mark.asyncio
async def test_http2_option_over_https() -> None:
    recorder = Recorder()
    response = await fetch(
        "https://api.test/", protocol="http2", transport=recorder.transport
    )
    assert response.ok


# --- verb helpers -------------------------------------------------------------
@pytest.mark.asyncio
@pytest.mark.parametrize("verb", ["get", "head", "delete", "options"])
async def test_verb_helpers_without_body(verb: str) -> None:
    recorder = Recorder()
    await getattr(fetch_module, verb)("http://api.test/", transport=recorder.transport)
    assert recorder.requests[0].method == verb.upper()


@pytest.mark.asyncio
@pytest.mark.parametrize("verb", ["post", "put", "patch"])
async def test_verb_helpers_with_body(verb: str) -> None:
    recorder = Recorder()
    await getattr(fetch_module, verb)(
        "http://api.test/", {"v": 1}, transport=recorder.transport
    )
    assert recorder.requests[0].method == verb.upper()
    assert json.loads(recorder.bodies[0]) == {"v": 1}


# --- APIClient ----------------------------------------------------------------
def test_api_client_requires_base_url() -> None:
    with pytest.raises(ValueError, match="base_url is not defined"):
        APIClient("")


@pytest.mark.parametrize(
    "path,expected",
    [
        ("users", "https://api.test/v1/users"),
        ("/users", "https://api.test/users"),
        ("users?page=2", "https://api.test/v1/users?page=2"),
    ],
)
def test_api_client_url_for(path: str, expected: str) -> None:
    assert APIClient("https://api.test/v1/").url_for(path) == expected


@pytest.mark.asyncio
async def test_api_client_merges_headers() -> None:
    recorder = Recorder()
    api = APIClient(
        "http://api.test/",
        {"Authorization": "Bearer t", "X-Env": "test"},
        transport=recorder.transport,
    )
    await api.post("items", {"a": 1}, headers={"X-Env": "override"})
    request = recorder.requests[0]
    assert str(request.url) == "http://api.test/items"
    assert request.method == "POST"
    assert request.headers["authorization"] == "Bearer t"
    assert request.headers["x-env"] == "override"
    assert request.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_api_client_timeout() -> None:
    api = APIClient(
        "http://api.test/", timeout=0.05, transport=Recorder(delay=0.5).transport
    )
    with pytest.raises(AbortError):
        await api.get("slow")


# --- against a chainmux router ------------------------------------------------
@pytest.mark.asyncio
async def test_fetch_router_over_asgi() -> None:
    async def create(req, res) -> None:
        payload = json.loads(req.raw_body)
        await res.status(201).json({"id": req.params["id"], **payload})

    router = Router().put("/items/:id", create)
    response = await fetch(
        "http://app.test/items/9",
        method="PUT",
        body={"name": "widget"},
        transport=httpx.ASGITransport(app=router),
    )
    assert response.status == 201
    assert response.status_text == "Created"
    assert await response.json() == {"id": "9", "name": "widget"}
