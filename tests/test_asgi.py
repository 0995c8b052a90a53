from typing import Any

import httpx
import pytest

from chainmux.http import Request, Response
from chainmux.router import Router


def _app() -> Router:
    async def timing(req: Request, res: Response, next) -> None:
        res.set("x-chain", "timing")
        await next()

    async def show_user(req: Request, res: Response) -> None:
        await res.json({"id": req.params["id"], "q": req.query})

    async def echo(req: Request, res: Response) -> None:
        await res.send(req.raw_body)

    async def whoami(req: Request, res: Response) -> None:
        await res.send(f"{req.client} {req.header('x-multi')}")

    return (
        Router()
        .use(timing)
        .get("/user/:id", show_user)
        .post("/echo", echo)
        .get("/whoami", whoami)
    )


@pytest.mark.asyncio
async def test_asgi_end_to_end() -> None:
    transport = httpx.ASGITransport(app=_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/user/42?tab=posts")
    assert response.status_code == 200
    assert response.headers["x-chain"] == "timing"
    assert response.json() == {"id": "42", "q": {"tab": "posts"}}


@pytest.mark.asyncio
async def test_asgi_reads_request_body() -> None:
    transport = httpx.ASGITransport(app=_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/echo", content=b"payload bytes")
    assert response.content == b"payload bytes"
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["content-length"] == "13"


@pytest.mark.asyncio
async def test_asgi_client_and_repeated_headers() -> None:
    transport = httpx.ASGITransport(app=_app(), client=("10.0.0.5", 4321))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(
            "/whoami", headers=[("X-Multi", "a"), ("X-Multi", "b")]
        )
    assert response.text == "10.0.0.5:4321 a, b"


@pytest.mark.asyncio
async def test_asgi_not_found() -> None:
    transport = httpx.ASGITransport(app=_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.delete("/user/42")
    assert response.status_code == 404
    assert response.text == "Not Found"


@pytest.mark.asyncio
async def test_asgi_handler_error() -> None:
    async def broken(req: Request, res: Response) -> None:
        msg = "database unavailable"
        raise RuntimeError(msg)

    transport = httpx.ASGITransport(app=Router().get("/", broken))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/")
    assert response.status_code == 500
    assert response.text == "Error: database unavailable"


# --- lifespan -----------------------------------------------------------------
class _Lifespan:
    def __init__(self, *events: str) -> None:
        self.incoming = [{"type": e} for e in events]
        self.sent: list[dict[str, Any]] = []

    async def receive(self) -> dict[str, Any]:
        return self.incoming.pop(0)

    async def send(self, message: dict[str, Any]) -> None:
        self.sent.append(message)


@pytest.mark.asyncio
async def test_lifespan_startup_and_shutdown() -> None:
    router = Router()
    lifespan = _Lifespan("lifespan.startup", "lifespan.shutdown")
    await router({"type": "lifespan"}, lifespan.receive, lifespan.send)
    assert [m["type"] for m in lifespan.sent] == [
        "lifespan.startup.complete",
        "lifespan.shutdown.complete",
    ]
    assert router.frozen


@pytest.mark.asyncio
async def test_unsupported_scope_type() -> None:
    lifespan = _Lifespan()
    with pytest.raises(ValueError, match="unsupported ASGI scope type"):
        await Router()({"type": "websocket"}, lifespan.receive, lifespan.send)
