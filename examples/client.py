# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "chainmux",
# ]
#
# [tool.uv.sources]
# chainmux = { path = "../", editable = true }
# ///
"""fetch() and APIClient demo.

Runs against a chainmux Router in-process through httpx's ASGI transport, so
no server is needed. Pass a real URL to fetch() to go over the network.
"""

import asyncio
import logging
import sys

import httpx

from chainmux import AbortError, APIClient, Request, Response, Router, fetch


async def slow(req: Request, res: Response) -> None:
    await asyncio.sleep(1)
    await res.send("finally")


async def echo(req: Request, res: Response) -> None:
    await res.status(201).send(req.raw_body)


router = Router().get("/slow", slow).post("/echo", echo)
transport = httpx.ASGITransport(app=router)


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG)

    response = await fetch(
        "http://app.local/echo",
        method="POST",
        body={"hello": "world"},
        transport=transport,
    )
    print(response, await response.json(), file=sys.stderr)

    try:
        await fetch("http://app.local/slow", timeout=0.2, transport=transport)
    except AbortError as e:
        print(f"GET /slow: {e}", file=sys.stderr)

    api = APIClient(
        "http://app.local/", {"Authorization": "Bearer demo"}, transport=transport
    )
    response = await api.post("echo", "raw text")
    print(response.status, response.status_text, await response.text(), file=sys.stderr)


if __name__ == "__main__":
    asyncio.run(main())
