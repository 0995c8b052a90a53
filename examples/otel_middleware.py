# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "chainmux[otel,server]",
#     "opentelemetry-sdk>=1.39.1,<2.0.0",
# ]
#
# [tool.uv.sources]
# chainmux = { path = "../", editable = true }
# ///
"""OpenTelemetry tracing middleware demo.

Shows usage of otel middleware with an in-memory exporter so traces can be
printed to the console without needing an external collector.
"""

import asyncio
import logging
import sys

import uvloop
from granian.constants import Interfaces
from granian.server.embed import Server
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from chainmux import APIClient, Request, Response, Router
from chainmux.middleware.otel import otel

ADDRESS = "127.0.0.1"
PORT = 8000


# --- handlers ---
async def hello(req: Request, res: Response) -> None:
    await res.send("hello world")


async def greet(req: Request, res: Response) -> None:
    await res.send(f"hello {req.params['name']}")


async def boom(req: Request, res: Response) -> None:
    msg = "something broke"
    raise RuntimeError(msg)


# --- app setup ---
exporter = InMemorySpanExporter()
provider = TracerProvider()
provider.add_span_processor(SimpleSpanProcessor(exporter))

router = Router()
# registered first so the span covers the whole chain, 404s included
router.use(otel(tracer_provider=provider))
router.get("/", hello)
router.get("/greet/:name", greet)
router.get("/boom", boom)


# --- run ---
async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    task = asyncio.create_task(serve())
    await asyncio.sleep(0.1)
    await requests()
    provider.shutdown()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def serve() -> None:
    server = Server(
        router, address=ADDRESS, port=PORT, interface=Interfaces.ASGI, log_access=True
    )
    try:
        await server.serve()
    except asyncio.CancelledError:
        await server.shutdown()


async def requests() -> None:
    api = APIClient(f"http://{ADDRESS}:{PORT}/", timeout=5)
    for path in ["/", "/greet/world", "/greet/chainmux", "/nonexistent", "/boom"]:
        print(f"--- GET {path} ---", file=sys.stderr)
        async with await api.get(path) as response:
            await response.read()

    print("--- Collected spans ---", file=sys.stderr)
    for span in exporter.get_finished_spans():
        attrs = span.attributes or {}
        print(
            f"  {span.name:<30} "
            f"status={attrs['http.response.status_code']:<4} "
            f"route={attrs.get('http.route', ''):<20} "  # not set on 404
            f"path={attrs['url.path']}",
            file=sys.stderr,
        )


if __name__ == "__main__":
    uvloop.run(main())
