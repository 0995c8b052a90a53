# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "chainmux[server]",
# ]
#
# [tool.uv.sources]
# chainmux = { path = "../", editable = true }
# ///
"""ASGI server demo.

Fully functional web server using Granian + chainmux Router.
"""

import asyncio
import logging
import sqlite3
import time

from granian.constants import Interfaces
from granian.server.embed import Server

from chainmux import HTTPError, Request, Response, Router
from chainmux.middleware.body_parser import body_parser

ADDRESS = "127.0.0.1"
PORT = 8000

logger = logging.getLogger("server")

_db = sqlite3.connect(":memory:")
_db.cursor().executescript("""
CREATE TABLE IF NOT EXISTS user (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
""")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    router = Router()
    router.use(access_log, body_parser())
    router.get("/", home)
    router.get("/user", get_users(_db))
    router.post("/user", require_name, create_user(_db))
    router.get("/user/:id", load_user(_db), get_user)
    router.patch("/user/:id", load_user(_db), require_name, update_user(_db))
    logger.info("routes:\n%s", router.format_routes())

    server = Server(
        router,
        address=ADDRESS,
        port=PORT,
        interface=Interfaces.ASGI,
        log_access=False,
    )
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass


async def access_log(req: Request, res: Response, next) -> None:
    start = time.perf_counter()
    await next()
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", req.method, req.url, res.status_code, elapsed)


async def home(req: Request, res: Response) -> None:
    await res.send("Welcome home")


async def require_name(req: Request, res: Response, next) -> None:
    if not isinstance(req.body, dict) or "name" not in req.body:
        msg = "Missing name"
        raise HTTPError(msg, 422)
    await next()


# closures over handlers to inject dependencies
def get_users(db: sqlite3.Connection):
    async def handler(req: Request, res: Response) -> None:
        rows = db.execute("SELECT * FROM user").fetchall()
        await res.json([{"id": row[0], "name": row[1]} for row in rows])

    return handler


def load_user(db: sqlite3.Connection):
    async def handler(req: Request, res: Response, next) -> None:
        try:
            user_id = int(req.params["id"])
        except ValueError:
            await res.status(404).send("Not found")
            return
        row = db.execute("SELECT * FROM user WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            await res.status(404).send("Not found")
            return
        req.state["user"] = {"id": row[0], "name": row[1]}
        await next()

    return handler


async def get_user(req: Request, res: Response) -> None:
    await res.json(req.state["user"])


def create_user(db: sqlite3.Connection):
    async def handler(req: Request, res: Response) -> None:
        row = db.execute(
            "INSERT INTO user (name) VALUES (?) RETURNING *", (req.body["name"],)
        ).fetchone()
        await res.status(201).json({"id": row[0], "name": row[1]})

    return handler


def update_user(db: sqlite3.Connection):
    async def handler(req: Request, res: Response) -> None:
        row = db.execute(
            "UPDATE user SET name = ? WHERE id = ? RETURNING *",
            (req.body["name"], req.state["user"]["id"]),
        ).fetchone()
        await res.json({"id": row[0], "name": row[1]})

    return handler


if __name__ == "__main__":
    asyncio.run(main())
