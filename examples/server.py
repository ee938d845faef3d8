# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "chainmux[server]",
# ]
#
# [tool.uv.sources]
# chainmux = { path = "../", editable = true }
# ///
"""RSGI server demo.

Fully functional web server using Granian + chainmux Router, with global,
path-scoped and nested-router middleware.
"""

import asyncio
import json
import logging
import sqlite3
import time

from granian.server.embed import Server

from chainmux import ROUTER_SKIP, Request, Response, Router
from chainmux.types import Handler, Proceed

ADDRESS = "127.0.0.1"
PORT = 8000

logger = logging.getLogger("server")

_db = sqlite3.connect(":memory:")
_db.cursor().executescript("""
CREATE TABLE IF NOT EXISTS user (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
INSERT INTO user (name) VALUES ('ada'), ('grace');
""")


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG)

    router = Router(final)
    router.use(timing)
    router.use("/user", require_token)
    router.use("/user", user_router(_db))
    router.get("/", home)
    print(router.pretty_print())  # noqa: T201

    server = Server(router, address=ADDRESS, port=PORT, log_access=True)
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass


def final(
    error: BaseException | None,
    request: Request,
    response: Response,
    proceed: Proceed | None = None,
) -> None:
    response.set_header("content-type", "text/plain")
    if error is not None:
        logger.error(
            "request failed: %s %s", request.method, request.url, exc_info=error
        )
        response.status_code = 500
        response.end("Internal server error")
        return
    response.status_code = 404
    response.end("Not found")


def timing(request: Request, response: Response, proceed: Proceed) -> None:
    start = time.perf_counter()
    response.on_finish(
        lambda res: logger.info(
            "%s %s -> %d in %.2fms",
            request.method,
            request.url,
            res.status_code,
            (time.perf_counter() - start) * 1000,
        )
    )
    proceed()


def require_token(request: Request, response: Response, proceed: Proceed) -> None:
    if request.headers.get("authorization") != "Bearer letmein":
        response.status_code = 401
        response.end("Unauthorized")
        return
    proceed()


def home(request: Request, response: Response, proceed: Proceed) -> None:
    response.set_header("content-type", "text/plain")
    response.end("Welcome home")


def user_router(db: sqlite3.Connection) -> Router:
    router = Router(final)
    router.get("/", get_users(db))
    router.get("/:id", skip_non_numeric, get_user(db))
    return router


def skip_non_numeric(request: Request, response: Response, proceed: Proceed) -> None:
    assert request.params is not None
    if not request.params["id"].isdigit():
        # give up on this router, the parent decides what happens next
        proceed(ROUTER_SKIP)
        return
    proceed()


# closure over handler to inject dependencies
def get_users(db: sqlite3.Connection) -> Handler:
    async def handler(request: Request, response: Response, proceed: Proceed) -> None:
        cur = db.cursor()
        cur.execute("SELECT * FROM user")
        result = cur.fetchall()
        response.set_header("content-type", "application/json")
        response.end(json.dumps([{"id": row[0], "name": row[1]} for row in result]))

    return handler


def get_user(db: sqlite3.Connection) -> Handler:
    async def handler(request: Request, response: Response, proceed: Proceed) -> None:
        assert request.params is not None
        cur = db.cursor()
        cur.execute("SELECT * FROM user WHERE id = ?", (int(request.params["id"]),))
        result = cur.fetchone()
        if result is None:
            proceed()  # fall through to the final handler's 404
            return
        response.set_header("content-type", "application/json")
        response.end(json.dumps({"id": result[0], "name": result[1]}))

    return handler


if __name__ == "__main__":
    asyncio.run(main())
