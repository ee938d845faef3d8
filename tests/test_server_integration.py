"""Integration test: router served by a real granian server."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import pytest
from conftest import final
from granian.server.embed import Server

from chainmux import Request, Response, Router
from chainmux.types import Proceed


def _get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@asynccontextmanager
async def run_server(router: Router) -> AsyncIterator[int]:
    """Start a granian embedded server, yield the port, then clean up."""
    port = _get_free_port()
    server = Server(router, address="127.0.0.1", port=port)
    task = asyncio.create_task(server.serve())

    # Wait for TCP readiness
    for _ in range(100):
        try:
            _, w = await asyncio.open_connection("127.0.0.1", port)
            w.close()
            await w.wait_closed()
            break
        except (ConnectionRefusedError, OSError):
            await asyncio.sleep(0.1)
    else:
        task.cancel()
        pytest.fail("Server did not start within 10s")

    try:
        yield port
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@pytest.mark.asyncio
async def test_router_served_by_granian() -> None:
    def powered_by(request: Request, response: Response, proceed: Proceed) -> None:
        response.set_header("x-powered-by", "chainmux")
        proceed()

    async def greet(request: Request, response: Response, proceed: Proceed) -> None:
        await asyncio.sleep(0.01)
        assert request.params is not None
        response.set_header("content-type", "text/plain")
        response.end(f"hello {request.params['name']} ({request.query})")

    def fail(request: Request, response: Response, proceed: Proceed) -> None:
        proceed(ValueError("bad input"))

    api = Router(final)
    api.get("/status", lambda req, res, _: res.end(f"api {req.url}"))

    router = Router(final)
    router.use(powered_by)
    router.use("/api", api)
    router.get("/greetings/:name", greet)
    router.post("/fail", fail)

    async with (
        run_server(router) as port,
        httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client,
    ):
        greeting = await client.get("/greetings/kiko?lang=en")
        nested = await client.get("/api/status")
        failed = await client.post("/fail")
        missing = await client.get("/nope")

    assert greeting.status_code == 200
    assert greeting.text == "hello kiko (lang=en)"
    assert greeting.headers["x-powered-by"] == "chainmux"
    assert nested.text == "api /status"
    assert failed.status_code == 500
    assert failed.text == "bad input"
    assert missing.status_code == 404
    assert missing.headers["x-powered-by"] == "chainmux"
