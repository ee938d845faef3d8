"""HTTP request dispatcher composing middleware and route handlers into one chain.

Every request runs through

    global middleware > middleware scoped to its first path segment > route handlers

in that order, whatever order they were registered in. Each handler receives
`(request, response, proceed)` and either ends the response, calls `proceed()`
to run the next handler, `proceed(error)` to jump to the final handler, or
`proceed(ROUTER_SKIP)` to give the request back to an enclosing router.

A Router is itself a handler, so routers nest:

    api = Router(final)
    api.get("/users/:id", get_user)

    app = Router(final)
    app.use(log_requests)
    app.use("/api", api)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Final, Self

from .http import Request, Response
from .registry import MiddlewareRegistry, present
from .tree import RouteTable
from .types import ROUTER_SKIP, FinalHandler, Handler, HTTPMethod, Proceed, Signal
from .url import first_path_segment, parse_url

if TYPE_CHECKING:
    from .rsgi import HTTPProtocol, HTTPScope, WebsocketScope

logger = logging.getLogger(__name__)

HTTP_METHODS: Final[tuple[HTTPMethod, ...]] = (
    "GET",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "HEAD",
    "OPTIONS",
    "TRACE",
    "CONNECT",
)

# Consecutive synchronous `proceed()` calls before the loop yields to the event
# loop, bounding stack depth on long synchronous chains.
SYNC_ITERATION_LIMIT: Final = 100

type HandlerArg = (
    Handler | list[Handler | None] | tuple[Handler | None, ...] | None | bool
)


class Router:
    __slots__ = ("_final_handler", "_middleware", "_table")

    def __init__(
        self,
        final_handler: FinalHandler,
        *,
        case_sensitive: bool = True,
        ignore_trailing_slash: bool = False,
    ) -> None:
        if not callable(final_handler):
            msg = "a final handler is required"
            raise TypeError(msg)
        self._final_handler = final_handler
        self._table: RouteTable[tuple[Handler, ...]] = RouteTable(
            case_sensitive=case_sensitive, ignore_trailing_slash=ignore_trailing_slash
        )
        self._middleware = MiddlewareRegistry()

    # --- dispatch -------------------------------------------------------------
    def __call__(
        self, request: Request, response: Response, proceed: Proceed | None = None
    ) -> None:
        """Dispatch one request. `proceed` is set when running inside another router."""
        url = parse_url(request.url)
        request.path = url.path
        if request.query is None:
            request.query = url.query
        if request.search is None:
            request.search = url.search

        constraints = (
            _constraints(request.headers) if self._table.has_constraints else None
        )
        match = self._table.find(request.method, url.path, constraints)
        if match is None and request.method == "HEAD":
            match = self._table.find("GET", url.path, constraints)

        if match is not None:
            request.params = (
                {**request.params, **match.params}
                if request.params is not None
                else match.params
            )
            request.route = match.route
            route_handlers = match.handler
        else:
            if request.params is None:
                request.params = {}
            route_handlers = ()

        chain = (
            self._middleware.global_handlers
            + self._middleware.scoped(first_path_segment(url.path))
            + route_handlers
        )
        _Execution(chain, request, response, self._final_handler, proceed).run()

    async def __rsgi__(
        self, scope: HTTPScope | WebsocketScope, proto: HTTPProtocol
    ) -> None:
        """RSGI entrypoint, so the router can be served directly by Granian."""
        if scope.proto != "http":
            logger.warning("unsupported RSGI scope %r for %s", scope.proto, scope.path)
            return
        request = Request.from_scope(scope)
        response = Response(proto, method=request.method)
        self(request, response)
        await response.wait()

    # --- registration ---------------------------------------------------------
    def use(self, prefix: str | HandlerArg = "/", *handlers: HandlerArg) -> Self:
        """Adds middleware for every request, or for requests under `prefix`.

        router.use(handler_a, handler_b)       # every request
        router.use("/admin", auth, admin_app)  # requests under /admin

        Scoped middleware sees the request url and path with `prefix` removed.
        """
        if isinstance(prefix, str):
            self._middleware.register_scoped(prefix, *_flatten(handlers))
        else:
            self._middleware.register_global(*_flatten((prefix, *handlers)))
        return self

    def method(
        self,
        method: HTTPMethod | None,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for method, or every method if method is None."""
        fns = _flatten(handlers)
        if not fns:
            return self
        methods = HTTP_METHODS if method is None else (method,)
        self._table.on(methods, path, fns, constraints)
        for m in methods:
            logger.debug("registered %s %s (%d handlers)", m, path, len(fns))
        return self

    def all(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for every HTTP method.

        If any method is already taken at path nothing is registered.
        """
        return self.method(None, path, *handlers, constraints=constraints)

    def connect(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for CONNECT."""
        return self.method("CONNECT", path, *handlers, constraints=constraints)

    def delete(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for DELETE."""
        return self.method("DELETE", path, *handlers, constraints=constraints)

    def get(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for GET. HEAD requests fall back to these."""
        return self.method("GET", path, *handlers, constraints=constraints)

    def head(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for HEAD."""
        return self.method("HEAD", path, *handlers, constraints=constraints)

    def options(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for OPTIONS."""
        return self.method("OPTIONS", path, *handlers, constraints=constraints)

    def patch(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for PATCH."""
        return self.method("PATCH", path, *handlers, constraints=constraints)

    def post(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for POST."""
        return self.method("POST", path, *handlers, constraints=constraints)

    def put(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for PUT."""
        return self.method("PUT", path, *handlers, constraints=constraints)

    def trace(
        self,
        path: str,
        *handlers: HandlerArg,
        constraints: Mapping[str, str] | None = None,
    ) -> Self:
        """Registers handlers at path for TRACE."""
        return self.method("TRACE", path, *handlers, constraints=constraints)

    # --- introspection --------------------------------------------------------
    @property
    def routes(self) -> list[tuple[str, str]]:
        """Registered (method, path) pairs, in registration order."""
        return [(r.method, r.path) for r in self._table.routes]

    def pretty_print(self) -> str:
        return self._table.pretty_print()


class _Execution:
    """Cursor over one request's chain; lives until the chain ends."""

    __slots__ = (
        "chain",
        "final_handler",
        "index",
        "outer",
        "request",
        "response",
        "sync_count",
        "tasks",
    )

    def __init__(
        self,
        chain: tuple[Handler, ...],
        request: Request,
        response: Response,
        final_handler: FinalHandler,
        outer: Proceed | None,
    ) -> None:
        self.chain = chain
        self.request = request
        self.response = response
        self.final_handler = final_handler
        self.outer = outer
        self.index = 0
        self.sync_count = 0
        self.tasks: set[asyncio.Future[None]] = set()

    def run(self) -> None:
        if self.index < len(self.chain):
            if self.response.finished:
                return
            handler = self.chain[self.index]
            self.index += 1
            try:
                result = handler(self.request, self.response, self.proceed)
                if result is not None and inspect.isawaitable(result):
                    self._watch(result, self._handler_settled)
            except Exception as e:
                self.proceed(e)
            return

        if self.response.finished:
            return
        if self.outer is not None:
            self.outer()
            return
        self._finish(None, self.proceed)

    def proceed(self, error: BaseException | Signal | None = None, /) -> None:
        if error is ROUTER_SKIP:
            if self.outer is not None:
                self.outer()
                return
            # top level: an explicit skip is indistinguishable from "not found"
            self.index = len(self.chain)
            error = None
        if error is not None:
            self._finish(error, self.outer)  # type: ignore[arg-type]
            return
        self.sync_count += 1
        if self.sync_count > SYNC_ITERATION_LIMIT:
            self.sync_count = 0
            asyncio.get_running_loop().call_soon(self.run)
            return
        self.run()

    def _finish(self, error: BaseException | None, proceed: Proceed | None) -> None:
        if error is not None:
            self.request.error = error
        try:
            result = self.final_handler(error, self.request, self.response, proceed)
            if result is not None and inspect.isawaitable(result):
                self._watch(result, self._final_settled)
        except Exception:
            logger.exception(
                "final handler failed for %s %s", self.request.method, self.request.url
            )
            self._abort()

    def _watch(
        self,
        awaitable: Awaitable[None],
        callback: Callable[[asyncio.Future[None]], None],
    ) -> None:
        task = asyncio.ensure_future(awaitable)
        self.tasks.add(task)  # keep a strong reference until it settles
        task.add_done_callback(callback)

    def _handler_settled(self, task: asyncio.Future[None]) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            self.proceed(asyncio.CancelledError())
            return
        error = task.exception()
        if error is not None:
            self.proceed(error)

    def _final_settled(self, task: asyncio.Future[None]) -> None:
        self.tasks.discard(task)
        error = asyncio.CancelledError() if task.cancelled() else task.exception()
        if error is not None:
            logger.error(
                "final handler failed for %s %s",
                self.request.method,
                self.request.url,
                exc_info=error,
            )
            self._abort()

    def _abort(self) -> None:
        if not self.response.finished:
            self.response.status_code = 500
            self.response.headers = [("content-type", "text/plain")]
            self.response.end("Internal Server Error")


def _constraints(headers: Mapping[str, str]) -> dict[str, str]:
    """Derive route constraints from request headers."""
    constraints: dict[str, str] = {}
    host = headers.get("host")
    if host is not None:
        constraints["host"] = host
    version = headers.get("accept-version")
    if version is not None:
        constraints["version"] = version
    return constraints


def _flatten(handlers: tuple[HandlerArg, ...]) -> tuple[Handler, ...]:
    """Flatten one level of list/tuple nesting and drop absent handlers."""
    flat: list[Handler | None | bool] = []
    for h in handlers:
        if isinstance(h, (list, tuple)):
            flat.extend(h)
        else:
            flat.append(h)
    return present(flat)
