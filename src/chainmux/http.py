"""Request and response objects handed to every handler in a chain."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .rsgi import HTTPProtocol, HTTPScope


class Request:
    """A single HTTP request as seen by the dispatch engine.

    `url` is the raw request target ("/user/1?x=y"). `path`, `query` and
    `search` are filled in by the router at dispatch time; a value already set
    for `query` or `search` is kept. `error` is set when the chain hands an
    error to a final handler. Middleware may attach any other attribute.
    """

    def __init__(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        *,
        params: dict[str, str] | None = None,
        query: str | None = None,
        search: str | None = None,
        scope: HTTPScope | None = None,
    ) -> None:
        self.method = method.upper()
        self.url = url
        self.headers: Mapping[str, str] = headers if headers is not None else {}
        self.path: str | None = None
        self.params = params
        self.query = query
        self.search = search
        self.route: str | None = None  # matched route pattern, e.g. "/user/:id"
        self.error: BaseException | None = None  # last error sent to a final handler
        self.scope = scope

    @classmethod
    def from_scope(cls, scope: HTTPScope) -> Request:
        url = f"{scope.path}?{scope.query_string}" if scope.query_string else scope.path
        return cls(scope.method, url, scope.headers, scope=scope)

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url}>"


class Response:
    """Buffered response written through an RSGI HTTP protocol exactly once."""

    __slots__ = (
        "_callbacks",
        "_done",
        "_finished",
        "_proto",
        "headers",
        "method",
        "status_code",
    )

    def __init__(self, proto: HTTPProtocol, *, method: str = "GET") -> None:
        self._proto = proto
        self.method = method.upper()
        self.status_code = 200
        self.headers: list[tuple[str, str]] = []
        self._finished = False
        self._done = asyncio.Event()
        self._callbacks: list[Callable[[Response], Any]] = []

    @property
    def finished(self) -> bool:
        """True once `end` has been called; the chain stops at this point."""
        return self._finished

    def get_header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def set_header(self, name: str, value: str) -> None:
        lowered = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lowered]
        self.headers.append((name, value))

    def on_finish(self, callback: Callable[[Response], Any]) -> None:
        self._callbacks.append(callback)

    def end(self, body: str | bytes | None = None) -> None:
        if self._finished:
            msg = "response has already been sent"
            raise RuntimeError(msg)
        self._finished = True
        try:
            if body is None or self.method == "HEAD":
                self._proto.response_empty(self.status_code, self.headers)
            elif isinstance(body, str):
                self._proto.response_str(self.status_code, self.headers, body)
            else:
                self._proto.response_bytes(self.status_code, self.headers, body)
        finally:
            self._done.set()
            for callback in self._callbacks:
                callback(self)

    async def wait(self) -> None:
        """Block until the response has been sent."""
        await self._done.wait()

    def __repr__(self) -> str:
        state = "finished" if self._finished else "open"
        return f"<Response {self.status_code} {state}>"
