from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Final, Literal, Protocol

if TYPE_CHECKING:
    from .http import Request, Response


class Signal(Enum):
    """Control-flow values a handler may pass to `proceed` instead of an error."""

    SKIP = "router"  # Abandon this router's chain and resume the enclosing one.

    def __repr__(self) -> str:
        return f"{type(self).__name__}.{self.name}"


ROUTER_SKIP: Final = Signal.SKIP


class Proceed(Protocol):
    """Continuation passed to every handler.

    proceed()            run the next handler in the chain
    proceed(error)       hand `error` to the final handler
    proceed(ROUTER_SKIP) defer the request to the enclosing router
    """

    def __call__(self, error: BaseException | Signal | None = None, /) -> None: ...


type Handler = Callable[[Request, Response, Proceed], Awaitable[None] | None]
type FinalHandler = Callable[
    [BaseException | None, Request, Response, Proceed | None], Awaitable[None] | None
]
type HTTPMethod = Literal[
    "CONNECT", "DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT", "TRACE"
]
