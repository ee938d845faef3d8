"""Global and path-scoped middleware."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .url import ensure_leading_slash

if TYPE_CHECKING:
    from .http import Request, Response
    from .types import Handler, Proceed

logger = logging.getLogger(__name__)


def present(handlers: Iterable[Handler | None | bool]) -> tuple[Handler, ...]:
    """Drop `None` and `False` so handlers can be registered conditionally:

        router.use(auth if settings.auth else None, log_requests)
    """
    return tuple(h for h in handlers if h is not None and h is not False)


def rebase(prefix: str) -> Handler:
    """Create the handler that strips `prefix` from the request url and path."""
    cut = len(prefix)

    def rebase_handler(
        request: Request, _response: Response, proceed: Proceed
    ) -> None:
        request.url = request.url[cut:] or "/"
        request.path = (request.path or "")[cut:] or "/"
        proceed()

    rebase_handler.__qualname__ = f"rebase({prefix!r})"
    return rebase_handler


class MiddlewareRegistry:
    """Append-only middleware lists, read by reference at dispatch time.

    Lists are stored as tuples and replaced on every registration, so a chain
    being assembled for a request never sees a list change underneath it.
    """

    __slots__ = ("_global", "_scoped")

    def __init__(self) -> None:
        self._global: tuple[Handler, ...] = ()
        self._scoped: dict[str, tuple[Handler, ...]] = {}

    @property
    def global_handlers(self) -> tuple[Handler, ...]:
        return self._global

    @property
    def prefixes(self) -> tuple[str, ...]:
        return tuple(self._scoped)

    def scoped(self, segment: str) -> tuple[Handler, ...]:
        return self._scoped.get(segment, ())

    def register_global(self, *handlers: Handler | None | bool) -> None:
        self._global += present(handlers)

    def register_scoped(self, prefix: str, *handlers: Handler | None | bool) -> None:
        prefix = ensure_leading_slash(prefix)
        if prefix == "/":
            self.register_global(*handlers)
            return
        fns = present(handlers)
        if not fns:
            return
        existing = self._scoped.get(prefix)
        if existing is None:
            logger.debug("created middleware scope %s", prefix)
            existing = (rebase(prefix),)
        self._scoped[prefix] = existing + fns
