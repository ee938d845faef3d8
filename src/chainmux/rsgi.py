"""Structural types for the parts of the RSGI interface the router talks to.

Granian's own classes satisfy these protocols, so chainmux does not need to
import granian at runtime.
"""

from collections.abc import Iterator
from typing import Literal, Protocol


class Headers(Protocol):
    def __contains__(self, key: str) -> bool: ...
    def __getitem__(self, key: str) -> str: ...
    def get(self, key: str, default: str | None = None) -> str | None: ...
    def keys(self) -> Iterator[str]: ...
    def items(self) -> Iterator[tuple[str, str]]: ...


class HTTPScope(Protocol):
    proto: Literal["http"]
    http_version: Literal["1", "1.1", "2"]
    rsgi_version: str
    server: str
    client: str
    scheme: str
    method: str
    path: str
    query_string: str
    headers: Headers
    authority: str | None


class WebsocketScope(Protocol):
    proto: Literal["ws"]
    path: str
    query_string: str
    headers: Headers


class HTTPProtocol(Protocol):
    async def __call__(self) -> bytes: ...
    def response_empty(self, status: int, headers: list[tuple[str, str]]) -> None: ...
    def response_str(
        self, status: int, headers: list[tuple[str, str]], body: str
    ) -> None: ...
    def response_bytes(
        self, status: int, headers: list[tuple[str, str]], body: bytes
    ) -> None: ...
