import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from chainmux import Request, Response, Router
from chainmux.types import Proceed


@dataclass
class MockHTTPScope:
    proto: Literal["http"] = "http"
    http_version: Literal["1", "1.1", "2"] = "1.1"
    rsgi_version: str = "1.0"
    server: str = "localhost"
    client: str = "127.0.0.1"
    scheme: str = "http"
    method: str = "GET"
    path: str = "/"
    query_string: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    authority: str | None = None


class MockHTTPProtocol:
    """Mock protocol that captures response data."""

    def __init__(self) -> None:
        self.response_status: int | None = None
        self.response_headers: list[tuple[str, str]] | None = None
        self.response_body: bytes | None = None
        self.calls = 0

    async def __call__(self) -> bytes:
        raise NotImplementedError

    def response_empty(self, status: int, headers: list[tuple[str, str]]) -> None:
        self.calls += 1
        self.response_status = status
        self.response_headers = headers
        self.response_body = b""

    def response_str(
        self, status: int, headers: list[tuple[str, str]], body: str
    ) -> None:
        self.calls += 1
        self.response_status = status
        self.response_headers = headers
        self.response_body = body.encode("utf-8")

    def response_bytes(
        self, status: int, headers: list[tuple[str, str]], body: bytes
    ) -> None:
        self.calls += 1
        self.response_status = status
        self.response_headers = headers
        self.response_body = body

    @property
    def text(self) -> str:
        assert self.response_body is not None
        return self.response_body.decode("utf-8")


def mock_scope(
    path: str = "/",
    method: str = "GET",
    query_string: str = "",
    headers: dict[str, str] | None = None,
    client: str = "127.0.0.1",
) -> MockHTTPScope:
    return MockHTTPScope(
        path=path,
        method=method,
        query_string=query_string,
        headers=headers or {},
        client=client,
    )


def final(
    error: BaseException | None,
    request: Request,
    response: Response,
    proceed: Proceed | None = None,
) -> None:
    """500 with the error message, or 404."""
    response.status_code = 500 if error is not None else 404
    response.end(str(error) if error is not None else "Not Found")


async def send(
    router: Router,
    url: str = "/",
    method: str = "GET",
    *,
    headers: dict[str, str] | None = None,
    request: Request | None = None,
) -> MockHTTPProtocol:
    """Dispatch one request through router and wait for the response."""
    proto = MockHTTPProtocol()
    if request is None:
        request = Request(method, url, headers)
    response = Response(proto, method=request.method)
    router(request, response)
    await asyncio.wait_for(response.wait(), timeout=5)
    return proto
