import asyncio

import pytest
from conftest import MockHTTPProtocol, mock_scope

from chainmux.http import Request, Response


def test_request_from_scope() -> None:
    scope = mock_scope(
        "/user/1", "post", query_string="x=y", headers={"host": "example.com"}
    )
    request = Request.from_scope(scope)

    assert request.method == "POST"
    assert request.url == "/user/1?x=y"
    assert request.headers == {"host": "example.com"}
    assert request.scope is scope
    assert request.path is None
    assert request.params is None
    assert request.route is None


def test_request_from_scope_without_query() -> None:
    request = Request.from_scope(mock_scope("/user/1"))
    assert request.url == "/user/1"


def test_request_accepts_extra_attributes() -> None:
    request = Request("get", "/")
    request.user = "kiko"  # type: ignore[attr-defined]
    assert request.user == "kiko"  # type: ignore[attr-defined]
    assert repr(request) == "<Request GET />"


def test_response_end_str() -> None:
    proto = MockHTTPProtocol()
    response = Response(proto)
    response.status_code = 201
    response.set_header("content-type", "text/plain")
    response.end("created")

    assert proto.response_status == 201
    assert proto.response_headers == [("content-type", "text/plain")]
    assert proto.text == "created"
    assert response.finished


def test_response_end_bytes_and_empty() -> None:
    proto = MockHTTPProtocol()
    Response(proto).end(b"\x00\x01")
    assert proto.response_body == b"\x00\x01"

    proto = MockHTTPProtocol()
    Response(proto).end()
    assert proto.response_status == 200
    assert proto.response_body == b""


def test_response_head_sends_no_body() -> None:
    proto = MockHTTPProtocol()
    Response(proto, method="head").end("ignored")
    assert proto.response_body == b""


def test_response_end_twice() -> None:
    proto = MockHTTPProtocol()
    response = Response(proto)
    response.end("one")
    with pytest.raises(RuntimeError, match="response has already been sent"):
        response.end("two")
    assert proto.calls == 1
    assert proto.text == "one"


def test_response_headers_are_case_insensitive() -> None:
    response = Response(MockHTTPProtocol())
    response.set_header("Content-Type", "text/plain")
    response.set_header("content-type", "text/html")

    assert response.headers == [("content-type", "text/html")]
    assert response.get_header("CONTENT-TYPE") == "text/html"
    assert response.get_header("x-missing") is None


def test_response_on_finish() -> None:
    seen: list[int] = []
    response = Response(MockHTTPProtocol())
    response.on_finish(lambda res: seen.append(res.status_code))
    response.status_code = 204

    assert seen == []
    response.end()
    assert seen == [204]


@pytest.mark.asyncio
async def test_response_wait() -> None:
    response = Response(MockHTTPProtocol())
    waiter = asyncio.create_task(response.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    asyncio.get_running_loop().call_soon(response.end, "done")
    await asyncio.wait_for(waiter, timeout=1)
    assert repr(response) == "<Response 200 finished>"
