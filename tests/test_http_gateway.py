import json

import httpx
import pytest

from nodeflow.config import Settings
from nodeflow.services.http_gateway import (
    HttpGateway, HttpProxyRequest, normalize_url, parse_body, parse_headers
)


def make_gateway(handler) -> HttpGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpGateway(Settings(_env_file=None, user_agent="nodeflow-test"), client=client)


def test_normalize_url_adds_https():
    assert normalize_url("api.example.com/x") == "https://api.example.com/x"
    assert normalize_url("http://api.example.com") == "http://api.example.com"


def test_parse_headers_falls_back_to_empty():
    assert parse_headers('{"X-Token": "abc"}') == {"X-Token": "abc"}
    assert parse_headers("not json") == {}
    assert parse_headers("[1, 2]") == {}
    assert parse_headers({"n": 1}) == {"n": "1"}


def test_parse_body_prefers_json_and_skips_get():
    assert parse_body("POST", '{"a": 1}') == {"a": 1}
    assert parse_body("POST", "plain text") == "plain text"
    assert parse_body("GET", '{"a": 1}') is None


@pytest.mark.asyncio
async def test_missing_url_is_bad_request():
    gateway = make_gateway(lambda request: httpx.Response(200))
    response = await gateway.forward(HttpProxyRequest(url="  "))
    assert response.status_code == 400
    assert response.error == "URL is required"


@pytest.mark.asyncio
async def test_json_response_is_wrapped():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(201, json={"id": 7})

    gateway = make_gateway(handler)
    response = await gateway.forward(HttpProxyRequest(
        url="api.example.com/items", method="post", headers='{"X-Token": "abc"}', body='{"name": "x"}'
    ))

    assert response.ok
    assert response.payload["status"] == 201
    assert response.payload["statusText"] == "Created"
    assert response.payload["data"] == {"id": 7}
    assert seen["url"] == "https://api.example.com/items"
    assert seen["headers"]["x-token"] == "abc"
    assert seen["headers"]["user-agent"] == "nodeflow-test"
    assert json.loads(seen["body"]) == {"name": "x"}


@pytest.mark.asyncio
async def test_get_sends_no_body_and_returns_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content
        return httpx.Response(200, text="hello", headers={"content-type": "text/plain"})

    gateway = make_gateway(handler)
    response = await gateway.forward(HttpProxyRequest(url="https://example.com", body='{"a": 1}'))

    assert seen["body"] == b""
    assert response.payload["data"] == "hello"


@pytest.mark.asyncio
async def test_upstream_error_status_is_not_a_gateway_failure():
    gateway = make_gateway(lambda request: httpx.Response(404, json={"detail": "nope"}))
    response = await gateway.forward(HttpProxyRequest(url="https://example.com/missing"))

    assert response.status_code == 200
    assert response.payload["status"] == 404
    assert response.error is None


@pytest.mark.asyncio
async def test_transport_failure_becomes_500():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("getaddrinfo ENOTFOUND nowhere.invalid", request=request)

    gateway = make_gateway(handler)
    response = await gateway.forward(HttpProxyRequest(url="nowhere.invalid"))

    assert response.status_code == 500
    assert "ENOTFOUND" in response.error


@pytest.mark.asyncio
async def test_unencodable_header_value_becomes_500():
    gateway = make_gateway(lambda request: httpx.Response(200))
    response = await gateway.forward(HttpProxyRequest(url="example.com", headers='{"X-Name": "José"}'))

    assert response.status_code == 500
    assert "ascii" in response.error
