import asyncio

import httpx
import pytest

from programs.survey_plan.errors import EndpointNotFound, MalformedResponse, RemoteError
from programs.survey_plan.fetch import (
    Abort,
    Accept,
    ResilientFetchClient,
    TryNext,
    candidate_urls,
    classify,
    toggle_mount_prefix,
)


def test_candidate_urls_fixed_order_and_dedup():
    assert candidate_urls("http://h:8000", "/api/x", "/anomaly") == [
        "http://h:8000/api/x",
        "http://h:8000/api/x/",
        "http://h:8000/anomaly/api/x",
        "http://h:8000/anomaly/api/x/",
    ]
    assert candidate_urls("http://h:8000/anomaly/", "api/x/", "/anomaly") == [
        "http://h:8000/anomaly/api/x",
        "http://h:8000/anomaly/api/x/",
        "http://h:8000/api/x",
        "http://h:8000/api/x/",
    ]


def test_toggle_mount_prefix():
    assert toggle_mount_prefix("http://h/anomaly", "/anomaly") == "http://h"
    assert toggle_mount_prefix("http://h", "anomaly") == "http://h/anomaly"
    assert toggle_mount_prefix("/anomaly", "/anomaly") == "http://127.0.0.1:8000"
    assert toggle_mount_prefix("http://h/", "") == "http://h"


def test_classify():
    assert classify(404, "nope") == TryNext(status=404)
    assert classify(200, "") == Accept(body=None)
    assert classify(201, '{"a": 1}') == Accept(body={"a": 1})

    aborted = classify(500, "boom", url="http://h/x")
    assert isinstance(aborted, Abort)
    assert isinstance(aborted.error, RemoteError)
    assert aborted.error.status == 500
    assert aborted.error.body == "boom"

    bad = classify(200, "<html>", url="http://h/x")
    assert isinstance(bad, Abort)
    assert isinstance(bad.error, MalformedResponse)
    assert bad.error.received_snippet == "<html>"


def _client(handler, base="http://h"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResilientFetchClient(base, http=http, mount_prefix="/anomaly")


def test_three_404_then_success_returns_fourth_body():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if len(seen) < 4:
            return httpx.Response(404)
        return httpx.Response(200, json={"ok": True, "n": len(seen)})

    body = asyncio.run(_client(handler).request("GET", "/api/x"))
    assert body == {"ok": True, "n": 4}
    assert seen == [
        "http://h/api/x",
        "http://h/api/x/",
        "http://h/anomaly/api/x",
        "http://h/anomaly/api/x/",
    ]


def test_first_500_fails_immediately():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(500, text="server exploded")

    with pytest.raises(RemoteError) as ei:
        asyncio.run(_client(handler).request("POST", "/api/x", body={"a": 1}))
    assert ei.value.status == 500
    assert "server exploded" in ei.value.body
    assert len(seen) == 1


def test_all_404_raises_endpoint_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with pytest.raises(EndpointNotFound) as ei:
        asyncio.run(_client(handler).request("GET", "/api/x"))
    assert len(ei.value.tried_urls) == 4


def test_network_failure_is_remote_error_without_status():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteError) as ei:
        asyncio.run(_client(handler).request("GET", "/api/x"))
    assert ei.value.status is None
    assert ei.value.is_network_failure
    assert "Network failure" in str(ei.value)


def test_timeout_is_remote_error_without_status():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(RemoteError) as ei:
        asyncio.run(_client(handler).request("GET", "/api/x"))
    assert ei.value.status is None


def test_body_and_params_are_sent():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["query"] = request.url.params.get("auto_fix")
        captured["body"] = request.content
        return httpx.Response(200, text="")

    out = asyncio.run(_client(handler).request("POST", "/api/x", body={"k": "v"}, params={"auto_fix": "true"}))
    assert out is None
    assert captured["query"] == "true"
    assert b'"k"' in captured["body"]


def test_undecodable_body_is_remote_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.DecodingError("bad gzip stream", request=request)

    with pytest.raises(RemoteError) as ei:
        asyncio.run(_client(handler).request("GET", "/api/x"))
    assert ei.value.status is None
