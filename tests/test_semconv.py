import base64

import pytest

from ctxware.semconv import (
    has_basic_auth,
    network_protocol_attributes,
    server_metric_attributes,
    server_trace_attributes,
)
from ctxware.web import App, Ctx, make_request


def _ctx(target="/user/123", headers=None):
    return Ctx(App(), make_request("GET", target, headers))


def test_has_basic_auth_valid():
    encoded = base64.b64encode(b"user:password").decode()
    assert has_basic_auth("Basic " + encoded) == "user"


@pytest.mark.parametrize("auth", ["Bas", "Basic token", ""])
def test_has_basic_auth_invalid(auth):
    assert has_basic_auth(auth) is None


def test_has_basic_auth_without_colon():
    encoded = base64.b64encode(b"placeholder").decode()
    assert has_basic_auth("Basic " + encoded) is None


def test_network_protocol_attributes():
    ctx = _ctx()
    assert network_protocol_attributes(ctx) == [
        ("network.protocol.name", "http"),
        ("network.protocol.version", "1.1"),
    ]
    ctx.request.http11 = False
    assert network_protocol_attributes(ctx)[1] == ("network.protocol.version", "1.0")


def test_metric_attributes():
    ctx = _ctx("/foo")
    attrs = server_metric_attributes(ctx, 8080)
    assert set(attrs) == {
        ("network.protocol.name", "http"),
        ("network.protocol.version", "1.1"),
        ("url.scheme", "http"),
        ("http.request.method", "GET"),
        ("server.address", "example.com"),
        ("server.port", 8080),
    }


def test_custom_metric_attributes():
    ctx = _ctx("/foo?foo=bar")
    attrs = server_metric_attributes(
        ctx, 8080, lambda c: [("url.query", c.request.encoded_query)]
    )
    assert attrs[-1] == ("url.query", "foo=bar")
    assert ("server.port", 8080) in attrs


def test_trace_attributes():
    attrs = server_trace_attributes(_ctx())
    assert ("server.address", "example.com") in attrs
    assert ("http.request.method", "GET") in attrs
    assert ("url.path", "/user/123") in attrs
    assert all(key != "net.host.port" for key, _ in attrs)


def test_trace_custom_attributes():
    ctx = _ctx("/user/123?foo=bar")
    attrs = server_trace_attributes(
        ctx, custom_attributes=lambda c: [("http.query_params", c.request.encoded_query)]
    )
    assert ("url.query", "foo=bar") in attrs
    assert ("http.query_params", "foo=bar") in attrs


@pytest.mark.parametrize("enabled", [True, False])
def test_collect_client_ip(enabled):
    attrs = server_trace_attributes(_ctx("/foo"), collect_client_ip=enabled)
    assert (("client.address", "0.0.0.0") in attrs) is enabled


def test_trace_enduser_from_basic_auth():
    encoded = base64.b64encode(b"user:password").decode()
    attrs = server_trace_attributes(_ctx(headers={"Authorization": "Basic " + encoded}))
    assert ("enduser.id", "user") in attrs