"""Semantic-convention attributes describing an HTTP server request."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Callable, Optional

from ctxware.web import Ctx

Attribute = tuple[str, Any]
AttributeFunc = Callable[[Ctx], list[Attribute]]

HTTP_PROTOCOL_NAME: Attribute = ("network.protocol.name", "http")
HTTP11_VERSION: Attribute = ("network.protocol.version", "1.1")
HTTP10_VERSION: Attribute = ("network.protocol.version", "1.0")
NET_TRANSPORT_TCP: Attribute = ("net.transport", "ip_tcp")


def has_basic_auth(auth: str) -> Optional[str]:
    """Return the user name from a Basic Authorization value, or None."""
    if not auth.startswith("Basic "):
        return None
    try:
        raw = base64.b64decode(auth[6:], validate=True)
    except (binascii.Error, ValueError):
        return None
    creds = raw.decode("utf-8", errors="replace")
    username, sep, _ = creds.partition(":")
    return username if sep else None


def network_protocol_attributes(ctx: Ctx) -> list[Attribute]:
    version = HTTP11_VERSION if ctx.request.http11 else HTTP10_VERSION
    return [HTTP_PROTOCOL_NAME, version]


def server_metric_attributes(
    ctx: Ctx,
    port: Optional[int] = None,
    custom_attributes: Optional[AttributeFunc] = None,
) -> list[Attribute]:
    """Attributes recorded with the request metrics."""
    attrs: list[Attribute] = [
        ("url.scheme", ctx.protocol),
        ("server.address", ctx.hostname),
        ("http.request.method", ctx.method),
    ]
    attrs.extend(network_protocol_attributes(ctx))
    if port is not None:
        attrs.append(("server.port", port))
    if custom_attributes is not None:
        attrs.extend(custom_attributes(ctx))
    return attrs


def server_trace_attributes(
    ctx: Ctx,
    port: Optional[int] = None,
    collect_client_ip: bool = True,
    custom_attributes: Optional[AttributeFunc] = None,
) -> list[Attribute]:
    """Attributes set on the server span when it starts."""
    request = ctx.request
    attrs: list[Attribute] = [
        ("http.request.method", ctx.method),
        ("url.scheme", ctx.protocol),
        ("http.request.body.size", request.content_length),
        ("url.path", ctx.path),
        ("url.query", request.encoded_query),
        ("url.full", ctx.original_url),
        ("user_agent.original", request.header("User-Agent")),
        ("server.address", ctx.hostname),
        NET_TRANSPORT_TCP,
    ]
    attrs.extend(network_protocol_attributes(ctx))
    if port is not None:
        attrs.append(("net.host.port", port))
    username = has_basic_auth(ctx.get("Authorization"))
    if username is not None:
        attrs.append(("enduser.id", username))
    if collect_client_ip and ctx.ip:
        attrs.append(("client.address", ctx.ip))
    if custom_attributes is not None:
        attrs.extend(custom_attributes(ctx))
    return attrs