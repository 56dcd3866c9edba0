"""A small request pipeline: requests, responses, routing and a handler context."""

from __future__ import annotations

import json as _json
from dataclasses import dataclass, field
from http import HTTPStatus
from http.cookies import CookieError, SimpleCookie
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

Handler = Callable[["Ctx"], Any]
ErrorHandler = Callable[["Ctx", BaseException], Any]

TEXT_PLAIN_UTF8 = "text/plain; charset=utf-8"
APPLICATION_JSON = "application/json"
DEFAULT_HOST = "example.com"


def canonical_header(key: str) -> str:
    """Normalise a header name the way HTTP servers print it (``x-request-id`` -> ``X-Request-Id``)."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def status_message(code: int) -> str:
    """Return the standard reason phrase for a status code, or an empty string."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


def _canonical_headers(headers: dict[str, str]) -> dict[str, str]:
    result: dict[str, str] = {}
    for key, value in headers.items():
        result[canonical_header(key)] = value
    return result


@dataclass
class Request:
    """An incoming HTTP request."""

    method: str = "GET"
    path: str = "/"
    query_string: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    ip: str = "0.0.0.0"
    port: str = "0"
    scheme: str = "http"
    http11: bool = True

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = _canonical_headers(self.headers)

    def header(self, name: str) -> str:
        return self.headers.get(canonical_header(name), "")

    @property
    def host(self) -> str:
        return self.header("Host")

    @property
    def original_url(self) -> str:
        return f"{self.path}?{self.query_string}" if self.query_string else self.path

    @property
    def query_args(self) -> list[tuple[str, str]]:
        return parse_qsl(self.query_string, keep_blank_values=True)

    @property
    def encoded_query(self) -> str:
        """The query arguments, re-encoded."""
        return urlencode(self.query_args)

    @property
    def content_length(self) -> int:
        return len(self.body)


@dataclass
class Response:
    """The response being built for a request."""

    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str:
        return self.headers.get(canonical_header(name), "")

    def set_header(self, name: str, value: str) -> None:
        self.headers[canonical_header(name)] = value

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def _segments(path: str) -> list[str]:
    return path.strip("/").split("/")


@dataclass
class Route:
    """A handler bound to a method and path; ``method`` of None matches any method."""

    method: Optional[str]
    path: str
    handler: Optional[Handler] = None
    prefix: bool = False

    def match(self, method: str, path: str) -> Optional[dict[str, str]]:
        """Return the path parameters if this route serves the request, else None."""
        if self.method is not None and self.method != method:
            return None
        if self.prefix:
            base = self.path.rstrip("/")
            if not base or path == base or path.startswith(base + "/"):
                return {}
            return None
        wanted, actual = _segments(self.path), _segments(path)
        if len(wanted) != len(actual):
            return None
        params: dict[str, str] = {}
        for want, got in zip(wanted, actual):
            if want.startswith(":"):
                if not got:
                    return None
                params[want[1:]] = got
            elif want != got:
                return None
        return params


class HTTPError(Exception):
    """An error carrying the HTTP status it should produce."""

    def __init__(self, code: int = 500, message: Optional[str] = None) -> None:
        self.code = code
        self.message = message if message is not None else status_message(code)
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class Ctx:
    """The state of one request as it passes through the handler chain."""

    def __init__(self, app: "App", request: Request) -> None:
        self.app = app
        self.request = request
        self.response = Response()
        self.locals: dict[str, Any] = {}
        self.user_context: Any = None
        self.route = Route(None, "/", None, prefix=True)
        self._route_params: dict[str, str] = {}
        self._position = 0

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def body(self) -> bytes:
        return self.request.body

    @property
    def hostname(self) -> str:
        return self.request.host

    @property
    def ip(self) -> str:
        return self.request.ip

    @property
    def port(self) -> str:
        return self.request.port

    @property
    def protocol(self) -> str:
        return self.request.scheme

    @property
    def original_url(self) -> str:
        return self.request.original_url

    def next(self) -> Any:
        """Run the next matching handler; raise a 404 HTTPError when none is left."""
        routes = self.app.routes
        while self._position < len(routes):
            route = routes[self._position]
            self._position += 1
            params = route.match(self.method, self.path)
            if params is None or route.handler is None:
                continue
            self.route = route
            self._route_params = params
            return route.handler(self)
        raise HTTPError(404, f"Cannot {self.method} {self.path}")

    def get(self, key: str) -> str:
        """Return a request header, or an empty string."""
        return self.request.header(key)

    def set(self, key: str, value: str) -> None:
        """Set a response header."""
        self.response.set_header(key, value)

    def status(self, code: int) -> "Ctx":
        self.response.status_code = code
        return self

    def send_status(self, code: int) -> None:
        """Set the status; an empty body becomes the reason phrase."""
        self.status(code)
        if not self.response.body:
            self.send_string(status_message(code))

    def send_string(self, text: str) -> None:
        self.response.body = text.encode("utf-8")
        if not self.response.header("Content-Type"):
            self.set("Content-Type", TEXT_PLAIN_UTF8)

    def json(self, data: Any) -> None:
        self.response.body = _json.dumps(data, separators=(",", ":")).encode("utf-8")
        self.set("Content-Type", APPLICATION_JSON)

    def query(self, name: str) -> str:
        return next((value for key, value in self.request.query_args if key == name), "")

    def params(self, name: str) -> str:
        return self._route_params.get(name, "")

    def cookies(self, name: str) -> str:
        cookie = SimpleCookie()
        try:
            cookie.load(self.get("Cookie"))
        except CookieError:
            return ""
        morsel = cookie.get(name)
        return morsel.value if morsel is not None else ""

    def get_resp_header(self, key: str) -> str:
        return self.response.header(key)


def default_error_handler(ctx: Ctx, err: BaseException) -> None:
    """Write the error message as plain text with the error's status (500 by default)."""
    code = err.code if isinstance(err, HTTPError) else 500
    ctx.set("Content-Type", TEXT_PLAIN_UTF8)
    ctx.status(code).send_string(str(err))


class App:
    """An ordered list of middleware and routes."""

    def __init__(self, error_handler: Optional[ErrorHandler] = None) -> None:
        self.routes: list[Route] = []
        self.error_handler: ErrorHandler = error_handler or default_error_handler

    def use(self, *args: Any) -> "App":
        """Add middleware, optionally under a path prefix given first."""
        handlers = list(args)
        prefix = "/"
        if handlers and isinstance(handlers[0], str):
            prefix = handlers.pop(0)
        if not handlers:
            raise TypeError("use() needs at least one handler")
        for handler in handlers:
            self.routes.append(Route(None, prefix, handler, prefix=True))
        return self

    def add(self, method: str, path: str, handler: Handler) -> "App":
        self.routes.append(Route(method.upper(), path, handler))
        return self

    def get(self, path: str, handler: Handler) -> "App":
        return self.add("GET", path, handler)

    def post(self, path: str, handler: Handler) -> "App":
        return self.add("POST", path, handler)

    def test(self, request: Request) -> Response:
        """Run a request through the chain and return the response."""
        ctx = Ctx(self, request)
        try:
            ctx.next()
        except Exception as err:
            try:
                self.error_handler(ctx, err)
            except Exception:
                ctx.send_status(500)
        return ctx.response


def make_request(
    method: str,
    target: str,
    headers: Optional[dict[str, str]] = None,
    body: bytes | str = b"",
) -> Request:
    """Build a request for a path or URL; the host defaults to example.com."""
    parts = urlsplit(target)
    merged = {"Host": parts.netloc or DEFAULT_HOST}
    merged.update(headers or {})
    if isinstance(body, str):
        body = body.encode("utf-8")
    return Request(
        method=method,
        path=parts.path or "/",
        query_string=parts.query,
        headers=merged,
        body=body,
        scheme=parts.scheme or "http",
    )