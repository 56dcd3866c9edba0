"""Structured JSON request logging middleware."""

from __future__ import annotations

import json
import os
import sys
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, TextIO

from ctxware.web import Ctx

FIELD_REFERER = "referer"
FIELD_PROTOCOL = "protocol"
FIELD_PID = "pid"
FIELD_PORT = "port"
FIELD_IP = "ip"
FIELD_IPS = "ips"
FIELD_HOST = "host"
FIELD_PATH = "path"
FIELD_URL = "url"
FIELD_USER_AGENT = "ua"
FIELD_LATENCY = "latency"
FIELD_STATUS = "status"
FIELD_RES_BODY = "resBody"
FIELD_QUERY_PARAMS = "queryParams"
FIELD_BODY = "body"
FIELD_BYTES_RECEIVED = "bytesReceived"
FIELD_BYTES_SENT = "bytesSent"
FIELD_ROUTE = "route"
FIELD_METHOD = "method"
FIELD_REQUEST_ID = "requestId"
FIELD_ERROR = "error"
FIELD_REQ_HEADERS = "reqHeaders"
FIELD_RES_HEADERS = "resHeaders"

_SNAKE_CASE_NAMES = {
    FIELD_RES_BODY: "res_body",
    FIELD_QUERY_PARAMS: "query_params",
    FIELD_BYTES_RECEIVED: "bytes_received",
    FIELD_BYTES_SENT: "bytes_sent",
    FIELD_REQUEST_ID: "request_id",
    FIELD_REQ_HEADERS: "req_headers",
    FIELD_RES_HEADERS: "res_headers",
}


class Level(Enum):
    """Log levels; the value is the name written in the ``level`` field."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"
    PANIC = "panic"
    NO_LEVEL = ""
    DISABLED = "disabled"

    def __str__(self) -> str:
        return self.value


_RANK = {
    Level.TRACE: -1,
    Level.DEBUG: 0,
    Level.INFO: 1,
    Level.WARN: 2,
    Level.ERROR: 3,
    Level.FATAL: 4,
    Level.PANIC: 5,
    Level.NO_LEVEL: 6,
    Level.DISABLED: 7,
}


def _json_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {key: _json_value(item) for key, item in value.items()}
    if isinstance(value, BaseException):
        return str(value)
    return value


class Logger:
    """Writes one JSON object per line, carrying a fixed set of context fields."""

    def __init__(
        self,
        writer: Optional[TextIO] = None,
        fields: Optional[dict[str, Any]] = None,
        timestamp: bool = False,
        level: Level = Level.TRACE,
    ) -> None:
        self.writer = writer
        self.fields: dict[str, Any] = dict(fields or {})
        self.timestamp = timestamp
        self.level = level

    def bind(self, fields: dict[str, Any]) -> "Logger":
        """Return a logger with the given fields added to the context."""
        merged = dict(self.fields)
        merged.update(fields)
        return Logger(self.writer, merged, self.timestamp, self.level)

    def log(self, level: Level, message: str, fields: Optional[dict[str, Any]] = None) -> None:
        """Write an event; FATAL then exits and PANIC then raises RuntimeError."""
        if level is not Level.DISABLED and self.level is not Level.DISABLED and _RANK[level] >= _RANK[self.level]:
            record: dict[str, Any] = {}
            if level is not Level.NO_LEVEL:
                record["level"] = level.value
            if self.timestamp:
                record["time"] = datetime.now().astimezone().isoformat(timespec="seconds")
            for key, value in self.fields.items():
                record[key] = _json_value(value)
            for key, value in (fields or {}).items():
                record[key] = _json_value(value)
            if message:
                record["message"] = message
            writer = self.writer if self.writer is not None else sys.stderr
            writer.write(json.dumps(record, separators=(",", ":"), ensure_ascii=False) + "\n")
            writer.flush()
        if level is Level.FATAL:
            raise SystemExit(1)
        if level is Level.PANIC:
            raise RuntimeError(message)


def _fraction(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10**digits)
    if not frac:
        return str(whole)
    return f"{whole}.{str(frac).zfill(digits).rstrip('0')}"


def _format_duration(seconds: float) -> str:
    """Format a duration in seconds as ``100.5ms``, ``1.5s`` or ``1h2m3s``."""
    ns = round(seconds * 1e9)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fraction(ns, 3)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_fraction(ns, 6)}ms"
    hours, rest = divmod(ns, 3600 * 10**9)
    minutes, secs = divmod(rest, 60 * 10**9)
    text = f"{_fraction(secs, 9)}s"
    if hours:
        text = f"{hours}h{minutes}m{text}"
    elif minutes:
        text = f"{minutes}m{text}"
    return sign + text


def _headers_of(headers: dict[str, str]) -> dict[str, str]:
    return dict(headers)


@dataclass
class Config:
    """Settings of the request logger; None means "use the default"."""

    next: Optional[Callable[[Ctx], bool]] = None
    skip_body: Optional[Callable[[Ctx], bool]] = None
    skip_res_body: Optional[Callable[[Ctx], bool]] = None
    get_res_body: Optional[Callable[[Ctx], bytes]] = None
    skip_uris: list[str] = field(default_factory=list)
    logger: Optional[Logger] = None
    get_logger: Optional[Callable[[Ctx], Logger]] = None
    fields: Optional[list[str]] = None
    wrap_headers: bool = False
    fields_snake_case: bool = False
    messages: Optional[list[str]] = None
    levels: Optional[list[Level]] = None

    def _name(self, field_name: str) -> str:
        if self.fields_snake_case:
            return _SNAKE_CASE_NAMES.get(field_name, field_name)
        return field_name

    def build_logger(self, ctx: Ctx, latency: float, error: Optional[BaseException]) -> Logger:
        """Return the logger for this request, carrying the configured fields."""
        if self.get_logger is not None:
            base = self.get_logger(ctx)
        else:
            base = self.logger if self.logger is not None else _default_logger
        values: dict[str, Any] = {}
        response = ctx.response
        for name in self.fields or []:
            key = self._name(name)
            if name == FIELD_REFERER:
                values[key] = ctx.get("Referer")
            elif name == FIELD_PROTOCOL:
                values[key] = ctx.protocol
            elif name == FIELD_PID:
                values[key] = os.getpid()
            elif name == FIELD_PORT:
                values[key] = ctx.port
            elif name == FIELD_IP:
                values[key] = ctx.ip
            elif name == FIELD_IPS:
                values[key] = ctx.get("X-Forwarded-For")
            elif name == FIELD_HOST:
                values[key] = ctx.hostname
            elif name == FIELD_PATH:
                values[key] = ctx.path
            elif name == FIELD_URL:
                values[key] = ctx.original_url
            elif name == FIELD_USER_AGENT:
                values[key] = ctx.get("User-Agent")
            elif name == FIELD_LATENCY:
                values[key] = _format_duration(latency)
            elif name == FIELD_STATUS:
                values[key] = response.status_code
            elif name == FIELD_RES_BODY:
                if self.skip_res_body is None or not self.skip_res_body(ctx):
                    body = response.body if self.get_res_body is None else self.get_res_body(ctx)
                    values[key] = body
            elif name == FIELD_QUERY_PARAMS:
                values[key] = ctx.request.encoded_query
            elif name == FIELD_BODY:
                if self.skip_body is None or not self.skip_body(ctx):
                    values[key] = ctx.body
            elif name == FIELD_BYTES_RECEIVED:
                values[key] = len(ctx.request.body)
            elif name == FIELD_BYTES_SENT:
                values[key] = len(response.body)
            elif name == FIELD_ROUTE:
                values[key] = ctx.route.path
            elif name == FIELD_METHOD:
                values[key] = ctx.method
            elif name == FIELD_REQUEST_ID:
                values[key] = ctx.get_resp_header("X-Request-Id")
            elif name == FIELD_ERROR:
                if error is not None:
                    values[FIELD_ERROR] = str(error)
            elif name in (FIELD_REQ_HEADERS, FIELD_RES_HEADERS):
                source = ctx.request.headers if name == FIELD_REQ_HEADERS else response.headers
                headers = _headers_of(source)
                if self.wrap_headers:
                    values[key] = headers
                else:
                    values.update(headers)
        return base.bind(values)


_default_logger = Logger(timestamp=True)

CONFIG_DEFAULT = Config(
    logger=_default_logger,
    fields=[FIELD_IP, FIELD_LATENCY, FIELD_STATUS, FIELD_METHOD, FIELD_URL, FIELD_ERROR],
    messages=["Server error", "Client error", "Success"],
    levels=[Level.ERROR, Level.WARN, Level.INFO],
)


def config_default(config: Optional[Config] = None) -> Config:
    """Fill the unset parts of a config with the defaults."""
    if config is None:
        return replace(CONFIG_DEFAULT)
    cfg = replace(config)
    if cfg.next is None:
        cfg.next = CONFIG_DEFAULT.next
    if cfg.logger is None:
        cfg.logger = CONFIG_DEFAULT.logger
    if cfg.fields is None:
        cfg.fields = CONFIG_DEFAULT.fields
    if cfg.messages is None:
        cfg.messages = CONFIG_DEFAULT.messages
    if cfg.levels is None:
        cfg.levels = CONFIG_DEFAULT.levels
    return cfg


def new(config: Optional[Config] = None) -> Callable[[Ctx], Any]:
    """Create the logging middleware."""
    cfg = config_default(config)
    skip_uris = frozenset(cfg.skip_uris or ())
    levels = cfg.levels or []
    messages = cfg.messages or []

    def handler(ctx: Ctx) -> Any:
        if cfg.next is not None and cfg.next(ctx):
            return ctx.next()
        if ctx.path in skip_uris:
            return ctx.next()

        start = time.perf_counter()
        chain_error: Optional[BaseException] = None
        try:
            ctx.next()
        except Exception as err:
            chain_error = err
            try:
                ctx.app.error_handler(ctx, err)
            except Exception:
                ctx.send_status(500)
        latency = time.perf_counter() - start

        status = ctx.response.status_code
        if status >= 500:
            index = 0
        elif status >= 400:
            index = 1
        else:
            index = 2

        level = levels[min(index, len(levels) - 1)]
        if level in (Level.NO_LEVEL, Level.DISABLED):
            return None
        message = messages[min(index, len(messages) - 1)]

        cfg.build_logger(ctx, latency, chain_error).log(level, message)
        return None

    return handler