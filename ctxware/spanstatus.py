"""Span status derived from an HTTP status code."""

from __future__ import annotations

from enum import Enum

_KNOWN_STATUS_CODES = frozenset(
    [100, 101, 102, 103]
    + list(range(200, 209))
    + [226]
    + list(range(300, 306))
    + [307, 308]
    + list(range(400, 419))
    + list(range(421, 427))
    + [428, 429, 431, 451]
    + list(range(500, 509))
    + [510, 511]
)


class StatusCode(Enum):
    UNSET = 0
    ERROR = 1
    OK = 2


class SpanKind(Enum):
    UNSPECIFIED = 0
    INTERNAL = 1
    SERVER = 2
    CLIENT = 3
    PRODUCER = 4
    CONSUMER = 5


def is_code_4xx(code: int) -> bool:
    return 400 <= code <= 451


def span_status_from_http_status(code: int, span_kind: SpanKind) -> tuple[StatusCode, str]:
    """Return the span status and message for an HTTP status; 4xx is not an error on servers."""
    if code not in _KNOWN_STATUS_CODES:
        return StatusCode.ERROR, f"Invalid HTTP status code {code}"
    if 100 <= code < 400 or (span_kind is SpanKind.SERVER and is_code_4xx(code)):
        return StatusCode.UNSET, ""
    return StatusCode.ERROR, ""