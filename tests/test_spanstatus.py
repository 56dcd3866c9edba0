import pytest

from ctxware.spanstatus import SpanKind, StatusCode, is_code_4xx, span_status_from_http_status


def test_is_code_4xx_not_valid():
    assert is_code_4xx(200) is False


def test_is_code_4xx_valid():
    assert is_code_4xx(404) is True


def test_status_error_with_message():
    assert span_status_from_http_status(600, SpanKind.CLIENT) == (
        StatusCode.ERROR,
        "Invalid HTTP status code 600",
    )


def test_status_error_with_message_for_ignored_code():
    assert span_status_from_http_status(306, SpanKind.CLIENT) == (
        StatusCode.ERROR,
        "Invalid HTTP status code 306",
    )


def test_status_error_when_5xx():
    assert span_status_from_http_status(500, SpanKind.SERVER) == (StatusCode.ERROR, "")


def test_status_unset_when_server_and_bad_request():
    assert span_status_from_http_status(400, SpanKind.SERVER) == (StatusCode.UNSET, "")


def test_status_unset():
    assert span_status_from_http_status(200, SpanKind.CLIENT) == (StatusCode.UNSET, "")


@pytest.mark.parametrize("code", [400, 404, 451])
def test_client_span_4xx_is_error(code):
    assert span_status_from_http_status(code, SpanKind.CLIENT) == (StatusCode.ERROR, "")