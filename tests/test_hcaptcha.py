import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs

import pytest

from ctxware import hcaptcha
from ctxware.web import App, Ctx, make_request


class _VerifyServer:
    def __init__(self):
        self.reply = b'{"success": true}'
        self.received = []
        self.headers = []
        outer = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self):
                length = int(self.headers.get("Content-Length", "0"))
                outer.received.append(self.rfile.read(length).decode("ascii"))
                outer.headers.append(dict(self.headers))
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.end_headers()
                self.wfile.write(outer.reply)

            def log_message(self, *args):
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}/siteverify"
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    def close(self):
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def verify_server():
    server = _VerifyServer()
    yield server
    server.close()


def _app(url):
    app = App()
    app.use(hcaptcha.new(hcaptcha.Config(secret_key="secret", site_verify_url=url, timeout=5)))
    app.post("/", lambda ctx: ctx.send_string("ok"))
    return app


def _body(token):
    return json.dumps({"hcaptcha_token": token})


def _ctx(body):
    return Ctx(App(), make_request("POST", "/", body=body))


def test_default_response_key_func_reads_token():
    assert hcaptcha.default_response_key_func(_ctx(_body("token"))) == "token"


def test_default_response_key_func_missing_member_is_empty():
    assert hcaptcha.default_response_key_func(_ctx("{}")) == ""


def test_default_response_key_func_rejects_bad_body():
    with pytest.raises(ValueError, match="^failed to decode HCaptcha token"):
        hcaptcha.default_response_key_func(_ctx("not json"))


def test_new_does_not_change_given_config():
    config = hcaptcha.Config(secret_key="secret")
    hcaptcha.new(config)
    assert config.site_verify_url == ""


def test_success_passes_request_on(verify_server):
    response = _app(verify_server.url).test(make_request("POST", "/", body=_body("token")))
    assert response.status_code == 200
    assert response.text == "ok"
    form = parse_qs(verify_server.received[0])
    assert form == {"secret": ["secret"], "response": ["token"]}
    assert verify_server.headers[0]["Accept"] == "application/json"
    assert verify_server.headers[0]["Content-Type"] == (
        "application/x-www-form-urlencoded; charset=UTF-8"
    )


def test_failed_verification_is_forbidden(verify_server):
    verify_server.reply = b'{"success": false}'
    response = _app(verify_server.url).test(make_request("POST", "/", body=_body("token")))
    assert response.status_code == 403
    assert response.text == "unable to check that you are not a robot"


def test_undecodable_api_answer_is_server_error(verify_server):
    verify_server.reply = b"<html>"
    response = _app(verify_server.url).test(make_request("POST", "/", body=_body("token")))
    assert response.status_code == 500
    assert response.text.startswith("error decoding HCaptcha API response")


def test_bad_request_body_is_bad_request(verify_server):
    response = _app(verify_server.url).test(make_request("POST", "/", body="garbage"))
    assert response.status_code == 400
    assert response.text.startswith("error retrieving HCaptcha token")
    assert verify_server.received == []


def test_unreachable_api_is_bad_request():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    response = _app(f"http://127.0.0.1:{port}/siteverify").test(
        make_request("POST", "/", body=_body("token"))
    )
    assert response.status_code == 400
    assert response.text.startswith("error sending request to HCaptcha API")


def test_custom_response_key_func(verify_server):
    app = App()
    app.use(
        hcaptcha.new(
            hcaptcha.Config(
                secret_key="secret",
                site_verify_url=verify_server.url,
                response_key_func=lambda ctx: ctx.get("X-Captcha"),
            )
        )
    )
    app.post("/", lambda ctx: ctx.send_string("ok"))
    response = app.test(make_request("POST", "/", headers={"X-Captcha": "token"}))
    assert response.status_code == 200
    assert parse_qs(verify_server.received[0])["response"] == ["token"]