"""Middleware that verifies an hCaptcha response token before passing a request on."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from ctxware.web import Ctx, HTTPError

DEFAULT_SITE_VERIFY_URL = "https://api.hcaptcha.com/siteverify"
ROBOT_MESSAGE = "unable to check that you are not a robot"

ResponseKeyFunc = Callable[[Ctx], str]


def default_response_key_func(ctx: Ctx) -> str:
    """Return the ``hcaptcha_token`` member of the JSON request body ("" when absent)."""
    try:
        data = json.loads(ctx.body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError(f"failed to decode HCaptcha token: {exc}") from exc
    if data is None:
        return ""
    if not isinstance(data, dict):
        raise ValueError("failed to decode HCaptcha token: body is not a JSON object")
    token = data.get("hcaptcha_token")
    if token is None:
        return ""
    if not isinstance(token, str):
        raise ValueError("failed to decode HCaptcha token: hcaptcha_token is not a string")
    return token


@dataclass
class Config:
    """Settings of the hCaptcha middleware."""

    secret_key: str = ""
    response_key_func: Optional[ResponseKeyFunc] = None
    site_verify_url: str = ""
    timeout: Optional[float] = None


class HCaptcha:
    """Checks the request's hCaptcha token against the verification endpoint."""

    def __init__(self, config: Config) -> None:
        self.config = config

    def _post(self, token: str) -> bytes:
        body = urlencode({"secret": self.config.secret_key, "response": token}).encode("ascii")
        request = urllib.request.Request(
            self.config.site_verify_url,
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
                "Accept": "application/json",
            },
        )
        kwargs: dict[str, Any] = {}
        if self.config.timeout is not None:
            kwargs["timeout"] = self.config.timeout
        try:
            with urllib.request.urlopen(request, **kwargs) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            # A non-2xx answer still carries a body worth decoding.
            return exc.read()

    def validate(self, ctx: Ctx) -> Any:
        """Verify the token; raise an HTTPError (400, 500 or 403) when it cannot be accepted."""
        key_func = self.config.response_key_func or default_response_key_func
        try:
            token = key_func(ctx)
        except Exception as exc:
            ctx.status(400)
            raise HTTPError(400, f"error retrieving HCaptcha token: {exc}") from exc

        try:
            raw = self._post(token)
        except (OSError, ValueError) as exc:
            ctx.status(400)
            raise HTTPError(400, f"error sending request to HCaptcha API: {exc}") from exc

        try:
            data = json.loads(raw)
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError("response is not a JSON object")
            success = data.get("success", False)
            if not isinstance(success, bool):
                raise ValueError("success is not a boolean")
        except (ValueError, UnicodeDecodeError) as exc:
            ctx.status(500)
            raise HTTPError(500, f"error decoding HCaptcha API response: {exc}") from exc

        if not success:
            ctx.status(403)
            raise HTTPError(403, ROBOT_MESSAGE)
        return ctx.next()


def new(config: Config) -> Callable[[Ctx], Any]:
    """Create the hCaptcha middleware."""
    cfg = replace(config)
    if not cfg.site_verify_url:
        cfg.site_verify_url = DEFAULT_SITE_VERIFY_URL
    if cfg.response_key_func is None:
        cfg.response_key_func = default_response_key_func
    return HCaptcha(cfg).validate