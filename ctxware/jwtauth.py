"""JSON Web Token authentication middleware."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

import jwt
from jwt import PyJWKClient, PyJWKClientError

from ctxware.web import Ctx

HS256 = "HS256"
HS384 = "HS384"
HS512 = "HS512"
ES256 = "ES256"
ES384 = "ES384"
ES512 = "ES512"
P256 = "P-256"
P384 = "P-384"
P521 = "P-521"
RS256 = "RS256"
RS384 = "RS384"
RS512 = "RS512"
PS256 = "PS256"
PS384 = "PS384"
PS512 = "PS512"

MISSING_OR_MALFORMED = "missing or malformed JWT"
UNEXPECTED_ALGORITHM = "the JWT header did not contain the expected algorithm"
INVALID_OR_EXPIRED = "Invalid or expired JWT"
DEFAULT_TOKEN_LOOKUP = "header:Authorization"
DEFAULT_CONTEXT_KEY = "user"
DEFAULT_AUTH_SCHEME = "Bearer"

_JWKS_REFRESH_INTERVAL = 3600
_JWKS_TIMEOUT = 10

_log = logging.getLogger(__name__)

KeyFunc = Callable[[dict[str, Any]], Any]
Extractor = Callable[[Ctx], str]


class JWTError(Exception):
    """A token could not be found, parsed or verified."""


@dataclass
class SigningKey:
    """A key that tokens are verified with; a non-empty ``jwt_alg`` must match the header's ``alg``."""

    jwt_alg: str = ""
    key: Any = None


@dataclass
class Token:
    """A parsed and verified token."""

    raw: str
    header: dict[str, Any]
    claims: Any
    valid: bool = True


def _next_handler(ctx: Ctx) -> Any:
    return ctx.next()


def _default_error_handler(ctx: Ctx, err: BaseException) -> Any:
    if str(err) == MISSING_OR_MALFORMED:
        ctx.status(400).send_string(MISSING_OR_MALFORMED)
    else:
        ctx.status(401).send_string(INVALID_OR_EXPIRED)
    return None


@dataclass
class Config:
    """Settings of the JWT middleware; empty values are filled by :func:`make_config`."""

    filter: Optional[Callable[[Ctx], bool]] = None
    success_handler: Optional[Callable[[Ctx], Any]] = None
    error_handler: Optional[Callable[[Ctx, BaseException], Any]] = None
    signing_key: SigningKey = field(default_factory=SigningKey)
    signing_keys: dict[str, SigningKey] = field(default_factory=dict)
    context_key: str = ""
    claims: Optional[Callable[[dict[str, Any]], Any]] = None
    token_lookup: str = ""
    token_processor_func: Optional[Callable[[str], str]] = None
    auth_scheme: str = ""
    key_func: Optional[KeyFunc] = None
    jwk_set_urls: list[str] = field(default_factory=list)

    def get_extractors(self) -> list[Extractor]:
        """Build the token extractors named by ``token_lookup``; unknown sources are ignored."""
        extractors: list[Extractor] = []
        for root_part in self.token_lookup.split(","):
            parts = root_part.strip().split(":")
            source = parts[0]
            if source not in ("header", "query", "param", "cookie"):
                continue
            if len(parts) < 2:
                raise ValueError(f"token lookup {root_part.strip()!r} has no name")
            name = parts[1]
            if source == "header":
                extractors.append(jwt_from_header(name, self.auth_scheme))
            elif source == "query":
                extractors.append(jwt_from_query(name))
            elif source == "param":
                extractors.append(jwt_from_param(name))
            else:
                extractors.append(jwt_from_cookie(name))
        return extractors


def _kid_of(header: dict[str, Any]) -> str:
    kid = header.get("kid")
    if not isinstance(kid, str):
        raise JWTError("the JWT header did not contain the kid")
    return kid


def _check_given(key: SigningKey, header: dict[str, Any]) -> Any:
    if key.jwt_alg and header.get("alg") != key.jwt_alg:
        raise JWTError("the given key's algorithm does not match the JWT's algorithm")
    return key.key


def _given_key_func(given: dict[str, SigningKey]) -> KeyFunc:
    def key_func(header: dict[str, Any]) -> Any:
        kid = _kid_of(header)
        key = given.get(kid)
        if key is None:
            raise JWTError("the JWT key ID was not found")
        return _check_given(key, header)

    return key_func


def _multi_key_func(given: dict[str, SigningKey], urls: list[str]) -> KeyFunc:
    clients = [
        PyJWKClient(url, cache_jwk_set=True, lifespan=_JWKS_REFRESH_INTERVAL, timeout=_JWKS_TIMEOUT)
        for url in urls
    ]
    for client in clients:
        try:
            client.get_jwk_set()
        except PyJWKClientError as exc:
            raise ValueError(
                f"Failed to create keyfunc from JWK Set URL: failed to get multiple JWK Set URLs: {exc}"
            ) from exc

    def key_func(header: dict[str, Any]) -> Any:
        kid = _kid_of(header)
        if kid in given:
            return _check_given(given[kid], header)
        for client in clients:
            try:
                return client.get_signing_key(kid).key
            except PyJWKClientError as exc:
                _log.warning("Failed to perform background refresh of JWK Set: %s.", exc)
        raise JWTError("the JWT key ID was not found")

    return key_func


def signing_key_func(key: SigningKey) -> KeyFunc:
    """Return a key function that always yields ``key``, after checking its algorithm."""

    def key_func(header: dict[str, Any]) -> Any:
        if key.jwt_alg:
            alg = header.get("alg")
            if not isinstance(alg, str):
                raise JWTError(
                    f'unexpected jwt signing method: expected: "{key.jwt_alg}": '
                    "got: missing or unexpected JSON type"
                )
            if alg != key.jwt_alg:
                raise JWTError(
                    f'unexpected jwt signing method: expected: "{key.jwt_alg}": got: "{alg}"'
                )
        return key.key

    return key_func


def make_config(config: Optional[Config] = None) -> Config:
    """Check a config and fill in its defaults; raise ValueError when no key source is given."""
    cfg = replace(config) if config is not None else Config()
    if cfg.success_handler is None:
        cfg.success_handler = _next_handler
    if cfg.error_handler is None:
        cfg.error_handler = _default_error_handler
    if cfg.signing_key.key is None and not cfg.signing_keys and not cfg.jwk_set_urls and cfg.key_func is None:
        raise ValueError(
            "JWT middleware configuration: At least one of the following is required: "
            "KeyFunc, JWKSetURLs, SigningKeys, or SigningKey."
        )
    if not cfg.context_key:
        cfg.context_key = DEFAULT_CONTEXT_KEY
    if cfg.claims is None:
        cfg.claims = dict
    if not cfg.token_lookup:
        cfg.token_lookup = DEFAULT_TOKEN_LOOKUP
        if not cfg.auth_scheme:
            cfg.auth_scheme = DEFAULT_AUTH_SCHEME
    if cfg.key_func is None:
        if cfg.signing_keys or cfg.jwk_set_urls:
            given = dict(cfg.signing_keys)
            if cfg.jwk_set_urls:
                cfg.key_func = _multi_key_func(given, list(cfg.jwk_set_urls))
            else:
                cfg.key_func = _given_key_func(given)
        else:
            cfg.key_func = signing_key_func(cfg.signing_key)
    return cfg


def jwt_from_header(header: str, auth_scheme: str) -> Extractor:
    """Extract the token that follows ``auth_scheme`` and a space in a request header."""
    scheme = auth_scheme + " "
    length = len(scheme)

    def extract(ctx: Ctx) -> str:
        auth = ctx.get(header)
        if len(auth) > length + 1 and auth[:length].casefold() == scheme.casefold():
            return auth[length:].strip()
        raise JWTError(MISSING_OR_MALFORMED)

    return extract


def jwt_from_query(param: str) -> Extractor:
    """Extract the token from a query argument."""

    def extract(ctx: Ctx) -> str:
        token = ctx.query(param)
        if not token:
            raise JWTError(MISSING_OR_MALFORMED)
        return token

    return extract


def jwt_from_param(param: str) -> Extractor:
    """Extract the token from a route parameter."""

    def extract(ctx: Ctx) -> str:
        token = ctx.params(param)
        if not token:
            raise JWTError(MISSING_OR_MALFORMED)
        return token

    return extract


def jwt_from_cookie(name: str) -> Extractor:
    """Extract the token from a named cookie."""

    def extract(ctx: Ctx) -> str:
        token = ctx.cookies(name)
        if not token:
            raise JWTError(MISSING_OR_MALFORMED)
        return token

    return extract


def _parse(raw: str, key_func: KeyFunc, claims_factory: Callable[[dict[str, Any]], Any]) -> Token:
    try:
        header = jwt.get_unverified_header(raw)
    except jwt.PyJWTError as exc:
        raise JWTError(f"token is malformed: {exc}") from exc
    key = key_func(header)
    alg = header.get("alg")
    if not isinstance(alg, str) or alg.lower() == "none":
        raise JWTError("token is unverifiable: signing method is missing or not allowed")
    if hasattr(key, "key") and not isinstance(key, (bytes, str)) and isinstance(key, jwt.PyJWK):
        key = key.key
    payload = jwt.decode(
        raw,
        key,
        algorithms=[alg],
        options={"verify_aud": False, "verify_iat": False},
    )
    claims = payload if claims_factory is dict else claims_factory(payload)
    return Token(raw=raw, header=header, claims=claims, valid=True)


def new(config: Optional[Config] = None) -> Callable[[Ctx], Any]:
    """Create the JWT middleware; a verified token is stored in ``ctx.locals[context_key]``."""
    cfg = make_config(config)
    extractors = cfg.get_extractors()
    error_handler = cfg.error_handler
    success_handler = cfg.success_handler
    key_func = cfg.key_func
    claims_factory = cfg.claims

    def handler(ctx: Ctx) -> Any:
        if cfg.filter is not None and cfg.filter(ctx):
            return ctx.next()

        auth = ""
        error: Optional[BaseException] = None
        for extractor in extractors:
            try:
                auth = extractor(ctx)
                error = None
            except JWTError as exc:
                auth = ""
                error = exc
            if auth and error is None:
                break
        if error is not None:
            return error_handler(ctx, error)

        if cfg.token_processor_func is not None:
            try:
                auth = cfg.token_processor_func(auth)
            except Exception as exc:
                return error_handler(ctx, exc)

        try:
            token = _parse(auth, key_func, claims_factory)
        except (JWTError, jwt.PyJWTError) as exc:
            return error_handler(ctx, exc)
        ctx.locals[cfg.context_key] = token
        return success_handler(ctx)

    return handler