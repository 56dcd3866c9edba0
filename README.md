# ctxware

A set of request middleware built around a small, in-process web app
(`ctxware.web`). Every middleware is a plain callable that takes a request
context (`Ctx`), does its work, and either answers the request itself or hands
it on with `ctx.next()`.

## Installation

```
pip install ctxware
```

To run the test suite, install the test extra and run pytest:

```
pip install "ctxware[test]"
pytest
```

## Modules

| Module                | What it holds                                                                                           |
|-----------------------|---------------------------------------------------------------------------------------------------------|
| `ctxware.web`         | `App`, `Ctx`, `Request`, `Response`, `Route`, `HTTPError`, `default_error_handler`, `make_request`.     |
| `ctxware.requestlog`  | One-line JSON request logging: `Level`, `Logger`, `Config`, `config_default`, `new`.                    |
| `ctxware.jwtauth`     | JWT authentication: `JWTError`, `SigningKey`, `Config`, `make_config`, token extractors, `new`.         |
| `ctxware.hcaptcha`    | hCaptcha token verification: `Config`, `default_response_key_func`, `HCaptcha`, `new`.                  |
| `ctxware.loadshed`    | CPU-based load shedding: `LoadCriteria`, `CPULoadCriteria`, `DefaultCPUPercentGetter`, `Config`, `new`. |
| `ctxware.monitorpage` | Monitor settings and page rendering: `ViewBag`, `new_index`, `Config`, `config_default`.                |
| `ctxware.monitor`     | The monitor endpoint: `Stats`, `update_statistics`, `new`.                                               |
| `ctxware.semconv`     | HTTP semantic-convention attributes of a request, and `has_basic_auth`.                                 |
| `ctxware.spanstatus`  | `StatusCode`, `SpanKind`, `is_code_4xx`, `span_status_from_http_status`.                                |

## A first app

```python
from ctxware import requestlog
from ctxware.web import App, make_request


def show_user(ctx):
    ctx.send_string(ctx.params("id"))


app = App()
app.use(requestlog.new())          # log every request as JSON to stderr
app.get("/users/:id", show_user)

response = app.test(make_request("GET", "/users/42"))
print(response.status_code, response.text)   # 200 42
```

`App.use` adds middleware (optionally under a path prefix given first);
`App.get`, `App.post` and `App.add` add routes, where a segment such as `:id`
becomes a route parameter read with `ctx.params`. `App.test` runs a request
through the chain. When nothing matches, `ctx.next()` raises a 404
`HTTPError`; any exception that reaches the app is passed to its error
handler, which by default writes the message as plain text with the error's
status (500 for anything that is not an `HTTPError`). `make_request` builds a
`Request` from a path or URL; the host defaults to `example.com`.

## Request logging

`requestlog.new(config)` builds the logging middleware. With no config each
request is logged to stderr with a timestamp and the fields `ip`, `latency`,
`status`, `method`, `url` and `error`. Responses with status 500 and up are
logged at `Level.ERROR` as "Server error", 400 and up at `Level.WARN` as
"Client error", everything else at `Level.INFO` as "Success".

`requestlog.Config` lets you change:

- `fields`: any of the `FIELD_*` names (referer, protocol, pid, port, ip,
  ips, host, path, url, ua, latency, status, resBody, queryParams, body,
  bytesReceived, bytesSent, route, method, requestId, error, reqHeaders,
  resHeaders);
- `levels` and `messages`: lists for the 5xx, 4xx and other cases; shorter
  lists reuse their last entry, and `Level.NO_LEVEL` or `Level.DISABLED`
  suppresses the log line;
- `logger` or `get_logger` (a per-request `Logger`), `skip_uris`, `next`,
  `skip_body`, `skip_res_body`, `get_res_body`;
- `wrap_headers` (headers nested under `reqHeaders`/`resHeaders` instead of
  flat) and `fields_snake_case` (`res_body`, `query_params`, ...).

A `Logger(writer, fields, timestamp, level)` writes one JSON object per line;
`bind` returns a logger with more context fields. Logging at `Level.FATAL`
raises `SystemExit`, at `Level.PANIC` raises `RuntimeError`.

## JWT authentication

```python
from ctxware import jwtauth

auth = jwtauth.new(jwtauth.Config(signing_key=jwtauth.SigningKey(jwt_alg=jwtauth.HS256, key="secret")))
```

The token is read from the `Authorization` header with the `Bearer` scheme
unless `token_lookup` names other sources (`header:<name>`, `query:<name>`,
`param:<name>`, `cookie:<name>`, comma separated). A verified token is stored
as `ctx.locals["user"]` (see `context_key`). By default a missing or malformed
token answers 400 and an invalid or expired one 401; `error_handler`,
`success_handler`, `filter`, `token_processor_func` and `claims` can be set.
Keys come from `signing_key`, from `signing_keys` chosen by the token's `kid`,
from `jwk_set_urls`, or from your own `key_func`. `make_config` raises
`ValueError` when none of these is given. RSA and EC keys need the
cryptography support of PyJWT, which is not installed with this package.

## hCaptcha

`hcaptcha.new(hcaptcha.Config(secret_key="secret"))` reads the
`hcaptcha_token` member of a JSON request body (or what your
`response_key_func` returns), posts it with the secret key to
`site_verify_url` (by default the public hCaptcha endpoint) and lets the
request through only when the answer reports success. Otherwise it raises an
`HTTPError`: 400 if the token cannot be read or the endpoint cannot be
reached, 500 if the answer cannot be decoded, 403 if verification failed.

## Load shedding

`loadshed.new(config)` asks a `LoadCriteria` for `metric()` and
`should_shed(metric)`, and raises a 503 `HTTPError` when it says to shed. If
the metric cannot be read the request is allowed. The default
`CPULoadCriteria` samples system CPU use over `interval` seconds (10 by
default, and the sample is taken during the request): above 95 % every
request is shed, between 90 % and 95 % requests are shed at random with a
rising probability, below that none are. Give it your own `getter` (any
object with `percent(interval, percpu)`) or your own criteria.

## Monitor

`monitor.new(config)` serves a GET endpoint; other methods fail with 405.
A request whose `Accept` header is `application/json`, or any request when
`api_only` is set, gets a JSON snapshot shaped like `Stats.to_dict()`
(`pid` and `os` sections with CPU, RAM, connections and load average);
otherwise it gets an HTML dashboard. Statistics are collected by one
background thread, started by the first `monitor.new` call and refreshed at
that config's period. `monitorpage.Config` sets `title`, `refresh` (seconds,
never below 0.2), `font_url`, `chart_js_url` and `custom_head`;
`monitorpage.new_index` renders the page for a `ViewBag`.

## Tracing helpers

`semconv.server_trace_attributes(ctx, ...)` and
`semconv.server_metric_attributes(ctx, ...)` return lists of
`(name, value)` pairs describing a request: method, scheme, host, path,
query, full URL, user agent, body size, protocol version, optional port,
the client address and, with Basic authorization, the user name
(`semconv.has_basic_auth`). `spanstatus.span_status_from_http_status` maps a
status code and `SpanKind` to a `StatusCode` and message: 1xx–3xx are
unset, 4xx are unset for server spans, and everything else, including codes
that are not HTTP status codes, is an error.

## What this package does not do

- There is no network server and no WSGI or ASGI adapter: `App.test` runs
  requests in process only.
- There is no tracing middleware, tracer or exporter; the tracing modules
  only compute attributes and span statuses for you to record elsewhere.