"""
core/routing.py -- Pure request-routing guards used by the HTTP layer.

No state, no I/O. api/main.py consults these helpers to decide whether a
request's body may be parsed and to format the per-request log line.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

BILLING_WEBHOOK_PATH = "/api/billing/webhook"

MAX_LOG_LINE_LENGTH = 80
_ELLIPSIS = "…"


def is_billing_webhook_request(url: str) -> bool:
    """Return True for the billing webhook path, with or without a query string.

    Sub-paths ("/api/billing/webhook/extra") do not match.
    """
    return url == BILLING_WEBHOOK_PATH or url.startswith(BILLING_WEBHOOK_PATH + "?")


def should_skip_body_parsers(url: str) -> bool:
    """Return True when the request body must reach its handler unparsed.

    Webhook signatures are computed over the raw payload bytes, so the JSON
    body parser must never touch that route.
    """
    return is_billing_webhook_request(url)


def is_json_content_type(content_type: str | None) -> bool:
    """Return True when a request body with this Content-Type is read as JSON.

    Mirrors the request-body rule FastAPI applies to JSON body parameters: a
    missing or empty header counts as JSON, as does any application/json or
    application/*+json media type. Parameters after ";" are ignored.
    """
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    main_type, _, subtype = media_type.partition("/")
    return main_type == "application" and (subtype == "json" or subtype.endswith("+json"))


def build_api_log_line(method: str, path: str, status_code: int, duration_ms: int) -> str:
    """Format "<METHOD> <path> <status> in <ms>ms", capped at 80 characters.

    Longer lines keep the first 79 characters and end with a single ellipsis.
    Request and response bodies are never part of the line.
    """
    line = f"{method} {path} {status_code} in {duration_ms}ms"
    if len(line) <= MAX_LOG_LINE_LENGTH:
        return line
    return line[: MAX_LOG_LINE_LENGTH - 1] + _ELLIPSIS
