"""HTTP middleware for request correlation and client identity.

This module provides middleware that ensures every request/response pair
carries a unique request ID for log correlation, and that every request has
a normalized client IP available to admission control.

The middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Resolves the client IP (optionally from X-Forwarded-For) into
  ``request.state.client_ip``
- Injects request_id and duration into response headers
- Clears context after request completion to prevent context leaks

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import re
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id

MAX_IDENTIFIER_LENGTH = 100
UNKNOWN_IDENTIFIER = "unknown"

_IDENTIFIER_DISALLOWED = re.compile(r"[^A-Za-z0-9:._-]")


def sanitize_identifier(value: str | None) -> str:
    """Normalize a client-supplied identifier before it becomes a counter key.

    Keeps ``[A-Za-z0-9:._-]`` and truncates to 100 characters, so identifiers
    taken from headers cannot blow up key sizes or smuggle separators.

    Examples:
        >>> sanitize_identifier("203.0.113.7")
        '203.0.113.7'
        >>> sanitize_identifier("user 42<script>")
        'user42script'
        >>> sanitize_identifier(None)
        'unknown'
    """

    if not value:
        return UNKNOWN_IDENTIFIER
    cleaned = _IDENTIFIER_DISALLOWED.sub("", value)[:MAX_IDENTIFIER_LENGTH]
    return cleaned or UNKNOWN_IDENTIFIER


def resolve_client_ip(request: Request) -> str:
    """Return the sanitized client IP for a request.

    Uses the first ``X-Forwarded-For`` hop only when the deployment opts in
    with ``APP_TRUST_FORWARDED_FOR``; otherwise the socket peer address.
    """

    if settings.app.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return sanitize_identifier(forwarded.split(",")[0].strip())

    client_host = request.client.host if request.client else None
    return sanitize_identifier(client_host)


async def request_id_middleware(request: Request, call_next) -> Response:
    """HTTP middleware for request ID propagation and client IP resolution.

    If the client provides an X-Request-ID header (configurable via
    LOG_REQUEST_ID_HEADER), that value is used. Otherwise, a new UUID is
    generated. The ID is propagated back in the response headers and stored
    in contextvars for log correlation.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    request.state.client_ip = resolve_client_ip(request)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
