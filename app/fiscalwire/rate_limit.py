"""
Per-client rate limiting on top of Flask-Limiter.

Each named type below is one shared bucket per client: every route decorated with
``rate_limited("auth")`` draws from the same "auth" allowance. Storage is in-process
(``memory://``), so with several gunicorn workers each worker counts independently.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from typing import Any

from flask import Request, current_app, jsonify, request
from flask_limiter import Limiter

RATE_LIMITS: dict[str, str] = {
    "public": "60 per minute",
    "auth": "10 per 15 minutes",
    "api": "30 per minute",
    "market": "100 per minute",
    "admin": "50 per minute",
}


def get_client_identifier(req: Request) -> str:
    forwarded_for = req.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = req.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    cf_ip = req.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()
    return req.remote_addr or "unknown-client"


def client_key() -> str:
    return get_client_identifier(request)


limiter = Limiter(
    key_func=client_key,
    storage_uri="memory://",
    headers_enabled=True,
)


def rate_limited(type: str = "api") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Apply the named limit to a view, shared with every other view of the same type."""
    if type not in RATE_LIMITS:
        raise KeyError(f"Unknown rate limit type: {type}")
    return limiter.shared_limit(RATE_LIMITS[type], scope=type)


def too_many_requests(e):
    """429 handler: JSON body with the seconds until the window resets."""
    current = limiter.current_limit
    if current is not None:
        retry_after = max(1, math.ceil(current.reset_at - time.time()))
    else:
        retry_after = 1
    current_app.logger.warning(
        "Rate limit hit: limit=%s client=%s path=%s",
        getattr(e, "description", ""),
        get_client_identifier(request),
        request.path,
    )
    resp = jsonify(
        {
            "error": "Too many requests",
            "message": f"Rate limit exceeded. Please try again in {retry_after} seconds.",
            "retryAfter": retry_after,
        }
    )
    resp.status_code = 429
    return resp
