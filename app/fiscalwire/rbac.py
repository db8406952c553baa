from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.fiscalwire.models import User


def user_is_admin(user: User | None) -> bool:
    if not user or not user.is_active:
        return False
    return user.is_admin


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Admin API guard: anything but an active ADMIN session gets 401."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user_is_admin(user):
            return jsonify({"error": "Unauthorized"}), 401
        return fn(*args, **kwargs)

    return wrapped
