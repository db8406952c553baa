"""
Request payload validation.

Validators return a list of ``{"field", "message"}`` dicts; an empty list means the
payload is valid. Blueprints turn a non-empty list into the standard 400 response via
``validation_error_response``.
"""

from __future__ import annotations

import re
from typing import Any

from flask import jsonify

SLUG_RE = re.compile(r"^[a-z0-9-]+$")
COLOR_RE = re.compile(r"^bg-[a-z]+-\d{3}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://\S+$")

CHART_PERIODS = ("1d", "5d", "1mo", "3mo", "6mo", "1y")
DEFAULT_CHART_PERIOD = "1mo"


class ValidationFailed(ValueError):
    def __init__(self, details: list[dict[str, str]]):
        super().__init__("Validation failed")
        self.details = details


def validation_error_response(details: list[dict[str, str]]):
    return jsonify({"error": "Validation failed", "details": details}), 400


def _err(field: str, message: str) -> dict[str, str]:
    return {"field": field, "message": message}


def _str(payload: dict, key: str) -> str:
    v = payload.get(key)
    return v.strip() if isinstance(v, str) else ""


def _check_length(errors: list, field: str, value: str, lo: int, hi: int, label: str) -> None:
    if len(value) < lo:
        errors.append(_err(field, f"{label} must be at least {lo} characters"))
    elif len(value) > hi:
        errors.append(_err(field, f"{label} must be at most {hi} characters"))


def password_errors(password: str, field: str = "password") -> list[dict[str, str]]:
    errors = []
    if len(password) < 8:
        errors.append(_err(field, "Password must be at least 8 characters"))
    if not re.search(r"[A-Z]", password):
        errors.append(_err(field, "Password must contain at least one uppercase letter"))
    if not re.search(r"[a-z]", password):
        errors.append(_err(field, "Password must contain at least one lowercase letter"))
    if not re.search(r"[0-9]", password):
        errors.append(_err(field, "Password must contain at least one number"))
    return errors


def validate_email(email: str, field: str = "email") -> list[dict[str, str]]:
    if not EMAIL_RE.match(email or ""):
        return [_err(field, "Invalid email address")]
    return []


def validate_signup_payload(payload: dict) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    name = _str(payload, "name")
    if name:
        _check_length(errors, "name", name, 2, 100, "Name")
    errors.extend(validate_email(_str(payload, "email").lower()))
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    errors.extend(password_errors(password))
    return errors


def validate_reset_password_payload(payload: dict) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    if not _str(payload, "token"):
        errors.append(_err("token", "Token is required"))
    password = payload.get("password") if isinstance(payload.get("password"), str) else ""
    errors.extend(password_errors(password))
    return errors


def validate_category_payload(payload: dict, *, partial: bool = False) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    name = _str(payload, "name")
    if name or not partial:
        _check_length(errors, "name", name, 2, 100, "Name")
    slug = _str(payload, "slug")
    if slug or not partial:
        if not SLUG_RE.match(slug) or len(slug) > 100:
            errors.append(_err("slug", "Slug must be lowercase alphanumeric with hyphens"))
    color = _str(payload, "color")
    if color and not COLOR_RE.match(color):
        errors.append(_err("color", "Invalid color format (e.g., bg-blue-600)"))
    return errors


def validate_author_payload(payload: dict, *, partial: bool = False) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    name = _str(payload, "name")
    if name or not partial:
        _check_length(errors, "name", name, 2, 100, "Name")
    avatar = _str(payload, "avatar")
    if avatar and not (URL_RE.match(avatar) or avatar.startswith("/")):
        errors.append(_err("avatar", "Invalid avatar URL"))
    bio = _str(payload, "bio")
    if len(bio) > 1000:
        errors.append(_err("bio", "Bio must be at most 1000 characters"))
    return errors


def validate_article_payload(payload: dict, *, partial: bool = False) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    title = _str(payload, "title")
    if title or not partial:
        _check_length(errors, "title", title, 5, 500, "Title")
    slug = _str(payload, "slug")
    if slug and not SLUG_RE.match(slug):
        errors.append(_err("slug", "Slug must be lowercase alphanumeric with hyphens"))
    if not partial:
        if payload.get("categoryId") in (None, ""):
            errors.append(_err("categoryId", "Category is required"))
        if payload.get("authorId") in (None, ""):
            errors.append(_err("authorId", "Author is required"))
    content = payload.get("content")
    if content is not None and not isinstance(content, list):
        errors.append(_err("content", "Content must be a list of blocks"))
    image_url = _str(payload, "imageUrl")
    if image_url and not (URL_RE.match(image_url) or image_url.startswith("/")):
        errors.append(_err("imageUrl", "Invalid image URL"))
    tickers = payload.get("relevantTickers")
    if tickers is not None and not (isinstance(tickers, list) and all(isinstance(t, str) for t in tickers)):
        errors.append(_err("relevantTickers", "Tickers must be a list of strings"))
    return errors


AUTO_FILL_SORTS = {
    "articles": ("publishedAt", "createdAt", "title"),
    "videos": ("createdAt", "title"),
}
AUTO_FILL_MAX_AGES = ("24h", "7d", "30d")
AUTO_FILL_ORDERS = ("asc", "desc")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_auto_fill_config(config: Any, field: str = "config", *, allow_empty: bool = False) -> list[dict[str, str]]:
    """
    Check an auto-fill rule config before it is stored or previewed. With ``allow_empty``
    an empty object (no auto-fill) is accepted.
    """
    if not isinstance(config, dict):
        return [_err(field, "Auto-fill config must be an object")]
    if allow_empty and not config:
        return []

    errors: list[dict[str, str]] = []
    source = config.get("source")
    if not isinstance(source, str) or source not in AUTO_FILL_SORTS:
        errors.append(_err(f"{field}.source", "Source must be one of: articles, videos"))

    filters = config.get("filters")
    if filters is not None and not isinstance(filters, dict):
        errors.append(_err(f"{field}.filters", "Filters must be an object"))
        filters = None
    filters = filters or {}
    category_id = filters.get("categoryId")
    if category_id not in (None, "") and not (isinstance(category_id, int) and not isinstance(category_id, bool)):
        errors.append(_err(f"{field}.filters.categoryId", "categoryId must be an integer"))
    category_slug = filters.get("categorySlug")
    if category_slug is not None and not isinstance(category_slug, str):
        errors.append(_err(f"{field}.filters.categorySlug", "categorySlug must be a string"))
    for flag in ("isFeatured", "isBreaking"):
        if filters.get(flag) is not None and not isinstance(filters[flag], bool):
            errors.append(_err(f"{field}.filters.{flag}", f"{flag} must be true or false"))
    tags = filters.get("tags")
    if tags is not None and not (isinstance(tags, list) and all(isinstance(t, str) for t in tags)):
        errors.append(_err(f"{field}.filters.tags", "Tags must be a list of strings"))
    max_age = filters.get("maxAge")
    if max_age not in (None, "") and max_age not in AUTO_FILL_MAX_AGES:
        errors.append(_err(f"{field}.filters.maxAge", "maxAge must be one of: 24h, 7d, 30d"))

    sort = config.get("sort")
    allowed_sorts = AUTO_FILL_SORTS.get(source, ()) if isinstance(source, str) else ()
    if sort is not None and sort not in allowed_sorts:
        errors.append(_err(f"{field}.sort", "Unsupported sort field"))
    order = config.get("order")
    if order is not None and order not in AUTO_FILL_ORDERS:
        errors.append(_err(f"{field}.order", "Order must be asc or desc"))
    for key in ("limit", "skip"):
        if config.get(key) is not None and not _is_count(config[key]):
            errors.append(_err(f"{field}.{key}", f"{key} must be a non-negative integer"))
    return errors


def parse_pagination(args: Any, *, default_limit: int = 20) -> tuple[int, int]:
    """Parse ``offset``/``limit`` query params. Raises ValidationFailed on bad input."""
    errors: list[dict[str, str]] = []
    offset, limit = 0, default_limit
    raw_offset = args.get("offset")
    if raw_offset not in (None, ""):
        try:
            offset = int(raw_offset)
        except (TypeError, ValueError):
            errors.append(_err("offset", "Offset must be an integer"))
        else:
            if offset < 0:
                errors.append(_err("offset", "Offset must be at least 0"))
    raw_limit = args.get("limit")
    if raw_limit not in (None, ""):
        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            errors.append(_err("limit", "Limit must be an integer"))
        else:
            if limit < 1 or limit > 100:
                errors.append(_err("limit", "Limit must be between 1 and 100"))
    if errors:
        raise ValidationFailed(errors)
    return offset, limit


def validate_search_query(q: str) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    if len(q) < 2:
        errors.append(_err("q", "Search query must be at least 2 characters"))
    elif len(q) > 200:
        errors.append(_err("q", "Search query must be at most 200 characters"))
    return errors


def normalize_chart_period(period: str | None) -> str:
    return period if period in CHART_PERIODS else DEFAULT_CHART_PERIOD


def parse_quote_symbols(raw: str) -> list[str]:
    """Split a comma-separated symbol list. Raises ValidationFailed when out of bounds."""
    symbols = [p.strip().upper() for p in raw.split(",")]
    errors: list[dict[str, str]] = []
    if not symbols or len(symbols) > 50:
        errors.append(_err("symbols", "Between 1 and 50 symbols are required"))
    for i, sym in enumerate(symbols):
        if not sym or len(sym) > 10:
            errors.append(_err(f"symbols.{i}", "Symbol must be 1-10 characters"))
    if errors:
        raise ValidationFailed(errors)
    return symbols
