from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any


def generate_slug(text: str, max_length: int = 100) -> str:
    """URL-friendly slug: lowercase, punctuation stripped, whitespace to single hyphens."""
    slug = (text or "").lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:max_length]


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_bool(value: Any, default: bool | None = None) -> bool | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 string into naive UTC. Empty values give None.
    Raises ValueError on malformed input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_int(value: Any, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def relative_time(then: datetime | None, now: datetime) -> str:
    """Short label for listings: 'Just now', '5h ago', '3d ago', else the date."""
    if then is None:
        return ""
    hours = int((now - then).total_seconds() // 3600)
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return f"{then.month}/{then.day}/{then.year}"
