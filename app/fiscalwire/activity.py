"""
Activity log helpers.

Writes go through the caller's session so they commit (or roll back) together with the
work they describe. A failure to record activity never breaks the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.fiscalwire.models import ACTIVITY_STATUSES, ACTIVITY_TYPES, ActivityLog, utcnow

logger = logging.getLogger(__name__)


def log_activity(
    s: Session,
    type: str,
    action: str,
    *,
    details: dict[str, Any] | None = None,
    count: int | None = None,
    status: str = "SUCCESS",
    error_message: str | None = None,
    duration_ms: int | None = None,
) -> ActivityLog | None:
    if type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {type}")
    if status not in ACTIVITY_STATUSES:
        raise ValueError(f"Unknown activity status: {status}")
    entry = ActivityLog(
        type=type,
        action=action,
        details=details,
        count=count,
        status=status,
        error_message=error_message,
        duration_ms=duration_ms,
    )
    # Savepoint: a failed insert rolls back alone and the caller's transaction stays usable.
    try:
        with s.begin_nested():
            s.add(entry)
        return entry
    except Exception:
        logger.exception("[ActivityLogger] Failed to log activity: %s", action)
        return None


def log_import(
    s: Session,
    action: str,
    count: int,
    details: dict[str, Any] | None = None,
    status: str = "SUCCESS",
    error_message: str | None = None,
    duration_ms: int | None = None,
) -> ActivityLog | None:
    return log_activity(
        s,
        "IMPORT",
        action,
        details=details,
        count=count,
        status=status,
        error_message=error_message,
        duration_ms=duration_ms,
    )


def log_news_api_usage(
    s: Session,
    action: str,
    articles_received: int,
    details: dict[str, Any] | None = None,
    error_message: str | None = None,
) -> ActivityLog | None:
    return log_activity(
        s,
        "NEWS_API",
        action,
        details=details,
        count=articles_received,
        status="ERROR" if error_message else "SUCCESS",
        error_message=error_message,
    )


def log_error(s: Session, action: str, error: BaseException | str, details: dict[str, Any] | None = None) -> ActivityLog | None:
    return log_activity(s, "ERROR", action, details=details, status="ERROR", error_message=str(error))


def log_system_event(s: Session, action: str, details: dict[str, Any] | None = None, status: str = "INFO") -> ActivityLog | None:
    return log_activity(s, "SYSTEM", action, details=details, status=status)


def _sum_for(s: Session, type: str, since: datetime) -> int:
    total = (
        s.query(func.coalesce(func.sum(ActivityLog.count), 0))
        .filter(ActivityLog.type == type, ActivityLog.created_at >= since)
        .scalar()
    )
    return int(total or 0)


def _count_for(s: Session, type: str, since: datetime) -> int:
    return s.query(ActivityLog).filter(ActivityLog.type == type, ActivityLog.created_at >= since).count()


def activity_stats(s: Session, now: datetime | None = None) -> dict[str, dict[str, int]]:
    """Dashboard counters for today and the trailing week."""
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = today - timedelta(days=7)
    errors_today = (
        s.query(ActivityLog)
        .filter(ActivityLog.status == "ERROR", ActivityLog.created_at >= today)
        .count()
    )
    return {
        "today": {
            "imports": _sum_for(s, "IMPORT", today),
            "newsApiCalls": _count_for(s, "NEWS_API", today),
            "errors": errors_today,
        },
        "week": {
            "imports": _sum_for(s, "IMPORT", week_ago),
            "newsApiCalls": _count_for(s, "NEWS_API", week_ago),
        },
    }
