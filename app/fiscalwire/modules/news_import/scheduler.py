"""
In-process daily news import.

Fires once a day at 07:00 Jerusalem time by calling the cron endpoint over HTTP, so the
import runs through the same auth, session handling and activity logging as an external
cron call. The job lives on an APScheduler ``BackgroundScheduler`` (daemon thread).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import requests
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.fiscalwire.config import load_config

logger = logging.getLogger(__name__)

JERUSALEM_TZ = ZoneInfo("Asia/Jerusalem")
IMPORT_HOUR = 7
JOB_ID = "daily-news-import"
REQUEST_TIMEOUT_SECONDS = 300
# A run missed by less than this (process asleep, deploy in progress) still fires.
MISFIRE_GRACE_SECONDS = 3600

_lock = threading.Lock()
_scheduler: BackgroundScheduler | None = None


def daily_trigger() -> CronTrigger:
    return CronTrigger(hour=IMPORT_HOUR, minute=0, timezone=JERUSALEM_TZ)


def next_run(now: datetime) -> datetime:
    """Next 07:00 in Jerusalem strictly after ``now`` (naive values are treated as UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    # The trigger treats ``now`` itself as a valid fire time.
    return daily_trigger().get_next_fire_time(None, now + timedelta(microseconds=1))


def get_base_url(config: Mapping[str, Any] | None = None) -> str:
    cfg = config if config is not None else load_config()
    base = (cfg.get("BASE_URL") or "").strip()
    if base:
        return base.rstrip("/")
    domain = (cfg.get("RAILWAY_PUBLIC_DOMAIN") or "").strip()
    if domain:
        return f"https://{domain}"
    return "http://localhost:3000"


def trigger_import(config: Mapping[str, Any] | None = None) -> bool:
    """POST the import endpoint. Failures are logged, never raised, so the job stays scheduled."""
    cfg = config if config is not None else load_config()
    url = f"{get_base_url(cfg)}/api/cron/import-news"
    headers = {"Accept": "application/json"}
    secret = cfg.get("CRON_SECRET") or ""
    if secret:
        headers["Authorization"] = f"Bearer {secret}"

    local = datetime.now(JERUSALEM_TZ)
    logger.info("[Scheduler] Triggering news import at %s Jerusalem time", local.strftime("%Y-%m-%d %H:%M"))
    logger.info("[Scheduler] Calling %s", url)
    try:
        resp = requests.post(url, headers=headers, timeout=REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        logger.error("[Scheduler] Error triggering import: %s", e)
        return False

    try:
        body = resp.json()
    except ValueError:
        body = resp.text[:300]
    if resp.ok:
        logger.info("[Scheduler] Import successful: %s", body)
        return True
    logger.error("[Scheduler] Import failed (%s): %s", resp.status_code, body)
    return False


def run_import_job(config: Mapping[str, Any] | None = None) -> bool:
    # Module-level lookup so the job always calls the current trigger_import.
    return trigger_import(config)


def start(config: Mapping[str, Any] | None = None) -> bool:
    """Start the daily job. Returns False if it was already running."""
    global _scheduler
    with _lock:
        if _scheduler is not None and _scheduler.running:
            logger.info("[Scheduler] Already running")
            return False

        sched = BackgroundScheduler(timezone=JERUSALEM_TZ)
        sched.add_job(
            run_import_job,
            daily_trigger(),
            id=JOB_ID,
            name="Daily news import",
            kwargs={"config": dict(config) if config is not None else None},
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )
        sched.start()
        _scheduler = sched

    local = datetime.now(JERUSALEM_TZ)
    logger.info("[Scheduler] Started at %s Jerusalem time", local.strftime("%Y-%m-%d %H:%M"))
    logger.info("[Scheduler] Will import news once daily at: %s:00 Jerusalem time", IMPORT_HOUR)
    status_now = status()
    logger.info("[Scheduler] Next import at %s", status_now["nextRun"])
    return True


def stop() -> None:
    global _scheduler
    with _lock:
        sched, _scheduler = _scheduler, None
    if sched is not None and sched.running:
        sched.shutdown(wait=False)
        logger.info("[Scheduler] Stopped")


def status() -> dict[str, Any]:
    with _lock:
        sched = _scheduler
    if sched is None or not sched.running:
        return {"running": False, "nextRun": None}
    job = sched.get_job(JOB_ID)
    when = job.next_run_time if job else None
    return {"running": True, "nextRun": when.isoformat() if when else None}
