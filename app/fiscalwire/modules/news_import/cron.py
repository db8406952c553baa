from __future__ import annotations

import secrets

from flask import Blueprint, Request, current_app, jsonify, request

from app.fiscalwire.db import db_session
from app.fiscalwire.modules.news_import.newsdata import NewsDataError, client_from_config
from app.fiscalwire.modules.news_import.service import import_news, refresh_homepage

bp = Blueprint("cron", __name__)


def verify_cron_auth(req: Request) -> bool:
    """
    Only ``Authorization: Bearer <CRON_SECRET>`` is accepted. Secrets passed in the query
    string end up in access logs, so they are never honoured. With no secret configured,
    calls are allowed in development only.
    """
    secret = current_app.config.get("CRON_SECRET") or ""
    if not secret:
        return (current_app.config.get("ENV") or "").lower() == "development"

    header = req.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token:
        return False
    return secrets.compare_digest(token.strip(), secret)


def _unauthorized():
    current_app.logger.warning("[Cron] Unauthorized call to %s", request.path)
    return jsonify({"error": "Unauthorized"}), 401


@bp.route("/import-news", methods=["GET", "POST"])
def import_news_job():
    if not verify_cron_auth(request):
        return _unauthorized()

    s = db_session()
    try:
        results = import_news(s, client_from_config(current_app.config))
    except NewsDataError as e:
        # Keep the activity-log rows written before the failure.
        s.commit()
        current_app.logger.error("[Cron] News import failed: %s", e)
        return jsonify({"success": False, "error": str(e)}), 500
    s.commit()
    return jsonify({"success": True, "message": "Import completed", **results})


@bp.route("/refresh-homepage", methods=["GET", "POST"])
def refresh_homepage_job():
    if not verify_cron_auth(request):
        return _unauthorized()

    s = db_session()
    try:
        result = refresh_homepage(s)
    except LookupError as e:
        s.rollback()
        return jsonify({"success": False, "error": str(e)}), 404
    s.commit()
    return jsonify({"success": True, "message": "Homepage refreshed with latest articles", **result})
