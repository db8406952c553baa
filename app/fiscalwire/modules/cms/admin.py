from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.fiscalwire.activity import activity_stats
from app.fiscalwire.db import db_session
from app.fiscalwire.models import ACTIVITY_STATUSES, ACTIVITY_TYPES, User
from app.fiscalwire.modules.cms.models import Article, Author, Category
from app.fiscalwire.modules.cms.service import (
    CmsError,
    create_article,
    create_author,
    create_category,
    create_video,
    delete_article,
    delete_author,
    delete_category,
    list_articles,
    list_authors,
    list_categories_with_counts,
    list_videos,
    query_activity_logs,
    update_article,
    update_author,
    update_category,
)
from app.fiscalwire.rate_limit import rate_limited
from app.fiscalwire.rbac import require_admin
from app.fiscalwire.utils import parse_datetime, parse_int
from app.fiscalwire.validations import ValidationFailed, parse_pagination, validation_error_response

bp = Blueprint("cms_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _run(fn, *args):
    """Call a service mutation; commit on success, translate domain errors to JSON."""
    s = db_session()
    try:
        result = fn(s, *args)
    except ValidationFailed as e:
        s.rollback()
        return None, validation_error_response(e.details)
    except CmsError as e:
        s.rollback()
        return None, (jsonify({"error": e.message}), e.status)
    s.commit()
    return result, None


# ---------- Categories ----------
@bp.get("/categories")
@rate_limited("admin")
@require_admin
def categories_list():
    s = db_session()
    return jsonify(list_categories_with_counts(s))


@bp.post("/categories")
@rate_limited("admin")
@require_admin
def categories_create():
    category, err = _run(create_category, _json_body(), _current_user())
    if err:
        return err
    return jsonify(category.to_dict()), 201


@bp.route("/categories/<int:category_id>", methods=["PUT", "PATCH"])
@rate_limited("admin")
@require_admin
def categories_update(category_id: int):
    s = db_session()
    category = s.get(Category, category_id)
    if not category:
        return jsonify({"error": "Category not found"}), 404
    _, err = _run(update_category, category, _json_body(), _current_user())
    if err:
        return err
    return jsonify(category.to_dict())


@bp.delete("/categories/<int:category_id>")
@rate_limited("admin")
@require_admin
def categories_delete(category_id: int):
    s = db_session()
    category = s.get(Category, category_id)
    if not category:
        return jsonify({"error": "Category not found"}), 404
    _, err = _run(delete_category, category, _current_user())
    if err:
        return err
    return jsonify({"success": True})


# ---------- Authors ----------
@bp.get("/authors")
@rate_limited("admin")
@require_admin
def authors_list():
    s = db_session()
    return jsonify(list_authors(s))


@bp.post("/authors")
@rate_limited("admin")
@require_admin
def authors_create():
    author, err = _run(create_author, _json_body(), _current_user())
    if err:
        return err
    return jsonify(author.to_dict()), 201


@bp.route("/authors/<int:author_id>", methods=["PUT", "PATCH"])
@rate_limited("admin")
@require_admin
def authors_update(author_id: int):
    s = db_session()
    author = s.get(Author, author_id)
    if not author:
        return jsonify({"error": "Author not found"}), 404
    _, err = _run(update_author, author, _json_body(), _current_user())
    if err:
        return err
    return jsonify(author.to_dict())


@bp.delete("/authors/<int:author_id>")
@rate_limited("admin")
@require_admin
def authors_delete(author_id: int):
    s = db_session()
    author = s.get(Author, author_id)
    if not author:
        return jsonify({"error": "Author not found"}), 404
    _, err = _run(delete_author, author, _current_user())
    if err:
        return err
    return jsonify({"success": True})


# ---------- Articles ----------
@bp.get("/articles")
@rate_limited("admin")
@require_admin
def articles_list():
    try:
        offset, limit = parse_pagination(request.args)
    except ValidationFailed as e:
        return validation_error_response(e.details)
    s = db_session()
    q = (request.args.get("q") or "").strip() or None
    rows, total = list_articles(
        s,
        offset=offset,
        limit=limit,
        category_id=parse_int(request.args.get("categoryId")),
        q=q,
    )
    return jsonify(
        {
            "articles": [a.to_dict() for a in rows],
            "pagination": {"offset": offset, "limit": limit, "total": total, "hasMore": offset + len(rows) < total},
        }
    )


@bp.post("/articles")
@rate_limited("admin")
@require_admin
def articles_create():
    article, err = _run(create_article, _json_body(), _current_user())
    if err:
        return err
    return jsonify(article.to_dict()), 201


@bp.get("/articles/<int:article_id>")
@rate_limited("admin")
@require_admin
def articles_detail(article_id: int):
    s = db_session()
    article = s.get(Article, article_id)
    if not article:
        return jsonify({"error": "Article not found"}), 404
    return jsonify(article.to_dict())


@bp.route("/articles/<int:article_id>", methods=["PUT", "PATCH"])
@rate_limited("admin")
@require_admin
def articles_update(article_id: int):
    s = db_session()
    article = s.get(Article, article_id)
    if not article:
        return jsonify({"error": "Article not found"}), 404
    _, err = _run(update_article, article, _json_body(), _current_user())
    if err:
        return err
    return jsonify(article.to_dict())


@bp.delete("/articles/<int:article_id>")
@rate_limited("admin")
@require_admin
def articles_delete(article_id: int):
    s = db_session()
    article = s.get(Article, article_id)
    if not article:
        return jsonify({"error": "Article not found"}), 404
    _, err = _run(delete_article, article, _current_user())
    if err:
        return err
    return jsonify({"success": True})


# ---------- Videos ----------
@bp.get("/videos")
@rate_limited("admin")
@require_admin
def videos_list():
    s = db_session()
    limit = min(100, max(1, parse_int(request.args.get("limit"), 50) or 50))
    offset = max(0, parse_int(request.args.get("offset"), 0) or 0)
    rows, total = list_videos(s, offset=offset, limit=limit)
    return jsonify({"videos": [v.to_dict() for v in rows], "total": total})


@bp.post("/videos")
@rate_limited("admin")
@require_admin
def videos_create():
    video, err = _run(create_video, _json_body(), _current_user())
    if err:
        return err
    return jsonify(video.to_dict()), 201


# ---------- Activity logs ----------
@bp.get("/activity-logs")
@rate_limited("admin")
@require_admin
def activity_logs():
    s = db_session()
    page = max(1, parse_int(request.args.get("page"), 1) or 1)
    limit = min(100, max(1, parse_int(request.args.get("limit"), 20) or 20))
    type_filter = (request.args.get("type") or "").strip().upper() or None
    status_filter = (request.args.get("status") or "").strip().upper() or None
    if type_filter and type_filter not in ACTIVITY_TYPES:
        return jsonify({"error": f"Invalid type. Must be one of: {', '.join(ACTIVITY_TYPES)}"}), 400
    if status_filter and status_filter not in ACTIVITY_STATUSES:
        return jsonify({"error": f"Invalid status. Must be one of: {', '.join(ACTIVITY_STATUSES)}"}), 400
    try:
        start_date = parse_datetime(request.args.get("startDate"))
        end_date = parse_datetime(request.args.get("endDate"))
    except ValueError:
        return jsonify({"error": "startDate/endDate must be ISO-8601 dates"}), 400

    logs, total = query_activity_logs(
        s,
        page=page,
        limit=limit,
        type=type_filter,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
    )
    return jsonify(
        {
            "success": True,
            "logs": [log.to_dict() for log in logs],
            "pagination": {"page": page, "limit": limit, "total": total, "totalPages": -(-total // limit)},
            "stats": activity_stats(s),
        }
    )
