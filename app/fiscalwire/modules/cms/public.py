from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from app.fiscalwire.db import db_session
from app.fiscalwire.models import utcnow
from app.fiscalwire.modules.cms.models import Article, Category
from app.fiscalwire.modules.cms.service import current_breaking_news
from app.fiscalwire.modules.page_builder.auto_fill import get_page_zones_content
from app.fiscalwire.modules.page_builder.auto_sync import ensure_page_exists
from app.fiscalwire.modules.page_builder.models import PageDefinition
from app.fiscalwire.rate_limit import rate_limited
from app.fiscalwire.utils import parse_int, relative_time
from app.fiscalwire.validations import ValidationFailed, parse_pagination, validation_error_response

bp = Blueprint("public_api", __name__)

CATEGORY_COLORS = {
    "markets": "bg-blue-600",
    "tech": "bg-purple-600",
    "crypto": "bg-orange-500",
    "economy": "bg-green-600",
    "opinion": "bg-gray-600",
}


def article_card(article: Article, now) -> dict:
    """Listing shape used by the public feed."""
    category_slug = article.category.slug if article.category else "markets"
    color = (article.category.color if article.category else None) or CATEGORY_COLORS.get(category_slug, "bg-gray-600")
    return {
        "id": article.id,
        "slug": article.slug,
        "title": article.title,
        "excerpt": article.excerpt,
        "category": category_slug,
        "categoryColor": color,
        "imageUrl": article.image_url,
        "author": article.author.name if article.author else "Unknown",
        "authorAvatar": article.author.avatar if article.author else None,
        "publishedAt": relative_time(article.published_at, now),
        "readTime": article.read_time,
        "isFeatured": article.is_featured,
        "isBreaking": article.is_breaking,
    }


@bp.get("/articles")
@rate_limited("public")
def articles_feed():
    try:
        offset, limit = parse_pagination(request.args, default_limit=8)
    except ValidationFailed as e:
        return validation_error_response(e.details)

    s = db_session()
    q = s.query(Article)
    category = (request.args.get("category") or "").strip()
    if category:
        # An article is listed under its primary category and its section categories.
        ids = s.query(Category.id).filter(Category.slug == category).scalar_subquery()
        q = q.filter(
            or_(
                Article.category_id == ids,
                Article.markets_category_id == ids,
                Article.business_category_id == ids,
            )
        )
    total = q.count()
    rows = q.order_by(Article.published_at.desc(), Article.id.desc()).offset(offset).limit(limit).all()
    now = utcnow()
    return jsonify(
        {
            "articles": [article_card(a, now) for a in rows],
            "pagination": {"offset": offset, "limit": limit, "total": total, "hasMore": offset + len(rows) < total},
        }
    )


@bp.get("/articles/<slug>")
@rate_limited("public")
def article_detail(slug: str):
    s = db_session()
    article = s.query(Article).filter(Article.slug == slug).one_or_none()
    if not article:
        return jsonify({"error": "Article not found"}), 404
    return jsonify(article.to_dict())


@bp.get("/search")
@rate_limited("api")
def search():
    query = (request.args.get("q") or "").strip()
    if len(query) < 2:
        return jsonify({"articles": []})
    if len(query) > 200:
        return validation_error_response([{"field": "q", "message": "Search query must be at most 200 characters"}])
    limit = min(50, max(1, parse_int(request.args.get("limit"), 10) or 10))

    s = db_session()
    like = f"%{query}%"
    rows = (
        s.query(Article)
        .filter(or_(Article.title.ilike(like), Article.excerpt.ilike(like)))
        .order_by(Article.published_at.desc())
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "articles": [
                {
                    "id": a.id,
                    "slug": a.slug,
                    "title": a.title,
                    "excerpt": a.excerpt,
                    "imageUrl": a.image_url,
                    "publishedAt": a.published_at.isoformat(),
                    "readTime": a.read_time,
                    "category": (
                        {"name": a.category.name, "slug": a.category.slug, "color": a.category.color}
                        if a.category
                        else None
                    ),
                }
                for a in rows
            ]
        }
    )


@bp.get("/breaking-news")
@rate_limited("public")
def breaking_news():
    s = db_session()
    item = current_breaking_news(s)
    return jsonify({"breakingNews": item.to_dict() if item else None})


@bp.get("/pages/<slug>/zones")
@rate_limited("public")
def page_zones(slug: str):
    s = db_session()
    # Known pages (categories, fixed sections) are created on first visit.
    try:
        page = ensure_page_exists(s, slug)
        if page is None:
            return jsonify({"error": "Page not found"}), 404
        s.commit()
    except IntegrityError:
        # A concurrent first visit created the same slug; use its row.
        s.rollback()
        if s.query(PageDefinition).filter(PageDefinition.slug == slug).one_or_none() is None:
            raise
    return jsonify({"slug": slug, "zones": get_page_zones_content(s, slug)})
