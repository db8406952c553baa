from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.fiscalwire.audit import record_event
from app.fiscalwire.models import ActivityLog, utcnow
from app.fiscalwire.modules.cms.models import Article, Author, BreakingNews, Category, Tag, Video
from app.fiscalwire.modules.page_builder.placement import (
    add_article_to_page_builder_zones,
    remove_article_from_page_builder_zones,
)
from app.fiscalwire.utils import generate_slug, parse_bool, parse_datetime, parse_int
from app.fiscalwire.validations import (
    ValidationFailed,
    validate_article_payload,
    validate_author_payload,
    validate_category_payload,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fiscalwire.models import User


class CmsError(ValueError):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def _clean(payload: dict, key: str) -> str | None:
    v = payload.get(key)
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# ---------- Categories ----------
def list_categories_with_counts(s: "Session") -> list[dict]:
    counts = dict(
        s.query(Article.category_id, func.count(Article.id)).group_by(Article.category_id).all()
    )
    out = []
    for c in s.query(Category).order_by(Category.name.asc()).all():
        d = c.to_dict()
        d["articleCount"] = counts.get(c.id, 0)
        out.append(d)
    return out


def _slug_taken(s: "Session", model, slug: str, exclude_id: int | None = None) -> bool:
    q = s.query(model.id).filter(model.slug == slug)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    return q.first() is not None


def create_category(s: "Session", payload: dict, user: "User | None") -> Category:
    errors = validate_category_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    slug = _clean(payload, "slug")
    if _slug_taken(s, Category, slug):
        raise CmsError("A category with this slug already exists")

    category = Category(
        name=_clean(payload, "name"),
        slug=slug,
        color=_clean(payload, "color"),
        description=_clean(payload, "description"),
    )
    s.add(category)
    s.flush()
    record_event(
        s,
        actor=user,
        action="category.create",
        entity_type="Category",
        entity_id=str(category.id),
        metadata={"slug": category.slug},
    )
    return category


def update_category(s: "Session", category: Category, payload: dict, user: "User | None") -> Category:
    errors = validate_category_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)
    changes: dict[str, Any] = {}
    slug = _clean(payload, "slug")
    if slug and slug != category.slug:
        if _slug_taken(s, Category, slug, exclude_id=category.id):
            raise CmsError("A category with this slug already exists")
        changes["slug"] = {"old": category.slug, "new": slug}
        category.slug = slug
    name = _clean(payload, "name")
    if name and name != category.name:
        changes["name"] = {"old": category.name, "new": name}
        category.name = name
    if "color" in payload:
        category.color = _clean(payload, "color")
    if "description" in payload:
        category.description = _clean(payload, "description")
    category.updated_at = utcnow()

    record_event(
        s,
        actor=user,
        action="category.edit",
        entity_type="Category",
        entity_id=str(category.id),
        metadata={"changes": changes},
    )
    return category


def delete_category(s: "Session", category: Category, user: "User | None") -> None:
    in_use = (
        s.query(func.count(Article.id))
        .filter(
            or_(
                Article.category_id == category.id,
                Article.markets_category_id == category.id,
                Article.business_category_id == category.id,
            )
        )
        .scalar()
    )
    if in_use:
        raise CmsError("Cannot delete category with articles")
    record_event(s, actor=user, action="category.delete", entity_type="Category", entity_id=str(category.id), metadata={"slug": category.slug})
    s.delete(category)
    s.flush()


# ---------- Authors ----------
def list_authors(s: "Session") -> list[dict]:
    counts = dict(s.query(Article.author_id, func.count(Article.id)).group_by(Article.author_id).all())
    out = []
    for a in s.query(Author).order_by(Author.name.asc()).all():
        d = a.to_dict()
        d["articleCount"] = counts.get(a.id, 0)
        out.append(d)
    return out


def create_author(s: "Session", payload: dict, user: "User | None") -> Author:
    errors = validate_author_payload(payload)
    if errors:
        raise ValidationFailed(errors)
    author = Author(name=_clean(payload, "name"), avatar=_clean(payload, "avatar"), bio=_clean(payload, "bio"))
    s.add(author)
    s.flush()
    record_event(s, actor=user, action="author.create", entity_type="Author", entity_id=str(author.id))
    return author


def update_author(s: "Session", author: Author, payload: dict, user: "User | None") -> Author:
    errors = validate_author_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)
    name = _clean(payload, "name")
    if name:
        author.name = name
    if "avatar" in payload:
        author.avatar = _clean(payload, "avatar")
    if "bio" in payload:
        author.bio = _clean(payload, "bio")
    author.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="author.edit",
        entity_type="Author",
        entity_id=str(author.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return author


def delete_author(s: "Session", author: Author, user: "User | None") -> None:
    if s.query(Article.id).filter(Article.author_id == author.id).first():
        raise CmsError("Cannot delete author with articles")
    record_event(s, actor=user, action="author.delete", entity_type="Author", entity_id=str(author.id))
    s.delete(author)
    s.flush()


# ---------- Articles ----------
def list_articles(
    s: "Session",
    *,
    offset: int = 0,
    limit: int = 20,
    category_id: int | None = None,
    q: str | None = None,
) -> tuple[list[Article], int]:
    query = s.query(Article)
    if category_id is not None:
        query = query.filter(Article.category_id == category_id)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Article.title.ilike(like), Article.excerpt.ilike(like)))
    total = query.count()
    rows = query.order_by(Article.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total


def _resolve_tags(s: "Session", tag_ids: Any) -> list[Tag]:
    if not tag_ids:
        return []
    if not isinstance(tag_ids, list):
        raise CmsError("tagIds must be an array")
    ids = [parse_int(t) for t in tag_ids]
    if any(t is None for t in ids):
        raise CmsError("tagIds must contain integer ids")
    tags = s.query(Tag).filter(Tag.id.in_(ids)).all()
    if len(tags) != len(set(ids)):
        raise CmsError("One or more tags not found", 404)
    return tags


def _require_fk(s: "Session", model, raw: Any, label: str) -> int | None:
    if raw in (None, ""):
        return None
    value = parse_int(raw)
    if value is None or not s.get(model, value):
        raise CmsError(f"{label} not found", 404)
    return value


def _published_at(payload: dict) -> datetime | None:
    try:
        return parse_datetime(payload.get("publishedAt"))
    except ValueError:
        raise CmsError("publishedAt must be an ISO-8601 datetime")


def create_article(s: "Session", payload: dict, user: "User | None") -> Article:
    """Create an article and place it at the top of the matching page-builder zones."""
    errors = validate_article_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    title = _clean(payload, "title")
    slug = _clean(payload, "slug") or generate_slug(title)
    if _slug_taken(s, Article, slug):
        raise CmsError("An article with this slug already exists")

    category_id = _require_fk(s, Category, payload.get("categoryId"), "Category")
    author_id = _require_fk(s, Author, payload.get("authorId"), "Author")
    markets_category_id = _require_fk(s, Category, payload.get("marketsCategoryId"), "Markets category")
    business_category_id = _require_fk(s, Category, payload.get("businessCategoryId"), "Business category")
    tags = _resolve_tags(s, payload.get("tagIds"))

    now = utcnow()
    article = Article(
        title=title,
        slug=slug,
        excerpt=_clean(payload, "excerpt") or "",
        content=payload.get("content") or [],
        headings=payload.get("headings") if isinstance(payload.get("headings"), list) else None,
        image_url=_clean(payload, "imageUrl") or "",
        read_time=parse_int(payload.get("readTime"), 3) or 3,
        is_featured=bool(parse_bool(payload.get("isFeatured"), False)),
        is_breaking=bool(parse_bool(payload.get("isBreaking"), False)),
        relevant_tickers=[t.upper() for t in payload.get("relevantTickers") or []],
        category_id=category_id,
        markets_category_id=markets_category_id,
        business_category_id=business_category_id,
        author_id=author_id,
        published_at=_published_at(payload) or now,
        created_at=now,
        updated_at=now,
    )
    article.tags = tags
    s.add(article)
    s.flush()
    record_event(
        s,
        actor=user,
        action="article.create",
        entity_type="Article",
        entity_id=str(article.id),
        metadata={"slug": article.slug, "category_id": category_id},
    )

    # Homepage plus the primary category's page when no section categories are given.
    add_article_to_page_builder_zones(
        s,
        article.id,
        markets_category_id or category_id,
        business_category_id,
    )
    return article


def update_article(s: "Session", article: Article, payload: dict, user: "User | None") -> Article:
    errors = validate_article_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    slug = _clean(payload, "slug")
    if slug and slug != article.slug:
        if _slug_taken(s, Article, slug, exclude_id=article.id):
            raise CmsError("An article with this slug already exists")
        article.slug = slug
    title = _clean(payload, "title")
    if title:
        article.title = title
    if "excerpt" in payload:
        article.excerpt = _clean(payload, "excerpt") or ""
    if "content" in payload:
        article.content = payload.get("content") or []
    if "headings" in payload:
        article.headings = payload.get("headings") if isinstance(payload.get("headings"), list) else None
    if "imageUrl" in payload:
        article.image_url = _clean(payload, "imageUrl") or ""
    if "readTime" in payload:
        article.read_time = parse_int(payload.get("readTime"), article.read_time) or article.read_time
    if "isFeatured" in payload:
        article.is_featured = bool(parse_bool(payload.get("isFeatured"), article.is_featured))
    if "isBreaking" in payload:
        article.is_breaking = bool(parse_bool(payload.get("isBreaking"), article.is_breaking))
    if "relevantTickers" in payload:
        article.relevant_tickers = [t.upper() for t in payload.get("relevantTickers") or []]
    if payload.get("categoryId") not in (None, ""):
        article.category_id = _require_fk(s, Category, payload.get("categoryId"), "Category")
    if payload.get("authorId") not in (None, ""):
        article.author_id = _require_fk(s, Author, payload.get("authorId"), "Author")
    if "marketsCategoryId" in payload:
        article.markets_category_id = _require_fk(s, Category, payload.get("marketsCategoryId"), "Markets category")
    if "businessCategoryId" in payload:
        article.business_category_id = _require_fk(s, Category, payload.get("businessCategoryId"), "Business category")
    if "tagIds" in payload:
        article.tags = _resolve_tags(s, payload.get("tagIds"))
    if payload.get("publishedAt"):
        article.published_at = _published_at(payload)
    article.updated_at = utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="article.edit",
        entity_type="Article",
        entity_id=str(article.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return article


def delete_article(s: "Session", article: Article, user: "User | None") -> None:
    record_event(s, actor=user, action="article.delete", entity_type="Article", entity_id=str(article.id), metadata={"slug": article.slug})
    # Placements are removed here rather than by the FK cascade so each zone stays gap-free.
    remove_article_from_page_builder_zones(s, article.id)
    s.delete(article)
    s.flush()


# ---------- Videos ----------
YOUTUBE_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/)([^&\n?#]+)"),
    re.compile(r"youtube\.com/shorts/([^&\n?#]+)"),
)
VIMEO_PATTERN = re.compile(r"vimeo\.com/(?:video/)?(\d+)")


def detect_embed_type(url: str) -> tuple[str, str] | None:
    """Return (embed_type, video_id) for YouTube/Vimeo URLs, else None."""
    for pattern in YOUTUBE_PATTERNS:
        m = pattern.search(url)
        if m:
            return "youtube", m.group(1)
    m = VIMEO_PATTERN.search(url)
    if m:
        return "vimeo", m.group(1)
    return None


def thumbnail_url(embed_type: str, video_id: str) -> str:
    if embed_type == "youtube":
        return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"
    if embed_type == "vimeo":
        return f"https://vumbnail.com/{video_id}.jpg"
    return ""


def list_videos(s: "Session", *, offset: int = 0, limit: int = 50) -> tuple[list[Video], int]:
    total = s.query(func.count(Video.id)).scalar() or 0
    rows = s.query(Video).order_by(Video.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total


def create_video(s: "Session", payload: dict, user: "User | None") -> Video:
    url = _clean(payload, "url")
    if not url:
        raise CmsError("URL is required")
    embed = detect_embed_type(url)
    if embed is None:
        raise CmsError("Unsupported video URL. Please use YouTube or Vimeo.")
    embed_type, video_id = embed

    video = Video(
        title=_clean(payload, "title") or f"Video {video_id}",
        thumbnail=thumbnail_url(embed_type, video_id),
        duration="0:00",
        category=_clean(payload, "category") or "General",
        url=url,
        embed_type=embed_type,
        video_id=video_id,
    )
    s.add(video)
    s.flush()
    record_event(
        s,
        actor=user,
        action="video.create",
        entity_type="Video",
        entity_id=str(video.id),
        metadata={"embed_type": embed_type, "video_id": video_id},
    )
    return video


# ---------- Breaking news ----------
def current_breaking_news(s: "Session") -> BreakingNews | None:
    return (
        s.query(BreakingNews)
        .filter(BreakingNews.is_active.is_(True))
        .order_by(BreakingNews.created_at.desc(), BreakingNews.id.desc())
        .first()
    )


# ---------- Activity logs ----------
def query_activity_logs(
    s: "Session",
    *,
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> tuple[list[ActivityLog], int]:
    q = s.query(ActivityLog)
    if type:
        q = q.filter(ActivityLog.type == type)
    if status:
        q = q.filter(ActivityLog.status == status)
    if start_date:
        q = q.filter(ActivityLog.created_at >= start_date)
    if end_date:
        # The end date is inclusive of its whole day.
        q = q.filter(ActivityLog.created_at < end_date + timedelta(days=1))
    total = q.count()
    rows = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total
