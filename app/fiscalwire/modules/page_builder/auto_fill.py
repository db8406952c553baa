"""
Auto-fill rule resolution and zone content assembly.

A rule config looks like::

    {
        "source": "articles",            # or "videos"
        "filters": {"categorySlug": "markets", "isFeatured": true, "tags": ["fed"], "maxAge": "7d"},
        "sort": "publishedAt",           # publishedAt | createdAt | title
        "order": "desc",
        "limit": 10,
        "skip": 0,
    }
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.fiscalwire.models import utcnow
from app.fiscalwire.modules.cms.models import Article, Category, Tag, Video
from app.fiscalwire.modules.page_builder.models import PageDefinition, PageZone
from app.fiscalwire.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


MAX_AGE = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
ARTICLE_SORTS = {"publishedAt": Article.published_at, "createdAt": Article.created_at, "title": Article.title}
VIDEO_SORTS = {"createdAt": Video.created_at, "title": Video.title}
DEFAULT_LIMIT = 10


def _key(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _order(column, order: Any):
    return column.asc() if order == "asc" else column.desc()


def _resolve_articles(
    s: "Session", config: dict[str, Any], limit: int, skip: int, exclude_ids: set[int], now: datetime
) -> list[dict]:
    filters = config.get("filters")
    if not isinstance(filters, dict):
        filters = {}
    q = s.query(Article)
    category_id = parse_int(filters.get("categoryId"))
    if category_id is not None:
        q = q.filter(Article.category_id == category_id)
    if isinstance(filters.get("categorySlug"), str) and filters["categorySlug"]:
        q = q.join(Category, Article.category_id == Category.id).filter(Category.slug == filters["categorySlug"])
    if filters.get("isFeatured") is not None:
        q = q.filter(Article.is_featured.is_(bool(filters["isFeatured"])))
    if filters.get("isBreaking") is not None:
        q = q.filter(Article.is_breaking.is_(bool(filters["isBreaking"])))
    tags = filters.get("tags")
    tags = [t for t in tags if isinstance(t, str)] if isinstance(tags, list) else []
    if tags:
        q = q.filter(Article.tags.any(Tag.slug.in_(tags)))
    max_age = MAX_AGE.get(_key(filters.get("maxAge")))
    if max_age:
        q = q.filter(Article.published_at >= now - max_age)
    if exclude_ids:
        q = q.filter(Article.id.notin_(exclude_ids))

    sort_col = ARTICLE_SORTS.get(_key(config.get("sort")), Article.published_at)
    rows = q.order_by(_order(sort_col, config.get("order"))).offset(skip).limit(limit).all()
    return [a.to_summary() for a in rows]


def _resolve_videos(s: "Session", config: dict[str, Any], limit: int, skip: int, exclude_ids: set[int]) -> list[dict]:
    q = s.query(Video)
    if exclude_ids:
        q = q.filter(Video.id.notin_(exclude_ids))
    sort_col = VIDEO_SORTS.get(_key(config.get("sort")), Video.created_at)
    rows = q.order_by(_order(sort_col, config.get("order"))).offset(skip).limit(limit).all()
    return [v.to_dict() for v in rows]


def resolve_auto_fill_rules(
    s: "Session",
    config: dict[str, Any],
    *,
    exclude_ids: set[int] | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Resolve a rule config into serialized content items. Unknown sources give [].

    Stored configs are validated when saved, but rows written by scripts or older
    releases may not be; malformed filters are ignored rather than failing the page.
    """
    if not isinstance(config, dict):
        return []
    limit = parse_int(config.get("limit"), DEFAULT_LIMIT)
    if not limit or limit < 0:
        limit = DEFAULT_LIMIT
    skip = max(0, parse_int(config.get("skip"), 0) or 0)
    exclude = exclude_ids or set()
    source = config.get("source")
    if source == "articles":
        return _resolve_articles(s, config, limit, skip, exclude, now or utcnow())
    if source == "videos":
        return _resolve_videos(s, config, limit, skip, exclude)
    return []


def get_zone_content(s: "Session", zone_id: int, *, max_items: int | None = None, now: datetime | None = None) -> dict:
    """
    Live manual placements (inside their start/end window) plus auto-filled items up to
    the zone's max_items. Auto-fill never repeats content that is already placed.
    """
    zone = s.get(PageZone, zone_id)
    if zone is None:
        return {"placements": [], "autoFilled": []}

    now = now or utcnow()
    live = [p for p in zone.placements if p.is_live(now)]

    auto_filled: list[dict] = []
    rules = zone.auto_fill_rules
    if isinstance(rules, dict) and rules.get("source"):
        zone_max = (zone.zone_definition.max_items if zone.zone_definition else None) or max_items or DEFAULT_LIMIT
        remaining = max(0, zone_max - len(live))
        if remaining > 0:
            if rules["source"] == "videos":
                exclude = {p.video_id for p in live if p.video_id is not None}
            else:
                exclude = {p.article_id for p in live if p.article_id is not None}
            auto_filled = resolve_auto_fill_rules(s, {**rules, "limit": remaining}, exclude_ids=exclude, now=now)

    return {
        "placements": [
            {
                "id": p.id,
                "position": p.position,
                "isPinned": p.is_pinned,
                "contentType": p.content_type,
                "article": p.article.to_summary() if p.article else None,
                "video": p.video.to_dict() if p.video else None,
                "customContent": p.custom_content,
            }
            for p in live
        ],
        "autoFilled": auto_filled,
    }


def get_page_zones_content(s: "Session", slug: str, *, now: datetime | None = None) -> dict[str, dict]:
    """Map each enabled zone's definition slug to its combined content for an active page."""
    page = (
        s.query(PageDefinition)
        .filter(PageDefinition.slug == slug, PageDefinition.is_active.is_(True))
        .one_or_none()
    )
    if page is None:
        return {}

    result: dict[str, dict] = {}
    for zone in page.zones:
        if not zone.is_enabled:
            continue
        zc = get_zone_content(s, zone.id, now=now)
        content: list[dict] = []
        placements: list[dict] = []
        for p in zc["placements"]:
            item = p["article"] or p["video"]
            if item:
                content.append(item)
                placements.append({"isPinned": p["isPinned"], "content": item})
            elif p["customContent"]:
                placements.append({"isPinned": p["isPinned"], "content": p["customContent"]})
        for item in zc["autoFilled"]:
            content.append(item)
            placements.append({"isPinned": False, "content": item})

        key = zone.zone_definition.slug if zone.zone_definition else str(zone.id)
        result[key] = {
            "zoneType": zone.zone_definition.zone_type if zone.zone_definition else "CUSTOM",
            "content": content,
            "placements": placements,
        }
    return result
