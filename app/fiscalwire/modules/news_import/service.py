"""
News import pipeline: NewsData items become articles, get auto-placed into page-builder
zones, and every run is written to the activity log.
"""

from __future__ import annotations

import logging
import random
import re
import time
from typing import TYPE_CHECKING, Any

from app.fiscalwire.activity import log_error, log_import, log_news_api_usage
from app.fiscalwire.models import utcnow
from app.fiscalwire.modules.cms.models import Article, Author, BreakingNews, Category, Tag
from app.fiscalwire.modules.news_import.newsdata import (
    NewsDataClient,
    NewsDataError,
    convert_to_content_blocks,
    estimate_read_time,
    extract_tickers,
    map_category,
)
from app.fiscalwire.modules.page_builder.models import ContentPlacement, PageDefinition
from app.fiscalwire.modules.page_builder.placement import add_article_to_page_builder_zones
from app.fiscalwire.utils import generate_slug, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "/images/placeholder-news.jpg"
FALLBACK_AUTHOR_NAME = "NewsData Wire"
PAID_PLAN_MARKER = "ONLY AVAILABLE IN PAID PLANS"
MAX_TAGS = 5

HOMEPAGE_ZONE_LIMITS = (
    ("hero-featured", 4),
    ("article-grid", 6),
    ("trending-sidebar", 8),
)


def ensure_unique_slug(s: "Session", base_slug: str) -> str:
    slug = base_slug or "article"
    counter = 1
    while s.query(Article.id).filter(Article.slug == slug).first():
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug


def get_or_create_category(s: "Session", slug: str) -> Category:
    category = s.query(Category).filter(Category.slug == slug).one_or_none()
    if category is None:
        category = Category(name=slug[:1].upper() + slug[1:], slug=slug, color="bg-blue-600")
        s.add(category)
        s.flush()
        logger.info("[Import] Created category %s", slug)
    return category


def get_or_create_tags(s: "Session", keywords: list[str] | None) -> list[Tag]:
    tags: list[Tag] = []
    for keyword in (keywords or [])[:MAX_TAGS]:
        slug = re.sub(r"[^\w-]", "", re.sub(r"\s+", "-", keyword.lower()))
        if not slug or any(t.slug == slug for t in tags):
            continue
        tag = s.query(Tag).filter(Tag.slug == slug).one_or_none()
        if tag is None:
            tag = Tag(name=keyword, slug=slug)
            s.add(tag)
            s.flush()
        tags.append(tag)
    return tags


def pick_author(s: "Session", creators: list[str] | None, rng: random.Random | None = None) -> Author:
    """Match the first creator by name, else a random staff author, else the wire author."""
    if creators:
        wanted = creators[0].strip().lower()
        match = next((a for a in s.query(Author).all() if a.name.lower() == wanted), None)
        if match:
            return match

    staff = s.query(Author).filter(Author.name != "NewsData").order_by(Author.id.asc()).all()
    staff = [a for a in staff if a.name != FALLBACK_AUTHOR_NAME] or staff
    if staff:
        return (rng or random).choice(staff)

    author = Author(name=FALLBACK_AUTHOR_NAME, bio="Automated newswire coverage.")
    s.add(author)
    s.flush()
    return author


def _clean_content(content: str | None) -> str | None:
    if not content or PAID_PLAN_MARKER in content.upper():
        return None
    return content


def _published_at(raw: Any):
    try:
        return parse_datetime(raw) or utcnow()
    except ValueError:
        return utcnow()


def import_item(s: "Session", item: dict[str, Any], *, rng: random.Random | None = None) -> Article | None:
    """Create one article from a NewsData item. Returns None when it was already imported."""
    external_id = item.get("article_id")
    if external_id and s.query(Article.id).filter(Article.external_id == external_id).first():
        return None

    title = item["title"].strip()
    description = (item.get("description") or "").strip()
    content = _clean_content(item.get("content"))

    category = get_or_create_category(s, map_category(item.get("category")))
    author = pick_author(s, item.get("creator"), rng)
    now = utcnow()
    article = Article(
        title=title[:500],
        slug=ensure_unique_slug(s, generate_slug(title)),
        excerpt=description or title,
        content=convert_to_content_blocks(content, description),
        image_url=item.get("image_url") or PLACEHOLDER_IMAGE,
        read_time=estimate_read_time(content),
        is_featured=False,
        is_breaking=False,
        relevant_tickers=extract_tickers(content, title),
        category_id=category.id,
        markets_category_id=category.id,
        author_id=author.id,
        external_id=external_id,
        source_url=item.get("link"),
        published_at=_published_at(item.get("pubDate")),
        created_at=now,
        updated_at=now,
    )
    article.tags = get_or_create_tags(s, item.get("keywords"))
    s.add(article)
    s.flush()

    add_article_to_page_builder_zones(s, article.id, category.id, None)
    return article


def import_news(s: "Session", client: NewsDataClient, *, rng: random.Random | None = None) -> dict[str, Any]:
    """
    Fetch the latest NewsData items and import the new ones. Each item runs in its own
    savepoint so a bad item is counted as an error without undoing the others.
    Raises NewsDataError when the fetch itself fails (after logging it).
    """
    started = time.monotonic()
    try:
        items = client.fetch_latest()
    except NewsDataError as e:
        log_news_api_usage(s, "latest", 0, details={"endpoint": "latest"}, error_message=str(e))
        log_error(s, "import-news", e, details={"source": "import-news", "operation": "fetch"})
        raise
    log_news_api_usage(s, "latest", len(items), details={"endpoint": "latest", "query": "financial news"})

    results: dict[str, Any] = {"imported": 0, "skipped": 0, "errors": 0, "articles": []}
    for item in items:
        title = item.get("title") or ""
        try:
            with s.begin_nested():
                article = import_item(s, item, rng=rng)
        except Exception as e:
            logger.exception("[Import] Failed to import article %s", item.get("article_id"))
            results["errors"] += 1
            results["articles"].append({"title": title, "status": f"error: {e}"})
            continue
        if article is None:
            results["skipped"] += 1
            results["articles"].append({"title": title, "status": "skipped (duplicate)"})
        else:
            results["imported"] += 1
            results["articles"].append({"title": title, "status": "imported", "slug": article.slug})

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "[Import] Import complete: %s imported, %s skipped, %s errors",
        results["imported"],
        results["skipped"],
        results["errors"],
    )
    log_import(
        s,
        "news-import",
        results["imported"],
        details={"source": "NewsData.io", **results},
        status="WARNING" if results["errors"] else "SUCCESS",
        duration_ms=duration_ms,
    )
    return results


def refresh_homepage(s: "Session", *, limit: int = 18) -> dict[str, Any]:
    """
    Refill the homepage hero, grid and trending zones with the newest articles and rotate
    the breaking-news banner to the newest headline. Raises LookupError with no articles.
    """
    recent = s.query(Article).order_by(Article.published_at.desc(), Article.id.desc()).limit(limit).all()
    if not recent:
        raise LookupError("No articles found")

    homepage = s.query(PageDefinition).filter(PageDefinition.slug == "homepage").one_or_none()
    zones_by_slug = {}
    if homepage is not None:
        zones_by_slug = {z.zone_definition.slug: z for z in homepage.zones if z.zone_definition}

    zone_results: list[str] = []
    index = 0
    for zone_slug, zone_limit in HOMEPAGE_ZONE_LIMITS:
        zone = zones_by_slug.get(zone_slug)
        if zone is None:
            zone_results.append(f"{zone_slug}: not found")
            continue
        zone_id = zone.id
        s.query(ContentPlacement).filter(ContentPlacement.zone_id == zone_id).delete(synchronize_session=False)
        s.flush()
        added = 0
        while added < zone_limit and index < len(recent):
            s.add(
                ContentPlacement(
                    zone_id=zone_id,
                    content_type="ARTICLE",
                    article_id=recent[index].id,
                    position=added,
                    is_pinned=False,
                )
            )
            index += 1
            added += 1
        s.flush()
        zone_results.append(f"{zone_slug}: {added} articles")
    s.expire_all()

    newest = recent[0]
    s.query(BreakingNews).filter(BreakingNews.is_active.is_(True)).update({"is_active": False}, synchronize_session=False)
    s.add(BreakingNews(headline=newest.title, url=f"/article/{newest.slug}", is_active=True))
    s.flush()

    logger.info("[Refresh Homepage] Complete: %s", zone_results)
    return {"zones": zone_results, "breakingNews": newest.title[:50] + "..."}
