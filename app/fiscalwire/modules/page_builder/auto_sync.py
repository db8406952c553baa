"""
Page discovery and sync.

Pages that should exist are derived from the database (homepage plus one CATEGORY page
per category) and from a short list of fixed site sections. Missing ones are created
together with the default zones for their page type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.fiscalwire.modules.cms.models import Category
from app.fiscalwire.modules.page_builder.models import PageDefinition, PageZone, ZoneDefinition

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


DEFAULT_ZONES_BY_TYPE: dict[str, tuple[str, ...]] = {
    "HOMEPAGE": ("hero-featured", "article-grid", "trending-sidebar", "video-carousel"),
    "CATEGORY": ("article-grid", "trending-sidebar"),
    "STOCK": ("article-grid", "trending-sidebar"),
    "MARKETS": ("article-grid", "trending-sidebar"),
    "STATIC": (),
    "CUSTOM": (),
}


@dataclass(frozen=True)
class DiscoveredPage:
    slug: str
    name: str
    page_type: str
    category_id: int | None = None

    def to_dict(self) -> dict:
        return {"slug": self.slug, "name": self.name, "pageType": self.page_type, "categoryId": self.category_id}


# Site sections that exist regardless of category data.
FIXED_PAGES: tuple[DiscoveredPage, ...] = (
    DiscoveredPage("markets", "Markets", "MARKETS"),
    DiscoveredPage("stocks", "Stocks", "STOCK"),
    DiscoveredPage("stocks-gainers", "Top Gainers", "STOCK"),
    DiscoveredPage("stocks-losers", "Top Losers", "STOCK"),
    DiscoveredPage("about", "About", "STATIC"),
    DiscoveredPage("contact", "Contact", "STATIC"),
    DiscoveredPage("privacy", "Privacy Policy", "STATIC"),
    DiscoveredPage("terms", "Terms of Service", "STATIC"),
)


def discover_all_pages(s: "Session") -> list[DiscoveredPage]:
    pages = [DiscoveredPage("homepage", "Homepage", "HOMEPAGE")]
    seen = {"homepage"}
    for category in s.query(Category).order_by(Category.name.asc()).all():
        if category.slug in seen:
            continue
        seen.add(category.slug)
        pages.append(DiscoveredPage(category.slug, category.name, "CATEGORY", category.id))
    # A category may shadow a fixed section (e.g. a "markets" category); the category wins.
    pages.extend(p for p in FIXED_PAGES if p.slug not in seen)
    return pages


def existing_page_slugs(s: "Session") -> set[str]:
    return {slug for (slug,) in s.query(PageDefinition.slug).all()}


def get_missing_pages(s: "Session") -> list[DiscoveredPage]:
    existing = existing_page_slugs(s)
    return [p for p in discover_all_pages(s) if p.slug not in existing]


def create_default_zones(s: "Session", page: PageDefinition) -> int:
    slugs = DEFAULT_ZONES_BY_TYPE.get(page.page_type, ())
    if not slugs:
        return 0
    by_slug = {zd.slug: zd for zd in s.query(ZoneDefinition).filter(ZoneDefinition.slug.in_(slugs)).all()}
    created = 0
    for i, slug in enumerate(slugs):
        zone_def = by_slug.get(slug)
        if zone_def is None:
            logger.warning("[PageBuilder] Zone definition '%s' missing; skipping for %s", slug, page.slug)
            continue
        s.add(PageZone(page_id=page.id, zone_definition_id=zone_def.id, sort_order=i, is_enabled=True))
        created += 1
    s.flush()
    return created


def _create_page(s: "Session", discovered: DiscoveredPage, *, with_zones: bool = True) -> PageDefinition:
    page = PageDefinition(
        slug=discovered.slug,
        name=discovered.name,
        page_type=discovered.page_type,
        category_id=discovered.category_id,
        is_active=True,
    )
    s.add(page)
    s.flush()
    if with_zones:
        create_default_zones(s, page)
    return page


def ensure_page_exists(s: "Session", slug: str) -> PageDefinition | None:
    """Return the page for ``slug``, creating it when the slug maps to a known page."""
    existing = s.query(PageDefinition).filter(PageDefinition.slug == slug).one_or_none()
    if existing:
        return existing
    for discovered in discover_all_pages(s):
        if discovered.slug == slug:
            page = _create_page(s, discovered)
            logger.info("[PageBuilder] Auto-created page: %s (/%s)", discovered.name, discovered.slug)
            return page
    return None


def sync_all_pages(s: "Session", page_slugs: list[str] | None = None) -> dict:
    """
    Create every missing page (optionally restricted to ``page_slugs``).
    Each page is created in its own savepoint; failures are collected, not raised.
    """
    discovered = discover_all_pages(s)
    missing = get_missing_pages(s)
    to_create = [p for p in missing if p.slug in set(page_slugs)] if page_slugs else missing

    created_pages: list[str] = []
    errors: list[str] = []
    for page in to_create:
        try:
            with s.begin_nested():
                _create_page(s, page)
            created_pages.append(page.name)
            logger.info("[PageBuilder] Created: %s (/%s)", page.name, page.slug)
        except Exception as e:
            message = f"Failed to create {page.slug}: {e}"
            errors.append(message)
            logger.error("[PageBuilder] %s", message)

    return {
        "created": len(created_pages),
        "skipped": len(discovered) - len(missing),
        "total": len(discovered),
        "errors": errors,
        "createdPages": created_pages,
    }


def sync_preview(s: "Session") -> dict:
    missing = get_missing_pages(s)
    discovered = discover_all_pages(s)
    grouped: dict[str, list[dict]] = {page_type: [] for page_type in DEFAULT_ZONES_BY_TYPE}
    for p in missing:
        grouped.setdefault(p.page_type, []).append(p.to_dict())
    return {
        "totalDiscovered": len(discovered),
        "existingCount": len(existing_page_slugs(s)),
        "missingCount": len(missing),
        "missingPages": [p.to_dict() for p in missing],
        "grouped": grouped,
    }
