"""Batch maintenance for page-builder data: seeding, re-sorting and zone ordering."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.fiscalwire.modules.page_builder.models import LayoutTemplate, PageDefinition, PageZone, ZoneDefinition
from app.fiscalwire.modules.page_builder.placement import ARTICLE_ZONE_TYPES

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Negative slots are never used by live placements.
RESORT_TEMP_BASE = -1000

ZONE_DEFINITIONS = (
    {"slug": "hero-featured", "name": "Hero Featured", "zone_type": "HERO_FEATURED", "max_items": 5,
     "description": "Main featured article with secondary articles"},
    {"slug": "article-grid", "name": "Article Grid", "zone_type": "ARTICLE_GRID", "max_items": 6,
     "description": "Grid of article cards"},
    {"slug": "trending-sidebar", "name": "Trending Sidebar", "zone_type": "TRENDING_SIDEBAR", "max_items": 8,
     "description": "Sidebar with trending articles"},
    {"slug": "video-carousel", "name": "Video Carousel", "zone_type": "VIDEO_CAROUSEL", "max_items": 10,
     "description": "Horizontal carousel of videos"},
    {"slug": "breaking-banner", "name": "Breaking News Banner", "zone_type": "BREAKING_BANNER", "max_items": 1,
     "description": "Top banner for breaking news"},
)

HOMEPAGE_ZONES = (
    ("hero-featured", {"source": "articles", "sort": "publishedAt", "order": "desc", "limit": 5}),
    ("article-grid", {"source": "articles", "sort": "publishedAt", "order": "desc", "limit": 6, "skip": 5}),
    ("trending-sidebar", {"source": "articles", "sort": "publishedAt", "order": "desc", "limit": 8}),
    ("video-carousel", {"source": "videos", "sort": "createdAt", "order": "desc", "limit": 4}),
)

DEFAULT_LAYOUT_NAME = "Standard News"
DEFAULT_LAYOUT_GRID = {
    "columns": 12,
    "areas": ["hero", "main", "sidebar", "carousel"],
}


def seed_page_builder(s: "Session") -> dict[str, int]:
    """Create the standard zone definitions, the default layout and the homepage with its zones. Idempotent."""
    layout = s.query(LayoutTemplate).filter(LayoutTemplate.name == DEFAULT_LAYOUT_NAME).one_or_none()
    if layout is None:
        layout = LayoutTemplate(
            name=DEFAULT_LAYOUT_NAME,
            description="Hero, article grid with trending sidebar, video carousel",
            grid_config=DEFAULT_LAYOUT_GRID,
        )
        s.add(layout)
        s.flush()

    created_defs = 0
    defs: dict[str, ZoneDefinition] = {}
    for zone_def in ZONE_DEFINITIONS:
        zd = s.query(ZoneDefinition).filter(ZoneDefinition.slug == zone_def["slug"]).one_or_none()
        if zd is None:
            zd = ZoneDefinition(min_items=1, layout_id=layout.id, **zone_def)
            s.add(zd)
            created_defs += 1
        defs[zone_def["slug"]] = zd
    s.flush()

    homepage = s.query(PageDefinition).filter(PageDefinition.slug == "homepage").one_or_none()
    if homepage is None:
        homepage = PageDefinition(slug="homepage", name="Homepage", page_type="HOMEPAGE", layout_id=layout.id, is_active=True)
        s.add(homepage)
        s.flush()
    else:
        homepage.is_active = True

    present = {z.zone_definition_id for z in homepage.zones}
    created_zones = 0
    for order, (slug, rules) in enumerate(HOMEPAGE_ZONES, start=1):
        zd = defs[slug]
        if zd.id in present:
            continue
        s.add(PageZone(page_id=homepage.id, zone_definition_id=zd.id, sort_order=order, is_enabled=True, auto_fill_rules=rules))
        created_zones += 1
    s.flush()

    logger.info("[PageBuilder] Seed complete: %s zone definitions, %s homepage zones created", created_defs, created_zones)
    return {"zoneDefinitions": created_defs, "homepageZones": created_zones}


def resort_placements_by_date(s: "Session") -> dict[str, int]:
    """
    Re-sort article placements in every enabled article zone by publish date, newest first.
    Non-article placements keep their relative order after the articles.
    """
    zones = (
        s.query(PageZone)
        .join(ZoneDefinition, PageZone.zone_definition_id == ZoneDefinition.id)
        .filter(PageZone.is_enabled.is_(True), ZoneDefinition.zone_type.in_(ARTICLE_ZONE_TYPES))
        .all()
    )
    logger.info("Found %s article zones to process", len(zones))

    zones_processed = 0
    updated = 0
    for zone in zones:
        placements = list(zone.placements)
        articles = [p for p in placements if p.content_type == "ARTICLE" and p.article_id is not None]
        if not articles:
            logger.info("[%s] %s: No placements, skipping", zone.page.name, zone.zone_definition.name)
            continue

        articles.sort(key=lambda p: p.article.published_at if p.article else datetime.min, reverse=True)
        others = sorted((p for p in placements if p not in articles), key=lambda p: p.position)
        ordered = articles + others
        old_positions = {p.id: p.position for p in ordered}

        for i, p in enumerate(ordered):
            p.position = RESORT_TEMP_BASE - i
            s.flush()
        for i, p in enumerate(ordered):
            p.position = i
            s.flush()
            if old_positions[p.id] != i:
                updated += 1
        zones_processed += 1
        logger.info("[%s] %s: %s placements re-sorted", zone.page.name, zone.zone_definition.name, len(ordered))

    logger.info("Done! Updated %s placement positions.", updated)
    return {"zones": zones_processed, "updated": updated}


def fix_zone_order(s: "Session") -> int:
    """Ensure article-grid sorts before trending-sidebar on every page. Returns pages fixed."""
    grid_def = s.query(ZoneDefinition).filter(ZoneDefinition.slug == "article-grid").one_or_none()
    sidebar_def = s.query(ZoneDefinition).filter(ZoneDefinition.slug == "trending-sidebar").one_or_none()
    if grid_def is None or sidebar_def is None:
        logger.warning("Zone definitions not found. Run the page builder seed first.")
        return 0

    sidebars = {z.page_id: z for z in s.query(PageZone).filter(PageZone.zone_definition_id == sidebar_def.id).all()}
    fixed = 0
    for grid in s.query(PageZone).filter(PageZone.zone_definition_id == grid_def.id).all():
        sidebar = sidebars.get(grid.page_id)
        if sidebar is None or sidebar.sort_order > grid.sort_order:
            continue
        if sidebar.sort_order == grid.sort_order:
            sidebar.sort_order = grid.sort_order + 1
        else:
            grid.sort_order, sidebar.sort_order = sidebar.sort_order, grid.sort_order
        fixed += 1
        logger.info("Page %s: article-grid=%s trending-sidebar=%s", grid.page_id, grid.sort_order, sidebar.sort_order)
    s.flush()
    return fixed
