"""
Automatic placement of new articles into page-builder zones.

A freshly created or imported article goes to the top (position 0) of every enabled
article zone on the homepage and on the category pages for its markets/business
categories. Existing placements shift down by one. New placements are unpinned so
editors can reorder them later.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import and_, or_

from app.fiscalwire.modules.page_builder.models import ContentPlacement, PageDefinition
from app.fiscalwire.modules.page_builder.service import shift_positions

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ARTICLE_ZONE_TYPES = (
    "ARTICLE_GRID",
    "ARTICLE_LIST",
    "HERO_FEATURED",
    "HERO_SECONDARY",
    "TRENDING_SIDEBAR",
)


def _target_pages(s: "Session", category_ids: list[int]) -> list[PageDefinition]:
    conditions = [PageDefinition.page_type == "HOMEPAGE"]
    if category_ids:
        conditions.append(and_(PageDefinition.page_type == "CATEGORY", PageDefinition.category_id.in_(category_ids)))
    return (
        s.query(PageDefinition)
        .filter(PageDefinition.is_active.is_(True), or_(*conditions))
        .order_by(PageDefinition.id.asc())
        .all()
    )


def add_article_to_page_builder_zones(
    s: "Session",
    article_id: int,
    markets_category_id: int | None,
    business_category_id: int | None,
) -> int:
    """
    Place ``article_id`` at the top of all matching zones. Returns the number of
    placements created. Never raises: a placement failure must not fail the article write.
    """
    created = 0
    try:
        s.flush()
        category_ids = [cid for cid in (markets_category_id, business_category_id) if cid is not None]
        pages = _target_pages(s, category_ids)
        if not pages:
            logger.info("[PageBuilder] No active pages found for article placement")
            return 0

        for page in pages:
            zones = [
                z for z in page.zones
                if z.is_enabled and z.zone_definition and z.zone_definition.zone_type in ARTICLE_ZONE_TYPES
            ]
            if not zones:
                logger.info("[PageBuilder] No article zones found for page: %s", page.name)
                continue

            for zone in zones:
                zone_id, zone_name = zone.id, zone.zone_definition.name
                already = (
                    s.query(ContentPlacement.id)
                    .filter(ContentPlacement.zone_id == zone_id, ContentPlacement.article_id == article_id)
                    .first()
                )
                if already:
                    logger.info("[PageBuilder] Article already in %s on %s", zone_name, page.name)
                    continue

                with s.begin_nested():
                    shift_positions(s, zone_id, 0, +1)
                    s.add(
                        ContentPlacement(
                            zone_id=zone_id,
                            content_type="ARTICLE",
                            article_id=article_id,
                            position=0,
                            is_pinned=False,
                        )
                    )
                    s.flush()
                created += 1
                logger.info("[PageBuilder] Added article %s to %s on %s", article_id, zone_name, page.name)
    except Exception:
        logger.exception("[PageBuilder] Failed to add article %s to zones", article_id)
    return created


def remove_article_from_page_builder_zones(s: "Session", article_id: int) -> int:
    """
    Delete every placement of an article and close the gaps it leaves. Returns the
    number of placements removed. Highest positions go first so the remaining rows
    of a zone are still where the query found them.
    """
    placements = (
        s.query(ContentPlacement)
        .filter(ContentPlacement.article_id == article_id)
        .order_by(ContentPlacement.zone_id.asc(), ContentPlacement.position.desc())
        .all()
    )
    targets = [(p.zone_id, p.position) for p in placements]
    for p in placements:
        s.delete(p)
    s.flush()
    for zone_id, position in targets:
        shift_positions(s, zone_id, position + 1, -1)
    if targets:
        logger.info("[PageBuilder] Removed article %s from %s zone slot(s)", article_id, len(targets))
    return len(targets)
