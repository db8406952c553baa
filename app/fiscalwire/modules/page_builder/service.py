from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, update

from app.fiscalwire.audit import record_event
from app.fiscalwire.models import utcnow
from app.fiscalwire.modules.cms.models import Article, Video
from app.fiscalwire.modules.page_builder.models import (
    CONTENT_TYPES,
    PAGE_TYPES,
    ZONE_TYPES,
    AutoFillRule,
    ContentPlacement,
    LayoutTemplate,
    PageDefinition,
    PageZone,
    ZoneDefinition,
)
from app.fiscalwire.utils import parse_bool, parse_datetime, parse_int
from app.fiscalwire.validations import validate_auto_fill_config

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fiscalwire.models import User


# Positions are parked above this offset while a zone is being renumbered so the
# (zone_id, position) unique constraint never sees two rows on the same slot.
TEMP_OFFSET = 10000


class PageBuilderError(ValueError):
    def __init__(self, message: str, status: int = 400, details: list[dict[str, str]] | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


def checked_auto_fill_config(config: Any, field: str = "config", *, allow_empty: bool = False) -> dict:
    errors = validate_auto_fill_config(config, field, allow_empty=allow_empty)
    if errors:
        raise PageBuilderError("Validation failed", details=errors)
    return config


def _text(payload: dict, key: str) -> str | None:
    v = payload.get(key)
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def _fk(payload: dict, key: str) -> int | None:
    raw = payload.get(key)
    if raw in (None, ""):
        return None
    value = parse_int(raw)
    if value is None:
        raise PageBuilderError(f"{key} must be an integer")
    return value


# ---------- Layouts ----------
def list_layouts(s: "Session") -> list[LayoutTemplate]:
    return s.query(LayoutTemplate).order_by(LayoutTemplate.name.asc()).all()


def create_layout(s: "Session", payload: dict, user: "User | None") -> LayoutTemplate:
    name = _text(payload, "name")
    if not name:
        raise PageBuilderError("Name is required")
    grid_config = payload.get("gridConfig") or {}
    if not isinstance(grid_config, dict):
        raise PageBuilderError("gridConfig must be an object")
    layout = LayoutTemplate(
        name=name,
        description=_text(payload, "description"),
        grid_config=grid_config,
        thumbnail=_text(payload, "thumbnail"),
    )
    s.add(layout)
    s.flush()
    record_event(s, actor=user, action="layout.create", entity_type="LayoutTemplate", entity_id=str(layout.id))
    return layout


# ---------- Auto-fill rules ----------
def list_auto_fill_rules(s: "Session") -> list[AutoFillRule]:
    return s.query(AutoFillRule).order_by(AutoFillRule.name.asc()).all()


def create_auto_fill_rule(s: "Session", payload: dict, user: "User | None") -> AutoFillRule:
    name = _text(payload, "name")
    config = payload.get("config")
    if not name or config is None:
        raise PageBuilderError("Name and config are required")
    checked_auto_fill_config(config)
    rule = AutoFillRule(
        name=name,
        description=_text(payload, "description"),
        config=config,
        is_active=bool(parse_bool(payload.get("isActive"), True)),
    )
    s.add(rule)
    s.flush()
    record_event(s, actor=user, action="auto_fill_rule.create", entity_type="AutoFillRule", entity_id=str(rule.id))
    return rule


# ---------- Zone definitions ----------
def list_zone_definitions(s: "Session", layout_id: int | None = None) -> list[ZoneDefinition]:
    q = s.query(ZoneDefinition)
    if layout_id is not None:
        q = q.filter(ZoneDefinition.layout_id == layout_id)
    return q.order_by(ZoneDefinition.name.asc()).all()


def create_zone_definition(s: "Session", payload: dict, user: "User | None") -> ZoneDefinition:
    name = _text(payload, "name")
    slug = _text(payload, "slug")
    zone_type = _text(payload, "zoneType")
    if not name or not slug or not zone_type:
        raise PageBuilderError("Name, slug, and zoneType are required")
    if zone_type not in ZONE_TYPES:
        raise PageBuilderError(f"Invalid zoneType. Must be one of: {', '.join(ZONE_TYPES)}")
    if s.query(ZoneDefinition).filter(ZoneDefinition.slug == slug).one_or_none():
        raise PageBuilderError("A zone definition with this slug already exists")
    layout_id = _fk(payload, "layoutId")
    if layout_id is not None and not s.get(LayoutTemplate, layout_id):
        raise PageBuilderError("Layout not found", 404)

    zone_def = ZoneDefinition(
        name=name,
        slug=slug,
        description=_text(payload, "description"),
        zone_type=zone_type,
        grid_area=_text(payload, "gridArea"),
        min_items=parse_int(payload.get("minItems"), 1),
        max_items=parse_int(payload.get("maxItems"), 10),
        default_rules=payload.get("defaultRules") if isinstance(payload.get("defaultRules"), dict) else None,
        layout_id=layout_id,
    )
    s.add(zone_def)
    s.flush()
    record_event(s, actor=user, action="zone_definition.create", entity_type="ZoneDefinition", entity_id=str(zone_def.id))
    return zone_def


# ---------- Pages ----------
def list_pages(s: "Session", page_type: str | None = None) -> list[PageDefinition]:
    q = s.query(PageDefinition)
    if page_type:
        q = q.filter(PageDefinition.page_type == page_type)
    return q.order_by(PageDefinition.page_type.asc(), PageDefinition.name.asc()).all()


def create_page(s: "Session", payload: dict, user: "User | None") -> PageDefinition:
    name = _text(payload, "name")
    slug = _text(payload, "slug")
    page_type = _text(payload, "pageType") or "CUSTOM"
    if not name or not slug:
        raise PageBuilderError("Name and slug are required")
    if page_type not in PAGE_TYPES:
        raise PageBuilderError(f"Invalid pageType. Must be one of: {', '.join(PAGE_TYPES)}")
    if s.query(PageDefinition).filter(PageDefinition.slug == slug).one_or_none():
        raise PageBuilderError("A page with this slug already exists")

    page = PageDefinition(
        name=name,
        slug=slug,
        page_type=page_type,
        category_id=_fk(payload, "categoryId"),
        stock_symbol=_text(payload, "stockSymbol"),
        layout_id=_fk(payload, "layoutId"),
        is_active=bool(parse_bool(payload.get("isActive"), True)),
    )
    s.add(page)
    s.flush()
    record_event(
        s,
        actor=user,
        action="page.create",
        entity_type="PageDefinition",
        entity_id=str(page.id),
        metadata={"slug": page.slug, "page_type": page.page_type},
    )
    return page


def update_page(s: "Session", page: PageDefinition, payload: dict, user: "User | None") -> PageDefinition:
    changes: dict[str, Any] = {}
    if "slug" in payload:
        slug = _text(payload, "slug")
        if not slug:
            raise PageBuilderError("Slug cannot be empty")
        if slug != page.slug:
            clash = s.query(PageDefinition).filter(PageDefinition.slug == slug, PageDefinition.id != page.id).first()
            if clash:
                raise PageBuilderError("A page with this slug already exists")
            changes["slug"] = {"old": page.slug, "new": slug}
            page.slug = slug
    if "name" in payload:
        name = _text(payload, "name")
        if not name:
            raise PageBuilderError("Name cannot be empty")
        page.name = name
    if "pageType" in payload:
        page_type = _text(payload, "pageType")
        if page_type not in PAGE_TYPES:
            raise PageBuilderError(f"Invalid pageType. Must be one of: {', '.join(PAGE_TYPES)}")
        page.page_type = page_type
    if "categoryId" in payload:
        page.category_id = _fk(payload, "categoryId")
    if "stockSymbol" in payload:
        page.stock_symbol = _text(payload, "stockSymbol")
    if "layoutId" in payload:
        page.layout_id = _fk(payload, "layoutId")
    if "isActive" in payload:
        page.is_active = bool(parse_bool(payload.get("isActive"), page.is_active))
    page.updated_at = utcnow()

    record_event(
        s,
        actor=user,
        action="page.edit",
        entity_type="PageDefinition",
        entity_id=str(page.id),
        metadata={"fields": sorted(payload.keys()), "changes": changes},
    )
    return page


def delete_page(s: "Session", page: PageDefinition, user: "User | None") -> None:
    record_event(s, actor=user, action="page.delete", entity_type="PageDefinition", entity_id=str(page.id), metadata={"slug": page.slug})
    s.delete(page)
    s.flush()


# ---------- Zones ----------
def add_zone(s: "Session", page: PageDefinition, payload: dict, user: "User | None") -> PageZone:
    zone_definition_id = _fk(payload, "zoneDefinitionId")
    if zone_definition_id is None:
        raise PageBuilderError("zoneDefinitionId is required")
    if not s.get(ZoneDefinition, zone_definition_id):
        raise PageBuilderError("Zone definition not found", 404)
    existing = (
        s.query(PageZone)
        .filter(PageZone.page_id == page.id, PageZone.zone_definition_id == zone_definition_id)
        .one_or_none()
    )
    if existing:
        raise PageBuilderError("This zone already exists on this page")

    rules = payload.get("autoFillRules")
    if rules is not None:
        checked_auto_fill_config(rules, "autoFillRules", allow_empty=True)

    sort_order = parse_int(payload.get("sortOrder"))
    if sort_order is None:
        current_max = s.query(func.max(PageZone.sort_order)).filter(PageZone.page_id == page.id).scalar()
        sort_order = (current_max + 1) if current_max is not None else 0

    zone = PageZone(
        page_id=page.id,
        zone_definition_id=zone_definition_id,
        custom_name=_text(payload, "customName"),
        is_enabled=bool(parse_bool(payload.get("isEnabled"), True)),
        sort_order=sort_order,
        auto_fill_rules=rules or None,
    )
    s.add(zone)
    s.flush()
    record_event(
        s,
        actor=user,
        action="page_zone.create",
        entity_type="PageZone",
        entity_id=str(zone.id),
        metadata={"page_id": page.id, "zone_definition_id": zone_definition_id},
    )
    return zone


def update_zone(s: "Session", zone: PageZone, payload: dict, user: "User | None") -> PageZone:
    if "customName" in payload:
        zone.custom_name = _text(payload, "customName")
    if "isEnabled" in payload:
        zone.is_enabled = bool(parse_bool(payload.get("isEnabled"), zone.is_enabled))
    if "sortOrder" in payload:
        sort_order = parse_int(payload.get("sortOrder"))
        if sort_order is None:
            raise PageBuilderError("sortOrder must be an integer")
        zone.sort_order = sort_order
    if "autoFillRules" in payload:
        rules = payload.get("autoFillRules")
        if rules is not None:
            checked_auto_fill_config(rules, "autoFillRules", allow_empty=True)
        zone.auto_fill_rules = rules or None
    record_event(
        s,
        actor=user,
        action="page_zone.edit",
        entity_type="PageZone",
        entity_id=str(zone.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return zone


def delete_zone(s: "Session", zone: PageZone, user: "User | None") -> None:
    record_event(s, actor=user, action="page_zone.delete", entity_type="PageZone", entity_id=str(zone.id))
    s.delete(zone)
    s.flush()


# ---------- Placements ----------
def shift_positions(s: "Session", zone_id: int, from_position: int, delta: int) -> None:
    """
    Move every placement at ``position >= from_position`` by ``delta`` (+1 or -1).
    Done in two statements through TEMP_OFFSET so no intermediate row collides.
    """
    s.flush()
    s.execute(
        update(ContentPlacement)
        .where(ContentPlacement.zone_id == zone_id, ContentPlacement.position >= from_position)
        .values(position=ContentPlacement.position + TEMP_OFFSET)
        .execution_options(synchronize_session=False)
    )
    s.execute(
        update(ContentPlacement)
        .where(ContentPlacement.zone_id == zone_id, ContentPlacement.position >= TEMP_OFFSET)
        .values(position=ContentPlacement.position - TEMP_OFFSET + delta)
        .execution_options(synchronize_session=False)
    )
    s.expire_all()


def next_position(s: "Session", zone_id: int) -> int:
    current_max = s.query(func.max(ContentPlacement.position)).filter(ContentPlacement.zone_id == zone_id).scalar()
    return (current_max + 1) if current_max is not None else 0


def create_placement(s: "Session", zone: PageZone, payload: dict, user: "User | None") -> ContentPlacement:
    content_type = _text(payload, "contentType") or "ARTICLE"
    if content_type not in CONTENT_TYPES:
        raise PageBuilderError(f"Invalid contentType. Must be one of: {', '.join(CONTENT_TYPES)}")
    article_id = _fk(payload, "articleId")
    video_id = _fk(payload, "videoId")
    if content_type == "ARTICLE" and article_id is None:
        raise PageBuilderError("articleId is required for ARTICLE content type")
    if content_type == "VIDEO" and video_id is None:
        raise PageBuilderError("videoId is required for VIDEO content type")
    if article_id is not None and not s.get(Article, article_id):
        raise PageBuilderError("Article not found", 404)
    if video_id is not None and not s.get(Video, video_id):
        raise PageBuilderError("Video not found", 404)

    try:
        start_date = parse_datetime(payload.get("startDate"))
        end_date = parse_datetime(payload.get("endDate"))
    except ValueError:
        raise PageBuilderError("startDate/endDate must be ISO-8601 datetimes")

    zone_id = zone.id
    position = parse_int(payload.get("position"))
    if position is None or position < 0:
        position = next_position(s, zone_id)
    else:
        occupied = (
            s.query(ContentPlacement.id)
            .filter(ContentPlacement.zone_id == zone_id, ContentPlacement.position == position)
            .first()
        )
        if occupied:
            shift_positions(s, zone_id, position, +1)

    placement = ContentPlacement(
        zone_id=zone_id,
        content_type=content_type,
        article_id=article_id if content_type == "ARTICLE" else None,
        video_id=video_id if content_type == "VIDEO" else None,
        position=position,
        is_pinned=bool(parse_bool(payload.get("isPinned"), False)),
        start_date=start_date,
        end_date=end_date,
        custom_content=payload.get("customContent") if isinstance(payload.get("customContent"), dict) else None,
    )
    s.add(placement)
    s.flush()
    record_event(
        s,
        actor=user,
        action="placement.create",
        entity_type="ContentPlacement",
        entity_id=str(placement.id),
        metadata={"zone_id": zone_id, "position": position, "content_type": content_type},
    )
    return placement


def update_placement(s: "Session", placement: ContentPlacement, payload: dict, user: "User | None") -> ContentPlacement:
    try:
        if "startDate" in payload:
            placement.start_date = parse_datetime(payload.get("startDate"))
        if "endDate" in payload:
            placement.end_date = parse_datetime(payload.get("endDate"))
    except ValueError:
        raise PageBuilderError("startDate/endDate must be ISO-8601 datetimes")
    if "isPinned" in payload:
        placement.is_pinned = bool(parse_bool(payload.get("isPinned"), placement.is_pinned))
    if "customContent" in payload:
        custom = payload.get("customContent")
        if custom is not None and not isinstance(custom, dict):
            raise PageBuilderError("customContent must be an object or null")
        placement.custom_content = custom
    record_event(
        s,
        actor=user,
        action="placement.edit",
        entity_type="ContentPlacement",
        entity_id=str(placement.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return placement


def delete_placement(s: "Session", placement: ContentPlacement, user: "User | None") -> None:
    zone_id, position = placement.zone_id, placement.position
    record_event(
        s,
        actor=user,
        action="placement.delete",
        entity_type="ContentPlacement",
        entity_id=str(placement.id),
        metadata={"zone_id": zone_id, "position": position},
    )
    s.delete(placement)
    s.flush()
    # Close the gap left behind.
    shift_positions(s, zone_id, position + 1, -1)


def reorder_placements(s: "Session", zone: PageZone, placement_ids: Any, user: "User | None") -> list[ContentPlacement]:
    if not isinstance(placement_ids, list):
        raise PageBuilderError("placementIds must be an array")
    ids = [parse_int(pid) for pid in placement_ids]
    if any(pid is None for pid in ids):
        raise PageBuilderError("placementIds must contain integer ids")

    placements = {p.id: p for p in s.query(ContentPlacement).filter(ContentPlacement.zone_id == zone.id).all()}
    missing = [pid for pid in ids if pid not in placements]
    if missing:
        raise PageBuilderError(f"Placements not found in this zone: {missing}", 404)

    # Placements not named keep their relative order after the named ones.
    rest = sorted((p for pid, p in placements.items() if pid not in set(ids)), key=lambda p: p.position)
    ordered = [placements[pid] for pid in dict.fromkeys(ids)] + rest

    # Phase 1 parks every row on a temporary slot, phase 2 assigns final slots.
    for i, p in enumerate(ordered):
        p.position = TEMP_OFFSET + i
        s.flush()
    for i, p in enumerate(ordered):
        p.position = i
        s.flush()

    record_event(
        s,
        actor=user,
        action="placement.reorder",
        entity_type="PageZone",
        entity_id=str(zone.id),
        metadata={"placement_ids": ids},
    )
    return ordered


# ---------- Content search ----------
def search_content(
    s: "Session",
    q: str = "",
    content_type: str = "all",
    category_id: int | None = None,
    limit: int = 20,
) -> dict[str, list[dict]]:
    results: dict[str, list[dict]] = {"articles": [], "videos": []}
    like = f"%{q.strip()}%" if q and q.strip() else None

    if content_type in ("all", "articles"):
        aq = s.query(Article)
        if like:
            aq = aq.filter(or_(Article.title.ilike(like), Article.excerpt.ilike(like), Article.slug.ilike(like)))
        if category_id is not None:
            aq = aq.filter(Article.category_id == category_id)
        results["articles"] = [a.to_summary() for a in aq.order_by(Article.published_at.desc()).limit(limit).all()]

    if content_type in ("all", "videos"):
        vq = s.query(Video)
        if like:
            vq = vq.filter(Video.title.ilike(like))
        results["videos"] = [v.to_dict() for v in vq.order_by(Video.created_at.desc()).limit(limit).all()]

    return results
