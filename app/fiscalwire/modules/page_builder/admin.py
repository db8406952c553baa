from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.fiscalwire.db import db_session
from app.fiscalwire.models import User
from app.fiscalwire.modules.page_builder.auto_fill import resolve_auto_fill_rules
from app.fiscalwire.modules.page_builder.auto_sync import sync_all_pages, sync_preview
from app.fiscalwire.modules.page_builder.models import ContentPlacement, PageDefinition, PageZone
from app.fiscalwire.modules.page_builder.service import (
    PageBuilderError,
    add_zone,
    checked_auto_fill_config,
    create_auto_fill_rule,
    create_layout,
    create_page,
    create_placement,
    create_zone_definition,
    delete_page,
    delete_placement,
    delete_zone,
    list_auto_fill_rules,
    list_layouts,
    list_pages,
    list_zone_definitions,
    reorder_placements,
    search_content,
    update_page,
    update_placement,
    update_zone,
)
from app.fiscalwire.rate_limit import rate_limited
from app.fiscalwire.rbac import require_admin
from app.fiscalwire.utils import parse_int

bp = Blueprint("page_builder", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _error(e: PageBuilderError):
    body = {"error": e.message}
    if e.details:
        body["details"] = e.details
    return jsonify(body), e.status


def _zone_on_page(s, page_id: int, zone_id: int) -> PageZone | None:
    zone = s.get(PageZone, zone_id)
    if not zone or zone.page_id != page_id:
        return None
    return zone


# ---------- Layouts ----------
@bp.get("/layouts")
@rate_limited("admin")
@require_admin
def layouts_list():
    s = db_session()
    return jsonify([layout.to_dict() for layout in list_layouts(s)])


@bp.post("/layouts")
@rate_limited("admin")
@require_admin
def layouts_create():
    s = db_session()
    try:
        layout = create_layout(s, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(layout.to_dict()), 201


# ---------- Auto-fill rules ----------
@bp.get("/auto-fill-rules")
@rate_limited("admin")
@require_admin
def auto_fill_rules_list():
    s = db_session()
    return jsonify([rule.to_dict() for rule in list_auto_fill_rules(s)])


@bp.post("/auto-fill-rules")
@rate_limited("admin")
@require_admin
def auto_fill_rules_create():
    s = db_session()
    try:
        rule = create_auto_fill_rule(s, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(rule.to_dict()), 201


@bp.post("/auto-fill-rules/preview")
@rate_limited("admin")
@require_admin
def auto_fill_rules_preview():
    config = _json_body().get("config")
    try:
        checked_auto_fill_config(config)
    except PageBuilderError as e:
        return _error(e)
    s = db_session()
    items = resolve_auto_fill_rules(s, config)
    return jsonify({"source": config["source"], "count": len(items), "items": items})


# ---------- Zone definitions ----------
@bp.get("/zone-definitions")
@rate_limited("admin")
@require_admin
def zone_definitions_list():
    s = db_session()
    layout_id = parse_int(request.args.get("layoutId"))
    return jsonify([zd.to_dict() for zd in list_zone_definitions(s, layout_id)])


@bp.post("/zone-definitions")
@rate_limited("admin")
@require_admin
def zone_definitions_create():
    s = db_session()
    try:
        zone_def = create_zone_definition(s, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(zone_def.to_dict()), 201


# ---------- Pages ----------
@bp.get("/pages")
@rate_limited("admin")
@require_admin
def pages_list():
    s = db_session()
    page_type = (request.args.get("pageType") or "").strip() or None
    return jsonify([p.to_dict(with_zones=True) for p in list_pages(s, page_type)])


@bp.post("/pages")
@rate_limited("admin")
@require_admin
def pages_create():
    s = db_session()
    try:
        page = create_page(s, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(page.to_dict()), 201


@bp.get("/pages/<int:page_id>")
@rate_limited("admin")
@require_admin
def page_detail(page_id: int):
    s = db_session()
    page = s.get(PageDefinition, page_id)
    if not page:
        return jsonify({"error": "Page not found"}), 404
    return jsonify(page.to_dict(with_zones=True))


@bp.route("/pages/<int:page_id>", methods=["PUT", "PATCH"])
@rate_limited("admin")
@require_admin
def page_update(page_id: int):
    s = db_session()
    page = s.get(PageDefinition, page_id)
    if not page:
        return jsonify({"error": "Page not found"}), 404
    try:
        update_page(s, page, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(page.to_dict())


@bp.delete("/pages/<int:page_id>")
@rate_limited("admin")
@require_admin
def page_delete(page_id: int):
    s = db_session()
    page = s.get(PageDefinition, page_id)
    if not page:
        return jsonify({"error": "Page not found"}), 404
    delete_page(s, page, _current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Zones ----------
@bp.post("/pages/<int:page_id>/zones")
@rate_limited("admin")
@require_admin
def zone_create(page_id: int):
    s = db_session()
    page = s.get(PageDefinition, page_id)
    if not page:
        return jsonify({"error": "Page not found"}), 404
    try:
        zone = add_zone(s, page, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(zone.to_dict(with_placements=True)), 201


@bp.route("/pages/<int:page_id>/zones/<int:zone_id>", methods=["PUT", "PATCH"])
@rate_limited("admin")
@require_admin
def zone_update(page_id: int, zone_id: int):
    s = db_session()
    zone = _zone_on_page(s, page_id, zone_id)
    if not zone:
        return jsonify({"error": "Zone not found"}), 404
    try:
        update_zone(s, zone, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(zone.to_dict(with_placements=True))


@bp.delete("/pages/<int:page_id>/zones/<int:zone_id>")
@rate_limited("admin")
@require_admin
def zone_delete(page_id: int, zone_id: int):
    s = db_session()
    zone = _zone_on_page(s, page_id, zone_id)
    if not zone:
        return jsonify({"error": "Zone not found"}), 404
    delete_zone(s, zone, _current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Placements ----------
@bp.get("/pages/<int:page_id>/zones/<int:zone_id>/placements")
@rate_limited("admin")
@require_admin
def placements_list(page_id: int, zone_id: int):
    s = db_session()
    zone = _zone_on_page(s, page_id, zone_id)
    if not zone:
        return jsonify({"error": "Zone not found"}), 404
    return jsonify([p.to_dict() for p in zone.placements])


@bp.post("/pages/<int:page_id>/zones/<int:zone_id>/placements")
@rate_limited("admin")
@require_admin
def placement_create(page_id: int, zone_id: int):
    s = db_session()
    zone = _zone_on_page(s, page_id, zone_id)
    if not zone:
        return jsonify({"error": "Zone not found"}), 404
    try:
        placement = create_placement(s, zone, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(placement.to_dict()), 201


@bp.route("/pages/<int:page_id>/zones/<int:zone_id>/placements/reorder", methods=["PUT", "POST"])
@rate_limited("admin")
@require_admin
def placements_reorder(page_id: int, zone_id: int):
    s = db_session()
    zone = _zone_on_page(s, page_id, zone_id)
    if not zone:
        return jsonify({"error": "Zone not found"}), 404
    try:
        ordered = reorder_placements(s, zone, _json_body().get("placementIds"), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify([p.to_dict() for p in ordered])


def _placement_in_zone(s, page_id: int, zone_id: int, placement_id: int) -> ContentPlacement | None:
    zone = _zone_on_page(s, page_id, zone_id)
    placement = s.get(ContentPlacement, placement_id)
    if not zone or not placement or placement.zone_id != zone.id:
        return None
    return placement


@bp.route("/pages/<int:page_id>/zones/<int:zone_id>/placements/<int:placement_id>", methods=["PUT", "PATCH"])
@rate_limited("admin")
@require_admin
def placement_update(page_id: int, zone_id: int, placement_id: int):
    s = db_session()
    placement = _placement_in_zone(s, page_id, zone_id, placement_id)
    if not placement:
        return jsonify({"error": "Placement not found"}), 404
    try:
        update_placement(s, placement, _json_body(), _current_user())
    except PageBuilderError as e:
        s.rollback()
        return _error(e)
    s.commit()
    return jsonify(placement.to_dict())


@bp.delete("/pages/<int:page_id>/zones/<int:zone_id>/placements/<int:placement_id>")
@rate_limited("admin")
@require_admin
def placement_delete(page_id: int, zone_id: int, placement_id: int):
    s = db_session()
    placement = _placement_in_zone(s, page_id, zone_id, placement_id)
    if not placement:
        return jsonify({"error": "Placement not found"}), 404
    delete_placement(s, placement, _current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Content search ----------
@bp.get("/content-search")
@rate_limited("admin")
@require_admin
def content_search():
    s = db_session()
    content_type = (request.args.get("type") or "all").strip()
    if content_type not in ("all", "articles", "videos"):
        content_type = "all"
    results = search_content(
        s,
        q=request.args.get("q") or "",
        content_type=content_type,
        category_id=parse_int(request.args.get("categoryId")),
        limit=min(100, max(1, parse_int(request.args.get("limit"), 20) or 20)),
    )
    return jsonify(results)


# ---------- Sync ----------
@bp.get("/sync")
@rate_limited("admin")
@require_admin
def sync_get():
    s = db_session()
    return jsonify(sync_preview(s))


@bp.post("/sync")
@rate_limited("admin")
@require_admin
def sync_post():
    s = db_session()
    page_slugs = _json_body().get("pageSlugs")
    if page_slugs is not None and not isinstance(page_slugs, list):
        return jsonify({"error": "pageSlugs must be an array"}), 400
    result = sync_all_pages(s, page_slugs)
    s.commit()
    current_app.logger.info("Page sync by %s: created=%s errors=%s", _current_user().email, result["created"], len(result["errors"]))

    message = f"Created {result['created']} pages"
    if result["errors"]:
        message += f" with {len(result['errors'])} errors"
    return jsonify({"success": True, **result, "message": message})
