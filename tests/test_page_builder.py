"""Page builder: placements, auto placement, sync, auto-fill and maintenance jobs."""
from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.fiscalwire import create_app
from app.fiscalwire.db import session_scope
from app.fiscalwire.models import ROLE_ADMIN, Base, User, utcnow
from app.fiscalwire.modules.cms import public
from app.fiscalwire.modules.cms.models import Article, Author, Category, Video
from app.fiscalwire.modules.page_builder import auto_sync
from app.fiscalwire.modules.page_builder.auto_fill import get_page_zones_content, resolve_auto_fill_rules
from app.fiscalwire.modules.page_builder.auto_sync import sync_all_pages
from app.fiscalwire.modules.page_builder.maintenance import fix_zone_order, resort_placements_by_date, seed_page_builder
from app.fiscalwire.modules.page_builder.models import (
    ContentPlacement,
    LayoutTemplate,
    PageDefinition,
    PageZone,
    ZoneDefinition,
)
from app.fiscalwire.modules.page_builder.placement import add_article_to_page_builder_zones


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(
            User(
                email="admin@example.com",
                password_hash=generate_password_hash("Passw0rd!"),
                role=ROLE_ADMIN,
                email_verified=utcnow(),
                is_active=True,
            )
        )
        s.add(Category(name="Markets", slug="markets", color="bg-blue-600"))
        s.add(Author(name="Sarah Chen"))
        s.flush()
        seed_page_builder(s)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client) -> dict:
    r = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "Passw0rd!"})
    return {"X-CSRF-Token": r.json["csrfToken"]}


def _make_articles(app, *specs) -> list[int]:
    """specs: (title, hours_ago, is_featured)"""
    ids = []
    with session_scope(app) as s:
        category = s.query(Category).filter_by(slug="markets").one()
        author = s.query(Author).one()
        for title, hours_ago, featured in specs:
            a = Article(
                title=title,
                slug=title.lower().replace(" ", "-"),
                excerpt=title,
                content=[],
                image_url="",
                category_id=category.id,
                author_id=author.id,
                is_featured=featured,
                published_at=utcnow() - timedelta(hours=hours_ago),
            )
            s.add(a)
            s.flush()
            ids.append(a.id)
    return ids


def _homepage_zone(app, zone_slug: str) -> tuple[int, int]:
    with session_scope(app) as s:
        page = s.query(PageDefinition).filter_by(slug="homepage").one()
        zone = next(z for z in page.zones if z.zone_definition.slug == zone_slug)
        return page.id, zone.id


def _zone_articles(app, zone_id: int) -> list[int]:
    with session_scope(app) as s:
        rows = s.query(ContentPlacement).filter_by(zone_id=zone_id).order_by(ContentPlacement.position).all()
        return [p.article_id for p in rows]


# ---------- Seed ----------
def test_seed_is_idempotent(app):
    with session_scope(app) as s:
        assert seed_page_builder(s) == {"zoneDefinitions": 0, "homepageZones": 0}
        assert s.query(LayoutTemplate).filter_by(name="Standard News").count() == 1
        homepage = s.query(PageDefinition).filter_by(slug="homepage").one()
        assert [z.zone_definition.slug for z in homepage.zones] == [
            "hero-featured",
            "article-grid",
            "trending-sidebar",
            "video-carousel",
        ]
        assert homepage.layout_id is not None


# ---------- Placements API ----------
def test_placement_insert_shifts_and_delete_closes_gap(app, client):
    headers = _login(client)
    a1, a2, a3 = _make_articles(app, ("Alpha story", 3, False), ("Beta story", 2, False), ("Gamma story", 1, False))
    page_id, zone_id = _homepage_zone(app, "hero-featured")
    base = f"/api/admin/page-builder/pages/{page_id}/zones/{zone_id}/placements"

    assert client.post(base, json={"articleId": a1}, headers=headers).json["position"] == 0
    assert client.post(base, json={"articleId": a2}, headers=headers).json["position"] == 1
    r = client.post(base, json={"articleId": a3, "position": 0}, headers=headers)
    assert r.status_code == 201
    assert _zone_articles(app, zone_id) == [a3, a1, a2]

    listed = client.get(base).json
    assert [p["position"] for p in listed] == [0, 1, 2]

    first = listed[0]["id"]
    assert client.delete(f"{base}/{first}", headers=headers).json["success"] is True
    assert _zone_articles(app, zone_id) == [a1, a2]
    assert [p["position"] for p in client.get(base).json] == [0, 1]


def test_reorder_appends_unlisted_placements(app, client):
    headers = _login(client)
    a1, a2, a3 = _make_articles(app, ("Alpha story", 3, False), ("Beta story", 2, False), ("Gamma story", 1, False))
    page_id, zone_id = _homepage_zone(app, "article-grid")
    base = f"/api/admin/page-builder/pages/{page_id}/zones/{zone_id}/placements"
    ids = [client.post(base, json={"articleId": a}, headers=headers).json["id"] for a in (a1, a2, a3)]

    r = client.put(f"{base}/reorder", json={"placementIds": [ids[2]]}, headers=headers)
    assert r.status_code == 200
    assert [p["id"] for p in r.json] == [ids[2], ids[0], ids[1]]
    assert _zone_articles(app, zone_id) == [a3, a1, a2]

    r = client.post(f"{base}/reorder", json={"placementIds": [9999]}, headers=headers)
    assert r.status_code == 404


def test_placement_validation(app, client):
    headers = _login(client)
    page_id, zone_id = _homepage_zone(app, "hero-featured")
    base = f"/api/admin/page-builder/pages/{page_id}/zones/{zone_id}/placements"

    r = client.post(base, json={"contentType": "ARTICLE"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "articleId is required for ARTICLE content type"

    r = client.post(base, json={"articleId": 9999}, headers=headers)
    assert r.status_code == 404

    other = f"/api/admin/page-builder/pages/{page_id + 1000}/zones/{zone_id}/placements"
    assert client.get(other).status_code == 404


def test_placement_update_pins(app, client):
    headers = _login(client)
    (a1,) = _make_articles(app, ("Alpha story", 1, False))
    page_id, zone_id = _homepage_zone(app, "hero-featured")
    base = f"/api/admin/page-builder/pages/{page_id}/zones/{zone_id}/placements"
    pid = client.post(base, json={"articleId": a1}, headers=headers).json["id"]

    r = client.patch(f"{base}/{pid}", json={"isPinned": True, "endDate": "2000-01-01T00:00:00Z"}, headers=headers)
    assert r.json["isPinned"] is True
    assert r.json["endDate"].startswith("2000-01-01")


def test_zone_cannot_be_added_twice(app, client):
    headers = _login(client)
    with session_scope(app) as s:
        page_id = s.query(PageDefinition.id).filter_by(slug="homepage").scalar()
        zd_id = s.query(ZoneDefinition.id).filter_by(slug="hero-featured").scalar()
    r = client.post(f"/api/admin/page-builder/pages/{page_id}/zones", json={"zoneDefinitionId": zd_id}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "This zone already exists on this page"


def test_layouts_and_content_search(app, client):
    _login(client)
    _make_articles(app, ("Fed holds rates", 1, False))
    layouts = client.get("/api/admin/page-builder/layouts").json
    assert [layout["name"] for layout in layouts] == ["Standard News"]

    r = client.get("/api/admin/page-builder/content-search?q=fed&type=articles")
    assert [a["title"] for a in r.json["articles"]] == ["Fed holds rates"]
    assert r.json["videos"] == []


# ---------- Automatic placement ----------
def test_new_articles_go_to_top_of_article_zones(app):
    with session_scope(app) as s:
        sync_all_pages(s, ["markets"])
        markets_id = s.query(Category.id).filter_by(slug="markets").scalar()

    a1, a2 = _make_articles(app, ("First story", 2, False), ("Second story", 1, False))
    with session_scope(app) as s:
        # homepage hero/grid/trending plus markets grid/trending; the video carousel is skipped
        assert add_article_to_page_builder_zones(s, a1, markets_id, None) == 5
        assert add_article_to_page_builder_zones(s, a1, markets_id, None) == 0
    with session_scope(app) as s:
        assert add_article_to_page_builder_zones(s, a2, None, None) == 3

    _, hero_id = _homepage_zone(app, "hero-featured")
    _, carousel_id = _homepage_zone(app, "video-carousel")
    assert _zone_articles(app, hero_id) == [a2, a1]
    assert _zone_articles(app, carousel_id) == []


def test_admin_article_create_places_on_homepage(app, client):
    headers = _login(client)
    with session_scope(app) as s:
        cat_id = s.query(Category.id).filter_by(slug="markets").scalar()
        author_id = s.query(Author.id).scalar()
    r = client.post(
        "/api/admin/articles",
        json={"title": "Oil jumps on supply cut", "content": [], "categoryId": cat_id, "authorId": author_id},
        headers=headers,
    )
    assert r.status_code == 201
    _, grid_id = _homepage_zone(app, "article-grid")
    assert _zone_articles(app, grid_id) == [r.json["id"]]


def test_deleting_article_removes_placements_and_compacts_zones(app, client):
    headers = _login(client)
    with session_scope(app) as s:
        cat_id = s.query(Category.id).filter_by(slug="markets").scalar()
        author_id = s.query(Author.id).scalar()

    def create(title):
        r = client.post(
            "/api/admin/articles",
            json={"title": title, "content": [], "categoryId": cat_id, "authorId": author_id},
            headers=headers,
        )
        return r.json["id"]

    older, doomed, newer = create("Oil jumps on supply cut"), create("Fed holds rates steady"), create("Gold hits record")
    _, grid_id = _homepage_zone(app, "article-grid")
    _, hero_id = _homepage_zone(app, "hero-featured")
    assert _zone_articles(app, grid_id) == [newer, doomed, older]

    with session_scope(app) as s:
        assert s.query(ContentPlacement).filter_by(article_id=doomed).count() == 3

    r = client.delete(f"/api/admin/articles/{doomed}", headers=headers)
    assert r.status_code == 200

    with session_scope(app) as s:
        assert s.query(ContentPlacement).filter_by(article_id=doomed).count() == 0
        for zone_id in (grid_id, hero_id):
            rows = s.query(ContentPlacement).filter_by(zone_id=zone_id).order_by(ContentPlacement.position).all()
            assert [p.position for p in rows] == [0, 1]
    assert _zone_articles(app, grid_id) == [newer, older]


# ---------- Sync ----------
def test_sync_preview_and_create(app, client):
    headers = _login(client)
    preview = client.get("/api/admin/page-builder/sync").json
    # homepage + markets category + seven fixed sections (the markets section is shadowed)
    assert preview["totalDiscovered"] == 9
    assert preview["existingCount"] == 1
    assert preview["missingCount"] == 8
    assert [p["slug"] for p in preview["grouped"]["CATEGORY"]] == ["markets"]

    r = client.post("/api/admin/page-builder/sync", json={}, headers=headers)
    assert r.json["success"] is True
    assert r.json["created"] == 8
    assert r.json["skipped"] == 1
    assert r.json["message"] == "Created 8 pages"

    assert client.get("/api/admin/page-builder/sync").json["missingCount"] == 0
    with session_scope(app) as s:
        markets = s.query(PageDefinition).filter_by(slug="markets").one()
        assert markets.page_type == "CATEGORY"
        assert [z.zone_definition.slug for z in markets.zones] == ["article-grid", "trending-sidebar"]
        about = s.query(PageDefinition).filter_by(slug="about").one()
        assert about.zones == []


def test_sync_rejects_non_list_slugs(client):
    headers = _login(client)
    r = client.post("/api/admin/page-builder/sync", json={"pageSlugs": "about"}, headers=headers)
    assert r.status_code == 400


# ---------- Auto-fill ----------
def test_resolve_auto_fill_rules(app):
    recent, featured, old = _make_articles(
        app, ("Recent story", 1, False), ("Featured story", 2, True), ("Old story", 24 * 10, False)
    )
    with session_scope(app) as s:
        s.add(Video(title="Earnings recap", url="https://youtu.be/x", embed_type="youtube", video_id="x"))

    def titles(items):
        return [i["title"] for i in items]

    with session_scope(app) as s:
        assert titles(resolve_auto_fill_rules(s, {"source": "articles"})) == ["Recent story", "Featured story", "Old story"]
        assert titles(resolve_auto_fill_rules(s, {"source": "articles", "filters": {"maxAge": "7d"}})) == [
            "Recent story",
            "Featured story",
        ]
        assert titles(resolve_auto_fill_rules(s, {"source": "articles", "filters": {"isFeatured": True}})) == ["Featured story"]
        assert titles(resolve_auto_fill_rules(s, {"source": "articles", "skip": 1, "limit": 1})) == ["Featured story"]
        assert titles(resolve_auto_fill_rules(s, {"source": "articles", "sort": "title", "order": "asc"}))[0] == "Featured story"
        assert titles(resolve_auto_fill_rules(s, {"source": "articles"}, exclude_ids={recent, featured})) == ["Old story"]
        assert titles(resolve_auto_fill_rules(s, {"source": "videos"})) == ["Earnings recap"]
        assert resolve_auto_fill_rules(s, {"source": "podcasts"}) == []


def test_auto_fill_preview_endpoint(app, client):
    headers = _login(client)
    _make_articles(app, ("Recent story", 1, False))
    r = client.post("/api/admin/page-builder/auto-fill-rules/preview", json={"config": {}}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Validation failed"

    r = client.post("/api/admin/page-builder/auto-fill-rules/preview", json={"config": {"source": "articles"}}, headers=headers)
    assert r.json["source"] == "articles"
    assert r.json["count"] == 1

    r = client.post(
        "/api/admin/page-builder/auto-fill-rules/preview",
        json={"config": {"source": "articles", "filters": {"tags": "fed"}}},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json["details"] == [{"field": "config.filters.tags", "message": "Tags must be a list of strings"}]


def test_malformed_auto_fill_rules_are_rejected_on_save(app, client):
    headers = _login(client)
    page_id, grid_id = _homepage_zone(app, "article-grid")
    url = f"/api/admin/page-builder/pages/{page_id}/zones/{grid_id}"

    r = client.put(url, json={"autoFillRules": {"source": "articles", "filters": ["fed"]}}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Validation failed"
    assert r.json["details"][0]["field"] == "autoFillRules.filters"

    r = client.put(url, json={"autoFillRules": {"source": "articles", "limit": -1, "sort": "views"}}, headers=headers)
    assert {d["field"] for d in r.json["details"]} == {"autoFillRules.limit", "autoFillRules.sort"}

    r = client.post(
        "/api/admin/page-builder/auto-fill-rules",
        json={"name": "Bad", "config": {"source": "articles", "filters": {"maxAge": "1y"}}},
        headers=headers,
    )
    assert r.status_code == 400

    # An empty object clears the rule.
    r = client.put(url, json={"autoFillRules": {}}, headers=headers)
    assert r.status_code == 200
    assert r.json["autoFillRules"] is None
    assert client.get("/api/pages/homepage/zones").status_code == 200


def test_public_page_survives_malformed_stored_rules(app, client):
    _make_articles(app, ("Alpha story", 1, False))
    _, grid_id = _homepage_zone(app, "article-grid")
    _, hero_id = _homepage_zone(app, "hero-featured")
    with session_scope(app) as s:
        s.get(PageZone, grid_id).auto_fill_rules = {"source": "articles", "filters": ["fed"]}
        s.get(PageZone, hero_id).auto_fill_rules = {
            "source": "articles",
            "filters": {"tags": "fed", "maxAge": ["7d"]},
            "sort": ["title"],
            "limit": "lots",
        }

    r = client.get("/api/pages/homepage/zones")
    assert r.status_code == 200
    assert [c["title"] for c in r.json["zones"]["hero-featured"]["content"]] == ["Alpha story"]
    # Unusable filters are dropped, so the grid falls back to the latest articles.
    assert [c["title"] for c in r.json["zones"]["article-grid"]["content"]] == ["Alpha story"]


def test_zone_content_merges_placements_and_auto_fill(app):
    a1, a2, a3 = _make_articles(app, ("Alpha story", 3, False), ("Beta story", 2, False), ("Gamma story", 1, False))
    _, hero_id = _homepage_zone(app, "hero-featured")
    _, grid_id = _homepage_zone(app, "article-grid")
    with session_scope(app) as s:
        s.add(ContentPlacement(zone_id=hero_id, content_type="ARTICLE", article_id=a1, position=0, is_pinned=True))
        # Expired placements are not shown.
        s.add(
            ContentPlacement(
                zone_id=grid_id,
                content_type="ARTICLE",
                article_id=a2,
                position=0,
                end_date=utcnow() - timedelta(days=1),
            )
        )

    with session_scope(app) as s:
        zones = get_page_zones_content(s, "homepage")
    hero = zones["hero-featured"]
    assert hero["zoneType"] == "HERO_FEATURED"
    assert [c["id"] for c in hero["content"]] == [a1, a3, a2]
    assert hero["placements"][0]["isPinned"] is True
    # The grid rule skips the first five articles.
    assert zones["article-grid"]["content"] == []
    assert zones["video-carousel"]["zoneType"] == "VIDEO_CAROUSEL"


def test_public_page_zones(app, client):
    _make_articles(app, ("Alpha story", 1, False))
    r = client.get("/api/pages/homepage/zones")
    assert r.status_code == 200
    assert r.json["zones"]["hero-featured"]["content"][0]["title"] == "Alpha story"

    r = client.get("/api/pages/about/zones")
    assert r.json == {"slug": "about", "zones": {}}
    assert client.get("/api/pages/not-a-page/zones").status_code == 404


def test_concurrent_first_visit_reuses_page(app, client, monkeypatch):
    real_ensure = public.ensure_page_exists

    def racing_ensure(s, slug):
        # Another request creates and commits the page first.
        with session_scope(app) as other:
            real_ensure(other, slug)
        discovered = next(p for p in auto_sync.discover_all_pages(s) if p.slug == slug)
        return auto_sync._create_page(s, discovered)

    monkeypatch.setattr(public, "ensure_page_exists", racing_ensure)
    r = client.get("/api/pages/stocks/zones")
    assert r.status_code == 200
    assert set(r.json["zones"]) == {"article-grid", "trending-sidebar"}
    with session_scope(app) as s:
        assert s.query(PageDefinition).filter_by(slug="stocks").count() == 1


# ---------- Maintenance ----------
def test_resort_placements_by_date(app):
    old, mid, new = _make_articles(app, ("Old story", 3, False), ("Mid story", 2, False), ("New story", 1, False))
    _, hero_id = _homepage_zone(app, "hero-featured")
    with session_scope(app) as s:
        for pos, article_id in enumerate((old, mid, new)):
            s.add(ContentPlacement(zone_id=hero_id, content_type="ARTICLE", article_id=article_id, position=pos))
        s.add(ContentPlacement(zone_id=hero_id, content_type="CUSTOM", position=3, custom_content={"html": "<b>ad</b>"}))

    with session_scope(app) as s:
        assert resort_placements_by_date(s) == {"zones": 1, "updated": 2}
    assert _zone_articles(app, hero_id) == [new, mid, old, None]


def test_fix_zone_order(app):
    with session_scope(app) as s:
        assert fix_zone_order(s) == 0

    _, grid_id = _homepage_zone(app, "article-grid")
    _, sidebar_id = _homepage_zone(app, "trending-sidebar")
    with session_scope(app) as s:
        s.get(PageZone, sidebar_id).sort_order = 1
    with session_scope(app) as s:
        assert fix_zone_order(s) == 1
    with session_scope(app) as s:
        assert s.get(PageZone, grid_id).sort_order < s.get(PageZone, sidebar_id).sort_order

    with session_scope(app) as s:
        s.get(PageZone, sidebar_id).sort_order = s.get(PageZone, grid_id).sort_order
    with session_scope(app) as s:
        assert fix_zone_order(s) == 1
        assert s.get(PageZone, sidebar_id).sort_order == s.get(PageZone, grid_id).sort_order + 1
