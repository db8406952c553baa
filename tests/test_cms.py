"""Admin CMS API and public article endpoints."""
from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.fiscalwire import create_app
from app.fiscalwire.activity import log_activity, log_error, log_import
from app.fiscalwire.audit import events_for
from app.fiscalwire.db import session_scope
from app.fiscalwire.models import ROLE_ADMIN, ActivityLog, Base, User, utcnow
from app.fiscalwire.modules.cms.models import Article, Author, BreakingNews, Category
from app.fiscalwire.modules.cms.service import detect_embed_type


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
        markets = Category(name="Markets", slug="markets", color="bg-blue-600")
        crypto = Category(name="Crypto", slug="crypto", color="bg-orange-500")
        author = Author(name="Sarah Chen", bio="Markets desk")
        s.add_all([markets, crypto, author])
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client) -> dict:
    r = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "Passw0rd!"})
    return {"X-CSRF-Token": r.json["csrfToken"]}


def _ids(app):
    with session_scope(app) as s:
        return {
            "markets": s.query(Category).filter_by(slug="markets").one().id,
            "crypto": s.query(Category).filter_by(slug="crypto").one().id,
            "author": s.query(Author).one().id,
        }


def _article(client, headers, ids, **overrides):
    payload = {
        "title": "Stocks rally on Fed pause",
        "excerpt": "Equities climbed after the decision.",
        "content": [{"type": "paragraph", "content": "Body"}],
        "categoryId": ids["markets"],
        "authorId": ids["author"],
        "relevantTickers": ["spy"],
    }
    payload.update(overrides)
    return client.post("/api/admin/articles", json=payload, headers=headers)


# ---------- Categories ----------
def test_category_crud(app, client):
    headers = _login(client)
    r = client.post("/api/admin/categories", json={"name": "Economy", "slug": "economy", "color": "bg-green-600"}, headers=headers)
    assert r.status_code == 201
    cat_id = r.json["id"]

    r = client.post("/api/admin/categories", json={"name": "Economy 2", "slug": "economy"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "A category with this slug already exists"

    r = client.put(f"/api/admin/categories/{cat_id}", json={"name": "The Economy"}, headers=headers)
    assert r.status_code == 200
    assert r.json["name"] == "The Economy"

    r = client.get("/api/admin/categories")
    names = {c["slug"]: c for c in r.json}
    assert names["economy"]["articleCount"] == 0

    r = client.delete(f"/api/admin/categories/{cat_id}", headers=headers)
    assert r.json["success"] is True

    with session_scope(app) as s:
        history = events_for(s, "Category", cat_id)
    assert [e.action for e in history] == ["category.create", "category.edit", "category.delete"]
    assert history[0].actor_user_email == "admin@example.com"
    assert history[0].client_ip == "127.0.0.1"


def test_category_validation(client):
    headers = _login(client)
    r = client.post("/api/admin/categories", json={"name": "X", "slug": "Not Valid"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Validation failed"


def test_category_with_articles_cannot_be_deleted(app, client):
    headers = _login(client)
    ids = _ids(app)
    assert _article(client, headers, ids).status_code == 201

    r = client.delete(f"/api/admin/categories/{ids['markets']}", headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Cannot delete category with articles"


# ---------- Authors ----------
def test_author_crud(app, client):
    headers = _login(client)
    r = client.post("/api/admin/authors", json={"name": "Jane Doe", "avatar": "https://example.com/a.png"}, headers=headers)
    assert r.status_code == 201
    author_id = r.json["id"]

    r = client.patch(f"/api/admin/authors/{author_id}", json={"bio": "Rates reporter"}, headers=headers)
    assert r.json["bio"] == "Rates reporter"

    assert client.delete(f"/api/admin/authors/{author_id}", headers=headers).json["success"] is True
    assert client.delete("/api/admin/authors/9999", headers=headers).status_code == 404


def test_author_with_articles_cannot_be_deleted(app, client):
    headers = _login(client)
    ids = _ids(app)
    _article(client, headers, ids)
    r = client.delete(f"/api/admin/authors/{ids['author']}", headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Cannot delete author with articles"


# ---------- Articles ----------
def test_article_create_generates_slug(app, client):
    headers = _login(client)
    r = _article(client, headers, _ids(app))
    assert r.status_code == 201
    assert r.json["slug"] == "stocks-rally-on-fed-pause"
    assert r.json["relevantTickers"] == ["SPY"]
    assert r.json["category"]["slug"] == "markets"

    r = _article(client, headers, _ids(app))
    assert r.status_code == 400
    assert r.json["error"] == "An article with this slug already exists"


def test_article_unknown_foreign_keys(app, client):
    headers = _login(client)
    ids = _ids(app)
    r = _article(client, headers, ids, categoryId=9999)
    assert r.status_code == 404
    assert r.json["error"] == "Category not found"


def test_article_list_update_delete(app, client):
    headers = _login(client)
    ids = _ids(app)
    _article(client, headers, ids)
    _article(client, headers, ids, title="Bitcoin tops record", categoryId=ids["crypto"])

    r = client.get("/api/admin/articles?limit=1")
    assert r.json["pagination"] == {"offset": 0, "limit": 1, "total": 2, "hasMore": True}

    r = client.get(f"/api/admin/articles?categoryId={ids['crypto']}")
    assert [a["title"] for a in r.json["articles"]] == ["Bitcoin tops record"]

    r = client.get("/api/admin/articles?q=bitcoin")
    assert r.json["pagination"]["total"] == 1
    article_id = r.json["articles"][0]["id"]

    r = client.put(f"/api/admin/articles/{article_id}", json={"isFeatured": True, "slug": "btc-record"}, headers=headers)
    assert r.status_code == 200
    assert r.json["isFeatured"] is True
    assert r.json["slug"] == "btc-record"

    assert client.get(f"/api/admin/articles/{article_id}").json["slug"] == "btc-record"
    assert client.delete(f"/api/admin/articles/{article_id}", headers=headers).json["success"] is True
    assert client.get(f"/api/admin/articles/{article_id}").status_code == 404


def test_article_list_rejects_bad_pagination(client):
    _login(client)
    r = client.get("/api/admin/articles?limit=0")
    assert r.status_code == 400


# ---------- Videos ----------
def test_detect_embed_type():
    assert detect_embed_type("https://www.youtube.com/watch?v=abc123&t=5") == ("youtube", "abc123")
    assert detect_embed_type("https://youtu.be/xyz") == ("youtube", "xyz")
    assert detect_embed_type("https://youtube.com/shorts/s1") == ("youtube", "s1")
    assert detect_embed_type("https://vimeo.com/123456") == ("vimeo", "123456")
    assert detect_embed_type("https://example.com/video.mp4") is None


def test_video_create_and_list(client):
    headers = _login(client)
    r = client.post("/api/admin/videos", json={"url": "https://youtu.be/dQw4w9WgXcQ"}, headers=headers)
    assert r.status_code == 201
    assert r.json["title"] == "Video dQw4w9WgXcQ"

    r = client.post("/api/admin/videos", json={"url": "https://example.com/x.mp4"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Unsupported video URL. Please use YouTube or Vimeo."

    r = client.post("/api/admin/videos", json={}, headers=headers)
    assert r.json["error"] == "URL is required"

    r = client.get("/api/admin/videos")
    assert r.json["total"] == 1


# ---------- Activity logs ----------
def test_activity_logs_filters_and_stats(app, client):
    with session_scope(app) as s:
        log_import(s, "news-import", 7, details={"source": "NewsData.io"})
        log_error(s, "import-news", RuntimeError("boom"))

    _login(client)
    r = client.get("/api/admin/activity-logs")
    assert r.json["success"] is True
    assert r.json["pagination"]["total"] == 2
    assert r.json["stats"]["today"]["imports"] == 7
    assert r.json["stats"]["today"]["errors"] == 1

    r = client.get("/api/admin/activity-logs?type=error")
    assert [log["errorMessage"] for log in r.json["logs"]] == ["boom"]

    assert client.get("/api/admin/activity-logs?type=BOGUS").status_code == 400

    tomorrow = (utcnow() + timedelta(days=1)).date().isoformat()
    r = client.get(f"/api/admin/activity-logs?startDate={tomorrow}")
    assert r.json["pagination"]["total"] == 0


def test_failed_activity_write_leaves_session_usable(app, caplog):
    with session_scope(app) as s:
        s.add(Category(name="Energy", slug="energy"))
        # action is NOT NULL, so this insert fails at flush.
        assert log_activity(s, "IMPORT", None) is None
        assert log_import(s, "news-import", 2) is not None
        assert s.query(Category).filter_by(slug="energy").count() == 1

    assert "Failed to log activity" in caplog.text
    with session_scope(app) as s:
        assert s.query(Category).filter_by(slug="energy").count() == 1
        assert [log.action for log in s.query(ActivityLog).all()] == ["news-import"]


# ---------- Public ----------
def test_public_feed_and_detail(app, client):
    headers = _login(client)
    ids = _ids(app)
    _article(client, headers, ids)
    _article(client, headers, ids, title="Crypto winter thaws", categoryId=ids["markets"], marketsCategoryId=ids["crypto"])
    client.post("/api/auth/logout")

    r = client.get("/api/articles")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 2
    card = r.json["articles"][0]
    assert card["categoryColor"] == "bg-blue-600"
    assert card["publishedAt"] == "Just now"

    # Section category matches too
    r = client.get("/api/articles?category=crypto")
    assert [a["title"] for a in r.json["articles"]] == ["Crypto winter thaws"]

    r = client.get("/api/articles/stocks-rally-on-fed-pause")
    assert r.json["title"] == "Stocks rally on Fed pause"
    assert client.get("/api/articles/missing").status_code == 404


def test_public_search(app, client):
    headers = _login(client)
    _article(client, headers, _ids(app))

    assert client.get("/api/search?q=s").json == {"articles": []}
    r = client.get("/api/search?q=rally")
    assert r.json["articles"][0]["category"]["slug"] == "markets"
    assert client.get("/api/search?q=" + "x" * 201).status_code == 400


def test_breaking_news(app, client):
    assert client.get("/api/breaking-news").json == {"breakingNews": None}
    with session_scope(app) as s:
        s.add(BreakingNews(headline="Old", is_active=False))
        s.add(BreakingNews(headline="Fed cuts rates", url="/article/fed", is_active=True))
    r = client.get("/api/breaking-news")
    assert r.json["breakingNews"]["headline"] == "Fed cuts rates"


def test_article_count_tracks_category(app, client):
    headers = _login(client)
    _article(client, headers, _ids(app))
    with session_scope(app) as s:
        assert s.query(Article).count() == 1
    r = client.get("/api/admin/categories")
    counts = {c["slug"]: c["articleCount"] for c in r.json}
    assert counts == {"crypto": 0, "markets": 1}
