"""NewsData client, item helpers and the import / homepage refresh jobs."""
import random
from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.fiscalwire import create_app
from app.fiscalwire.db import session_scope
from app.fiscalwire.models import ActivityLog, Base, utcnow
from app.fiscalwire.modules.cms.models import Article, Author, BreakingNews, Category, Tag
from app.fiscalwire.modules.news_import import newsdata
from app.fiscalwire.modules.news_import.newsdata import (
    NewsDataClient,
    NewsDataError,
    convert_to_content_blocks,
    estimate_read_time,
    extract_tickers,
    map_category,
)
from app.fiscalwire.modules.news_import.service import (
    PLACEHOLDER_IMAGE,
    ensure_unique_slug,
    get_or_create_tags,
    import_news,
    refresh_homepage,
)
from app.fiscalwire.modules.page_builder.maintenance import seed_page_builder
from app.fiscalwire.modules.page_builder.models import ContentPlacement, PageDefinition


NVDA_ITEM = {
    "article_id": "nd-1",
    "title": "Nvidia surges after earnings beat",
    "description": "Chipmaker beats estimates.",
    "content": "NVDA shares rose.\n\nAnalysts cheered.",
    "category": ["business"],
    "keywords": ["AI", "chips"],
    "creator": ["Sarah Chen"],
    "image_url": "https://cdn.example.com/nvda.jpg",
    "link": "https://example.com/nvda",
    "pubDate": "2025-03-03 14:00:00",
}
POLICY_ITEM = {
    "article_id": "nd-2",
    "title": "Congress weighs new budget deal",
    "description": "Lawmakers return to talks.",
    "content": "ONLY AVAILABLE IN PAID PLANS",
    "category": ["politics"],
    "pubDate": "2025-03-03 15:00:00",
}
BROKEN_ITEM = {"article_id": "nd-3", "description": "No title here"}


class FakeClient:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error

    def fetch_latest(self):
        if self.error:
            raise self.error
        return list(self.items)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(Category(name="Markets", slug="markets", color="bg-blue-600"))
        s.add_all([Author(name="Sarah Chen"), Author(name="Michael Torres")])
        s.flush()
        seed_page_builder(s)
    return app


# ---------- Item helpers ----------
def test_estimate_read_time():
    assert estimate_read_time(None) == 3
    assert estimate_read_time("word " * 10) == 1
    assert estimate_read_time("word " * 450) == 3


def test_convert_to_content_blocks():
    assert convert_to_content_blocks("One.\n\nTwo.\n\n\nThree.", "desc") == [
        {"type": "paragraph", "content": "One."},
        {"type": "paragraph", "content": "Two."},
        {"type": "paragraph", "content": "Three."},
    ]
    assert convert_to_content_blocks(None, "Only a summary") == [{"type": "paragraph", "content": "Only a summary"}]
    assert convert_to_content_blocks("\n\n", "Fallback") == [{"type": "paragraph", "content": "Fallback"}]
    assert convert_to_content_blocks(None, None) == []


def test_map_category():
    assert map_category(["Business"]) == "markets"
    assert map_category(["politics"]) == "economy"
    assert map_category(["sports", "technology"]) == "tech"
    assert map_category(["sports"]) == "markets"
    assert map_category(None) == "markets"


def test_extract_tickers():
    tickers = extract_tickers("Shares of $NVDA and AAPL rose. THE market cheered, AAPL again.", "Fed and TSLA")
    assert tickers == ["TSLA", "NVDA", "AAPL"]
    many = " ".join(f"T{chr(65 + i)}X" for i in range(15))
    assert len(extract_tickers(many, "x")) == 10
    assert extract_tickers(None, "nothing here") == []


# ---------- NewsData client ----------
def _response(status=200, payload=None, text=""):
    return SimpleNamespace(
        status_code=status,
        ok=200 <= status < 300,
        text=text,
        json=lambda: payload,
    )


def test_fetch_latest_filters_items(monkeypatch):
    calls = []
    payload = {
        "status": "success",
        "totalResults": 3,
        "results": [NVDA_ITEM, {**POLICY_ITEM, "duplicate": True}, {"article_id": "x", "title": "No description"}],
    }

    def _get(url, params, headers, timeout):
        calls.append((url, params))
        return _response(payload=payload)

    monkeypatch.setattr(newsdata.requests, "get", _get)
    items = NewsDataClient(api_key="k", base_url="https://newsdata.test/").fetch_latest()
    assert [i["article_id"] for i in items] == ["nd-1"]
    url, params = calls[0]
    assert url == "https://newsdata.test/api/1/latest"
    assert params["apikey"] == "k"
    assert params["country"] == "us"


def test_fetch_latest_errors(monkeypatch):
    with pytest.raises(NewsDataError, match="NEWSDATA_API_KEY"):
        NewsDataClient(api_key="").fetch_latest()

    monkeypatch.setattr(newsdata.requests, "get", lambda *a, **k: _response(payload={"status": "error"}))
    with pytest.raises(NewsDataError, match="status: error"):
        NewsDataClient(api_key="k").fetch_latest()

    monkeypatch.setattr(newsdata.requests, "get", lambda *a, **k: _response(status=500, text="boom"))
    with pytest.raises(NewsDataError, match="500"):
        NewsDataClient(api_key="k").fetch_latest()


def test_request_retries_after_rate_limit(monkeypatch):
    responses = [_response(status=429), _response(payload={"status": "success", "results": []})]
    monkeypatch.setattr(newsdata.requests, "get", lambda *a, **k: responses.pop(0))
    monkeypatch.setattr(newsdata.time, "sleep", lambda _s: None)
    assert NewsDataClient(api_key="k").fetch_latest() == []
    assert responses == []


# ---------- Import ----------
def test_import_news_creates_articles_and_logs(app):
    with session_scope(app) as s:
        results = import_news(s, FakeClient([NVDA_ITEM, POLICY_ITEM, BROKEN_ITEM]), rng=random.Random(1))

    assert (results["imported"], results["skipped"], results["errors"]) == (2, 0, 1)
    assert [a["status"] for a in results["articles"]][:2] == ["imported", "imported"]
    assert results["articles"][2]["status"].startswith("error:")

    with session_scope(app) as s:
        nvda = s.query(Article).filter_by(external_id="nd-1").one()
        assert nvda.slug == "nvidia-surges-after-earnings-beat"
        assert nvda.category.slug == "markets"
        assert nvda.markets_category_id == nvda.category_id
        assert nvda.author.name == "Sarah Chen"
        assert nvda.relevant_tickers == ["NVDA"]
        assert sorted(t.slug for t in nvda.tags) == ["ai", "chips"]
        assert len(nvda.content) == 2
        assert nvda.read_time == 1
        assert nvda.source_url == "https://example.com/nvda"

        policy = s.query(Article).filter_by(external_id="nd-2").one()
        assert policy.category.slug == "economy"
        assert policy.content == [{"type": "paragraph", "content": "Lawmakers return to talks."}]
        assert policy.read_time == 3
        assert policy.image_url == PLACEHOLDER_IMAGE
        assert policy.author.name in ("Sarah Chen", "Michael Torres")

        logs = {log.type: log for log in s.query(ActivityLog).all()}
        assert logs["NEWS_API"].count == 3
        assert logs["IMPORT"].count == 2
        assert logs["IMPORT"].status == "WARNING"

        homepage = s.query(PageDefinition).filter_by(slug="homepage").one()
        hero = next(z for z in homepage.zones if z.zone_definition.slug == "hero-featured")
        placed = s.query(ContentPlacement).filter_by(zone_id=hero.id).order_by(ContentPlacement.position).all()
        assert [p.article_id for p in placed] == [policy.id, nvda.id]


def test_import_news_skips_already_imported(app):
    with session_scope(app) as s:
        import_news(s, FakeClient([NVDA_ITEM]))
    with session_scope(app) as s:
        results = import_news(s, FakeClient([NVDA_ITEM]))
    assert results["skipped"] == 1
    assert results["articles"] == [{"title": NVDA_ITEM["title"], "status": "skipped (duplicate)"}]
    with session_scope(app) as s:
        assert s.query(Article).count() == 1


def test_import_news_fetch_failure_is_logged(app):
    with session_scope(app) as s:
        with pytest.raises(NewsDataError):
            import_news(s, FakeClient(error=NewsDataError("NewsData API error: 500 - down")))

    with session_scope(app) as s:
        by_type = {log.type: log for log in s.query(ActivityLog).all()}
        assert by_type["NEWS_API"].status == "ERROR"
        assert by_type["ERROR"].error_message == "NewsData API error: 500 - down"
        assert "IMPORT" not in by_type


def test_ensure_unique_slug_and_tags(app):
    with session_scope(app) as s:
        author = s.query(Author).first()
        category = s.query(Category).first()
        s.add(Article(title="Taken", slug="taken", category_id=category.id, author_id=author.id))
        s.add(Article(title="Taken 1", slug="taken-1", category_id=category.id, author_id=author.id))
        s.flush()
        assert ensure_unique_slug(s, "taken") == "taken-2"
        assert ensure_unique_slug(s, "fresh") == "fresh"

        tags = get_or_create_tags(s, ["Fed Rates", "fed rates", "AI", "Oil", "Gold", "Bonds", "Euro"])
        assert [t.slug for t in tags] == ["fed-rates", "ai", "oil", "gold"]
        assert get_or_create_tags(s, ["AI"])[0].id == tags[1].id
        assert s.query(Tag).count() == 4


# ---------- Homepage refresh ----------
def _seed_articles(app, n: int) -> list[int]:
    ids = []
    with session_scope(app) as s:
        author = s.query(Author).first()
        category = s.query(Category).first()
        for i in range(n):
            a = Article(
                title=f"Story number {i:02d}",
                slug=f"story-{i}",
                category_id=category.id,
                author_id=author.id,
                published_at=utcnow() - timedelta(hours=i),
            )
            s.add(a)
            s.flush()
            ids.append(a.id)
    return ids


def test_refresh_homepage_requires_articles(app):
    with session_scope(app) as s:
        with pytest.raises(LookupError, match="No articles found"):
            refresh_homepage(s)


def test_refresh_homepage_fills_zones_and_rotates_banner(app):
    ids = _seed_articles(app, 20)
    with session_scope(app) as s:
        s.add(BreakingNews(headline="Old banner", is_active=True))

    with session_scope(app) as s:
        result = refresh_homepage(s)
    assert result["zones"] == [
        "hero-featured: 4 articles",
        "article-grid: 6 articles",
        "trending-sidebar: 8 articles",
    ]
    assert result["breakingNews"] == "Story number 00..."

    with session_scope(app) as s:
        homepage = s.query(PageDefinition).filter_by(slug="homepage").one()
        zones = {z.zone_definition.slug: z.id for z in homepage.zones}
        hero = s.query(ContentPlacement).filter_by(zone_id=zones["hero-featured"]).order_by(ContentPlacement.position).all()
        assert [p.article_id for p in hero] == ids[:4]
        grid = s.query(ContentPlacement).filter_by(zone_id=zones["article-grid"]).order_by(ContentPlacement.position).all()
        assert [p.article_id for p in grid] == ids[4:10]

        active = s.query(BreakingNews).filter_by(is_active=True).all()
        assert [b.headline for b in active] == ["Story number 00"]
        assert active[0].url == "/article/story-0"
