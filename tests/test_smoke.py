import pytest
from werkzeug.security import generate_password_hash

from app.fiscalwire import create_app
from app.fiscalwire.db import session_scope
from app.fiscalwire.models import ROLE_ADMIN, Base, User, utcnow


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    monkeypatch.setenv("SCHEDULER_ENABLED", "0")
    monkeypatch.delenv("CRON_SECRET", raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        u = User(
            email="admin@example.com",
            password_hash=generate_password_hash("Passw0rd!"),
            role=ROLE_ADMIN,
            email_verified=utcnow(),
            is_active=True,
        )
        s.add(u)

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_is_json_404(client):
    r = client.get("/does-not-exist")
    assert r.status_code == 404
    assert r.json["error"] == "Not found"


def test_login_and_admin_access(client):
    # Anonymous is rejected
    r = client.get("/api/admin/categories")
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized"

    r = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "Passw0rd!"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "ADMIN"
    assert r.json["csrfToken"]

    r = client.get("/api/admin/categories")
    assert r.status_code == 200
    assert r.json == []


def test_mutations_require_csrf_token(client):
    r = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "Passw0rd!"})
    token = r.json["csrfToken"]

    r = client.post("/api/admin/categories", json={"name": "Markets", "slug": "markets"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."

    r = client.post(
        "/api/admin/categories",
        json={"name": "Markets", "slug": "markets"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201


def test_production_guardrails(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-real-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()

    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/db")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()
