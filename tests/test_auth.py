"""Account flows: signup, email verification, login, password reset."""
import pytest
from werkzeug.security import generate_password_hash

from app.fiscalwire import create_app
from app.fiscalwire.db import session_scope
from app.fiscalwire.models import AuditEvent, Base, User, VerificationToken, utcnow


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    monkeypatch.delenv("SMTP_SERVER", raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add(
            User(
                email="reader@example.com",
                password_hash=generate_password_hash("Passw0rd!"),
                email_verified=utcnow(),
                is_active=True,
            )
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _token_for(app, identifier: str) -> str:
    with session_scope(app) as s:
        row = s.query(VerificationToken).filter(VerificationToken.identifier == identifier).one()
        return row.token


def test_login_requires_email_and_password(client):
    r = client.post("/api/auth/login", json={"email": "reader@example.com"})
    assert r.status_code == 400


def test_login_bad_password_is_audited(app, client):
    r = client.post("/api/auth/login", json={"email": "reader@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_session_reflects_login_and_logout(client):
    r = client.get("/api/auth/session")
    assert r.json["user"] is None
    assert r.json["csrfToken"]

    client.post("/api/auth/login", json={"email": "reader@example.com", "password": "Passw0rd!"})
    r = client.get("/api/auth/session")
    assert r.json["user"]["email"] == "reader@example.com"
    assert r.json["user"]["role"] == "USER"

    r = client.post("/api/auth/logout")
    assert r.json["ok"] is True
    assert client.get("/api/auth/session").json["user"] is None


def test_logout_without_session_is_a_no_op(app, client):
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert r.json == {"ok": True}
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.logout").count() == 0


def test_regular_user_cannot_reach_admin(client):
    client.post("/api/auth/login", json={"email": "reader@example.com", "password": "Passw0rd!"})
    r = client.get("/api/admin/articles")
    assert r.status_code == 401


def test_signup_validation_errors(client):
    r = client.post("/api/auth/signup", json={"email": "not-an-email", "password": "short"})
    assert r.status_code == 400
    assert r.json["error"] == "Validation failed"
    fields = {d["field"] for d in r.json["details"]}
    assert fields == {"email", "password"}


def test_signup_verify_then_login(app, client):
    r = client.post("/api/auth/signup", json={"name": "New Reader", "email": "New@Example.com", "password": "Secur3Pass"})
    assert r.status_code == 201
    assert r.json["requiresVerification"] is True

    # Unverified accounts cannot sign in yet
    r = client.post("/api/auth/login", json={"email": "new@example.com", "password": "Secur3Pass"})
    assert r.status_code == 403

    token = _token_for(app, "new@example.com")
    r = client.get(f"/api/auth/verify-email?token={token}")
    assert r.status_code == 200
    assert r.json["verified"] is True

    # One-time use
    r = client.get(f"/api/auth/verify-email?token={token}")
    assert r.status_code == 400
    assert r.json["error"] == "invalid-token"

    r = client.post("/api/auth/login", json={"email": "new@example.com", "password": "Secur3Pass"})
    assert r.status_code == 200


def test_signup_duplicate_email(client):
    r = client.post("/api/auth/signup", json={"email": "reader@example.com", "password": "Secur3Pass"})
    assert r.status_code == 400
    assert "already exists" in r.json["error"]


def test_verify_email_missing_token(client):
    r = client.get("/api/auth/verify-email")
    assert r.status_code == 400
    assert r.json["error"] == "missing-token"


def test_resend_verification_for_verified_user(client):
    r = client.post("/api/auth/resend-verification", json={"email": "reader@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "Email is already verified"

    # Unknown emails get the generic answer
    r = client.post("/api/auth/resend-verification", json={"email": "nobody@example.com"})
    assert r.status_code == 200


def test_forgot_and_reset_password(app, client):
    r = client.post("/api/auth/forgot-password", json={"email": "reader@example.com"})
    assert r.status_code == 200
    generic = r.json["message"]

    # Same answer whether or not the account exists
    r = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert r.json["message"] == generic

    token = _token_for(app, "reset:reader@example.com")

    r = client.post("/api/auth/reset-password", json={"token": token, "password": "weak"})
    assert r.status_code == 400

    r = client.post("/api/auth/reset-password", json={"token": token, "password": "N3wPassword"})
    assert r.status_code == 200

    r = client.post("/api/auth/login", json={"email": "reader@example.com", "password": "N3wPassword"})
    assert r.status_code == 200

    # Token already consumed
    r = client.post("/api/auth/reset-password", json={"token": token, "password": "An0therPass"})
    assert r.status_code == 400


def test_forgot_password_rejects_bad_email(client):
    r = client.post("/api/auth/forgot-password", json={"email": "nope"})
    assert r.status_code == 400
