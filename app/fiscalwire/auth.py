from __future__ import annotations

import uuid

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.fiscalwire.audit import record_event
from app.fiscalwire.db import db_session
from app.fiscalwire.mailer import send_password_reset_email, send_verification_email
from app.fiscalwire.models import ROLE_USER, User, utcnow
from app.fiscalwire.rate_limit import rate_limited
from app.fiscalwire.security import ensure_csrf_token
from app.fiscalwire.tokens import (
    generate_password_reset_token,
    generate_verification_token,
    verify_password_reset_token,
    verify_token,
)
from app.fiscalwire.validations import (
    validate_email,
    validate_reset_password_payload,
    validate_signup_payload,
    validation_error_response,
)

bp = Blueprint("auth", __name__)


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _payload() -> dict:
    if request.is_json:
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}
    return request.form.to_dict()


@bp.post("/login")
@rate_limited("auth")
def login():
    payload = _payload()
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return jsonify({"error": "Invalid credentials"}), 401

        if user.email_verified is None:
            return jsonify({"error": "Please verify your email before signing in"}), 403

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify({"user": user.to_session_dict(), "csrfToken": ensure_csrf_token()})
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"ok": True})


@bp.get("/session")
def session_info():
    user = getattr(g, "current_user", None)
    return jsonify({"user": user.to_session_dict() if user else None, "csrfToken": ensure_csrf_token()})


@bp.post("/signup")
@rate_limited("auth")
def signup():
    payload = _payload()
    errors = validate_signup_payload(payload)
    if errors:
        return validation_error_response(errors)

    email = str(payload["email"]).strip().lower()
    name = str(payload.get("name") or "").strip() or None

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        return jsonify({"error": "User with this email already exists"}), 400

    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(str(payload["password"])),
        role=ROLE_USER,
    )
    s.add(user)
    s.flush()
    token = generate_verification_token(s, email)
    record_event(s, actor=None, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()

    send_verification_email(email, token)
    current_app.logger.info("New signup: user_id=%s", user.id)
    return (
        jsonify(
            {
                "message": "Account created! Please check your email to verify your account.",
                "requiresVerification": True,
            }
        ),
        201,
    )


@bp.get("/verify-email")
def verify_email():
    token = (request.args.get("token") or "").strip()
    if not token:
        return jsonify({"error": "missing-token"}), 400

    s = db_session()
    email = verify_token(s, token)
    if not email:
        s.commit()  # expired tokens are deleted on lookup
        return jsonify({"error": "invalid-token"}), 400

    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        s.commit()
        return jsonify({"error": "user-not-found"}), 404

    user.email_verified = utcnow()
    user.updated_at = utcnow()
    record_event(s, actor=user, action="auth.email_verified", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"message": "Email verified. You can now sign in.", "verified": True})


@bp.post("/resend-verification")
@rate_limited("auth")
def resend_verification():
    email = str(_payload().get("email") or "").strip().lower()
    if not email:
        return jsonify({"error": "Email is required"}), 400

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        return jsonify({"message": "If an account exists with this email, a verification link has been sent."})
    if user.email_verified is not None:
        return jsonify({"error": "Email is already verified"}), 400

    token = generate_verification_token(s, email)
    s.commit()
    send_verification_email(email, token)
    return jsonify({"message": "Verification email sent! Please check your inbox."})


@bp.post("/forgot-password")
@rate_limited("auth")
def forgot_password():
    email = str(_payload().get("email") or "").strip().lower()
    if not email:
        return jsonify({"error": "Email is required"}), 400
    if validate_email(email):
        return jsonify({"error": "Invalid email address"}), 400

    generic = {"message": "If an account exists with this email, a password reset link has been sent."}
    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active:
        return jsonify(generic)

    token = generate_password_reset_token(s, email)
    record_event(s, actor=None, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
    s.commit()
    send_password_reset_email(email, token)
    return jsonify(generic)


@bp.post("/reset-password")
@rate_limited("auth")
def reset_password():
    payload = _payload()
    errors = validate_reset_password_payload(payload)
    if errors:
        return validation_error_response(errors)

    s = db_session()
    email = verify_password_reset_token(s, str(payload["token"]).strip())
    user = s.query(User).filter(User.email == email).one_or_none() if email else None
    if not user:
        s.commit()
        return jsonify({"error": "Invalid or expired reset link. Please request a new one."}), 400

    user.password_hash = generate_password_hash(str(payload["password"]))
    user.updated_at = utcnow()
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"message": "Password reset successfully!"})
