from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import quote

from flask import current_app

logger = logging.getLogger(__name__)


def site_base_url() -> str:
    cfg = current_app.config
    if cfg.get("BASE_URL"):
        return str(cfg["BASE_URL"]).rstrip("/")
    if cfg.get("RAILWAY_PUBLIC_DOMAIN"):
        return f"https://{cfg['RAILWAY_PUBLIC_DOMAIN']}"
    return "http://localhost:3000"


def send_email(to: str, subject: str, body: str, *, html: str | None = None) -> tuple[bool, str]:
    """
    Send an email using SMTP configuration from app.config.

    Returns (success, message). Never raises: account flows must not fail because
    mail delivery is down.
    """
    cfg = current_app.config
    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or cfg.get("SMTP_USERNAME") or "").strip()

    if not smtp_server:
        logger.warning("[Email] SMTP_SERVER not configured; not sending '%s' to %s", subject, to)
        logger.info("[Email] Body for %s:\n%s", to, body)
        return False, "SMTP server not configured"

    if html:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = email_from
    msg["To"] = to

    try:
        with smtplib.SMTP(smtp_server, int(cfg.get("SMTP_PORT") or 587), timeout=30) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            username = (cfg.get("SMTP_USERNAME") or "").strip()
            password = (cfg.get("SMTP_PASSWORD") or "").strip()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("[Email] SMTP authentication failed: %s", e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("[Email] Failed to send '%s' to %s", subject, to)
        return False, f"SMTP error: {e}"

    logger.info("[Email] Sent '%s' to %s", subject, to)
    return True, "sent"


def send_verification_email(email: str, token: str) -> tuple[bool, str]:
    link = f"{site_base_url()}/api/auth/verify-email?token={quote(token)}"
    body = (
        "Welcome to The Fiscal Wire.\n\n"
        f"Confirm your email address by opening this link:\n{link}\n\n"
        "The link expires in 24 hours."
    )
    html = (
        "<p>Welcome to The Fiscal Wire.</p>"
        f'<p><a href="{link}">Verify your email address</a></p>'
        "<p>The link expires in 24 hours.</p>"
    )
    return send_email(email, "Verify your email address", body, html=html)


def send_password_reset_email(email: str, token: str) -> tuple[bool, str]:
    link = f"{site_base_url()}/reset-password?token={quote(token)}"
    body = (
        "We received a request to reset your password.\n\n"
        f"Choose a new password here:\n{link}\n\n"
        "The link expires in 1 hour. If you did not ask for this, ignore this email."
    )
    return send_email(email, "Reset your password", body)
