from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.fiscalwire.models import VerificationToken, utcnow

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
RESET_TOKEN_TTL = timedelta(hours=1)
RESET_PREFIX = "reset:"


def _issue(s: Session, identifier: str, ttl: timedelta) -> str:
    s.query(VerificationToken).filter(VerificationToken.identifier == identifier).delete(synchronize_session=False)
    token = uuid.uuid4().hex
    s.add(VerificationToken(identifier=identifier, token=token, expires=utcnow() + ttl))
    s.flush()
    return token


def _consume(s: Session, token: str, *, reset: bool, now: datetime | None = None) -> str | None:
    """
    Return the token's identifier and delete the row (one-time use).
    Expired tokens are deleted and yield None. Tokens of the other kind are left alone.
    """
    if not token:
        return None
    row = s.query(VerificationToken).filter(VerificationToken.token == token).one_or_none()
    if row is None or row.identifier.startswith(RESET_PREFIX) != reset:
        return None
    identifier = row.identifier
    expired = row.expires < (now or utcnow())
    s.delete(row)
    s.flush()
    return None if expired else identifier


def generate_verification_token(s: Session, email: str) -> str:
    return _issue(s, email.lower(), VERIFICATION_TOKEN_TTL)


def verify_token(s: Session, token: str, *, now: datetime | None = None) -> str | None:
    """Consume an email-verification token; returns the email or None."""
    return _consume(s, token, reset=False, now=now)


def generate_password_reset_token(s: Session, email: str) -> str:
    return _issue(s, f"{RESET_PREFIX}{email.lower()}", RESET_TOKEN_TTL)


def verify_password_reset_token(s: Session, token: str, *, now: datetime | None = None) -> str | None:
    identifier = _consume(s, token, reset=True, now=now)
    if identifier is None:
        return None
    return identifier[len(RESET_PREFIX):]


def has_valid_verification_token(s: Session, email: str) -> bool:
    return (
        s.query(VerificationToken)
        .filter(VerificationToken.identifier == email.lower(), VerificationToken.expires > utcnow())
        .first()
        is not None
    )
