from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_USER)  # USER | ADMIN
    email_verified: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_session_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "emailVerified": self.email_verified.isoformat() if self.email_verified else None,
        }


class VerificationToken(Base):
    """
    One-time tokens for email verification and password resets.
    Reset tokens use the identifier "reset:<email>".
    """

    __tablename__ = "verification_tokens"
    __table_args__ = (Index("idx_verification_tokens_identifier", "identifier"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    identifier: Mapped[str] = mapped_column(String(340), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class AuditEvent(Base):
    """
    Append-only audit trail of admin mutations.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("idx_audit_events_entity", "entity_type", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "category.create"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Article"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


ACTIVITY_TYPES = ("IMPORT", "NEWS_API", "ERROR", "SYSTEM")
ACTIVITY_STATUSES = ("SUCCESS", "WARNING", "ERROR", "INFO")


class ActivityLog(Base):
    """Operational log of imports, outbound API usage and background jobs."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("idx_activity_logs_type", "type"),
        Index("idx_activity_logs_status", "status"),
        Index("idx_activity_logs_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="SUCCESS")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "action": self.action,
            "details": self.details,
            "count": self.count,
            "status": self.status,
            "errorMessage": self.error_message,
            "durationMs": self.duration_ms,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.fiscalwire.modules.cms.models import (  # noqa: E402,F401
    Article,
    Author,
    BreakingNews,
    Category,
    Tag,
    Video,
)
from app.fiscalwire.modules.page_builder.models import (  # noqa: E402,F401
    AutoFillRule,
    ContentPlacement,
    LayoutTemplate,
    PageDefinition,
    PageZone,
    ZoneDefinition,
)
