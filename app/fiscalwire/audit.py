"""
Audit trail for admin writes and account events.

Rows are only ever inserted. They join the caller's transaction, so a rolled-back
mutation leaves no audit row behind.
"""

from __future__ import annotations

import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.fiscalwire.models import AuditEvent, User
from app.fiscalwire.rate_limit import get_client_identifier


def _request_origin() -> tuple[str | None, str | None]:
    """(request_id, client address) for the current request; both None in scripts and jobs."""
    if not has_request_context():
        return None, None
    return getattr(g, "request_id", None), get_client_identifier(request)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    rid, client = _request_origin()
    ev = AuditEvent(
        request_id=request_id or rid,
        client_ip=client,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def events_for(s: Session, entity_type: str, entity_id: int | str) -> list[AuditEvent]:
    """Oldest-first history of one entity."""
    return (
        s.query(AuditEvent)
        .filter(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
        .order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())
        .all()
    )
