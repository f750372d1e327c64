# Overview: Append-only audit trail written alongside every ledger mutation.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow

"""
Audit trail invariants

- Append-only: no updates or deletes of existing events.
- Events are added to the caller's session and flushed, never committed
  here; they share the fate of the mutation they describe.
- occurred_at is business time; when omitted it is "now".
"""


def append_audit_event(
    *,
    store_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        store_id=store_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def get_entity_events(entity_type: str, entity_id: int) -> list[AuditEvent]:
    return (
        db.session.query(AuditEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditEvent.id)
        .all()
    )


def get_store_events(
    store_id: int,
    *,
    event_type: str | None = None,
    since: datetime | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    q = db.session.query(AuditEvent).filter_by(store_id=store_id)
    if event_type:
        q = q.filter_by(event_type=event_type)
    if since is not None:
        q = q.filter(AuditEvent.occurred_at >= since)
    return q.order_by(AuditEvent.id.desc()).limit(limit).all()
