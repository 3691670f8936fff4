# Overview: Service-layer operations for the ledger audit trail.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import LedgerAuditEvent
"""
Ledger audit invariants

- Append-only. No updates or deletes of existing events.
- No business logic here; callers decide what happened.
- Written inside the same transaction as the mutation it records.
"""


def append_audit_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    branch_id: int | None = None,
    actor_user_id: int | None = None,
    cash_register_id: int | None = None,
    amount_cents: int | None = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerAuditEvent:
    ev = LedgerAuditEvent(
        branch_id=branch_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        cash_register_id=cash_register_id,
        amount_cents=amount_cents,
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    return ev


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    branch_id: int | None = None,
    limit: int = 200,
) -> list[LedgerAuditEvent]:
    query = db.session.query(LedgerAuditEvent)
    if entity_type:
        query = query.filter(LedgerAuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(LedgerAuditEvent.entity_id == entity_id)
    if branch_id is not None:
        query = query.filter(LedgerAuditEvent.branch_id == branch_id)
    return query.order_by(LedgerAuditEvent.id.asc()).limit(limit).all()
