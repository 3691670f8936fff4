# Overview: Service-layer operations for folio sequences; atomic increment-and-fetch per (kind, scope).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import SequenceCounter


DOCUMENT_KINDS = ("order", "event", "expense", "buy")
DISCOUNT_AUTH_KIND = "discount_auth"


def branch_scope(branch_id: int) -> str:
    return f"branch:{branch_id}"


def day_scope(yymmdd: str) -> str:
    return f"day:{yymmdd}"


def next_in_scope(kind: str, scope: str) -> int:
    """
    Atomically allocate the next value of the (kind, scope) counter.

    Runs inside the caller's transaction and never commits: if the caller
    rolls back, the increment rolls back with it, so a failed document
    creation does not burn a folio.

    Uses a single UPDATE ... SET last_value = last_value + 1 (never
    read-then-write). The first allocation inserts the row at 1; a
    concurrent first insert is resolved inside a savepoint and retried as
    an UPDATE.
    """
    if not kind:
        raise ValidationError("sequence kind is required")
    if not scope:
        raise ValidationError("sequence scope is required")

    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.kind == kind, SequenceCounter.scope == scope)
        .values(last_value=SequenceCounter.last_value + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_value(kind, scope)

    try:
        with db.session.begin_nested():
            db.session.add(SequenceCounter(kind=kind, scope=scope, last_value=1))
        return 1
    except IntegrityError:
        # Another transaction created the row first; increment theirs.
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_value(kind, scope)


def next_folio(kind: str, branch_id: int) -> int:
    """Next per-branch folio for a ledger document kind."""
    if kind not in DOCUMENT_KINDS:
        raise ValidationError(f"Unknown document kind: {kind}")
    if not branch_id:
        raise ValidationError("branch_id is required")
    return next_in_scope(kind, branch_scope(branch_id))


def peek(kind: str, branch_id: int) -> int:
    """Last issued folio for (kind, branch), 0 if none yet."""
    value = (
        db.session.query(SequenceCounter.last_value)
        .filter_by(kind=kind, scope=branch_scope(branch_id))
        .scalar()
    )
    return value or 0


def list_counters(kind: str | None = None) -> list[SequenceCounter]:
    query = db.session.query(SequenceCounter)
    if kind:
        query = query.filter_by(kind=kind)
    return query.order_by(SequenceCounter.kind, SequenceCounter.scope).all()


def _current_value(kind: str, scope: str) -> int:
    return (
        db.session.query(SequenceCounter.last_value)
        .filter_by(kind=kind, scope=scope)
        .scalar()
    )
