from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z


class LedgerAuditEvent(db.Model):
    """
    Append-only audit trail of ledger mutations.

    Written in the same transaction as the mutation it describes, so a
    rolled-back payment leaves no audit row behind.
    """
    __tablename__ = "ledger_audit_events"
    __table_args__ = (
        db.Index("ix_ledger_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. payment.registered
    event_category = db.Column(db.String(32), nullable=False)  # payment, register, folio, discount, document
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cash_register_id = db.Column(db.Integer, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=True)

    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "cash_register_id": self.cash_register_id,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
