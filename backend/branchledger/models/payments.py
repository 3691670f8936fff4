from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z, utcnow


class Payment(db.Model):
    """
    Payment against an Order or an Event.

    WHY: Documents are paid in installments (advance, deposit, balance).
    Each installment is its own row so it can be reversed on its own.

    RULES:
    - exactly one of order_id / event_id is set
    - amount_cents > 0 and never above the parent's remaining at creation
    - cash_register_id is set iff the payment method is cash
    - never updated after creation; corrections are reverse + recreate
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint(
            "(order_id IS NULL) <> (event_id IS NULL)",
            name="ck_payments_single_parent",
        ),
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True, index=True)

    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    registered_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Gateway payment id; replays of the same webhook resolve to the same row
    external_reference = db.Column(db.String(128), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    payment_method = db.relationship("PaymentMethod")

    @property
    def parent_kind(self) -> str:
        return "order" if self.order_id is not None else "event"

    @property
    def parent_id(self) -> int:
        return self.order_id if self.order_id is not None else self.event_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "parent_kind": self.parent_kind,
            "parent_id": self.parent_id,
            "order_id": self.order_id,
            "event_id": self.event_id,
            "payment_method_id": self.payment_method_id,
            "payment_method": self.payment_method.name if self.payment_method else None,
            "cash_register_id": self.cash_register_id,
            "amount_cents": self.amount_cents,
            "registered_by_id": self.registered_by_id,
            "notes": self.notes,
            "external_reference": self.external_reference,
            "created_at": to_utc_z(self.created_at),
        }
