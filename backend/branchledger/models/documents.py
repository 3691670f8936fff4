from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from branchledger.time_utils import to_utc_z, utcnow


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"


def derive_payment_status(paid_cents: int, total_cents: int) -> str:
    """
    PAYMENT STATUS:
    - pending: nothing paid
    - partial: 0 < paid < total
    - paid: paid >= total
    """
    if paid_cents <= 0:
        return PAYMENT_STATUS_PENDING
    if paid_cents < total_cents:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PAID


class SequenceCounter(db.Model):
    """
    Atomic (kind, scope) counters.

    WHY: Folios must be gap-free and never reused. The row is incremented with
    a single UPDATE inside the caller's transaction, so a rolled-back document
    creation also rolls its folio back.

    scope is typed through services.sequence_service helpers:
    "branch:<id>" for document folios, "day:<YYMMDD>" for discount folios.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("kind", "scope", name="uq_sequence_counters_kind_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False, index=True)
    scope = db.Column(db.String(64), nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "scope": self.scope,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerDocumentMixin:
    """
    Columns shared by every balance-bearing document.

    INVARIANTS:
    - folio is assigned once at creation (unique per branch + kind)
    - total_cents never changes after creation
    - paid_cents + remaining_cents == total_cents, remaining_cents >= 0
    - paid/remaining/payment_status only move through payment_service
    """

    id = db.Column(db.Integer, primary_key=True)
    folio = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    @declared_attr
    def branch_id(cls):
        return db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    @declared_attr
    def created_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def balance_dict(self) -> dict:
        return {
            "total": self.total_cents,
            "paid": self.paid_cents,
            "remaining": self.remaining_cents,
            "payment_status": self.payment_status,
        }

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "folio": self.folio,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Order(LedgerDocumentMixin, db.Model):
    """
    Customer order.

    status is the PROCESS status (pending -> in_production -> ready -> delivered,
    or cancelled). It is independent of payment_status: a fully paid order may
    still be in production.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "folio", name="uq_orders_branch_folio"),
        {"sqlite_autoincrement": True},
    )

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    client_name = db.Column(db.String(160), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "kind": "order",
            "status": self.status,
            "client_name": self.client_name,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
            "items": [item.to_dict() for item in self.items],
        })
        return data


class OrderItem(db.Model):
    """Line on an order; product lines draw down branch stock."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_code = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", backref=db.backref("items", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_code": self.product_code,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
        }


class Event(LedgerDocumentMixin, db.Model):
    """Catering / event booking paid in installments."""
    __tablename__ = "events"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "folio", name="uq_events_branch_folio"),
        {"sqlite_autoincrement": True},
    )

    client_name = db.Column(db.String(160), nullable=True)
    event_date = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch", backref=db.backref("events", lazy=True))

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "kind": "event",
            "client_name": self.client_name,
            "event_date": to_utc_z(self.event_date),
        })
        return data


class Expense(LedgerDocumentMixin, db.Model):
    """
    Branch expense. Settled at creation.

    petty_cash expenses are paid out of a cash register and debit its balance;
    check_transfer expenses never touch a register.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "folio", name="uq_expenses_branch_folio"),
        {"sqlite_autoincrement": True},
    )

    concept = db.Column(db.String(160), nullable=False)
    expense_type = db.Column(db.String(16), nullable=False)  # check_transfer, petty_cash
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch", backref=db.backref("expenses", lazy=True))
    cash_register = db.relationship("CashRegister", backref=db.backref("expenses", lazy=True))

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "kind": "expense",
            "concept": self.concept,
            "expense_type": self.expense_type,
            "cash_register_id": self.cash_register_id,
            "payment_date": to_utc_z(self.payment_date),
        })
        return data


class Buy(LedgerDocumentMixin, db.Model):
    """Purchase from a provider."""
    __tablename__ = "buys"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "folio", name="uq_buys_branch_folio"),
        {"sqlite_autoincrement": True},
    )

    provider_name = db.Column(db.String(160), nullable=False)

    branch = db.relationship("Branch", backref=db.backref("buys", lazy=True))

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "kind": "buy",
            "provider_name": self.provider_name,
        })
        return data
