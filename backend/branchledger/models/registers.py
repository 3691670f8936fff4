from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z


class CashRegister(db.Model):
    """
    Physical cash drawer (till) of a branch.

    WHY: Cash accountability. Only cash payments and petty-cash expenses move
    current_balance_cents; card/transfer payments never touch it.

    LIFECYCLE: closed -> open -> closed -> ... (re-openable indefinitely)
    - open: snapshots initial_balance_cents, starts a new registry window
    - close: stamps last_open, writes a CashRegisterLog; balance persists

    INVARIANT (while open):
        current == initial + cash payments since open - petty cash since open
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", name="uq_cash_registers_branch_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_open = db.Column(db.Boolean, nullable=False, default=False, index=True)

    # Cash tracking (all amounts in cents)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    initial_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_open = db.Column(db.DateTime(timezone=True), nullable=True)  # stamped at close
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("cash_registers", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "is_active": self.is_active,
            "is_open": self.is_open,
            "current_balance_cents": self.current_balance_cents,
            "initial_balance_cents": self.initial_balance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "last_open": to_utc_z(self.last_open),
            "cashier_id": self.cashier_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashRegisterEntry(db.Model):
    """
    Registry index row: which payments against which document passed
    through this till during the current open window.
    """
    __tablename__ = "cash_register_entries"
    __table_args__ = (
        db.UniqueConstraint(
            "cash_register_id", "document_kind", "document_id",
            name="uq_cash_register_entries_register_document",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    document_kind = db.Column(db.String(16), nullable=False)  # order, event
    document_id = db.Column(db.Integer, nullable=False)
    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cash_register = db.relationship(
        "CashRegister",
        backref=db.backref("entries", lazy=True, cascade="all, delete-orphan"),
    )

    @property
    def payment_ids(self) -> list[int]:
        return sorted(link.payment_id for link in self.payment_links)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_kind": self.document_kind,
            "document_id": self.document_id,
            "payment_ids": self.payment_ids,
            "sale_date": to_utc_z(self.sale_date),
        }


class CashRegisterEntryPayment(db.Model):
    __tablename__ = "cash_register_entry_payments"
    __table_args__ = (
        db.UniqueConstraint("entry_id", "payment_id", name="uq_cash_register_entry_payments_entry_payment"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("cash_register_entries.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, nullable=False, index=True)

    entry = db.relationship(
        "CashRegisterEntry",
        backref=db.backref("payment_links", lazy=True, cascade="all, delete-orphan"),
    )


class CashRegisterLog(db.Model):
    """
    Reconciliation snapshot written when a register closes.

    Immutable once written. Windowed by opened_at..closed_at.
    """
    __tablename__ = "cash_register_logs"
    __table_args__ = (
        db.Index("ix_cash_register_logs_register_closed", "cash_register_id", "closed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    initial_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_in_cents = db.Column(db.Integer, nullable=False, default=0)
    expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    # Cash payments from an earlier window reversed during this one
    reversals_cents = db.Column(db.Integer, nullable=False, default=0)
    final_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    entry_count = db.Column(db.Integer, nullable=False, default=0)

    # {"<payment method name>": cents, ...} across every payment in the window
    totals_by_method = db.Column(db.JSON, nullable=False, default=dict)

    cash_register = db.relationship("CashRegister", backref=db.backref("logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "branch_id": self.branch_id,
            "cashier_id": self.cashier_id,
            "closed_by_user_id": self.closed_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "initial_balance_cents": self.initial_balance_cents,
            "cash_in_cents": self.cash_in_cents,
            "expenses_cents": self.expenses_cents,
            "reversals_cents": self.reversals_cents,
            "final_balance_cents": self.final_balance_cents,
            "entry_count": self.entry_count,
            "totals_by_method": self.totals_by_method or {},
        }
