from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z


class Company(db.Model):
    """
    Tenant root. Branches, registers and ledger documents hang off a company.
    """
    __tablename__ = "companies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Directory entry for an actor (admin, manager, cashier).

    Credentials live with the external identity provider; this row only
    exists so ledger records can reference who did what.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    full_name = db.Column(db.String(160), nullable=True)
    role = db.Column(db.String(16), nullable=False, default="cashier")  # admin, manager, cashier
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("users", lazy=True))

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }


class Branch(db.Model):
    """
    A physical location of a company.

    The manager assigned here receives discount authorization requests.
    Reassigning the manager does not move requests already routed.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_branches_company_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("branches", lazy=True))
    manager = db.relationship("User", foreign_keys=[manager_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "code": self.code,
            "manager_id": self.manager_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentMethod(db.Model):
    """
    Payment-method directory.

    Only is_cash matters to the ledger: cash payments move a register balance,
    every other method leaves registers untouched.
    """
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    abbreviation = db.Column(db.String(16), nullable=True)
    is_cash = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "abbreviation": self.abbreviation,
            "is_cash": self.is_cash,
            "is_active": self.is_active,
        }


class BranchStock(db.Model):
    """On-hand quantity of a product code at a branch."""
    __tablename__ = "branch_stock"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_code", name="uq_branch_stock_branch_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_code = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("stock", lazy=True))

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "product_code": self.product_code,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }
