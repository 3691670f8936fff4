from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z


DISCOUNT_TYPE_PERCENTAGE = "percentage"
DISCOUNT_TYPE_AMOUNT = "amount"
VALID_DISCOUNT_TYPES = (DISCOUNT_TYPE_PERCENTAGE, DISCOUNT_TYPE_AMOUNT)


class DiscountAuthorization(db.Model):
    """
    Manager approval for a discount above cashier policy.

    STATES (is_auth tri-state):
    - None  -> pending
    - True  -> approved (auth_folio issued, redeemable once)
    - False -> rejected (terminal, no folio)

    manager_id is fixed at request time. Reassigning the branch manager
    afterwards does not move the request.
    """
    __tablename__ = "discount_authorizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    message = db.Column(db.Text, nullable=False)
    discount_value = db.Column(db.Integer, nullable=False)  # percent points or cents
    discount_type = db.Column(db.String(16), nullable=False)

    is_auth = db.Column(db.Boolean, nullable=True, index=True)
    auth_folio = db.Column(db.String(32), nullable=True, unique=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_redeemed = db.Column(db.Boolean, nullable=False, default=False)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    redeemed_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch")
    requester = db.relationship("User", foreign_keys=[requester_id])
    manager = db.relationship("User", foreign_keys=[manager_id])

    @property
    def state(self) -> str:
        if self.is_auth is None:
            return "pending"
        if self.is_auth is False:
            return "rejected"
        return "redeemed" if self.is_redeemed else "approved"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "requester_id": self.requester_id,
            "manager_id": self.manager_id,
            "order_id": self.order_id,
            "message": self.message,
            "discount_value": self.discount_value,
            "discount_type": self.discount_type,
            "is_auth": self.is_auth,
            "state": self.state,
            "auth_folio": self.auth_folio,
            "decided_at": to_utc_z(self.decided_at),
            "is_redeemed": self.is_redeemed,
            "redeemed_at": to_utc_z(self.redeemed_at),
            "redeemed_order_id": self.redeemed_order_id,
            "created_at": to_utc_z(self.created_at),
        }
