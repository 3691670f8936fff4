from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z


class BranchNotification(db.Model):
    """
    Inbox record for branch staff.

    Soft state only: is_read / is_deleted flip, rows are never hard-deleted.
    recipient_user_id narrows delivery to one user (discount requests go to
    the assigned manager); otherwise every user with recipient_role sees it.
    """
    __tablename__ = "branch_notifications"
    __table_args__ = (
        db.Index("ix_branch_notifications_branch_role", "branch_id", "recipient_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    recipient_role = db.Column(db.String(16), nullable=False)  # manager, cashier
    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    kind = db.Column(db.String(48), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    discount_auth_id = db.Column(db.Integer, db.ForeignKey("discount_authorizations.id"), nullable=True, index=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "recipient_role": self.recipient_role,
            "recipient_user_id": self.recipient_user_id,
            "kind": self.kind,
            "payload": self.payload or {},
            "order_id": self.order_id,
            "discount_auth_id": self.discount_auth_id,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
