# Overview: Service-layer operations for branch notifications (persisted inbox, soft state only).

from __future__ import annotations

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import NotFoundError, PreconditionFailed, ValidationError
from ..models import BranchNotification
from .concurrency import run_with_retry


VALID_RECIPIENT_ROLES = ("manager", "cashier")


def create_notification(
    *,
    branch_id: int,
    recipient_role: str,
    kind: str,
    payload: dict | None = None,
    recipient_user_id: int | None = None,
    order_id: int | None = None,
    discount_auth_id: int | None = None,
) -> BranchNotification:
    """Add an inbox record inside the caller's transaction."""
    if recipient_role not in VALID_RECIPIENT_ROLES:
        raise ValidationError(f"recipient_role must be one of {list(VALID_RECIPIENT_ROLES)}")
    notification = BranchNotification(
        branch_id=branch_id,
        recipient_role=recipient_role,
        recipient_user_id=recipient_user_id,
        kind=kind,
        payload=payload or {},
        order_id=order_id,
        discount_auth_id=discount_auth_id,
        is_read=False,
        is_deleted=False,
    )
    db.session.add(notification)
    db.session.flush()
    return notification


def list_for_user(
    *,
    user_id: int,
    role: str,
    branch_ids: list[int],
    include_read: bool = False,
    limit: int = 100,
) -> list[BranchNotification]:
    """
    Notifications visible to a user: addressed to them directly, or to
    their role in one of their branches without a specific recipient.
    Admins see the manager inbox of their branches.
    """
    if not branch_ids:
        return []
    inbox_role = "manager" if role in ("manager", "admin") else "cashier"
    query = db.session.query(BranchNotification).filter(
        BranchNotification.branch_id.in_(branch_ids),
        BranchNotification.is_deleted.is_(False),
        or_(
            BranchNotification.recipient_user_id == user_id,
            (BranchNotification.recipient_user_id.is_(None))
            & (BranchNotification.recipient_role == inbox_role),
        ),
    )
    if not include_read:
        query = query.filter(BranchNotification.is_read.is_(False))
    return query.order_by(BranchNotification.created_at.desc(), BranchNotification.id.desc()).limit(limit).all()


def get_notification(notification_id: int) -> BranchNotification:
    notification = db.session.query(BranchNotification).filter_by(id=notification_id).first()
    if not notification or notification.is_deleted:
        raise NotFoundError(f"Notification {notification_id} not found")
    return notification


def _check_recipient(notification: BranchNotification, user_id: int | None) -> None:
    if notification.recipient_user_id is not None and user_id is not None and notification.recipient_user_id != user_id:
        raise PreconditionFailed("Notification belongs to another user")


def mark_read(*, notification_id: int, user_id: int | None = None) -> BranchNotification:
    def _op():
        notification = get_notification(notification_id)
        _check_recipient(notification, user_id)
        notification.is_read = True
        db.session.commit()
        return notification

    return run_with_retry(_op)


def soft_delete(*, notification_id: int, user_id: int | None = None) -> BranchNotification:
    def _op():
        notification = get_notification(notification_id)
        _check_recipient(notification, user_id)
        notification.is_deleted = True
        db.session.commit()
        return notification

    return run_with_retry(_op)


def mark_read_for_authorization(discount_auth_id: int) -> int:
    """Close the manager's inbox item once a request is decided (caller's transaction)."""
    result = db.session.execute(
        update(BranchNotification)
        .where(
            BranchNotification.discount_auth_id == discount_auth_id,
            BranchNotification.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
