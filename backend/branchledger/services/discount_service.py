# Overview: Service-layer operations for discount authorizations; request, decide, redeem.

"""
Discount Authorization Workflow

WHY: Discounts above cashier policy need a manager's approval. The
approval is a folio the cashier presents exactly once at the branch the
request came from.

STATES:
    pending --decide(approve)--> approved --redeem--> redeemed
    pending --decide(reject)---> rejected

- Bound to the manager assigned at request time, not the current one
- Decided exactly once; redeemed exactly once (conditional UPDATEs)
- Approval issues AUTH-YYMMDD-NNNN from a system-wide per-day sequence
- Rejecting a request linked to an order reverses the order's payments
  and cancels it in the same transaction
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AuthorizationMismatch,
    LedgerIntegrityError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
    coerce_int,
)
from ..models import CashRegister, DiscountAuthorization, User
from ..models.discounts import DISCOUNT_TYPE_PERCENTAGE, VALID_DISCOUNT_TYPES
from ..realtime import publishing
from branchledger.time_utils import day_stamp, utcnow
from .audit_service import append_audit_event
from .concurrency import begin_immediate, run_with_retry
from . import document_service, notification_service, payment_service, sequence_service


DEFAULT_FOLIO_MAX_ATTEMPTS = 5


def format_auth_folio(stamp: str, number: int) -> str:
    return f"AUTH-{stamp}-{number:04d}"


def normalize_folio(auth_folio) -> str:
    if not isinstance(auth_folio, str) or not auth_folio.strip():
        raise ValidationError("auth_folio required")
    return auth_folio.strip().upper()


def get_authorization(auth_id: int) -> DiscountAuthorization:
    auth = db.session.query(DiscountAuthorization).filter_by(id=auth_id).first()
    if not auth:
        raise NotFoundError(f"Discount authorization {auth_id} not found")
    return auth


# =============================================================================
# REQUEST
# =============================================================================

def request_authorization(
    *,
    message: str,
    branch_id: int,
    discount_value,
    discount_type: str,
    requester_id: int,
    order_id=None,
    notifier=None,
) -> DiscountAuthorization:
    """
    Route a discount request to the branch's current manager.

    Raises:
        ValidationError: empty message, non-positive value, bad type
        NotFoundError: branch or linked order missing
        PreconditionFailed: branch has no manager assigned
    """
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("message required")
    value = coerce_int(discount_value, "discount_value")
    if value <= 0:
        raise ValidationError("discount_value must be greater than 0")
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {list(VALID_DISCOUNT_TYPES)}")
    if discount_type == DISCOUNT_TYPE_PERCENTAGE and value > 100:
        raise ValidationError("percentage discount cannot exceed 100")
    linked_order_id = coerce_int(order_id, "order_id", allow_none=True)

    def _op():
        begin_immediate()
        branch = document_service.get_branch(branch_id)
        if not branch.manager_id:
            raise PreconditionFailed("Branch has no manager assigned")
        if linked_order_id is not None:
            order = document_service.get_document("order", linked_order_id)
            if order.branch_id != branch.id:
                raise ValidationError("Order belongs to a different branch")

        auth = DiscountAuthorization(
            branch_id=branch.id,
            requester_id=requester_id,
            manager_id=branch.manager_id,
            order_id=linked_order_id,
            message=message.strip(),
            discount_value=value,
            discount_type=discount_type,
            is_auth=None,
            is_redeemed=False,
        )
        db.session.add(auth)
        db.session.flush()

        requester = db.session.get(User, requester_id)
        notification_service.create_notification(
            branch_id=branch.id,
            recipient_role="manager",
            recipient_user_id=branch.manager_id,
            kind="discount_request",
            payload={
                "discount_auth_id": auth.id,
                "message": auth.message,
                "discount_value": value,
                "discount_type": discount_type,
                "requester": requester.display_name if requester else None,
            },
            order_id=linked_order_id,
            discount_auth_id=auth.id,
        )
        append_audit_event(
            branch_id=branch.id,
            event_type="discount.requested",
            event_category="discount",
            entity_type="discount_authorization",
            entity_id=auth.id,
            actor_user_id=requester_id,
            payload={"manager_id": branch.manager_id, "discount_value": value, "discount_type": discount_type},
        )
        db.session.commit()
        return auth

    auth = run_with_retry(_op)

    if notifier:
        with publishing("discount request"):
            notifier.notify_user(auth.manager_id, "discountAuth:requested", {"authorization": auth.to_dict()})
    return auth


# =============================================================================
# DECIDE
# =============================================================================

def _issue_folio(auth: DiscountAuthorization, now: datetime, max_attempts: int) -> str:
    """
    Assign AUTH-YYMMDD-NNNN. A collision with an existing folio burns that
    sequence number and tries the next, up to max_attempts.
    """
    stamp = day_stamp(now)
    scope = sequence_service.day_scope(stamp)
    for attempt in range(1, max_attempts + 1):
        number = sequence_service.next_in_scope(sequence_service.DISCOUNT_AUTH_KIND, scope)
        folio = format_auth_folio(stamp, number)
        try:
            with db.session.begin_nested():
                db.session.execute(
                    update(DiscountAuthorization)
                    .where(DiscountAuthorization.id == auth.id)
                    .values(auth_folio=folio)
                    .execution_options(synchronize_session=False)
                )
            return folio
        except IntegrityError:
            current_app.logger.warning(
                "Authorization folio %s already taken (attempt %s of %s)", folio, attempt, max_attempts
            )
    raise LedgerIntegrityError(
        "Could not issue a unique authorization folio",
        attempts=max_attempts,
    )


def decide(
    *,
    auth_id,
    manager_id: int,
    approve: bool,
    now: datetime | None = None,
    notifier=None,
) -> DiscountAuthorization:
    """
    Approve or reject a pending request. Only the manager bound to the
    request may decide, and only once.

    Raises:
        NotFoundError: unknown authorization
        AuthorizationMismatch: manager_id is not the assigned manager
        PreconditionFailed: already decided
        LedgerIntegrityError: folio retries exhausted (nothing is decided)
    """
    auth_id = coerce_int(auth_id, "auth_id")
    if not isinstance(approve, bool):
        raise ValidationError("approve must be a boolean")
    decided_at = now or utcnow()
    max_attempts = current_app.config.get("DISCOUNT_FOLIO_MAX_ATTEMPTS", DEFAULT_FOLIO_MAX_ATTEMPTS)
    effects = {"order_id": None, "registers": set(), "stock_codes": []}

    def _op():
        begin_immediate()
        effects.update({"order_id": None, "registers": set(), "stock_codes": []})
        auth = get_authorization(auth_id)
        if auth.manager_id != manager_id:
            raise AuthorizationMismatch("Only the assigned manager can decide this request")

        result = db.session.execute(
            update(DiscountAuthorization)
            .where(
                DiscountAuthorization.id == auth_id,
                DiscountAuthorization.is_auth.is_(None),
                DiscountAuthorization.manager_id == manager_id,
            )
            .values(is_auth=approve, decided_at=decided_at)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise PreconditionFailed("Discount authorization already decided")

        if approve:
            _issue_folio(auth, decided_at, max_attempts)
        elif auth.order_id is not None:
            effects["order_id"] = auth.order_id
            effects["registers"] = payment_service.reverse_document_payments_locked(
                "order", auth.order_id, manager_id
            )
            order = document_service.get_document("order", auth.order_id, lock=True)
            effects["stock_codes"] = document_service.cancel_order_locked(
                order, manager_id, reason=f"Discount request {auth.id} rejected"
            )

        notification_service.mark_read_for_authorization(auth.id)
        append_audit_event(
            branch_id=auth.branch_id,
            event_type="discount.approved" if approve else "discount.rejected",
            event_category="discount",
            entity_type="discount_authorization",
            entity_id=auth.id,
            actor_user_id=manager_id,
            payload={"order_id": auth.order_id},
        )
        db.session.commit()
        db.session.refresh(auth)
        return auth

    auth = run_with_retry(_op)

    if notifier:
        with publishing("discount decision"):
            payload = {"authorization": auth.to_dict()}
            notifier.notify_user(auth.requester_id, "discountAuth:decided", payload)
            notifier.notify(auth.branch_id, "discountAuth:decided", payload)
            if effects["order_id"] is not None:
                order = document_service.get_document("order", effects["order_id"])
                notifier.notify(order.branch_id, "order:updated", {"order": order.to_dict()})
                if effects["stock_codes"]:
                    notifier.notify(
                        order.branch_id, "storage:stockUpdated",
                        document_service.stock_payload(order.branch_id, effects["stock_codes"]),
                    )
            for register_id in sorted(effects["registers"]):
                register = db.session.get(CashRegister, register_id)
                if register is not None:
                    notifier.notify(register.branch_id, "cashRegister:updated", {"cash_register": register.to_dict()})
    return auth


# =============================================================================
# REDEEM
# =============================================================================

def _redeem_failure(folio: str, branch_id: int) -> Exception:
    auth = db.session.query(DiscountAuthorization).filter_by(auth_folio=folio).populate_existing().first()
    if auth is None:
        return NotFoundError("Authorization folio not found")
    if auth.branch_id != branch_id:
        return PreconditionFailed("Authorization folio belongs to a different branch")
    if auth.is_redeemed:
        return PreconditionFailed("Authorization folio already redeemed")
    return PreconditionFailed("Authorization folio is not approved")


def redeem(
    *,
    auth_folio,
    branch_id,
    order_id=None,
    actor_id: int | None = None,
    now: datetime | None = None,
    notifier=None,
) -> dict:
    """
    Consume an approved folio exactly once at its own branch.

    The consume is a single UPDATE guarded by approved, not redeemed and
    matching branch; of two concurrent redemptions exactly one matches a
    row. With order_id the order moves to in_production.

    Returns the discount parameters for the caller to apply.
    """
    folio = normalize_folio(auth_folio)
    branch_id = coerce_int(branch_id, "branch_id")
    target_order_id = coerce_int(order_id, "order_id", allow_none=True)
    redeemed_at = now or utcnow()

    def _op():
        begin_immediate()
        order = None
        if target_order_id is not None:
            order = document_service.get_document("order", target_order_id, lock=True)
            if order.branch_id != branch_id:
                raise ValidationError("Order belongs to a different branch")
            if order.status == document_service.ORDER_STATUS_CANCELLED:
                raise PreconditionFailed("Order is cancelled")

        result = db.session.execute(
            update(DiscountAuthorization)
            .where(
                DiscountAuthorization.auth_folio == folio,
                DiscountAuthorization.is_auth.is_(True),
                DiscountAuthorization.is_redeemed.is_(False),
                DiscountAuthorization.branch_id == branch_id,
            )
            .values(is_redeemed=True, redeemed_at=redeemed_at, redeemed_order_id=target_order_id)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise _redeem_failure(folio, branch_id)

        auth = db.session.query(DiscountAuthorization).filter_by(auth_folio=folio).one()
        db.session.refresh(auth)

        if order is not None:
            previous = order.status
            order.status = document_service.ORDER_STATUS_IN_PRODUCTION
            db.session.flush()
            append_audit_event(
                branch_id=order.branch_id,
                event_type="order.status_changed",
                event_category="document",
                entity_type="order",
                entity_id=order.id,
                actor_user_id=actor_id,
                payload={"from": previous, "to": order.status, "auth_folio": folio},
            )

        append_audit_event(
            branch_id=branch_id,
            event_type="discount.redeemed",
            event_category="discount",
            entity_type="discount_authorization",
            entity_id=auth.id,
            actor_user_id=actor_id,
            payload={"auth_folio": folio, "order_id": target_order_id},
        )
        db.session.commit()
        return auth, order

    auth, order = run_with_retry(_op)

    if notifier and order is not None:
        with publishing("discount redemption"):
            notifier.notify(order.branch_id, "order:updated", {"order": order.to_dict()})

    return {
        "authorization_id": auth.id,
        "auth_folio": auth.auth_folio,
        "discount_value": auth.discount_value,
        "discount_type": auth.discount_type,
        "order_id": target_order_id,
    }
