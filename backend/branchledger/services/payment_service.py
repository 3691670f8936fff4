# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Registration Service

WHY: Orders and events are paid in installments with any payment method.
Cash installments also land in a cash register.

DESIGN PRINCIPLES:
- Payments are separate from documents (many-to-one relationship)
- One transaction per registration/reversal: payment row, parent balance,
  register balance, registry index and audit event commit together
- Parent and register balances move through conditional UPDATEs, so two
  concurrent payments can never both spend the same remaining balance
- Payments are immutable; corrections are reverse + register again
- Process status of an order is never changed by payment
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    LedgerIntegrityError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
    coerce_int,
    coerce_positive_cents,
)
from ..models import CashRegister, Payment, PaymentMethod
from ..realtime import publishing
from .audit_service import append_audit_event
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from . import document_service, register_service


# =============================================================================
# LOOKUPS
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def get_payment_method(payment_method_id: int) -> PaymentMethod:
    method = db.session.query(PaymentMethod).filter_by(id=payment_method_id).first()
    if not method or not method.is_active:
        raise NotFoundError(f"Payment method {payment_method_id} not found")
    return method


def list_payments(parent_kind: str, parent_id: int) -> list[Payment]:
    column = Payment.order_id if parent_kind == "order" else Payment.event_id
    return db.session.query(Payment).filter(column == parent_id).order_by(Payment.id.asc()).all()


def _check_parent_kind(parent_kind: str) -> str:
    if parent_kind not in document_service.PAYABLE_KINDS:
        raise ValidationError(f"parent_kind must be one of {list(document_service.PAYABLE_KINDS)}")
    return parent_kind


# =============================================================================
# REGISTRATION
# =============================================================================

def _register_payment_locked(
    *,
    parent,
    parent_kind: str,
    amount_cents: int,
    payment_method_id: int,
    cash_register_id: int | None,
    actor_id: int | None,
    notes: str | None = None,
    external_reference: str | None = None,
) -> Payment:
    """
    Register a payment inside the caller's transaction.

    Preconditions are all checked before the first write so a rejected
    payment leaves nothing to roll back; the conditional UPDATEs re-check
    the contended ones (remaining balance, register open).
    """
    if parent_kind == "order" and parent.status == document_service.ORDER_STATUS_CANCELLED:
        raise PreconditionFailed("Order is cancelled")
    if amount_cents > parent.remaining_cents:
        raise PreconditionFailed(
            "Amount exceeds remaining balance",
            remaining_cents=parent.remaining_cents,
        )

    method = get_payment_method(payment_method_id)

    register = None
    if method.is_cash:
        if cash_register_id is None:
            raise ValidationError("cash_register_id required for cash payments")
        register = register_service.get_register(cash_register_id, lock=True)
        if register.branch_id != parent.branch_id:
            raise ValidationError("Cash register belongs to a different branch")
        if not register.is_open:
            raise PreconditionFailed("Cash register is closed")
    elif cash_register_id is not None:
        raise ValidationError("cash_register_id only applies to cash payments")

    payment = Payment(
        branch_id=parent.branch_id,
        order_id=parent.id if parent_kind == "order" else None,
        event_id=parent.id if parent_kind == "event" else None,
        payment_method_id=method.id,
        cash_register_id=register.id if register else None,
        amount_cents=amount_cents,
        registered_by_id=actor_id,
        notes=notes,
        external_reference=external_reference,
    )
    db.session.add(payment)
    db.session.flush()

    document_service.apply_payment_delta(parent, amount_cents)

    if register is not None:
        register_service.credit_cash(register.id, amount_cents)
        register_service.add_registry_payment(register.id, parent_kind, parent.id, payment.id)

    append_audit_event(
        branch_id=parent.branch_id,
        event_type="payment.registered",
        event_category="payment",
        entity_type="payment",
        entity_id=payment.id,
        actor_user_id=actor_id,
        cash_register_id=payment.cash_register_id,
        amount_cents=amount_cents,
        note=f"{method.name} payment on {parent_kind} folio {parent.folio}",
        payload={
            "parent_kind": parent_kind,
            "parent_id": parent.id,
            "paid_cents": parent.paid_cents,
            "remaining_cents": parent.remaining_cents,
        },
    )
    return payment


def register_payment(
    *,
    parent_kind: str = "order",
    parent_id,
    amount_cents,
    payment_method_id,
    cash_register_id=None,
    actor_id: int | None = None,
    notes: str | None = None,
    external_reference: str | None = None,
    notifier=None,
) -> Payment:
    """
    Register a payment against an order or event.

    WHY: Core payment operation. Validates, moves the parent balance and
    (for cash) the register balance, all-or-nothing.

    Raises:
        ValidationError: malformed input, register given for non-cash,
            missing register for cash, register from another branch
        NotFoundError: parent, method or register does not exist
        PreconditionFailed: amount above remaining, register closed,
            order cancelled
    """
    _check_parent_kind(parent_kind)
    parent_id = coerce_int(parent_id, "parent_id")
    amount = coerce_positive_cents(amount_cents)
    method_id = coerce_int(payment_method_id, "payment_method_id")
    register_id = coerce_int(cash_register_id, "cash_register_id", allow_none=True)

    def _op():
        begin_immediate()
        if external_reference:
            existing = db.session.query(Payment).filter_by(external_reference=external_reference).first()
            if existing:
                db.session.commit()
                return existing, False

        parent = document_service.get_document(parent_kind, parent_id, lock=True)
        payment = _register_payment_locked(
            parent=parent,
            parent_kind=parent_kind,
            amount_cents=amount,
            payment_method_id=method_id,
            cash_register_id=register_id,
            actor_id=actor_id,
            notes=notes,
            external_reference=external_reference,
        )
        db.session.commit()
        return payment, True

    try:
        payment, created = run_with_retry(_op)
    except IntegrityError:
        if not external_reference:
            raise
        # Concurrent delivery of the same gateway payment won the insert
        existing = db.session.query(Payment).filter_by(external_reference=external_reference).first()
        if existing is None:
            raise
        return existing

    if created and notifier:
        with publishing("payment registration"):
            _notify_payment_effects(notifier, payment)
    return payment


# =============================================================================
# REVERSAL
# =============================================================================

def _reverse_payment_locked(payment: Payment, actor_id: int | None):
    """
    Exact inverse of registration inside the caller's transaction.
    Returns the parent document.
    """
    parent_kind = payment.parent_kind
    model = document_service.DOCUMENT_MODELS[parent_kind]
    parent = lock_for_update(db.session.query(model).filter_by(id=payment.parent_id)).first()
    if parent is None:
        raise LedgerIntegrityError(
            f"Payment {payment.id} references missing {parent_kind} {payment.parent_id}",
            payment_id=payment.id,
        )

    document_service.apply_payment_delta(parent, -payment.amount_cents)

    if payment.cash_register_id is not None:
        register = register_service.debit_cash_for_reversal(payment.cash_register_id, payment.amount_cents)
        in_window = register_service.remove_registry_payment(payment.cash_register_id, payment.id)
        if register.is_open and not in_window:
            # Taken before the current open; record it as a movement of this window
            append_audit_event(
                branch_id=register.branch_id,
                event_type=register_service.EARLIER_WINDOW_REVERSAL,
                event_category="register",
                entity_type="cash_register",
                entity_id=register.id,
                actor_user_id=actor_id,
                cash_register_id=register.id,
                amount_cents=payment.amount_cents,
                payload={"payment_id": payment.id},
            )

    append_audit_event(
        branch_id=parent.branch_id,
        event_type="payment.reversed",
        event_category="payment",
        entity_type="payment",
        entity_id=payment.id,
        actor_user_id=actor_id,
        cash_register_id=payment.cash_register_id,
        amount_cents=-payment.amount_cents,
        note=f"Payment reversed on {parent_kind} folio {parent.folio}",
        payload={
            "parent_kind": parent_kind,
            "parent_id": parent.id,
            "paid_cents": parent.paid_cents,
            "remaining_cents": parent.remaining_cents,
        },
    )
    db.session.delete(payment)
    db.session.flush()
    return parent


def reverse_payment(*, payment_id, actor_id: int | None = None, notifier=None):
    """
    Reverse (delete) a payment and restore parent and register state.

    Reversing a non-cash payment never touches a register. A cash payment
    is taken back out of its register even if the register has since been
    closed.

    Raises:
        NotFoundError: payment does not exist
        LedgerIntegrityError: the payment's parent no longer exists
    """
    payment_id = coerce_int(payment_id, "payment_id")
    snapshot = {}

    def _op():
        begin_immediate()
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")
        snapshot["cash_register_id"] = payment.cash_register_id
        snapshot["parent_kind"] = payment.parent_kind
        parent = _reverse_payment_locked(payment, actor_id)
        db.session.commit()
        return parent

    parent = run_with_retry(_op)

    if notifier:
        with publishing("payment reversal"):
            if snapshot["parent_kind"] == "order":
                notifier.notify(parent.branch_id, "order:updated", {"order": parent.to_dict()})
            if snapshot["cash_register_id"] is not None:
                register = db.session.get(CashRegister, snapshot["cash_register_id"])
                if register is not None:
                    notifier.notify(register.branch_id, "cashRegister:updated", {"cash_register": register.to_dict()})
    return parent


def reverse_document_payments_locked(parent_kind: str, parent_id: int, actor_id: int | None) -> set[int]:
    """
    Reverse every payment of a document inside the caller's transaction.
    Returns the ids of registers whose balance moved.
    """
    registers = set()
    for payment in list_payments(parent_kind, parent_id):
        if payment.cash_register_id is not None:
            registers.add(payment.cash_register_id)
        _reverse_payment_locked(payment, actor_id)
    return registers


# =============================================================================
# CARD GATEWAY
# =============================================================================

def handle_gateway_outcome(payload: dict | None, *, notifier=None) -> Payment | None:
    """
    Consume the card gateway's asynchronous outcome.

    succeeded=false: logged, no ledger effect.
    succeeded=true: registered like any other non-cash payment. The
    gateway reference is the idempotency key, so replays return the
    payment created by the first delivery.
    """
    if not isinstance(payload, dict):
        raise ValidationError("JSON body required")
    succeeded = payload.get("succeeded")
    if not isinstance(succeeded, bool):
        raise ValidationError("succeeded must be a boolean")
    reference = (payload.get("reference") or "").strip()
    if not reference:
        raise ValidationError("reference required")

    if not succeeded:
        current_app.logger.info(
            "Gateway reported failed payment %s for %s %s",
            reference, payload.get("parent_kind", "order"), payload.get("parent_id"),
        )
        return None

    method_id = coerce_int(payload.get("payment_method_id"), "payment_method_id")
    method = get_payment_method(method_id)
    if method.is_cash:
        raise ValidationError("Gateway payments cannot use a cash payment method")

    return register_payment(
        parent_kind=payload.get("parent_kind") or "order",
        parent_id=payload.get("parent_id"),
        amount_cents=payload.get("amount_cents"),
        payment_method_id=method_id,
        cash_register_id=None,
        actor_id=None,
        notes=f"Card gateway {reference}",
        external_reference=reference,
        notifier=notifier,
    )


def _notify_payment_effects(notifier, payment: Payment) -> None:
    if payment.order_id is not None:
        order = document_service.get_document("order", payment.order_id)
        notifier.notify(order.branch_id, "order:updated", {"order": order.to_dict()})
    if payment.cash_register_id is not None:
        register = db.session.get(CashRegister, payment.cash_register_id)
        if register is not None:
            notifier.notify(register.branch_id, "cashRegister:updated", {"cash_register": register.to_dict()})
