# Overview: Service-layer operations for ledger documents (orders, events, expenses, buys) and branch stock.

"""
Ledger Document Service

WHY: Every balance-bearing document gets a branch-scoped folio and a
running balance. Creation, the folio, the stock draw-down and any initial
payment commit together or not at all.

BALANCE RULES:
- total_cents is fixed at creation
- paid_cents / remaining_cents only move through apply_payment_delta,
  a single conditional UPDATE (never read-modify-write)
- payment_status is derived from paid vs total inside that same UPDATE
- order process status is independent of payment status
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..extensions import db
from ..errors import (
    NotFoundError,
    PreconditionFailed,
    ValidationError,
    coerce_int,
    coerce_positive_cents,
)
from ..models import (
    Branch,
    BranchStock,
    BranchNotification,
    Buy,
    CashRegister,
    DiscountAuthorization,
    Event,
    Expense,
    Order,
    OrderItem,
    Payment,
)
from ..models.documents import derive_payment_status
from ..realtime import publishing
from branchledger.time_utils import parse_iso_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from . import sequence_service


DOCUMENT_MODELS = {
    "order": Order,
    "event": Event,
    "expense": Expense,
    "buy": Buy,
}

PAYABLE_KINDS = ("order", "event")

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_IN_PRODUCTION = "in_production"
ORDER_STATUS_READY = "ready"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = [
    ORDER_STATUS_PENDING,
    ORDER_STATUS_IN_PRODUCTION,
    ORDER_STATUS_READY,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
]

EXPENSE_CHECK_TRANSFER = "check_transfer"
EXPENSE_PETTY_CASH = "petty_cash"
VALID_EXPENSE_TYPES = (EXPENSE_CHECK_TRANSFER, EXPENSE_PETTY_CASH)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_branch(branch_id: int) -> Branch:
    branch = db.session.query(Branch).filter_by(id=branch_id).first()
    if not branch or not branch.is_active:
        raise NotFoundError(f"Branch {branch_id} not found")
    return branch


def get_document(kind: str, document_id: int, *, lock: bool = False):
    model = DOCUMENT_MODELS.get(kind)
    if model is None:
        raise ValidationError(f"Unknown document kind: {kind}")
    query = db.session.query(model).filter_by(id=document_id)
    if lock:
        query = lock_for_update(query)
    document = query.first()
    if not document:
        raise NotFoundError(f"{kind.capitalize()} {document_id} not found")
    return document


# =============================================================================
# BALANCE MUTATION
# =============================================================================

def apply_payment_delta(document, delta_cents: int) -> None:
    """
    Move paid/remaining of a payable document by delta_cents in one
    conditional UPDATE.

    delta > 0 (payment):  guarded by remaining >= delta
    delta < 0 (reversal): guarded by paid >= -delta

    Zero rows matched means a concurrent payment got there first (or the
    document vanished); raises PreconditionFailed and the caller's
    transaction rolls back. The in-session instance is refreshed.
    """
    model = type(document)
    if delta_cents == 0:
        return

    new_paid = model.paid_cents + delta_cents
    values = {
        "paid_cents": new_paid,
        "remaining_cents": model.remaining_cents - delta_cents,
        "payment_status": case(
            (new_paid <= 0, "pending"),
            (new_paid < model.total_cents, "partial"),
            else_="paid",
        ),
    }
    if model is Order:
        values["version_id"] = Order.version_id + 1

    stmt = update(model).where(model.id == document.id)
    if delta_cents > 0:
        stmt = stmt.where(model.remaining_cents >= delta_cents)
    else:
        stmt = stmt.where(model.paid_cents >= -delta_cents)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if not result.rowcount:
        db.session.refresh(document)
        if delta_cents > 0:
            raise PreconditionFailed(
                "Amount exceeds remaining balance",
                remaining_cents=document.remaining_cents,
            )
        raise PreconditionFailed("Reversal exceeds paid amount", paid_cents=document.paid_cents)

    db.session.refresh(document)


# =============================================================================
# STOCK
# =============================================================================

def adjust_stock(branch_id: int, product_code: str, delta: int) -> None:
    """
    Atomically move branch stock by delta.

    Decrements are guarded by quantity >= -delta so stock never goes
    negative under concurrent orders.
    """
    if delta == 0:
        return
    stmt = (
        update(BranchStock)
        .where(BranchStock.branch_id == branch_id, BranchStock.product_code == product_code)
        .values(quantity=BranchStock.quantity + delta)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(BranchStock.quantity >= -delta)
    result = db.session.execute(stmt)
    if result.rowcount:
        return
    if delta < 0:
        raise PreconditionFailed(f"Insufficient stock for {product_code}", product_code=product_code)
    db.session.add(BranchStock(branch_id=branch_id, product_code=product_code, quantity=delta))
    db.session.flush()


def get_stock(branch_id: int, product_code: str) -> int:
    value = (
        db.session.query(BranchStock.quantity)
        .filter_by(branch_id=branch_id, product_code=product_code)
        .scalar()
    )
    return value or 0


def _normalize_items(items) -> list[dict]:
    if not items:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    normalized = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        code = (raw.get("product_code") or "").strip()
        if not code:
            raise ValidationError(f"items[{index}].product_code required")
        quantity = coerce_int(raw.get("quantity"), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be positive")
        unit_price = coerce_int(raw.get("unit_price_cents", 0), f"items[{index}].unit_price_cents")
        if unit_price < 0:
            raise ValidationError(f"items[{index}].unit_price_cents cannot be negative")
        normalized.append({"product_code": code, "quantity": quantity, "unit_price_cents": unit_price})
    return normalized


def stock_payload(branch_id: int, codes) -> dict:
    return {
        "branch_id": branch_id,
        "items": [
            {"product_code": code, "quantity": get_stock(branch_id, code)}
            for code in sorted(set(codes))
        ],
    }


# =============================================================================
# CREATION
# =============================================================================

def _new_document(model, kind: str, *, branch_id: int, actor_id: int | None, total_cents: int, **fields):
    folio = sequence_service.next_folio(kind, branch_id)
    document = model(
        branch_id=branch_id,
        folio=folio,
        total_cents=total_cents,
        paid_cents=0,
        remaining_cents=total_cents,
        payment_status=derive_payment_status(0, total_cents),
        created_by_user_id=actor_id,
        **fields,
    )
    db.session.add(document)
    db.session.flush()
    append_audit_event(
        branch_id=branch_id,
        event_type=f"{kind}.created",
        event_category="document",
        entity_type=kind,
        entity_id=document.id,
        actor_user_id=actor_id,
        amount_cents=total_cents,
        note=f"{kind.capitalize()} folio {folio} issued",
        payload={"folio": folio},
    )
    return document


def _register_initial_payment(kind: str, document, initial_payment: dict | None, actor_id: int | None):
    if not initial_payment:
        return None
    if not isinstance(initial_payment, dict):
        raise ValidationError("initial_payment must be an object")
    from .payment_service import _register_payment_locked

    return _register_payment_locked(
        parent=document,
        parent_kind=kind,
        amount_cents=coerce_positive_cents(initial_payment.get("amount_cents")),
        payment_method_id=coerce_int(initial_payment.get("payment_method_id"), "payment_method_id"),
        cash_register_id=coerce_int(initial_payment.get("cash_register_id"), "cash_register_id", allow_none=True),
        actor_id=actor_id,
        notes=initial_payment.get("notes"),
    )


def create_order(
    *,
    branch_id: int,
    actor_id: int | None,
    total_cents,
    client_name: str | None = None,
    items=None,
    notes: str | None = None,
    initial_payment: dict | None = None,
    notifier=None,
) -> Order:
    """
    Create an order with its folio, draw down stock for its items and
    optionally take the advance payment, all in one transaction.

    After commit: order:created to the branch room, storage:stockUpdated
    when items moved stock, cashRegister:updated for a cash advance.
    """
    total = coerce_int(total_cents, "total_cents")
    if total <= 0:
        raise ValidationError("total_cents must be positive")
    lines = _normalize_items(items)

    def _op():
        begin_immediate()
        get_branch(branch_id)
        order = _new_document(
            Order, "order",
            branch_id=branch_id,
            actor_id=actor_id,
            total_cents=total,
            client_name=(client_name or None),
            notes=notes,
            status=ORDER_STATUS_PENDING,
        )
        for line in lines:
            adjust_stock(branch_id, line["product_code"], -line["quantity"])
            db.session.add(OrderItem(order_id=order.id, **line))

        payment = _register_initial_payment("order", order, initial_payment, actor_id)

        from .notification_service import create_notification
        create_notification(
            branch_id=branch_id,
            recipient_role="manager",
            kind="order_created",
            payload={"order_id": order.id, "folio": order.folio, "total_cents": order.total_cents},
            order_id=order.id,
        )

        db.session.commit()
        return order, payment

    order, payment = run_with_retry(_op)

    if notifier:
        with publishing("order creation"):
            notifier.notify(branch_id, "order:created", {"order": order.to_dict()})
            if lines:
                notifier.notify(
                    branch_id, "storage:stockUpdated",
                    stock_payload(branch_id, [line["product_code"] for line in lines]),
                )
            if payment is not None and payment.cash_register_id:
                _notify_register(notifier, payment.cash_register_id)
    return order


def create_event(
    *,
    branch_id: int,
    actor_id: int | None,
    total_cents,
    client_name: str | None = None,
    event_date: str | None = None,
    notes: str | None = None,
    initial_payment: dict | None = None,
    notifier=None,
) -> Event:
    total = coerce_int(total_cents, "total_cents")
    if total <= 0:
        raise ValidationError("total_cents must be positive")
    try:
        when = parse_iso_datetime(event_date) if isinstance(event_date, str) else None
    except ValueError:
        raise ValidationError("event_date must be an ISO-8601 datetime")

    def _op():
        begin_immediate()
        get_branch(branch_id)
        event = _new_document(
            Event, "event",
            branch_id=branch_id,
            actor_id=actor_id,
            total_cents=total,
            client_name=(client_name or None),
            event_date=when,
            notes=notes,
        )
        payment = _register_initial_payment("event", event, initial_payment, actor_id)
        db.session.commit()
        return event, payment

    event, payment = run_with_retry(_op)

    if notifier and payment is not None and payment.cash_register_id:
        with publishing("event creation"):
            _notify_register(notifier, payment.cash_register_id)
    return event


def create_expense(
    *,
    branch_id: int,
    actor_id: int | None,
    concept: str,
    total_cents,
    expense_type: str,
    cash_register_id=None,
    payment_date: str | None = None,
    notes: str | None = None,
    notifier=None,
) -> Expense:
    """
    Record a branch expense. Expenses are settled at creation.

    petty_cash: paid out of an open register in the same branch; the
    register balance is debited atomically and may not go negative.
    check_transfer: never touches a register.
    """
    if not concept or not str(concept).strip():
        raise ValidationError("concept required")
    total = coerce_int(total_cents, "total_cents")
    if total <= 0:
        raise ValidationError("total_cents must be positive")
    if expense_type not in VALID_EXPENSE_TYPES:
        raise ValidationError(f"expense_type must be one of {list(VALID_EXPENSE_TYPES)}")
    register_id = coerce_int(cash_register_id, "cash_register_id", allow_none=True)
    if expense_type == EXPENSE_PETTY_CASH and register_id is None:
        raise ValidationError("cash_register_id required for petty_cash expenses")
    if expense_type == EXPENSE_CHECK_TRANSFER and register_id is not None:
        raise ValidationError("cash_register_id only applies to petty_cash expenses")
    try:
        paid_on = parse_iso_datetime(payment_date) if isinstance(payment_date, str) else None
    except ValueError:
        raise ValidationError("payment_date must be an ISO-8601 datetime")

    def _op():
        begin_immediate()
        get_branch(branch_id)
        if register_id is not None:
            from .register_service import debit_petty_cash
            debit_petty_cash(register_id, branch_id, total)

        expense = _new_document(
            Expense, "expense",
            branch_id=branch_id,
            actor_id=actor_id,
            total_cents=total,
            concept=str(concept).strip(),
            expense_type=expense_type,
            cash_register_id=register_id,
            payment_date=paid_on or utcnow(),
            notes=notes,
        )
        expense.paid_cents = total
        expense.remaining_cents = 0
        expense.payment_status = derive_payment_status(total, total)

        if register_id is not None:
            append_audit_event(
                branch_id=branch_id,
                event_type="register.petty_cash",
                event_category="register",
                entity_type="expense",
                entity_id=expense.id,
                actor_user_id=actor_id,
                cash_register_id=register_id,
                amount_cents=-total,
                note=f"Petty cash: {expense.concept}",
            )

        db.session.commit()
        return expense

    expense = run_with_retry(_op)

    if notifier and register_id is not None:
        with publishing("expense creation"):
            _notify_register(notifier, register_id)
    return expense


def create_buy(
    *,
    branch_id: int,
    actor_id: int | None,
    provider_name: str,
    total_cents,
    paid_cents=0,
    notes: str | None = None,
) -> Buy:
    if not provider_name or not str(provider_name).strip():
        raise ValidationError("provider_name required")
    total = coerce_int(total_cents, "total_cents")
    if total <= 0:
        raise ValidationError("total_cents must be positive")
    paid = coerce_int(paid_cents, "paid_cents", allow_none=True) or 0
    if paid < 0 or paid > total:
        raise ValidationError("paid_cents must be between 0 and total_cents")

    def _op():
        begin_immediate()
        get_branch(branch_id)
        buy = _new_document(
            Buy, "buy",
            branch_id=branch_id,
            actor_id=actor_id,
            total_cents=total,
            provider_name=str(provider_name).strip(),
            notes=notes,
        )
        buy.paid_cents = paid
        buy.remaining_cents = total - paid
        buy.payment_status = derive_payment_status(paid, total)
        db.session.commit()
        return buy

    return run_with_retry(_op)


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

def _restore_order_stock(order: Order) -> list[str]:
    codes = []
    for item in order.items:
        adjust_stock(order.branch_id, item.product_code, item.quantity)
        codes.append(item.product_code)
    return codes


def cancel_order_locked(order: Order, actor_id: int | None, *, reason: str | None = None) -> list[str]:
    """
    Cancel inside the caller's transaction. Payments must already be
    reversed. Returns the product codes whose stock was restored.
    """
    if order.status == ORDER_STATUS_CANCELLED:
        return []
    if order.paid_cents:
        raise PreconditionFailed("Order has payments; reverse them before cancelling")
    codes = _restore_order_stock(order)
    order.status = ORDER_STATUS_CANCELLED
    order.cancelled_at = utcnow()
    db.session.flush()
    append_audit_event(
        branch_id=order.branch_id,
        event_type="order.cancelled",
        event_category="document",
        entity_type="order",
        entity_id=order.id,
        actor_user_id=actor_id,
        note=reason or f"Order folio {order.folio} cancelled",
    )
    return codes


def update_order_status(*, order_id: int, status: str, actor_id: int | None, notifier=None) -> Order:
    """
    Move an order's process status. Payment status is not touched, and a
    fully paid order may sit in any process status. Cancelled is terminal.
    """
    if status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"status must be one of {VALID_ORDER_STATUSES}")

    restored: list[str] = []

    def _op():
        nonlocal restored
        begin_immediate()
        order = get_document("order", order_id, lock=True)
        if order.status == ORDER_STATUS_CANCELLED:
            raise PreconditionFailed("Order is cancelled")
        if status == ORDER_STATUS_CANCELLED:
            restored = cancel_order_locked(order, actor_id)
        else:
            previous = order.status
            order.status = status
            db.session.flush()
            append_audit_event(
                branch_id=order.branch_id,
                event_type="order.status_changed",
                event_category="document",
                entity_type="order",
                entity_id=order.id,
                actor_user_id=actor_id,
                payload={"from": previous, "to": status},
            )
        db.session.commit()
        return order

    order = run_with_retry(_op)

    if notifier:
        with publishing("order status change"):
            notifier.notify(order.branch_id, "order:updated", {"order": order.to_dict()})
            if restored:
                notifier.notify(order.branch_id, "storage:stockUpdated", stock_payload(order.branch_id, restored))
    return order


def delete_order(*, order_id: int, actor_id: int | None, notifier=None) -> dict:
    """
    Hard-delete an order with no payments. Stock is restored (unless the
    order was already cancelled) and the folio is never reissued.
    """
    def _op():
        begin_immediate()
        order = get_document("order", order_id, lock=True)
        has_payments = db.session.query(Payment.id).filter_by(order_id=order.id).first() is not None
        if has_payments or order.paid_cents:
            raise PreconditionFailed("Order has payments; reverse them before deleting")

        codes = []
        if order.status != ORDER_STATUS_CANCELLED:
            codes = _restore_order_stock(order)

        db.session.execute(
            update(BranchNotification)
            .where(BranchNotification.order_id == order.id)
            .values(order_id=None)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(DiscountAuthorization)
            .where(DiscountAuthorization.order_id == order.id)
            .values(order_id=None)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(DiscountAuthorization)
            .where(DiscountAuthorization.redeemed_order_id == order.id)
            .values(redeemed_order_id=None)
            .execution_options(synchronize_session=False)
        )

        info = {"id": order.id, "branch_id": order.branch_id, "folio": order.folio}
        append_audit_event(
            branch_id=order.branch_id,
            event_type="order.deleted",
            event_category="document",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_id,
            note=f"Order folio {order.folio} deleted",
        )
        db.session.delete(order)
        db.session.commit()
        return info, codes

    info, codes = run_with_retry(_op)

    if notifier:
        with publishing("order deletion"):
            notifier.notify(info["branch_id"], "order:deleted", {"order_id": info["id"], "folio": info["folio"]})
            if codes:
                notifier.notify(info["branch_id"], "storage:stockUpdated", stock_payload(info["branch_id"], codes))
    return info


def _notify_register(notifier, register_id: int) -> None:
    register = db.session.get(CashRegister, register_id)
    if register is not None:
        notifier.notify(register.branch_id, "cashRegister:updated", {"cash_register": register.to_dict()})
