# Overview: Service-layer operations for cash registers; open/close state machine, cash balance and registry window.

"""
Cash Register Service

WHY: Cash accountability per till. A register is opened by a cashier,
takes cash payments and petty-cash disbursements, and is closed with a
reconciliation log.

STATE MACHINE:
    closed --open()--> open --close()--> closed --open()--> ...

BALANCE RULES:
- current_balance_cents moves only through conditional UPDATEs here
  (credit for cash payments, debit for reversals and petty cash)
- open() snapshots initial = current and starts a new registry window;
  passing initial_balance_cents is the explicit reset
- close() stamps last_open and keeps the balance
- reset_balance() is the deliberate out-of-window reset (closed only)

INVARIANT (while open):
    current == initial + cash payments in window - petty cash since opened_at
"""

from __future__ import annotations

from sqlalchemy import func, update

from ..extensions import db
from ..errors import NotFoundError, PreconditionFailed, ValidationError, coerce_int
from ..models import (
    CashRegister,
    CashRegisterEntry,
    CashRegisterEntryPayment,
    CashRegisterLog,
    Expense,
    LedgerAuditEvent,
    Payment,
    PaymentMethod,
)
from ..realtime import publishing
from branchledger.time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import begin_immediate, lock_for_update, run_with_retry


# =============================================================================
# LOOKUPS
# =============================================================================

def get_register(register_id: int, *, lock: bool = False) -> CashRegister:
    query = db.session.query(CashRegister).filter_by(id=register_id)
    if lock:
        query = lock_for_update(query)
    register = query.first()
    if not register:
        raise NotFoundError(f"Cash register {register_id} not found")
    return register


def list_registers(branch_id: int | None = None) -> list[CashRegister]:
    query = db.session.query(CashRegister)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    return query.order_by(CashRegister.branch_id, CashRegister.name).all()


def _reload(register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, register_id)
    db.session.refresh(register)
    return register


def _notify(notifier, register: CashRegister) -> None:
    if notifier:
        with publishing("register change"):
            notifier.notify(register.branch_id, "cashRegister:updated", {"cash_register": register.to_dict()})


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

def create_register(*, branch_id: int, name: str, actor_id: int | None = None, notifier=None) -> CashRegister:
    """Create a closed register with a zero balance."""
    from .document_service import get_branch

    if not name or not str(name).strip():
        raise ValidationError("name required")
    name = str(name).strip()

    def _op():
        begin_immediate()
        get_branch(branch_id)
        existing = db.session.query(CashRegister.id).filter_by(branch_id=branch_id, name=name).first()
        if existing:
            raise ValidationError(f"Cash register '{name}' already exists in this branch")

        register = CashRegister(
            branch_id=branch_id,
            name=name,
            is_active=True,
            is_open=False,
            current_balance_cents=0,
            initial_balance_cents=0,
        )
        db.session.add(register)
        db.session.flush()
        append_audit_event(
            branch_id=branch_id,
            event_type="register.created",
            event_category="register",
            entity_type="cash_register",
            entity_id=register.id,
            actor_user_id=actor_id,
            cash_register_id=register.id,
            note=f"Cash register '{name}' created",
        )
        db.session.commit()
        return register

    register = run_with_retry(_op)
    _notify(notifier, register)
    return register


def deactivate_register(*, register_id: int, actor_id: int | None = None, notifier=None) -> CashRegister:
    """Retire a register. It must be closed first."""
    def _op():
        begin_immediate()
        register = get_register(register_id, lock=True)
        if register.is_open:
            raise PreconditionFailed("Close the cash register before deactivating it")
        register.is_active = False
        db.session.flush()
        append_audit_event(
            branch_id=register.branch_id,
            event_type="register.deactivated",
            event_category="register",
            entity_type="cash_register",
            entity_id=register.id,
            actor_user_id=actor_id,
            cash_register_id=register.id,
        )
        db.session.commit()
        return register

    register = run_with_retry(_op)
    _notify(notifier, register)
    return register


EARLIER_WINDOW_REVERSAL = "register.earlier_window_reversal"


# =============================================================================
# STATE MACHINE
# =============================================================================

def _clear_registry(register_id: int) -> None:
    entry_ids = db.session.query(CashRegisterEntry.id).filter_by(cash_register_id=register_id)
    db.session.query(CashRegisterEntryPayment).filter(
        CashRegisterEntryPayment.entry_id.in_(entry_ids.scalar_subquery())
    ).delete(synchronize_session=False)
    db.session.query(CashRegisterEntry).filter_by(cash_register_id=register_id).delete(synchronize_session=False)
    db.session.expire_all()


def _open_locked(register: CashRegister, actor_id: int | None, initial_balance_cents: int | None) -> CashRegister:
    if not register.is_active:
        raise PreconditionFailed("Cash register is inactive")
    if register.is_open:
        raise PreconditionFailed("Cash register is already open")

    now = utcnow()
    values = {
        "is_open": True,
        "opened_at": now,
        "cashier_id": actor_id,
        "version_id": CashRegister.version_id + 1,
    }
    if initial_balance_cents is None:
        values["initial_balance_cents"] = CashRegister.current_balance_cents
    else:
        values["initial_balance_cents"] = initial_balance_cents
        values["current_balance_cents"] = initial_balance_cents

    result = db.session.execute(
        update(CashRegister)
        .where(
            CashRegister.id == register.id,
            CashRegister.is_open.is_(False),
            CashRegister.is_active.is_(True),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise PreconditionFailed("Cash register is already open")

    _clear_registry(register.id)
    register = _reload(register.id)
    append_audit_event(
        branch_id=register.branch_id,
        event_type="register.opened",
        event_category="register",
        entity_type="cash_register",
        entity_id=register.id,
        actor_user_id=actor_id,
        cash_register_id=register.id,
        amount_cents=register.initial_balance_cents,
        note="Opened with explicit balance reset" if initial_balance_cents is not None else None,
    )
    return register


def _window_totals(register: CashRegister) -> dict:
    """Cash in, petty cash out and per-method totals for the current window."""
    cash_in = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .join(CashRegisterEntryPayment, CashRegisterEntryPayment.payment_id == Payment.id)
        .join(CashRegisterEntry, CashRegisterEntry.id == CashRegisterEntryPayment.entry_id)
        .filter(CashRegisterEntry.cash_register_id == register.id)
        .scalar()
    )

    expense_query = db.session.query(func.coalesce(func.sum(Expense.total_cents), 0)).filter(
        Expense.cash_register_id == register.id,
        Expense.expense_type == "petty_cash",
    )
    if register.opened_at is not None:
        expense_query = expense_query.filter(Expense.created_at >= register.opened_at)
    expenses = expense_query.scalar()

    # Cash taken at this till plus non-cash taken by its cashier in the branch
    method_query = (
        db.session.query(PaymentMethod.name, func.sum(Payment.amount_cents))
        .join(Payment, Payment.payment_method_id == PaymentMethod.id)
        .filter(Payment.branch_id == register.branch_id)
    )
    if register.opened_at is not None:
        method_query = method_query.filter(Payment.created_at >= register.opened_at)
    method_query = method_query.filter(
        (Payment.cash_register_id == register.id)
        | ((Payment.cash_register_id.is_(None)) & (Payment.registered_by_id == register.cashier_id))
    )
    totals_by_method = {name: int(total or 0) for name, total in method_query.group_by(PaymentMethod.name).all()}

    # Audit ids are monotonic; everything after the latest open belongs to this window
    opened_event_id = (
        db.session.query(func.max(LedgerAuditEvent.id))
        .filter(
            LedgerAuditEvent.event_type == "register.opened",
            LedgerAuditEvent.cash_register_id == register.id,
        )
        .scalar()
    ) or 0
    reversed_out = (
        db.session.query(func.coalesce(func.sum(LedgerAuditEvent.amount_cents), 0))
        .filter(
            LedgerAuditEvent.event_type == EARLIER_WINDOW_REVERSAL,
            LedgerAuditEvent.cash_register_id == register.id,
            LedgerAuditEvent.id > opened_event_id,
        )
        .scalar()
    )

    entry_count = db.session.query(func.count(CashRegisterEntry.id)).filter_by(cash_register_id=register.id).scalar()

    return {
        "cash_in_cents": int(cash_in or 0),
        "expenses_cents": int(expenses or 0),
        "reversals_cents": int(reversed_out or 0),
        "totals_by_method": totals_by_method,
        "entry_count": int(entry_count or 0),
    }


def _close_locked(register: CashRegister, actor_id: int | None) -> tuple[CashRegister, CashRegisterLog]:
    if not register.is_open:
        raise PreconditionFailed("Cash register is already closed")

    totals = _window_totals(register)
    now = utcnow()
    log = CashRegisterLog(
        cash_register_id=register.id,
        branch_id=register.branch_id,
        cashier_id=register.cashier_id,
        closed_by_user_id=actor_id,
        opened_at=register.opened_at,
        closed_at=now,
        initial_balance_cents=register.initial_balance_cents,
        final_balance_cents=register.current_balance_cents,
        **totals,
    )

    result = db.session.execute(
        update(CashRegister)
        .where(CashRegister.id == register.id, CashRegister.is_open.is_(True))
        .values(
            is_open=False,
            last_open=now,
            cashier_id=None,
            version_id=CashRegister.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise PreconditionFailed("Cash register is already closed")

    db.session.add(log)
    db.session.flush()
    register = _reload(register.id)
    append_audit_event(
        branch_id=register.branch_id,
        event_type="register.closed",
        event_category="register",
        entity_type="cash_register",
        entity_id=register.id,
        actor_user_id=actor_id,
        cash_register_id=register.id,
        amount_cents=register.current_balance_cents,
        payload={"log_id": log.id},
    )
    return register, log


def open_register(
    *,
    register_id: int,
    actor_id: int | None,
    initial_balance_cents=None,
    notifier=None,
) -> CashRegister:
    initial = coerce_int(initial_balance_cents, "initial_balance_cents", allow_none=True)
    if initial is not None and initial < 0:
        raise ValidationError("initial_balance_cents cannot be negative")

    def _op():
        begin_immediate()
        register = _open_locked(get_register(register_id, lock=True), actor_id, initial)
        db.session.commit()
        return register

    register = run_with_retry(_op)
    _notify(notifier, register)
    return register


def close_register(*, register_id: int, actor_id: int | None, notifier=None) -> tuple[CashRegister, CashRegisterLog]:
    def _op():
        begin_immediate()
        register, log = _close_locked(get_register(register_id, lock=True), actor_id)
        db.session.commit()
        return register, log

    register, log = run_with_retry(_op)
    _notify(notifier, register)
    return register, log


def toggle_open(
    *,
    register_id: int,
    actor_id: int | None,
    initial_balance_cents=None,
    notifier=None,
) -> CashRegister:
    """Open a closed register or close an open one."""
    initial = coerce_int(initial_balance_cents, "initial_balance_cents", allow_none=True)
    if initial is not None and initial < 0:
        raise ValidationError("initial_balance_cents cannot be negative")

    def _op():
        begin_immediate()
        register = get_register(register_id, lock=True)
        if register.is_open:
            register, _ = _close_locked(register, actor_id)
        else:
            register = _open_locked(register, actor_id, initial)
        db.session.commit()
        return register

    register = run_with_retry(_op)
    _notify(notifier, register)
    return register


def reset_balance(*, register_id: int, amount_cents, actor_id: int | None, notifier=None) -> CashRegister:
    """
    Set the cash on hand of a closed register (e.g. after a bank deposit).
    Open registers are reset through open(initial_balance_cents=...).
    """
    amount = coerce_int(amount_cents, "amount_cents")
    if amount < 0:
        raise ValidationError("amount_cents cannot be negative")

    def _op():
        begin_immediate()
        register = get_register(register_id, lock=True)
        previous = register.current_balance_cents
        result = db.session.execute(
            update(CashRegister)
            .where(CashRegister.id == register.id, CashRegister.is_open.is_(False))
            .values(
                current_balance_cents=amount,
                initial_balance_cents=amount,
                version_id=CashRegister.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise PreconditionFailed("Close the cash register before resetting its balance")
        register = _reload(register.id)
        append_audit_event(
            branch_id=register.branch_id,
            event_type="register.balance_reset",
            event_category="register",
            entity_type="cash_register",
            entity_id=register.id,
            actor_user_id=actor_id,
            cash_register_id=register.id,
            amount_cents=amount,
            payload={"previous_balance_cents": previous},
        )
        db.session.commit()
        return register

    register = run_with_retry(_op)
    _notify(notifier, register)
    return register


# =============================================================================
# BALANCE MOVEMENTS (caller's transaction)
# =============================================================================

def credit_cash(register_id: int, amount_cents: int) -> CashRegister:
    """Add a cash payment to an open register. Guarded by is_open."""
    result = db.session.execute(
        update(CashRegister)
        .where(CashRegister.id == register_id, CashRegister.is_open.is_(True))
        .values(
            current_balance_cents=CashRegister.current_balance_cents + amount_cents,
            version_id=CashRegister.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise PreconditionFailed("Cash register is closed")
    return _reload(register_id)


def debit_cash_for_reversal(register_id: int, amount_cents: int) -> CashRegister:
    """
    Take a reversed cash payment back out of the till. Applies whether or
    not the register is still open; the cash left with the payment.
    Guarded by current_balance >= amount.
    """
    result = db.session.execute(
        update(CashRegister)
        .where(
            CashRegister.id == register_id,
            CashRegister.current_balance_cents >= amount_cents,
        )
        .values(
            current_balance_cents=CashRegister.current_balance_cents - amount_cents,
            version_id=CashRegister.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        register = get_register(register_id)
        db.session.refresh(register)
        raise PreconditionFailed(
            "Insufficient cash in register to reverse payment",
            current_balance_cents=register.current_balance_cents,
        )
    return _reload(register_id)


def debit_petty_cash(register_id: int, branch_id: int, amount_cents: int) -> CashRegister:
    """
    Pay a petty-cash expense out of an open register in the same branch.
    Guarded by is_open and current_balance >= amount.
    """
    register = get_register(register_id, lock=True)
    if register.branch_id != branch_id:
        raise ValidationError("Cash register belongs to a different branch")
    if not register.is_open:
        raise PreconditionFailed("Cash register is closed")

    result = db.session.execute(
        update(CashRegister)
        .where(
            CashRegister.id == register_id,
            CashRegister.is_open.is_(True),
            CashRegister.current_balance_cents >= amount_cents,
        )
        .values(
            current_balance_cents=CashRegister.current_balance_cents - amount_cents,
            version_id=CashRegister.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        register = _reload(register_id)
        if not register.is_open:
            raise PreconditionFailed("Cash register is closed")
        raise PreconditionFailed(
            "Insufficient cash in register",
            current_balance_cents=register.current_balance_cents,
        )
    return _reload(register_id)


def add_registry_payment(register_id: int, document_kind: str, document_id: int, payment_id: int) -> CashRegisterEntry:
    """Index a cash payment under its document for the current window."""
    entry = (
        db.session.query(CashRegisterEntry)
        .filter_by(cash_register_id=register_id, document_kind=document_kind, document_id=document_id)
        .first()
    )
    if entry is None:
        entry = CashRegisterEntry(
            cash_register_id=register_id,
            document_kind=document_kind,
            document_id=document_id,
            sale_date=utcnow(),
        )
        db.session.add(entry)
        db.session.flush()
    db.session.add(CashRegisterEntryPayment(entry_id=entry.id, payment_id=payment_id))
    db.session.flush()
    return entry


def remove_registry_payment(register_id: int, payment_id: int) -> bool:
    """
    Drop a reversed payment from the index; empty entries go with it.
    False when the payment was taken in an earlier window.
    """
    entries = (
        db.session.query(CashRegisterEntry)
        .join(CashRegisterEntryPayment, CashRegisterEntry.id == CashRegisterEntryPayment.entry_id)
        .filter(
            CashRegisterEntry.cash_register_id == register_id,
            CashRegisterEntryPayment.payment_id == payment_id,
        )
        .all()
    )
    for entry in entries:
        db.session.query(CashRegisterEntryPayment).filter_by(
            entry_id=entry.id, payment_id=payment_id
        ).delete(synchronize_session="fetch")
        db.session.expire(entry, ["payment_links"])
        if not entry.payment_links:
            db.session.delete(entry)
    db.session.flush()
    return bool(entries)


# =============================================================================
# QUERIES
# =============================================================================

def get_summary(register_id: int) -> dict:
    """Current window: balances, cash in, petty cash and registry entries."""
    register = get_register(register_id)
    totals = _window_totals(register) if register.is_open else {
        "cash_in_cents": 0,
        "expenses_cents": 0,
        "reversals_cents": 0,
        "totals_by_method": {},
        "entry_count": 0,
    }
    expected = (
        register.initial_balance_cents
        + totals["cash_in_cents"]
        - totals["expenses_cents"]
        - totals["reversals_cents"]
    )
    entries = (
        db.session.query(CashRegisterEntry)
        .filter_by(cash_register_id=register.id)
        .order_by(CashRegisterEntry.sale_date.asc(), CashRegisterEntry.id.asc())
        .all()
    )
    return {
        "cash_register": register.to_dict(),
        **totals,
        "expected_balance_cents": expected,
        "is_balanced": (not register.is_open) or expected == register.current_balance_cents,
        "entries": [entry.to_dict() for entry in entries],
    }


def list_logs(register_id: int, limit: int = 50) -> list[CashRegisterLog]:
    get_register(register_id)
    return (
        db.session.query(CashRegisterLog)
        .filter_by(cash_register_id=register_id)
        .order_by(CashRegisterLog.closed_at.desc(), CashRegisterLog.id.desc())
        .limit(limit)
        .all()
    )
