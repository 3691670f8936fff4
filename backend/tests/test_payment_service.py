# Overview: Pytest coverage for payment registration and reversal.

"""
Payment Ledger Tests

Covers the all-or-nothing contract between a payable document, the
payment row and (for cash) the cash register:
1. Register and reverse are exact inverses
2. Rejected payments leave parent and register untouched
3. Non-cash payments never touch a register
4. A reversal whose parent vanished is an integrity failure
5. Gateway deliveries are idempotent on their reference
"""

import pytest

from branchledger.errors import (
    LedgerIntegrityError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from branchledger.extensions import db
from branchledger.models import Order, Payment, LedgerAuditEvent
from branchledger.services import document_service, payment_service, register_service
from branchledger.services.session_service import Identity


@pytest.fixture
def order(db_session, branch, cashier):
    return document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=100)


def _snapshot(order_id, register_id):
    order = db.session.get(Order, order_id)
    db.session.refresh(order)
    register = register_service.get_register(register_id)
    db.session.refresh(register)
    return (order.paid_cents, order.remaining_cents, order.payment_status), register.current_balance_cents


class TestScenarios:
    def test_cash_payment_and_reversal_are_inverse(self, order, open_register, cash_method, cashier):
        """Scenario A."""
        payment = payment_service.register_payment(
            parent_id=order.id,
            amount_cents=40,
            payment_method_id=cash_method.id,
            cash_register_id=open_register.id,
            actor_id=cashier.id,
        )

        assert _snapshot(order.id, open_register.id) == ((40, 60, "partial"), 40)
        summary = register_service.get_summary(open_register.id)
        assert summary["cash_in_cents"] == 40
        assert summary["entries"][0]["payment_ids"] == [payment.id]
        assert summary["is_balanced"]

        parent = payment_service.reverse_payment(payment_id=payment.id, actor_id=cashier.id)

        assert parent.balance_dict() == {"total": 100, "paid": 0, "remaining": 100, "payment_status": "pending"}
        assert _snapshot(order.id, open_register.id) == ((0, 100, "pending"), 0)
        assert db.session.get(Payment, payment.id) is None
        assert register_service.get_summary(open_register.id)["entries"] == []

    def test_overpayment_rejected(self, order, open_register, cash_method, cashier):
        """Scenario B."""
        with pytest.raises(PreconditionFailed) as exc:
            payment_service.register_payment(
                parent_id=order.id,
                amount_cents=150,
                payment_method_id=cash_method.id,
                cash_register_id=open_register.id,
                actor_id=cashier.id,
            )

        assert exc.value.message == "Amount exceeds remaining balance"
        assert exc.value.details["remaining_cents"] == 100
        assert _snapshot(order.id, open_register.id) == ((0, 100, "pending"), 0)
        assert db.session.query(Payment).count() == 0

    def test_cash_payment_into_closed_register_rejected(self, order, register, cash_method, cashier):
        """Scenario C."""
        with pytest.raises(PreconditionFailed) as exc:
            payment_service.register_payment(
                parent_id=order.id,
                amount_cents=40,
                payment_method_id=cash_method.id,
                cash_register_id=register.id,
                actor_id=cashier.id,
            )

        assert exc.value.message == "Cash register is closed"
        assert _snapshot(order.id, register.id) == ((0, 100, "pending"), 0)
        assert db.session.query(Payment).count() == 0


class TestRegistration:
    def test_full_payment_marks_paid_without_touching_process_status(self, order, card_method, cashier):
        payment_service.register_payment(
            parent_id=order.id, amount_cents=100, payment_method_id=card_method.id, actor_id=cashier.id,
        )
        order = db.session.get(Order, order.id)
        assert order.payment_status == "paid"
        assert order.remaining_cents == 0
        assert order.status == "pending"

    def test_non_cash_payment_leaves_register_alone(self, order, open_register, card_method, cashier):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=30, payment_method_id=card_method.id, actor_id=cashier.id,
        )
        assert payment.cash_register_id is None
        assert _snapshot(order.id, open_register.id) == ((30, 70, "partial"), 0)

        payment_service.reverse_payment(payment_id=payment.id, actor_id=cashier.id)
        assert _snapshot(order.id, open_register.id) == ((0, 100, "pending"), 0)

    def test_non_cash_payment_with_register_rejected(self, order, open_register, card_method):
        with pytest.raises(ValidationError):
            payment_service.register_payment(
                parent_id=order.id, amount_cents=30,
                payment_method_id=card_method.id, cash_register_id=open_register.id,
            )

    def test_cash_payment_requires_register(self, order, cash_method):
        with pytest.raises(ValidationError):
            payment_service.register_payment(parent_id=order.id, amount_cents=30, payment_method_id=cash_method.id)

    def test_register_from_other_branch_rejected(self, db_session, order, branch_b, cash_method, cashier):
        foreign = register_service.create_register(branch_id=branch_b.id, name="Caja Norte")
        register_service.open_register(register_id=foreign.id, actor_id=cashier.id)

        with pytest.raises(ValidationError):
            payment_service.register_payment(
                parent_id=order.id, amount_cents=30,
                payment_method_id=cash_method.id, cash_register_id=foreign.id,
            )
        assert _snapshot(order.id, foreign.id) == ((0, 100, "pending"), 0)

    @pytest.mark.parametrize("amount", [0, -5, 1.5, "12.5", "1e3", True, None])
    def test_amount_must_be_positive_integer_cents(self, order, card_method, amount):
        with pytest.raises(ValidationError):
            payment_service.register_payment(parent_id=order.id, amount_cents=amount, payment_method_id=card_method.id)

    def test_missing_parent(self, db_session, card_method):
        with pytest.raises(NotFoundError):
            payment_service.register_payment(parent_id=9999, amount_cents=10, payment_method_id=card_method.id)

    def test_unknown_parent_kind(self, order, card_method):
        with pytest.raises(ValidationError):
            payment_service.register_payment(
                parent_kind="buy", parent_id=order.id, amount_cents=10, payment_method_id=card_method.id,
            )

    def test_cancelled_order_rejects_payments(self, order, card_method, cashier):
        document_service.update_order_status(order_id=order.id, status="cancelled", actor_id=cashier.id)
        with pytest.raises(PreconditionFailed):
            payment_service.register_payment(parent_id=order.id, amount_cents=10, payment_method_id=card_method.id)

    def test_event_installments(self, db_session, branch, open_register, cash_method, card_method, cashier):
        event = document_service.create_event(branch_id=branch.id, actor_id=cashier.id, total_cents=500)
        payment_service.register_payment(
            parent_kind="event", parent_id=event.id, amount_cents=200,
            payment_method_id=cash_method.id, cash_register_id=open_register.id,
        )
        payment_service.register_payment(
            parent_kind="event", parent_id=event.id, amount_cents=300, payment_method_id=card_method.id,
        )

        event = document_service.get_document("event", event.id)
        assert (event.paid_cents, event.remaining_cents, event.payment_status) == (500, 0, "paid")
        assert register_service.get_register(open_register.id).current_balance_cents == 200
        assert len(payment_service.list_payments("event", event.id)) == 2

    def test_registration_is_audited(self, order, card_method, cashier):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=25, payment_method_id=card_method.id, actor_id=cashier.id,
        )
        event = db.session.query(LedgerAuditEvent).filter_by(event_type="payment.registered").one()
        assert event.entity_id == payment.id
        assert event.amount_cents == 25
        assert event.payload["remaining_cents"] == 75

    def test_effects_published_to_branch_room(
        self, order, open_register, cash_method, cashier, branch, branch_b, notifier
    ):
        watcher = notifier.connect_identity(Identity(actor_id=cashier.id, role="cashier", branch_ids=[branch.id]))
        outsider = notifier.connect_identity(Identity(actor_id=999, role="cashier", branch_ids=[branch_b.id]))

        payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=cash_method.id,
            cash_register_id=open_register.id, notifier=notifier,
        )

        events = [m["event"] for m in watcher.drain()]
        assert events == ["order:updated", "cashRegister:updated"]
        assert outsider.drain() == []


class TestReversal:
    def test_reversal_after_register_closed_still_debits_it(self, order, open_register, cash_method, cashier):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=cash_method.id,
            cash_register_id=open_register.id,
        )
        register_service.close_register(register_id=open_register.id, actor_id=cashier.id)

        payment_service.reverse_payment(payment_id=payment.id, actor_id=cashier.id)
        assert _snapshot(order.id, open_register.id) == ((0, 100, "pending"), 0)

    def test_unknown_payment(self, db_session):
        with pytest.raises(NotFoundError):
            payment_service.reverse_payment(payment_id=12345)

    def test_reversal_from_earlier_window_keeps_till_balanced(self, order, open_register, cash_method, cashier):
        register_id = open_register.id
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=cash_method.id,
            cash_register_id=register_id,
        )
        payment_id = payment.id
        register_service.close_register(register_id=register_id, actor_id=cashier.id)
        reopened = register_service.open_register(register_id=register_id, actor_id=cashier.id)
        assert reopened.initial_balance_cents == 40

        payment_service.reverse_payment(payment_id=payment_id, actor_id=cashier.id)

        summary = register_service.get_summary(register_id)
        assert summary["cash_register"]["current_balance_cents"] == 0
        assert summary["cash_in_cents"] == 0
        assert summary["reversals_cents"] == 40
        assert summary["expected_balance_cents"] == 0
        assert summary["is_balanced"]

        _, log = register_service.close_register(register_id=register_id, actor_id=cashier.id)
        assert (log.reversals_cents, log.final_balance_cents) == (40, 0)

    def test_reversal_in_same_window_is_not_counted_twice(self, order, open_register, cash_method, cashier):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=cash_method.id,
            cash_register_id=open_register.id,
        )
        payment_service.reverse_payment(payment_id=payment.id, actor_id=cashier.id)

        summary = register_service.get_summary(open_register.id)
        assert (summary["cash_in_cents"], summary["reversals_cents"]) == (0, 0)
        assert summary["is_balanced"]

    def test_reversal_cannot_overdraw_register(self, order, open_register, cash_method, cashier):
        register_id = open_register.id
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=cash_method.id,
            cash_register_id=register_id,
        )
        payment_id = payment.id
        register_service.close_register(register_id=register_id, actor_id=cashier.id)
        register_service.reset_balance(register_id=register_id, amount_cents=0, actor_id=cashier.id)

        with pytest.raises(PreconditionFailed) as exc_info:
            payment_service.reverse_payment(payment_id=payment_id, actor_id=cashier.id)

        assert exc_info.value.details == {"current_balance_cents": 0}
        assert _snapshot(order.id, register_id) == ((40, 60, "partial"), 0)
        assert db.session.get(Payment, payment_id) is not None

    def test_missing_parent_is_integrity_failure(self, order, card_method):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=30, payment_method_id=card_method.id,
        )
        payment_id = payment.id
        db.session.execute(Order.__table__.delete().where(Order.__table__.c.id == order.id))
        db.session.commit()
        db.session.expunge_all()

        with pytest.raises(LedgerIntegrityError) as exc_info:
            payment_service.reverse_payment(payment_id=payment_id)
        assert exc_info.value.details == {"payment_id": payment_id}
        assert db.session.get(Payment, payment_id) is not None


class TestGatewayOutcome:
    def _payload(self, order, method, **overrides):
        payload = {
            "reference": "pi_123",
            "succeeded": True,
            "parent_kind": "order",
            "parent_id": order.id,
            "amount_cents": 60,
            "payment_method_id": method.id,
        }
        payload.update(overrides)
        return payload

    def test_success_registers_once(self, order, card_method):
        first = payment_service.handle_gateway_outcome(self._payload(order, card_method))
        replay = payment_service.handle_gateway_outcome(self._payload(order, card_method))

        assert first.id == replay.id
        assert first.external_reference == "pi_123"
        order = document_service.get_document("order", order.id)
        assert order.paid_cents == 60
        assert db.session.query(Payment).count() == 1

    def test_failure_has_no_ledger_effect(self, order, card_method):
        assert payment_service.handle_gateway_outcome(self._payload(order, card_method, succeeded=False)) is None
        assert db.session.query(Payment).count() == 0
        assert document_service.get_document("order", order.id).paid_cents == 0

    def test_cash_method_rejected(self, order, cash_method):
        with pytest.raises(ValidationError):
            payment_service.handle_gateway_outcome(self._payload(order, cash_method))

    @pytest.mark.parametrize("payload", [None, {}, {"succeeded": "yes", "reference": "x"}, {"succeeded": True}])
    def test_malformed_payload(self, db_session, payload):
        with pytest.raises(ValidationError):
            payment_service.handle_gateway_outcome(payload)


class _BrokenHub:
    """Hub whose transport fails on every send."""

    def notify(self, *args, **kwargs):
        raise RuntimeError("transport gone")

    notify_user = notify


class TestFanOutFailures:
    def test_payment_survives_broken_transport(self, order, open_register, cash_method, caplog):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=cash_method.id,
            cash_register_id=open_register.id, notifier=_BrokenHub(),
        )

        assert payment.id is not None
        assert _snapshot(order.id, open_register.id) == ((40, 60, "partial"), 40)
        assert "realtime fan-out after payment registration failed" in caplog.text

    def test_reversal_survives_broken_transport(self, order, card_method, caplog):
        payment = payment_service.register_payment(
            parent_id=order.id, amount_cents=40, payment_method_id=card_method.id,
        )
        payment_id = payment.id

        parent = payment_service.reverse_payment(payment_id=payment_id, notifier=_BrokenHub())

        assert parent.paid_cents == 0
        assert db.session.get(Payment, payment_id) is None
        assert "realtime fan-out after payment reversal failed" in caplog.text

    def test_order_creation_survives_broken_transport(self, stocked_branch, cashier, caplog):
        order = document_service.create_order(
            branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=500,
            items=[{"product_code": "RS-12", "quantity": 2}], notifier=_BrokenHub(),
        )

        assert db.session.get(Order, order.id) is not None
        assert document_service.get_stock(stocked_branch.id, "RS-12") == 8
        assert "realtime fan-out after order creation failed" in caplog.text
