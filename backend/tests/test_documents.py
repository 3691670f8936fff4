# Overview: Pytest coverage for ledger documents, order lifecycle and branch stock.

import pytest

from branchledger.errors import NotFoundError, PreconditionFailed, ValidationError
from branchledger.extensions import db
from branchledger.models import BranchNotification, LedgerAuditEvent, Order, OrderItem
from branchledger.services import document_service, payment_service
from branchledger.services.session_service import Identity


class TestOrders:
    def test_new_order_balance(self, branch, cashier):
        order = document_service.create_order(
            branch_id=branch.id, actor_id=cashier.id, total_cents=2500, client_name="Ana",
        )
        assert order.balance_dict() == {"total": 2500, "paid": 0, "remaining": 2500, "payment_status": "pending"}
        assert order.status == "pending"
        assert order.created_by_user_id == cashier.id

    def test_order_with_cash_advance(self, branch, cashier, open_register, cash_method):
        order = document_service.create_order(
            branch_id=branch.id, actor_id=cashier.id, total_cents=2500,
            initial_payment={
                "amount_cents": 1000,
                "payment_method_id": cash_method.id,
                "cash_register_id": open_register.id,
            },
        )
        assert (order.paid_cents, order.remaining_cents, order.payment_status) == (1000, 1500, "partial")
        assert len(payment_service.list_payments("order", order.id)) == 1

    def test_rejected_advance_rolls_back_the_whole_order(self, branch, cashier, register, cash_method):
        with pytest.raises(PreconditionFailed):
            document_service.create_order(
                branch_id=branch.id, actor_id=cashier.id, total_cents=2500,
                initial_payment={
                    "amount_cents": 1000,
                    "payment_method_id": cash_method.id,
                    "cash_register_id": register.id,
                },
            )
        assert db.session.query(Order).count() == 0
        assert db.session.query(LedgerAuditEvent).filter_by(event_type="order.created").count() == 0

    def test_items_draw_down_stock(self, stocked_branch, cashier):
        order = document_service.create_order(
            branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=900,
            items=[{"product_code": "RS-12", "quantity": 4, "unit_price_cents": 225}],
        )
        assert document_service.get_stock(stocked_branch.id, "RS-12") == 6
        assert [item.quantity for item in order.items] == [4]

    def test_insufficient_stock_rejected(self, stocked_branch, cashier):
        with pytest.raises(PreconditionFailed):
            document_service.create_order(
                branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=900,
                items=[{"product_code": "RS-12", "quantity": 11}],
            )
        assert document_service.get_stock(stocked_branch.id, "RS-12") == 10

    @pytest.mark.parametrize("items", [
        "RS-12",
        [{"quantity": 1}],
        [{"product_code": "RS-12", "quantity": 0}],
        [{"product_code": "RS-12", "quantity": 1, "unit_price_cents": -1}],
    ])
    def test_malformed_items(self, stocked_branch, cashier, items):
        with pytest.raises(ValidationError):
            document_service.create_order(
                branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=900, items=items,
            )

    def test_non_positive_total(self, branch, cashier):
        with pytest.raises(ValidationError):
            document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=0)

    def test_unknown_branch(self, db_session, cashier):
        with pytest.raises(NotFoundError):
            document_service.create_order(branch_id=404, actor_id=cashier.id, total_cents=10)

    def test_manager_inbox_gets_new_order(self, branch, cashier):
        order = document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=10)
        note = db.session.query(BranchNotification).filter_by(order_id=order.id).one()
        assert note.recipient_role == "manager"
        assert note.kind == "order_created"

    def test_creation_events(self, stocked_branch, cashier, open_register, cash_method, notifier):
        floor = notifier.connect_identity(Identity(actor_id=cashier.id, role="cashier", branch_ids=[stocked_branch.id]))
        document_service.create_order(
            branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=900,
            items=[{"product_code": "RS-12", "quantity": 1}],
            initial_payment={
                "amount_cents": 100,
                "payment_method_id": cash_method.id,
                "cash_register_id": open_register.id,
            },
            notifier=notifier,
        )
        messages = floor.drain()
        assert [m["event"] for m in messages] == ["order:created", "storage:stockUpdated", "cashRegister:updated"]
        assert messages[1]["data"]["items"] == [{"product_code": "RS-12", "quantity": 9}]


class TestOrderLifecycle:
    def test_paid_order_keeps_its_process_status(self, branch, cashier, card_method):
        order = document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=300)
        payment_service.register_payment(parent_id=order.id, amount_cents=300, payment_method_id=card_method.id)
        order = document_service.update_order_status(order_id=order.id, status="ready", actor_id=cashier.id)
        assert (order.status, order.payment_status) == ("ready", "paid")

    def test_invalid_status(self, branch, cashier):
        order = document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=300)
        with pytest.raises(ValidationError):
            document_service.update_order_status(order_id=order.id, status="shipped", actor_id=cashier.id)

    def test_cancel_restores_stock_and_is_terminal(self, stocked_branch, cashier):
        order = document_service.create_order(
            branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=900,
            items=[{"product_code": "RS-12", "quantity": 2}],
        )
        cancelled = document_service.update_order_status(order_id=order.id, status="cancelled", actor_id=cashier.id)
        assert cancelled.cancelled_at is not None
        assert document_service.get_stock(stocked_branch.id, "RS-12") == 10

        with pytest.raises(PreconditionFailed):
            document_service.update_order_status(order_id=order.id, status="ready", actor_id=cashier.id)

    def test_cancel_with_payments_rejected(self, branch, cashier, card_method):
        order = document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=300)
        payment_service.register_payment(parent_id=order.id, amount_cents=100, payment_method_id=card_method.id)
        with pytest.raises(PreconditionFailed):
            document_service.update_order_status(order_id=order.id, status="cancelled", actor_id=cashier.id)

    def test_delete_order_without_payments(self, stocked_branch, cashier, notifier):
        order = document_service.create_order(
            branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=900,
            items=[{"product_code": "RS-12", "quantity": 3}],
        )
        floor = notifier.connect_identity(Identity(actor_id=cashier.id, role="cashier", branch_ids=[stocked_branch.id]))

        info = document_service.delete_order(order_id=order.id, actor_id=cashier.id, notifier=notifier)

        assert info == {"id": order.id, "branch_id": stocked_branch.id, "folio": 1}
        assert db.session.get(Order, info["id"]) is None
        assert db.session.query(OrderItem).count() == 0
        assert document_service.get_stock(stocked_branch.id, "RS-12") == 10
        assert db.session.query(BranchNotification).filter_by(kind="order_created").one().order_id is None
        assert [m["event"] for m in floor.drain()] == ["order:deleted", "storage:stockUpdated"]

        # Folios are never reissued
        again = document_service.create_order(branch_id=stocked_branch.id, actor_id=cashier.id, total_cents=10)
        assert again.folio == 2

    def test_delete_order_with_payments_rejected(self, branch, cashier, card_method):
        order = document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=300)
        payment_service.register_payment(parent_id=order.id, amount_cents=100, payment_method_id=card_method.id)
        with pytest.raises(PreconditionFailed):
            document_service.delete_order(order_id=order.id, actor_id=cashier.id)


class TestOtherDocuments:
    def test_event_with_date(self, branch, cashier):
        event = document_service.create_event(
            branch_id=branch.id, actor_id=cashier.id, total_cents=50000,
            client_name="Boda Ruiz", event_date="2024-06-01T18:00:00Z",
        )
        assert event.to_dict()["event_date"] == "2024-06-01T18:00:00Z"
        assert event.payment_status == "pending"

    def test_event_bad_date(self, branch, cashier):
        with pytest.raises(ValidationError):
            document_service.create_event(branch_id=branch.id, actor_id=cashier.id, total_cents=10, event_date="soon")

    def test_buy_partially_paid(self, branch, cashier):
        buy = document_service.create_buy(
            branch_id=branch.id, actor_id=cashier.id, provider_name="Harinas SA", total_cents=1000, paid_cents=400,
        )
        assert (buy.paid_cents, buy.remaining_cents, buy.payment_status) == (400, 600, "partial")

    def test_buy_overpaid_rejected(self, branch, cashier):
        with pytest.raises(ValidationError):
            document_service.create_buy(
                branch_id=branch.id, actor_id=cashier.id, provider_name="Harinas SA", total_cents=10, paid_cents=11,
            )

    def test_expense_requires_concept(self, branch, cashier):
        with pytest.raises(ValidationError):
            document_service.create_expense(
                branch_id=branch.id, actor_id=cashier.id, concept="", total_cents=10, expense_type="check_transfer",
            )

    def test_unknown_document_kind(self, db_session):
        with pytest.raises(ValidationError):
            document_service.get_document("invoice", 1)
