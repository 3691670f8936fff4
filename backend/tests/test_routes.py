# Overview: Pytest coverage for the HTTP surface: auth, branch scoping and error mapping.

import pytest

from branchledger.services import document_service, payment_service


@pytest.fixture
def order(db_session, branch, cashier):
    return document_service.create_order(branch_id=branch.id, actor_id=cashier.id, total_cents=100)


class TestAuthentication:
    def test_missing_token(self, client, db_session):
        assert client.get("/api/orders/1").status_code == 401

    def test_tampered_token(self, client, db_session):
        response = client.get("/api/orders/1", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_foreign_branch_denied(self, client, order, cashier, branch_b, headers_for):
        headers = headers_for(cashier, "cashier", [branch_b.id])
        assert client.get(f"/api/orders/{order.id}", headers=headers).status_code == 403

    def test_admin_sees_every_branch(self, client, order, cashier, headers_for):
        headers = headers_for(cashier, "admin", [])
        assert client.get(f"/api/orders/{order.id}", headers=headers).status_code == 200


class TestPaymentsApi:
    def test_register_and_reverse(self, client, order, open_register, cash_method, cashier_headers):
        response = client.post("/api/payments", headers=cashier_headers, json={
            "parent_id": order.id,
            "amount_cents": 40,
            "payment_method_id": cash_method.id,
            "cash_register_id": open_register.id,
        })
        assert response.status_code == 201
        body = response.get_json()
        assert body["parent"] == {"total": 100, "paid": 40, "remaining": 60, "payment_status": "partial"}
        assert body["payment"]["payment_method"] == "Efectivo"

        response = client.delete(f"/api/payments/{body['payment']['id']}", headers=cashier_headers)
        assert response.status_code == 200
        assert response.get_json()["parent"] == {"total": 100, "paid": 0, "remaining": 100, "payment_status": "pending"}

    def test_overpayment_is_400_with_remaining(self, client, order, card_method, cashier_headers):
        response = client.post("/api/payments", headers=cashier_headers, json={
            "parent_id": order.id, "amount_cents": 150, "payment_method_id": card_method.id,
        })
        assert response.status_code == 400
        assert response.get_json() == {"error": "Amount exceeds remaining balance", "remaining_cents": 100}

    def test_missing_fields(self, client, db_session, cashier_headers):
        response = client.post("/api/payments", headers=cashier_headers, json={"parent_id": 1})
        assert response.status_code == 400

    def test_unknown_method_is_404(self, client, order, cashier_headers):
        response = client.post("/api/payments", headers=cashier_headers, json={
            "parent_id": order.id, "amount_cents": 10, "payment_method_id": 999,
        })
        assert response.status_code == 404

    def test_unknown_payment_is_404(self, client, db_session, cashier_headers):
        assert client.delete("/api/payments/999", headers=cashier_headers).status_code == 404

    def test_reversal_with_missing_parent_is_500(self, client, app, order, card_method, cashier_headers):
        from branchledger.extensions import db
        from branchledger.models import Order

        payment = payment_service.register_payment(parent_id=order.id, amount_cents=10, payment_method_id=card_method.id)
        payment_id = payment.id
        db.session.execute(Order.__table__.delete().where(Order.__table__.c.id == order.id))
        db.session.commit()
        db.session.expunge_all()

        response = client.delete(f"/api/payments/{payment_id}", headers=cashier_headers)
        assert response.status_code == 500
        assert response.get_json()["payment_id"] == payment_id


class TestGatewayWebhook:
    def _body(self, order, method, reference="pi_9"):
        return {
            "reference": reference,
            "succeeded": True,
            "parent_id": order.id,
            "amount_cents": 30,
            "payment_method_id": method.id,
        }

    def test_bad_secret(self, client, order, card_method):
        response = client.post(
            "/api/payments/gateway-webhook",
            json=self._body(order, card_method),
            headers={"X-Gateway-Secret": "wrong"},
        )
        assert response.status_code == 401

    def test_replay_is_idempotent(self, client, order, card_method, gateway_headers):
        headers = gateway_headers
        first = client.post("/api/payments/gateway-webhook", json=self._body(order, card_method), headers=headers)
        second = client.post("/api/payments/gateway-webhook", json=self._body(order, card_method), headers=headers)

        assert first.status_code == 200
        assert first.get_json()["status"] == "registered"
        assert first.get_json()["payment"]["id"] == second.get_json()["payment"]["id"]
        assert document_service.get_document("order", order.id).paid_cents == 30

    def test_failed_outcome_ignored(self, client, order, card_method, gateway_headers):
        body = dict(self._body(order, card_method), succeeded=False)
        response = client.post(
            "/api/payments/gateway-webhook", json=body, headers=gateway_headers,
        )
        assert response.get_json() == {"status": "ignored"}


class TestRegistersApi:
    def test_create_toggle_and_summary(self, client, branch, cashier_headers):
        response = client.post("/api/cash-register", headers=cashier_headers, json={"branch_id": branch.id, "name": "Caja 2"})
        assert response.status_code == 201
        register_id = response.get_json()["cash_register"]["id"]

        response = client.put(
            f"/api/cash-register/{register_id}/toggle-open",
            headers=cashier_headers,
            json={"initial_balance_cents": 5000},
        )
        assert response.get_json()["is_open"] is True

        summary = client.get(f"/api/cash-register/{register_id}/summary", headers=cashier_headers).get_json()
        assert summary["expected_balance_cents"] == 5000
        assert summary["is_balanced"] is True

        response = client.put(f"/api/cash-register/{register_id}/toggle-open", headers=cashier_headers)
        assert response.get_json()["is_open"] is False

        logs = client.get(f"/api/cash-register/{register_id}/logs", headers=cashier_headers).get_json()["logs"]
        assert len(logs) == 1
        assert logs[0]["final_balance_cents"] == 5000

    def test_reset_balance_while_open_is_400(self, client, open_register, cashier_headers):
        response = client.post(
            f"/api/cash-register/{open_register.id}/reset-balance",
            headers=cashier_headers,
            json={"amount_cents": 0},
        )
        assert response.status_code == 400

    def test_other_branch_register_denied(self, client, open_register, cashier, branch_b, headers_for):
        headers = headers_for(cashier, "cashier", [branch_b.id])
        response = client.put(f"/api/cash-register/{open_register.id}/toggle-open", headers=headers)
        assert response.status_code == 403


class TestDiscountsApi:
    def test_request_decide_redeem(self, client, branch, cashier_headers, manager_headers):
        response = client.post("/api/discount-auth/request", headers=cashier_headers, json={
            "message": "Birthday",
            "branch_id": branch.id,
            "discount_value": 10,
            "discount_type": "percentage",
        })
        assert response.status_code == 201
        auth_id = response.get_json()["authorization"]["id"]

        # The requester is not the bound manager
        response = client.post(f"/api/discount-auth/{auth_id}/decide", headers=cashier_headers, json={"approve": True})
        assert response.status_code == 403

        response = client.post(f"/api/discount-auth/{auth_id}/decide", headers=manager_headers, json={"approve": True})
        assert response.status_code == 200
        folio = response.get_json()["authorization"]["auth_folio"]
        assert folio.startswith("AUTH-")

        response = client.post("/api/discount-auth/redeem", headers=cashier_headers, json={
            "auth_folio": folio, "branch_id": branch.id,
        })
        assert response.status_code == 200
        assert response.get_json()["discount_value"] == 10

        response = client.post("/api/discount-auth/redeem", headers=cashier_headers, json={
            "auth_folio": folio, "branch_id": branch.id,
        })
        assert response.status_code == 400

    def test_decide_requires_boolean(self, client, db_session, manager_headers):
        response = client.post("/api/discount-auth/1/decide", headers=manager_headers, json={"approve": "yes"})
        assert response.status_code == 400

    def test_unknown_folio_is_404(self, client, branch, cashier_headers):
        response = client.post("/api/discount-auth/redeem", headers=cashier_headers, json={
            "auth_folio": "AUTH-991231-0001", "branch_id": branch.id,
        })
        assert response.status_code == 404


class TestDocumentsApi:
    def test_order_lifecycle(self, client, branch, cashier_headers):
        response = client.post("/api/orders", headers=cashier_headers, json={
            "branch_id": branch.id, "total_cents": 700, "client_name": "Luis",
        })
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["folio"] == 1

        response = client.patch(f"/api/orders/{order['id']}/status", headers=cashier_headers, json={"status": "ready"})
        assert response.get_json()["order"]["status"] == "ready"

        response = client.delete(f"/api/orders/{order['id']}", headers=cashier_headers)
        assert response.get_json()["deleted"]["folio"] == 1

    def test_branch_id_required(self, client, db_session, cashier_headers):
        response = client.post("/api/orders", headers=cashier_headers, json={"total_cents": 700})
        assert response.status_code == 400

    def test_expense_event_and_buy(self, client, branch, cashier_headers):
        expense = client.post("/api/expenses", headers=cashier_headers, json={
            "branch_id": branch.id, "concept": "Rent", "total_cents": 900, "expense_type": "check_transfer",
        })
        event = client.post("/api/events", headers=cashier_headers, json={
            "branch_id": branch.id, "total_cents": 9000,
        })
        buy = client.post("/api/buys", headers=cashier_headers, json={
            "branch_id": branch.id, "provider_name": "Lacteos", "total_cents": 300,
        })
        assert [r.status_code for r in (expense, event, buy)] == [201, 201, 201]
        assert expense.get_json()["expense"]["payment_status"] == "paid"


class TestNotificationsApi:
    def test_manager_inbox(self, client, order, manager_headers):
        notes = client.get("/api/notifications", headers=manager_headers).get_json()["notifications"]
        assert [n["kind"] for n in notes] == ["order_created"]
        note_id = notes[0]["id"]

        assert client.post(f"/api/notifications/{note_id}/read", headers=manager_headers).status_code == 200
        assert client.get("/api/notifications", headers=manager_headers).get_json()["notifications"] == []
        everything = client.get("/api/notifications?include_read=true", headers=manager_headers).get_json()
        assert len(everything["notifications"]) == 1

        assert client.delete(f"/api/notifications/{note_id}", headers=manager_headers).status_code == 200
        assert client.delete(f"/api/notifications/{note_id}", headers=manager_headers).status_code == 404

    def test_cashier_does_not_see_manager_inbox(self, client, order, cashier_headers):
        assert client.get("/api/notifications", headers=cashier_headers).get_json()["notifications"] == []


class TestSystem:
    def test_health(self, client, db_session, cash_method):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_health_degraded_without_cash_method(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "degraded"

    def test_cors_for_allowed_origin(self, client, db_session):
        response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        response = client.get("/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in response.headers
