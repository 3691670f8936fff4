# Overview: Flask API routes for ledger documents (orders, events, expenses, buys).

# backend/branchledger/routes/documents.py
"""
Ledger Document API Routes

Every creation issues the next branch folio for its kind inside the same
transaction as the document.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..decorators import require_auth, branch_access_denied
from ..realtime import get_notifier
from ..services import document_service


documents_bp = Blueprint("documents", __name__, url_prefix="/api")


def _branch_from_body(data: dict):
    branch_id = data.get("branch_id")
    if not isinstance(branch_id, int) or isinstance(branch_id, bool):
        return None, (jsonify({"error": "branch_id required"}), 400)
    return branch_id, branch_access_denied(branch_id)


# =============================================================================
# ORDERS
# =============================================================================

@documents_bp.post("/orders")
@require_auth
def create_order_route():
    """
    Request body:
    {
        "branch_id": 1,
        "total_cents": 10000,
        "client_name": "Ana",                     (optional)
        "items": [{"product_code": "RS-12", "quantity": 2, "unit_price_cents": 5000}],
        "initial_payment": {                      (optional advance)
            "amount_cents": 4000,
            "payment_method_id": 1,
            "cash_register_id": 3
        }
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id, denied = _branch_from_body(data)
        if denied:
            return denied

        order = document_service.create_order(
            branch_id=branch_id,
            actor_id=g.identity.actor_id,
            total_cents=data.get("total_cents"),
            client_name=data.get("client_name"),
            items=data.get("items"),
            notes=data.get("notes"),
            initial_payment=data.get("initial_payment"),
            notifier=get_notifier(),
        )
        return jsonify({"order": order.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/orders/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = document_service.get_document("order", order_id)
        denied = branch_access_denied(order.branch_id)
        if denied:
            return denied
        return jsonify({"order": order.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.patch("/orders/<int:order_id>/status")
@require_auth
def update_order_status_route(order_id: int):
    try:
        order = document_service.get_document("order", order_id)
        denied = branch_access_denied(order.branch_id)
        if denied:
            return denied
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        order = document_service.update_order_status(
            order_id=order_id,
            status=data.get("status"),
            actor_id=g.identity.actor_id,
            notifier=get_notifier(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.delete("/orders/<int:order_id>")
@require_auth
def delete_order_route(order_id: int):
    try:
        order = document_service.get_document("order", order_id)
        denied = branch_access_denied(order.branch_id)
        if denied:
            return denied

        info = document_service.delete_order(
            order_id=order_id,
            actor_id=g.identity.actor_id,
            notifier=get_notifier(),
        )
        return jsonify({"deleted": info}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# EVENTS / EXPENSES / BUYS
# =============================================================================

@documents_bp.post("/events")
@require_auth
def create_event_route():
    try:
        data = request.get_json(silent=True) or {}
        branch_id, denied = _branch_from_body(data)
        if denied:
            return denied

        event = document_service.create_event(
            branch_id=branch_id,
            actor_id=g.identity.actor_id,
            total_cents=data.get("total_cents"),
            client_name=data.get("client_name"),
            event_date=data.get("event_date"),
            notes=data.get("notes"),
            initial_payment=data.get("initial_payment"),
            notifier=get_notifier(),
        )
        return jsonify({"event": event.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create event")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/expenses")
@require_auth
def create_expense_route():
    """
    Request body:
    {
        "branch_id": 1,
        "concept": "Cleaning supplies",
        "total_cents": 2500,
        "expense_type": "petty_cash",     (petty_cash | check_transfer)
        "cash_register_id": 3             (petty_cash only)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id, denied = _branch_from_body(data)
        if denied:
            return denied

        expense = document_service.create_expense(
            branch_id=branch_id,
            actor_id=g.identity.actor_id,
            concept=data.get("concept"),
            total_cents=data.get("total_cents"),
            expense_type=data.get("expense_type"),
            cash_register_id=data.get("cash_register_id"),
            payment_date=data.get("payment_date"),
            notes=data.get("notes"),
            notifier=get_notifier(),
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/buys")
@require_auth
def create_buy_route():
    try:
        data = request.get_json(silent=True) or {}
        branch_id, denied = _branch_from_body(data)
        if denied:
            return denied

        buy = document_service.create_buy(
            branch_id=branch_id,
            actor_id=g.identity.actor_id,
            provider_name=data.get("provider_name"),
            total_cents=data.get("total_cents"),
            paid_cents=data.get("paid_cents", 0),
            notes=data.get("notes"),
        )
        return jsonify({"buy": buy.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create buy")
        return jsonify({"error": "Internal server error"}), 500
