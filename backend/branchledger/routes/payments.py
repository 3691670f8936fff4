# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/branchledger/routes/payments.py
"""
Payment Registration API Routes

WHY: Cashiers take installments on orders and events with any payment
method; the card gateway reports electronic payments asynchronously.

DESIGN:
- Register a payment (cash payments name the open register they go into)
- Reverse a payment (exact inverse, including the register)
- Gateway webhook: shared-secret header, idempotent on the gateway reference
"""

import hmac

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..decorators import require_auth, branch_access_denied
from ..realtime import get_notifier
from ..services import payment_service, document_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _parent_summary(parent) -> dict:
    return parent.balance_dict()


# =============================================================================
# PAYMENT REGISTRATION
# =============================================================================

@payments_bp.post("/")
@payments_bp.post("")
@require_auth
def register_payment_route():
    """
    Register a payment against an order or event.

    Request body:
    {
        "parent_kind": "order",        (optional: order | event, default order)
        "parent_id": 12,
        "amount_cents": 4000,
        "payment_method_id": 1,
        "cash_register_id": 3,         (cash only)
        "notes": "Advance"             (optional)
    }

    Returns:
        201: {payment, parent: {total, paid, remaining, payment_status}}
        400: Invalid input / precondition failed
        404: Parent, method or register not found
        500: Server error
    """
    try:
        data = request.get_json(silent=True) or {}
        parent_kind = data.get("parent_kind") or "order"
        parent_id = data.get("parent_id")
        if parent_id is None or data.get("amount_cents") is None or data.get("payment_method_id") is None:
            return jsonify({"error": "parent_id, amount_cents, and payment_method_id required"}), 400

        if parent_kind in document_service.PAYABLE_KINDS:
            try:
                parent = document_service.get_document(parent_kind, int(parent_id))
            except (TypeError, ValueError):
                parent = None
            denied = branch_access_denied(parent.branch_id if parent else None)
            if denied:
                return denied

        payment = payment_service.register_payment(
            parent_kind=parent_kind,
            parent_id=parent_id,
            amount_cents=data.get("amount_cents"),
            payment_method_id=data.get("payment_method_id"),
            cash_register_id=data.get("cash_register_id"),
            actor_id=g.identity.actor_id,
            notes=data.get("notes"),
            notifier=get_notifier(),
        )
        parent = document_service.get_document(payment.parent_kind, payment.parent_id)

        return jsonify({
            "payment": payment.to_dict(),
            "parent": _parent_summary(parent),
        }), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        denied = branch_access_denied(payment.branch_id)
        if denied:
            return denied
        return jsonify({"payment": payment.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVERSAL
# =============================================================================

@payments_bp.delete("/<int:payment_id>")
@require_auth
def reverse_payment_route(payment_id: int):
    """
    Reverse a payment: parent and (for cash) register are restored.

    Returns:
        200: {parent: {total, paid, remaining, payment_status}}
        404: Payment not found
        500: Parent vanished (integrity failure) or server error
    """
    try:
        payment = payment_service.get_payment(payment_id)
        denied = branch_access_denied(payment.branch_id)
        if denied:
            return denied

        parent = payment_service.reverse_payment(
            payment_id=payment_id,
            actor_id=g.identity.actor_id,
            notifier=get_notifier(),
        )
        return jsonify({"parent": _parent_summary(parent)}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CARD GATEWAY WEBHOOK
# =============================================================================

@payments_bp.post("/gateway-webhook")
def gateway_webhook_route():
    """
    Card gateway outcome.

    Header: X-Gateway-Secret must match GATEWAY_WEBHOOK_SECRET.

    Request body:
    {
        "reference": "pi_123",      (gateway payment id, idempotency key)
        "succeeded": true,
        "parent_kind": "order",
        "parent_id": 12,
        "amount_cents": 2500,
        "payment_method_id": 2      (a non-cash method)
    }

    Returns:
        200: {"status": "ignored"} for failed payments
        200: {"status": "registered", payment}
    """
    expected = current_app.config.get("GATEWAY_WEBHOOK_SECRET") or ""
    provided = request.headers.get("X-Gateway-Secret") or ""
    if not expected or not hmac.compare_digest(provided, expected):
        current_app.logger.warning("Rejected gateway webhook with bad secret")
        return jsonify({"error": "Invalid webhook secret"}), 401

    try:
        payment = payment_service.handle_gateway_outcome(
            request.get_json(silent=True),
            notifier=get_notifier(),
        )
        if payment is None:
            return jsonify({"status": "ignored"}), 200
        return jsonify({"status": "registered", "payment": payment.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process gateway webhook")
        return jsonify({"error": "Internal server error"}), 500
