# Overview: Flask API routes for discount authorizations; parses input and returns JSON responses.

# backend/branchledger/routes/discounts.py
"""
Discount Authorization API Routes

DESIGN:
- Cashier requests a discount; it is routed to the branch manager
- The assigned manager approves (folio issued) or rejects
- The cashier redeems the folio once at the same branch
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..decorators import require_auth, branch_access_denied
from ..realtime import get_notifier
from ..services import discount_service


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discount-auth")


@discounts_bp.post("/request")
@require_auth
def request_discount_route():
    """
    Request body:
    {
        "message": "Customer is a regular",
        "branch_id": 1,
        "discount_value": 15,
        "discount_type": "percentage",   (percentage | amount)
        "order_id": 42                   (optional)
    }

    Returns:
        201: {authorization}
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        if not isinstance(branch_id, int) or isinstance(branch_id, bool):
            return jsonify({"error": "branch_id required"}), 400
        denied = branch_access_denied(branch_id)
        if denied:
            return denied

        auth = discount_service.request_authorization(
            message=data.get("message"),
            branch_id=branch_id,
            discount_value=data.get("discount_value"),
            discount_type=data.get("discount_type"),
            requester_id=g.identity.actor_id,
            order_id=data.get("order_id"),
            notifier=get_notifier(),
        )
        return jsonify({"authorization": auth.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request discount authorization")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.post("/<int:auth_id>/decide")
@require_auth
def decide_discount_route(auth_id: int):
    """
    Request body:
    {
        "approve": true
    }

    Only the manager the request was routed to may decide.

    Returns:
        200: {authorization}
        400: Already decided
        403: Not the assigned manager
    """
    try:
        data = request.get_json(silent=True) or {}
        approve = data.get("approve")
        if not isinstance(approve, bool):
            return jsonify({"error": "approve must be true or false"}), 400

        auth = discount_service.decide(
            auth_id=auth_id,
            manager_id=g.identity.actor_id,
            approve=approve,
            notifier=get_notifier(),
        )
        return jsonify({"authorization": auth.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to decide discount authorization")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.post("/redeem")
@require_auth
def redeem_discount_route():
    """
    Request body:
    {
        "auth_folio": "AUTH-240101-0001",
        "branch_id": 1,
        "order_id": 42          (optional: moves the order to in_production)
    }

    Returns:
        200: {discount_value, discount_type, auth_folio, ...}
        400: Not approved, already redeemed, other branch
        404: Unknown folio
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        if not isinstance(branch_id, int) or isinstance(branch_id, bool):
            return jsonify({"error": "branch_id required"}), 400
        denied = branch_access_denied(branch_id)
        if denied:
            return denied

        result = discount_service.redeem(
            auth_folio=data.get("auth_folio"),
            branch_id=branch_id,
            order_id=data.get("order_id"),
            actor_id=g.identity.actor_id,
            notifier=get_notifier(),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to redeem discount authorization")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.get("/<int:auth_id>")
@require_auth
def get_discount_route(auth_id: int):
    try:
        auth = discount_service.get_authorization(auth_id)
        denied = branch_access_denied(auth.branch_id)
        if denied:
            return denied
        return jsonify({"authorization": auth.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load discount authorization")
        return jsonify({"error": "Internal server error"}), 500
