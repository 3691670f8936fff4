# Overview: Flask API routes for cash register operations; parses input and returns JSON responses.

# backend/branchledger/routes/registers.py
"""
Cash Register API Routes

WHY: Tills are opened by a cashier, take cash, pay petty cash and are
closed with a reconciliation log.

DESIGN:
- Create register (closed, zero balance)
- Toggle open/close (the till's state machine)
- Explicit balance reset while closed
- Current-window summary and closing logs
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..decorators import require_auth, branch_access_denied
from ..realtime import get_notifier
from ..services import register_service


registers_bp = Blueprint("registers", __name__, url_prefix="/api/cash-register")


def _load_scoped(register_id: int):
    register = register_service.get_register(register_id)
    return register, branch_access_denied(register.branch_id)


@registers_bp.post("/")
@registers_bp.post("")
@require_auth
def create_register_route():
    """
    Create a cash register.

    Request body:
    {
        "branch_id": 1,
        "name": "Caja 1"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        if not isinstance(branch_id, int) or isinstance(branch_id, bool):
            return jsonify({"error": "branch_id required"}), 400
        denied = branch_access_denied(branch_id)
        if denied:
            return denied

        register = register_service.create_register(
            branch_id=branch_id,
            name=data.get("name"),
            actor_id=g.identity.actor_id,
            notifier=get_notifier(),
        )
        return jsonify({"cash_register": register.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.put("/<int:register_id>/toggle-open")
@require_auth
def toggle_open_route(register_id: int):
    """
    Open a closed register or close an open one.

    Request body (optional, opening only):
    {
        "initial_balance_cents": 50000   (explicit reset of cash on hand)
    }

    Returns:
        200: {is_open, cash_register}
    """
    try:
        _, denied = _load_scoped(register_id)
        if denied:
            return denied
        data = request.get_json(silent=True) or {}

        register = register_service.toggle_open(
            register_id=register_id,
            actor_id=g.identity.actor_id,
            initial_balance_cents=data.get("initial_balance_cents"),
            notifier=get_notifier(),
        )
        return jsonify({"is_open": register.is_open, "cash_register": register.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to toggle cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:register_id>/reset-balance")
@require_auth
def reset_balance_route(register_id: int):
    try:
        _, denied = _load_scoped(register_id)
        if denied:
            return denied
        data = request.get_json(silent=True) or {}
        if data.get("amount_cents") is None:
            return jsonify({"error": "amount_cents required"}), 400

        register = register_service.reset_balance(
            register_id=register_id,
            amount_cents=data.get("amount_cents"),
            actor_id=g.identity.actor_id,
            notifier=get_notifier(),
        )
        return jsonify({"cash_register": register.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reset cash register balance")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>/summary")
@require_auth
def register_summary_route(register_id: int):
    try:
        _, denied = _load_scoped(register_id)
        if denied:
            return denied
        return jsonify(register_service.get_summary(register_id)), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cash register summary")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>/logs")
@require_auth
def register_logs_route(register_id: int):
    try:
        _, denied = _load_scoped(register_id)
        if denied:
            return denied
        limit = min(request.args.get("limit", 50, type=int) or 50, 200)
        logs = register_service.list_logs(register_id, limit=limit)
        return jsonify({"logs": [log.to_dict() for log in logs]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cash register logs")
        return jsonify({"error": "Internal server error"}), 500
