# Overview: Flask API routes for branch notifications; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..decorators import require_auth, branch_access_denied
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/")
@notifications_bp.get("")
@require_auth
def list_notifications_route():
    try:
        include_read = request.args.get("include_read", "false").lower() in ("1", "true", "yes")
        notifications = notification_service.list_for_user(
            user_id=g.identity.actor_id,
            role=g.identity.role,
            branch_ids=g.identity.branch_ids,
            include_read=include_read,
        )
        return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        denied = branch_access_denied(notification_service.get_notification(notification_id).branch_id)
        if denied:
            return denied
        notification = notification_service.mark_read(
            notification_id=notification_id,
            user_id=g.identity.actor_id,
        )
        return jsonify({"notification": notification.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark notification read")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    try:
        denied = branch_access_denied(notification_service.get_notification(notification_id).branch_id)
        if denied:
            return denied
        notification_service.soft_delete(
            notification_id=notification_id,
            user_id=g.identity.actor_id,
        )
        return jsonify({"deleted": notification_id}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete notification")
        return jsonify({"error": "Internal server error"}), 500
