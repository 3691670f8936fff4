# backend/branchledger/routes/system.py
"""
System health endpoint.

Checks the database and the realtime hub; returns 503 when the database
cannot be reached.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Branch, CashRegister, PaymentMethod
from ..realtime import get_notifier
from branchledger.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Basic queries against the directory and register tables."""
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        open_registers = db.session.query(CashRegister).filter_by(is_open=True).count()
        cash_methods = db.session.query(PaymentMethod).filter_by(is_cash=True, is_active=True).count()

        elapsed_ms = (time.time() - start_time) * 1000

        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "open_cash_registers": open_registers,
                "cash_payment_methods": cash_methods,
            }
        }
        if cash_methods == 0:
            result["status"] = "degraded"
            result["warning"] = "No active cash payment method configured"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_realtime_health() -> dict:
    notifier = get_notifier()
    if notifier is None:
        return {"status": "degraded", "warning": "Realtime hub not registered"}
    return {"status": "healthy", "details": {"sessions": notifier.session_count}}


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    realtime_health = check_realtime_health()

    all_checks = [database_health, realtime_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "realtime": realtime_health,
        }
    }

    return response, http_status
