# Overview: Error taxonomy shared by services and routes, plus input coercion helpers.

from __future__ import annotations

from typing import Any

from flask import current_app, jsonify


class LedgerError(Exception):
    """Base class for failures reported back to the caller."""

    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(LedgerError):
    """400-level input problem. No side effects."""


class NotFoundError(LedgerError):
    """404-level: a referenced entity does not exist."""

    status_code = 404


class PreconditionFailed(LedgerError):
    """400-level business rule rejection (balance exceeded, register closed, already decided)."""


class AuthorizationMismatch(PreconditionFailed):
    """403-level: the actor is not the one bound to the record."""

    status_code = 403


class LedgerIntegrityError(LedgerError):
    """
    500-level: the all-or-nothing guarantee was violated upstream
    (parent vanished under a payment, folio retries exhausted).
    """

    status_code = 500


def require_fields(data: dict | None, *names: str) -> dict:
    """Return data, raising ValidationError naming every missing key."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    missing = [n for n in names if data.get(n) is None or data.get(n) == ""]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")
    return data


def coerce_int(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    """
    Strict integer coercion for ids and cents amounts.

    Rejects bools, floats, decimals and scientific notation so that a
    cents amount can never be silently truncated.
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            if allow_none:
                return None
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_cents(value: Any, field: str = "amount_cents") -> int:
    amount = coerce_int(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be positive")
    return amount


def error_response(exc: LedgerError):
    """JSON body + status for a LedgerError. Integrity failures are logged loudly."""
    if isinstance(exc, LedgerIntegrityError):
        current_app.logger.error("Ledger integrity failure: %s %s", exc.message, exc.details)
    return jsonify(exc.to_dict()), exc.status_code
