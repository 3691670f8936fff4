# Overview: Service-layer operations for session tokens; verifies identities issued upstream.

"""
Session Token Service

WHY: Identity lives with the upstream provider. Every request (and every
realtime connection) carries a signed token holding (actor_id, role,
branch_ids); the ledger trusts that triple as given once the signature
and age check out.

SECURITY:
- Tokens are signed with SECRET_KEY (itsdangerous, HMAC-SHA1 by default)
- Tokens older than max_age seconds are rejected
- Tampered or expired tokens verify to None, never raise
"""

from dataclasses import dataclass, field

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


TOKEN_SALT = "branchledger-session"

VALID_ROLES = ("admin", "manager", "cashier")


@dataclass
class Identity:
    """Authenticated actor established by require_auth."""
    actor_id: int
    role: str
    branch_ids: list[int] = field(default_factory=list)

    def can_access_branch(self, branch_id: int) -> bool:
        return self.role == "admin" or branch_id in self.branch_ids


def _serializer(secret_key: str | None = None) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key or current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(actor_id: int, role: str, branch_ids: list[int], *, secret_key: str | None = None) -> str:
    """
    Sign an identity. Used by the CLI and tests; production tokens are
    issued by the identity provider with the same key and salt.
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role: {role}")
    payload = {
        "actor_id": int(actor_id),
        "role": role,
        "branch_ids": sorted({int(b) for b in branch_ids or []}),
    }
    return _serializer(secret_key).dumps(payload)


def verify_token(token: str | None, *, max_age: int | None = None, secret_key: str | None = None) -> Identity | None:
    """
    Return the Identity carried by token, or None if missing, tampered,
    expired or malformed.
    """
    if not token:
        return None
    if max_age is None:
        max_age = current_app.config.get("SESSION_TOKEN_MAX_AGE")
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age)
    except SignatureExpired:
        return None
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None
    actor_id = data.get("actor_id")
    role = data.get("role")
    if not isinstance(actor_id, int) or role not in VALID_ROLES:
        return None
    branch_ids = [b for b in data.get("branch_ids") or [] if isinstance(b, int)]
    return Identity(actor_id=actor_id, role=role, branch_ids=branch_ids)
