# backend/branchledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs realtime/session tokens)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///branchledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Signed bearer tokens older than this (seconds) are rejected
    SESSION_TOKEN_MAX_AGE = int(os.environ.get("SESSION_TOKEN_MAX_AGE", "86400"))
    REALTIME_TOKEN_MAX_AGE = int(os.environ.get("REALTIME_TOKEN_MAX_AGE", "86400"))

    # Events buffered per connected realtime session before new ones are dropped
    REALTIME_OUTBOX_SIZE = int(os.environ.get("REALTIME_OUTBOX_SIZE", "256"))
    REALTIME_KEEPALIVE_SECONDS = float(os.environ.get("REALTIME_KEEPALIVE_SECONDS", "15"))

    DISCOUNT_FOLIO_MAX_ATTEMPTS = int(os.environ.get("DISCOUNT_FOLIO_MAX_ATTEMPTS", "5"))

    # Shared secret the card gateway sends in X-Gateway-Secret
    GATEWAY_WEBHOOK_SECRET = os.environ.get("GATEWAY_WEBHOOK_SECRET", "dev-gateway-secret")

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
