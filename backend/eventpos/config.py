# backend/eventpos/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


def _engine_options(uri: str, timeout: float) -> dict:
    # sqlite3 waits on a locked file for `timeout`; network drivers bound the connect
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    return {"pool_pre_ping": True, "connect_args": {"connect_timeout": int(timeout)}}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/eventpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///eventpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Every store call is bounded; a locked or unreachable database surfaces
    # as UnavailableError instead of hanging the caller.
    DB_TIMEOUT_SECONDS = _float_env("DB_TIMEOUT_SECONDS", 5.0)
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options(SQLALCHEMY_DATABASE_URI, DB_TIMEOUT_SECONDS)

    # Ledger reconciliation tolerance (1 cent == 0.01 currency unit)
    PAYMENT_TOLERANCE_CENTS = _int_env("PAYMENT_TOLERANCE_CENTS", 1)

    # Optimistic concurrency retry policy
    RETRY_ATTEMPTS = _int_env("RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_SECONDS = _float_env("RETRY_BACKOFF_SECONDS", 0.1)

    # Bounded re-tries of the out-of-stock bulk reject before escalating
    OUT_OF_STOCK_REJECT_ATTEMPTS = _int_env("OUT_OF_STOCK_REJECT_ATTEMPTS", 3)

    # Identity is asserted by the upstream gateway
    IDENTITY_USER_HEADER = os.environ.get("IDENTITY_USER_HEADER", "X-User-Id")
    IDENTITY_TENANT_HEADER = os.environ.get("IDENTITY_TENANT_HEADER", "X-Tenant-Id")
    IDENTITY_ROLE_HEADER = os.environ.get("IDENTITY_ROLE_HEADER", "X-Role")

    CORS_ALLOWED_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }
