# backend/orderledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///orderledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Order numbers look like MLA-20250123-0001
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "MLA")

    # Whole-operation retry on lock timeouts / stale versions
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    LEDGER_PAGE_LIMIT_DEFAULT = 100
    LEDGER_PAGE_LIMIT_MAX = int(os.environ.get("LEDGER_PAGE_LIMIT_MAX", "500"))

    # Notifications are dispatched after commit; async uses a small thread pool
    NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", True)
    NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", "2"))
