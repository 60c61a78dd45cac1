# backend/settlement/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    if raw.strip().lower() == "none":
        return None
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/settlement.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///settlement.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # All money is stored as integer minor units of this currency
    CURRENCY_CODE = os.environ.get("CURRENCY_CODE", "ZAR")

    # Cash-up: |variance| above this is "significant" (5.00 currency units)
    VARIANCE_THRESHOLD_CENTS = _env_int("VARIANCE_THRESHOLD_CENTS", 500)

    # Laybye policy
    LAYBYE_REQUIRE_CUSTOMER = _env_bool("LAYBYE_REQUIRE_CUSTOMER", True)
    LAYBYE_MIN_DEPOSIT_BPS = _env_int("LAYBYE_MIN_DEPOSIT_BPS", 2000)  # 20%
    LAYBYE_MIN_DEPOSIT_CENTS = _env_int("LAYBYE_MIN_DEPOSIT_CENTS", 0)
    LAYBYE_MIN_LEAD_DAYS = _env_int("LAYBYE_MIN_LEAD_DAYS", 7)
    LAYBYE_MAX_DURATION_DAYS = _env_int("LAYBYE_MAX_DURATION_DAYS", 30)

    # Bounded retry for transient store failures
    RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))
