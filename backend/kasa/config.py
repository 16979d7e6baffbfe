# backend/kasa/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kasa.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kasa.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Card terminal integration ("manual" = no physical terminal attached)
    TERMINAL_MODE = os.environ.get("TERMINAL_MODE", "manual")
    TERMINAL_DEVICE_NAME = os.environ.get("TERMINAL_DEVICE_NAME", "Ingenico")

    # A store instance runs a single register unless told otherwise
    DEFAULT_REGISTER_ID = os.environ.get("DEFAULT_REGISTER_ID", "MAIN")

    # End-of-day classification thresholds (cents)
    HIGH_SALES_THRESHOLD_CENTS = _env_int("HIGH_SALES_THRESHOLD_CENTS", 100_000)
    LOW_SALES_THRESHOLD_CENTS = _env_int("LOW_SALES_THRESHOLD_CENTS", 10_000)
    LOSS_COUNT_TOLERANCE_CENTS = _env_int("LOSS_COUNT_TOLERANCE_CENTS", 5_000)

    # Withdrawals above the theoretical balance stay blocked unless enabled
    ALLOW_CONFIRMED_OVERDRAW = _env_bool("ALLOW_CONFIRMED_OVERDRAW", False)

    # Replays of a settlement after a lock or row-version conflict
    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 3)
