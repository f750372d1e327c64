# backend/shopledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///shopledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Counterparty is high-risk when outstanding / total_spent exceeds this ratio
    HIGH_RISK_THRESHOLD = float(os.environ.get("HIGH_RISK_THRESHOLD", "0.5"))

    # Reject cash-method movements while no register session is open
    REQUIRE_OPEN_CASH_SESSION = _env_bool("REQUIRE_OPEN_CASH_SESSION", False)

    DOCUMENT_PREFIXES = {
        "sale": "INV",
        "purchase": "PUR",
    }
