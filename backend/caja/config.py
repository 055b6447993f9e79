# backend/caja/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/caja.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///caja.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Home currency code; the Currency row with is_home=True wins if present
    HOME_CURRENCY_CODE = os.environ.get("HOME_CURRENCY_CODE", "PEN")

    # Max absolute deviation of an applied rate from the reference rate
    RATE_TOLERANCE = Decimal(os.environ.get("RATE_TOLERANCE", "0.10"))

    # Max deviation between claimed and computed home totals
    TOTAL_TOLERANCE = Decimal(os.environ.get("TOTAL_TOLERANCE", "0.01"))

    # Transactions above this home total require a customer
    LARGE_TRANSACTION_THRESHOLD = Decimal(os.environ.get("LARGE_TRANSACTION_THRESHOLD", "10000"))

    # Accepted range for reference rates and base costs
    RATE_MIN = Decimal(os.environ.get("RATE_MIN", "1"))
    RATE_MAX = Decimal(os.environ.get("RATE_MAX", "10"))

    # Unit cost for sell amounts not covered by inventory: BUY_RATE or BASE_COST
    FALLBACK_COST_SOURCE = os.environ.get("FALLBACK_COST_SOURCE", "BUY_RATE").upper()

    # Bounded wait for the till lock, then retry with exponential backoff
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "3"))
    LOCK_RETRY_BACKOFF = float(os.environ.get("LOCK_RETRY_BACKOFF", "0.1"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
