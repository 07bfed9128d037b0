# backend/tillcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Reference Sales Ledger database
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Settlement: paid + tolerance >= grand total counts as settled (cents)
    SETTLEMENT_TOLERANCE_CENTS = int(os.environ.get("SETTLEMENT_TOLERANCE_CENTS", "1"))

    # Shift reports
    REPORT_TOP_ITEMS = int(os.environ.get("REPORT_TOP_ITEMS", "5"))

    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "REC")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
