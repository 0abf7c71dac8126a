# backend/barstock/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/barstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///barstock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business day boundaries (transfer codes, "today" filters)
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Bangkok")

    # Deposits
    DEFAULT_DEPOSIT_EXPIRY_DAYS = int(os.environ.get("DEFAULT_DEPOSIT_EXPIRY_DAYS", "30"))
    EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "7"))

    # Stock comparison tolerance in percent, used when a store has none set
    DEFAULT_DIFF_TOLERANCE = float(os.environ.get("DEFAULT_DIFF_TOLERANCE", "5"))
