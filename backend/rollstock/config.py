# backend/rollstock/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/rollstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///rollstock.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # A returned roll spawns a remainder only when more than this many meters are left
    MIN_USABLE_RETURN_LENGTH = float(os.environ.get("ROLLSTOCK_MIN_RETURN_LENGTH", "100"))

    # Retry policy for atomic units that lose a race (locks, stale versions, claims)
    RETRY_ATTEMPTS = int(os.environ.get("ROLLSTOCK_RETRY_ATTEMPTS", "8"))
    RETRY_BACKOFF_BASE = float(os.environ.get("ROLLSTOCK_RETRY_BACKOFF", "0.05"))
    RETRY_BACKOFF_MAX = 1.0
