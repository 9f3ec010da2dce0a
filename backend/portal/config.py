# backend/portal/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/portal.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///portal.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # Console-only logging unless a directory is given
    LOG_DIR = os.environ.get("LOG_DIR")

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Bearer session limits
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))

    # Order status updates must follow the fulfilment sequence (or cancel)
    ORDER_STRICT_TRANSITIONS = _env_flag("ORDER_STRICT_TRANSITIONS", True)

    NOTIFICATION_CAPACITY = int(os.environ.get("NOTIFICATION_CAPACITY", "50"))

    ANALYTICS_DEFAULT_PERIOD_DAYS = 30


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BCRYPT_ROUNDS = 4
    LOG_LEVEL = "WARNING"
    LOG_DIR = None
    ORDER_STRICT_TRANSITIONS = True
    NOTIFICATION_CAPACITY = 50
