# backend/tienda/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tienda.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tienda.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Unit of measure used when a write path does not name one ("Unidad")
    DEFAULT_UNIT_OF_MEASURE_ID = int(os.environ.get("DEFAULT_UNIT_OF_MEASURE_ID", "2"))
    # Customer attached to sales that do not name one
    ANONYMOUS_CUSTOMER_ID = int(os.environ.get("ANONYMOUS_CUSTOMER_ID", "2"))

    EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "30"))
    # created_order | nearest_expiry | explicit
    LOT_SELECTION_POLICY = os.environ.get("LOT_SELECTION_POLICY", "created_order")
    # False keeps the lenient behaviour: bad expiry dates become "no expiry"
    STRICT_EXPIRY_DATES = _env_bool("STRICT_EXPIRY_DATES", False)

    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_HOURS = int(os.environ.get("SESSION_IDLE_TIMEOUT_HOURS", "2"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
