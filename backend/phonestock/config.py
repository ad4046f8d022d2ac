# backend/phonestock/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///phonestock.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Calendar days, shift start times and lateness are evaluated in this zone
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Colombo")
    DEFAULT_SHIFT_START = os.environ.get("DEFAULT_SHIFT_START", "08:00")
    DEFAULT_SHIFT_END = os.environ.get("DEFAULT_SHIFT_END", "17:00")

    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 5)

    # Proof-of-purchase object storage (local filesystem adapter)
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join("instance", "uploads"))
    UPLOAD_URL_PREFIX = os.environ.get("UPLOAD_URL_PREFIX", "/uploads")
    MAX_PROOF_BYTES = _env_int("MAX_PROOF_BYTES", 5 * 1024 * 1024)
    ALLOWED_PROOF_MIME_TYPES = (
        "image/jpeg",
        "image/png",
        "image/webp",
        "application/pdf",
    )

    # Assignment notifications; disabled unless both are set
    TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID")
    TELEGRAM_API_BASE = os.environ.get("TELEGRAM_API_BASE", "https://api.telegram.org")
    NOTIFICATION_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "5"))

    # Dotted path or callable returning a Principal for the current request.
    # None selects the trusted gateway header loader.
    PRINCIPAL_LOADER = None


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TELEGRAM_BOT_TOKEN = None
    TELEGRAM_CHAT_ID = None
