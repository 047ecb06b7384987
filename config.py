"""
Application configuration — environment-aware settings.

All environment variables are documented here. Values are read once at
import time; a local .env file is honoured in development.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE_URL", str(BASE_DIR / "course_platform.db"))
    WTF_CSRF_ENABLED = True

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Public URLs used in emails and Stripe redirects
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5001")
    COURSE_NAME = os.environ.get("COURSE_NAME", "AI Systems Architect")
    DISCORD_URL = os.environ.get("DISCORD_URL", "")
    DISCORD_ALUMNI_URL = os.environ.get("DISCORD_ALUMNI_URL", "")

    # Email transport
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")  # "log" or "smtp"
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_FROM = os.environ.get("MAIL_FROM", "noreply@example.com")
    MAIL_REPLY_TO = os.environ.get("MAIL_REPLY_TO", "")

    # Email queue
    EMAIL_QUEUE_BATCH_SIZE = 100
    EMAIL_QUEUE_MAX_RETRIES = 3
    EMAIL_QUEUE_STALE_DAYS = 7
    EMAIL_QUEUE_SCHEDULER_ENABLED = os.environ.get("EMAIL_QUEUE_SCHEDULER_ENABLED", "") == "1"
    EMAIL_QUEUE_INTERVAL_MINUTES = int(os.environ.get("EMAIL_QUEUE_INTERVAL_MINUTES", "5"))

    # Cron endpoint shared secret (Bearer token or X-Cron-Secret header)
    CRON_SECRET = os.environ.get("CRON_SECRET", "")

    # Stripe payments
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_PRICE_MONTHLY = os.environ.get("STRIPE_PRICE_MONTHLY", "")
    STRIPE_PRICE_ANNUAL = os.environ.get("STRIPE_PRICE_ANNUAL", "")

    # Mux video webhooks
    MUX_WEBHOOK_SECRET = os.environ.get("MUX_WEBHOOK_SECRET", "")

    # Rate limiting (in-memory unless a storage URI is given)
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if not cls.CRON_SECRET:
            errors.append("CRON_SECRET must be set so the email queue endpoint is protected.")

        if cls.STRIPE_SECRET_KEY and not cls.STRIPE_WEBHOOK_SECRET:
            errors.append("STRIPE_WEBHOOK_SECRET is required when STRIPE_SECRET_KEY is set.")

        if cls.EMAIL_BACKEND == "log":
            warnings.warn("EMAIL_BACKEND is 'log' — lifecycle emails will not be delivered.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    WTF_CSRF_ENABLED = False
    EMAIL_QUEUE_SCHEDULER_ENABLED = False


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
