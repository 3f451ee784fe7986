# config.py
"""
Application configuration loaded from the environment.

All settings are read once at import time from the process environment
(a local .env file is loaded first when present).
"""
import os
from decimal import Decimal
from urllib.parse import quote_plus

from dotenv import load_dotenv

# Load .env
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
     return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
     return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


# Database
DB_SERVER = os.getenv("DB_SERVER")
DB_PORT = os.getenv("DB_PORT", "1433")
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS")
DB_NAME = os.getenv("DB_NAME")
SQL_ECHO = _env_bool("SQL_ECHO")


def build_database_url() -> str:
     """DATABASE_URL wins; otherwise build an MS SQL Server URL for pymssql."""
     explicit = os.getenv("DATABASE_URL")
     if explicit:
          return explicit
     safe_user = quote_plus(DB_USER or "")
     safe_pass = quote_plus(DB_PASS or "")
     return f"mssql+pymssql://{safe_user}:{safe_pass}@{DB_SERVER}:{DB_PORT}/{DB_NAME}"


DATABASE_URL = build_database_url()

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ADMIN_ROLES = ("admin", "super_admin")
SUPER_ADMIN_EMAILS = _env_list("SUPER_ADMIN_EMAILS")

# HTTP
CORS_ORIGINS = _env_list("CORS_ORIGINS")
PORT = int(os.getenv("PORT", 10000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Settlement
PLATFORM_COMMISSION_RATE = Decimal(os.getenv("PLATFORM_COMMISSION_RATE", "0.15"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "HTG")
SETTLEMENT_LOCK_TTL_SECONDS = int(os.getenv("SETTLEMENT_LOCK_TTL_SECONDS", 300))
AMOUNT_TOLERANCE = Decimal(os.getenv("AMOUNT_TOLERANCE", "0.01"))

# Batch jobs
JOB_LOCK_TTL_SECONDS = int(os.getenv("JOB_LOCK_TTL_SECONDS", 30 * 60))
RISK_CRON_BATCH_SIZE = int(os.getenv("RISK_CRON_BATCH_SIZE", 200))
TRUST_CRON_BATCH_SIZE = int(os.getenv("TRUST_CRON_BATCH_SIZE", 200))
BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", 5))
RECENT_EVAL_HOURS = int(os.getenv("RECENT_EVAL_HOURS", 20))
SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED")

# Notifications
BREVO_API_KEY = os.getenv("BREVO_API_KEY")
MAIL_SENDER_NAME = os.getenv("MAIL_SENDER_NAME", "Marketplace")
MAIL_SENDER_EMAIL = os.getenv("MAIL_SENDER_EMAIL", "noreply@marketplace.local")


def webhook_secret(provider: str) -> str | None:
     """Shared secret for a payment provider, e.g. MONCASH_WEBHOOK_SECRET."""
     key = f"{provider.strip().upper().replace('-', '_')}_WEBHOOK_SECRET"
     return os.getenv(key) or None
