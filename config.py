# config.py
import logging
import os
import secrets

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _get_bool(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./subscriptions.db")

SECRET_KEY = os.getenv("JWT_SECRET")
if not SECRET_KEY:
    SECRET_KEY = "change-me-" + secrets.token_hex(16)
    logger.warning("JWT_SECRET not set, tokens will not survive a restart")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7"))
VERIFICATION_TOKEN_EXPIRE_HOURS = 24
RESET_TOKEN_EXPIRE_HOURS = 1
MIN_PASSWORD_LENGTH = 6
REQUIRE_EMAIL_VERIFICATION = _get_bool("REQUIRE_EMAIL_VERIFICATION", True)
# account allowed to change install-wide settings; the first registered user when unset
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()

BASE_URL = os.getenv("BASE_URL", "http://localhost:5173")
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

REMINDERS_ENABLED = _get_bool("REMINDERS_ENABLED", True)
REMINDER_CRON_MINUTE = os.getenv("REMINDER_CRON_MINUTE", "0")
DEFAULT_REMINDER_DAYS = 7
EXPIRING_SOON_DAYS = 7

# SMTP defaults, overridden by values saved through /api/settings
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = os.getenv("SMTP_PORT", "587")
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_SECURE = os.getenv("SMTP_SECURE", "false")
EMAIL_FROM = os.getenv("EMAIL_FROM", "")
EMAIL_TO = os.getenv("EMAIL_TO", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
