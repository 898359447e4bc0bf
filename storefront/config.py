# storefront/config.py
import os
import re
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


APP_ENV = os.getenv("APP_ENV", "development").lower()
IS_PRODUCTION = APP_ENV == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.environ.get("DATABASE_URL")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change_me_long_secret")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))
TOKEN_COOKIE = "token"

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGIN", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
RATE_LIMIT_ENABLED = _flag("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "100"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
CRON_SECRET = os.getenv("CRON_SECRET")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))

USE_GEMINI = _flag("USE_GEMINI")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")

SLOW_REQUEST_SECONDS = 1.0


def validate_env() -> list:
    """Check the environment once at startup.

    Returns the list of warnings; raises RuntimeError when a value the server
    cannot run without is missing or malformed.
    """
    errors, warnings = [], []

    if not DATABASE_URL:
        errors.append("Missing required environment variable: DATABASE_URL - Database connection URL")
    elif not DATABASE_URL.startswith(("postgresql", "sqlite")):
        warnings.append("DATABASE_URL format might be invalid")

    if IS_PRODUCTION and JWT_SECRET_KEY == "change_me_long_secret":
        errors.append("JWT_SECRET_KEY must be set in production")

    if TELEGRAM_BOT_TOKEN and not re.match(r"^\d+:[A-Za-z0-9_-]+$", TELEGRAM_BOT_TOKEN):
        errors.append("TELEGRAM_BOT_TOKEN format is invalid (should be in format: number:alphanumeric)")
    elif not TELEGRAM_BOT_TOKEN:
        warnings.append("Optional environment variable not set: TELEGRAM_BOT_TOKEN - Telegram notifications disabled")

    if IS_PRODUCTION and not CRON_SECRET:
        warnings.append("CRON_SECRET not set: cron endpoints are disabled in production")

    if errors:
        for e in errors:
            logger.error("[ENV] %s", e)
        raise RuntimeError("Environment validation failed. Please fix the errors above.")

    for w in warnings:
        logger.warning("[ENV] %s", w)
    return warnings
