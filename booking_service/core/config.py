import logging
import os


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5174,http://localhost:5175").split(",")
    if origin.strip()
]

DEFAULT_BOOKING_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_BOOKING_DURATION_MINUTES"), 30)
DEFAULT_ADVANCE_BOOKING_DAYS = _get_int(os.getenv("DEFAULT_ADVANCE_BOOKING_DAYS"), 30)

# Google Calendar freebusy accepts at most 50 calendars per request.
MAX_FREE_BUSY_CHUNK_SIZE = 50
FREE_BUSY_CHUNK_SIZE = min(_get_int(os.getenv("FREE_BUSY_CHUNK_SIZE"), MAX_FREE_BUSY_CHUNK_SIZE), MAX_FREE_BUSY_CHUNK_SIZE)
CALENDAR_CHUNK_TIMEOUT_SECONDS = _get_int(os.getenv("CALENDAR_CHUNK_TIMEOUT_SECONDS"), 10)
CALENDAR_MAX_WORKERS = _get_int(os.getenv("CALENDAR_MAX_WORKERS"), 4)

BUSY_CACHE_TTL_SECONDS = _get_int(os.getenv("BUSY_CACHE_TTL_SECONDS"), 60)
BUSY_CACHE_SWEEP_SECONDS = _get_int(os.getenv("BUSY_CACHE_SWEEP_SECONDS"), 300)

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_TOKEN_URI = os.getenv("GOOGLE_TOKEN_URI", "https://oauth2.googleapis.com/token")
GOOGLE_SCOPES = [
    scope.strip()
    for scope in os.getenv("GOOGLE_SCOPES", "https://www.googleapis.com/auth/calendar").split(",")
    if scope.strip()
]

EMAIL_ENABLED = _get_bool(os.getenv("EMAIL_ENABLED"), True)
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _get_int(os.getenv("SMTP_PORT"), 587)
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "Booking Service")


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and not os.getenv("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL must be set in production.")
