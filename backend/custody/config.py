"""
Configuration settings for the custody service.
Every value can be overridden through environment variables.
"""
import json
import os
from zoneinfo import ZoneInfo

# ============================================================================
# Database
# ============================================================================
_raw_url = os.getenv("DATABASE_URL", "sqlite:///./test.db")
# SQLAlchemy 2 loads dialect "postgresql", not "postgres"
if _raw_url.startswith("postgres://"):
    DATABASE_URL = "postgresql://" + _raw_url[len("postgres://"):]
else:
    DATABASE_URL = _raw_url

# ============================================================================
# Security
# ============================================================================
SECRET_KEY = os.getenv("SECRET_KEY", "change-this-secret-key-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))
# Keyed digest for guardian / pickup / grant PINs; falls back to SECRET_KEY
PIN_PEPPER = os.getenv("PIN_PEPPER", SECRET_KEY)

# Roles allowed to release a child without candidate verification
OVERRIDE_ROLES = tuple(
    r.strip() for r in os.getenv("OVERRIDE_ROLES", "admin,leader").split(",") if r.strip()
)
# Roles allowed to approve temporary pickup authorizations
APPROVER_ROLES = tuple(
    r.strip() for r in os.getenv("APPROVER_ROLES", "admin,leader").split(",") if r.strip()
)

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]

# Rate limits (slowapi syntax)
CHECKOUT_RATE_LIMIT = os.getenv("CHECKOUT_RATE_LIMIT", "10/minute")
LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5/minute")

# ============================================================================
# Custody
# ============================================================================
# Session days are computed in this timezone (a Sunday evening service must
# not roll over to Monday because of UTC)
CUSTODY_TIMEZONE = ZoneInfo(os.getenv("CUSTODY_TIMEZONE", "UTC"))
DEFAULT_CLASSROOM_CAPACITY = int(os.getenv("DEFAULT_CLASSROOM_CAPACITY", "20"))
LABEL_NUMBER_DIGITS = 4
MIN_OVERRIDE_REASON_LENGTH = 10

# Default classroom catalog. Either a JSON list of names or a JSON object of
# name -> {"max_capacity": int, "ratio_children_per_adult": int, "is_active": bool}
_DEFAULT_CLASSROOM_NAMES = [
    "Berçário",
    "Maternal",
    "Infantil 1",
    "Infantil 2",
    "Infantil 3",
    "Pré-adolescente",
]


def _load_default_classrooms(raw: str | None) -> dict[str, dict]:
    if not raw:
        return {name: {} for name in _DEFAULT_CLASSROOM_NAMES}
    parsed = json.loads(raw)
    if isinstance(parsed, list):
        return {str(name): {} for name in parsed}
    if isinstance(parsed, dict):
        return {str(name): dict(values or {}) for name, values in parsed.items()}
    raise ValueError("DEFAULT_CLASSROOMS must be a JSON list or object")


DEFAULT_CLASSROOMS = _load_default_classrooms(os.getenv("DEFAULT_CLASSROOMS"))

# ============================================================================
# Infrastructure
# ============================================================================
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
SMTP_SERVER = os.getenv("SMTP_SERVER")
EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@example.com")
SENTRY_DSN = os.getenv("SENTRY_DSN")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def is_testing() -> bool:
    return os.getenv("TESTING") == "1"
