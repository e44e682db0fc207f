import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookingflow.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Booking response window: a provider has this long to confirm or reject a pending request
BOOKING_RESPONSE_WINDOW_MINUTES = int(os.getenv("BOOKING_RESPONSE_WINDOW_MINUTES", "5"))
DEFAULT_DURATION_MINUTES = int(os.getenv("DEFAULT_DURATION_MINUTES", "60"))

# When true, create/confirm refuse bookings overlapping a confirmed booking of the same provider.
# Off by default: capacity is assumed to be managed outside this service.
ENFORCE_SCHEDULE_CONFLICTS = os.getenv("ENFORCE_SCHEDULE_CONFLICTS", "false").lower() == "true"

# Deadline watchdog
WATCHDOG_ENABLED = os.getenv("WATCHDOG_ENABLED", "true").lower() == "true"
WATCHDOG_INTERVAL_SECONDS = float(os.getenv("WATCHDOG_INTERVAL_SECONDS", "60"))
WATCHDOG_BATCH_SIZE = int(os.getenv("WATCHDOG_BATCH_SIZE", "100"))

# Provider reputation
RESPONSE_TIMEOUT_PENALTY_POINTS = float(os.getenv("RESPONSE_TIMEOUT_PENALTY_POINTS", "5"))
RATING_MIN = float(os.getenv("RATING_MIN", "0"))
RATING_MAX = float(os.getenv("RATING_MAX", "100"))
DEFAULT_PROVIDER_RATING = float(os.getenv("DEFAULT_PROVIDER_RATING", "50"))

# Rate limiting for booking creation
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
BOOKING_RATE_LIMIT = int(os.getenv("BOOKING_RATE_LIMIT", "30"))
BOOKING_RATE_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", "60"))

# ARQ worker
ARQ_MAX_JOBS = int(os.getenv("ARQ_MAX_JOBS", "10"))
ARQ_JOB_TIMEOUT = int(os.getenv("ARQ_JOB_TIMEOUT", "300"))

# CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")
