import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class ConfigurationError(Exception):
    """Raised when required settings are missing at startup"""

    pass


# "development" | "production" | "test"
APP_ENV = os.getenv("APP_ENV", "development").lower()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookinggen.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))

# Frontend base URL for PayPal return/cancel redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5000")

# CORS - comma separated
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:5173").split(",")
    if origin.strip()
]

# PayPal Configuration
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
# "sandbox" or "live" - default to sandbox for safety
PAYPAL_ENVIRONMENT = os.getenv("PAYPAL_ENVIRONMENT", "sandbox")
PAYPAL_WEBHOOK_ID = os.getenv("PAYPAL_WEBHOOK_ID", "")
# Only honoured when APP_ENV=development
PAYPAL_ALLOW_UNVERIFIED_WEBHOOKS = (
    os.getenv("PAYPAL_ALLOW_UNVERIFIED_WEBHOOKS", "false").lower() == "true"
)
# In-process expiry of the Pro plan id; 0 keeps it until restart (Redis copy still expires)
PAYPAL_PLAN_CACHE_TTL_SECONDS = int(os.getenv("PAYPAL_PLAN_CACHE_TTL_SECONDS", "0"))

# Supabase Auth - access tokens are HS256 JWTs signed with the project JWT secret
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Optional; shared plan cache and rate limiting fail open without it
REDIS_URL = os.getenv("REDIS_URL")

# check-activate is polled from the browser; keep it bounded per user
CHECK_ACTIVATE_RATE_LIMIT = int(os.getenv("CHECK_ACTIVATE_RATE_LIMIT", "30"))
CHECK_ACTIVATE_RATE_WINDOW_SECONDS = int(os.getenv("CHECK_ACTIVATE_RATE_WINDOW_SECONDS", "60"))


def validate_paypal_config() -> None:
    """Fail fast when PayPal credentials are missing"""
    missing = [
        name
        for name, value in (
            ("PAYPAL_CLIENT_ID", PAYPAL_CLIENT_ID),
            ("PAYPAL_CLIENT_SECRET", PAYPAL_CLIENT_SECRET),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing {', '.join(missing)}")
