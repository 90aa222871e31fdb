import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./appointment_sync.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Fernet key for OAuth tokens at rest (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
# Derived from SECRET_KEY when unset
TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY")

# Bearer tokens issued by the host auth provider (HS256 shared secret)
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")
AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
OAUTH_SUCCESS_REDIRECT_URL = os.getenv(
    "OAUTH_SUCCESS_REDIRECT_URL", f"{FRONTEND_URL}/calendly/connected"
)
OAUTH_ERROR_REDIRECT_URL = os.getenv("OAUTH_ERROR_REDIRECT_URL", f"{FRONTEND_URL}/calendly/error")

# Public base URL of this API, used to build the webhook callback URL
PUBLIC_API_URL = os.getenv("PUBLIC_API_URL", "http://localhost:8000")

# Calendly OAuth Configuration
CALENDLY_CLIENT_ID = os.getenv("CALENDLY_CLIENT_ID")
CALENDLY_CLIENT_SECRET = os.getenv("CALENDLY_CLIENT_SECRET")
CALENDLY_REDIRECT_URI = os.getenv("CALENDLY_REDIRECT_URI")
CALENDLY_API_BASE_URL = os.getenv("CALENDLY_API_BASE_URL", "https://api.calendly.com")
CALENDLY_AUTH_BASE_URL = os.getenv("CALENDLY_AUTH_BASE_URL", "https://auth.calendly.com")
CALENDLY_REQUEST_TIMEOUT = float(os.getenv("CALENDLY_REQUEST_TIMEOUT", "15"))
# Connection-level retries only; HTTP error responses are never retried
CALENDLY_TRANSPORT_RETRIES = int(os.getenv("CALENDLY_TRANSPORT_RETRIES", "2"))

# Calendly webhook signing
CALENDLY_WEBHOOK_SIGNING_KEY = os.getenv("CALENDLY_WEBHOOK_SIGNING_KEY")
# Accept unsigned webhooks when no signing key is configured. Never enable in production.
CALENDLY_WEBHOOK_ALLOW_UNSIGNED = (
    os.getenv("CALENDLY_WEBHOOK_ALLOW_UNSIGNED", "false").lower() == "true"
)
CALENDLY_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("CALENDLY_WEBHOOK_TOLERANCE_SECONDS", "180"))

# Sync window and paging
SYNC_WINDOW_PAST_HOURS = int(os.getenv("SYNC_WINDOW_PAST_HOURS", "24"))
SYNC_WINDOW_FUTURE_DAYS = int(os.getenv("SYNC_WINDOW_FUTURE_DAYS", "90"))
SYNC_MAX_PAGES = int(os.getenv("SYNC_MAX_PAGES", "10"))
TOKEN_REFRESH_MARGIN_SECONDS = int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "60"))

# Webhook intake rate limit
WEBHOOK_RATE_LIMIT = int(os.getenv("WEBHOOK_RATE_LIMIT", "100"))
WEBHOOK_RATE_WINDOW = int(os.getenv("WEBHOOK_RATE_WINDOW", "60"))
