"""
Configuration for the cafe pricing backend.

Values are read from environment variables, with backend/.env loaded first
so local development does not need exported variables.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Load .env from backend directory
BACKEND_DIR = Path(__file__).parent.parent
_env_path = BACKEND_DIR / ".env"
load_dotenv(_env_path)


def _int_env(name: str, default: int) -> int:
    """Read an integer environment variable, falling back on bad values."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# =============================================================================
# Database
# =============================================================================

def get_database_url() -> Optional[str]:
    """Get the PostgreSQL database URL from environment variables."""
    return os.getenv("DATABASE_URL")


# =============================================================================
# Price sources
# =============================================================================

PRICE_FETCH_TIMEOUT = _int_env("PRICE_FETCH_TIMEOUT", 30)        # seconds per source call
PRICE_FETCH_MAX_WORKERS = _int_env("PRICE_FETCH_MAX_WORKERS", 4)  # bulk fetch pool size

AGMARKNET_API_KEY = os.getenv("AGMARKNET_API_KEY")
AGMARKNET_RESOURCE_URL = os.getenv(
    "AGMARKNET_RESOURCE_URL",
    "https://api.data.gov.in/resource/9ef84268-d588-465a-a308-a864a43d0070",
)
BIGBASKET_SEARCH_URL = os.getenv("BIGBASKET_SEARCH_URL", "https://www.bigbasket.com/ps/")

# =============================================================================
# HTTP
# =============================================================================

# Comma separated; the Angular dev server by default
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ALLOWED_ORIGINS", "http://localhost:4200,http://127.0.0.1:4200"
    ).split(",")
    if origin.strip()
]

# =============================================================================
# Auth
# =============================================================================

# token=user_id:username:role, comma separated
ADMIN_API_TOKENS = os.getenv("ADMIN_API_TOKENS", "")

# =============================================================================
# Logging & scheduling
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(os.getenv("LOG_DIR", str(BACKEND_DIR / "output" / "logs")))

SCHEDULER_INTERVAL_MINUTES = _int_env("SCHEDULER_INTERVAL_MINUTES", 60)
