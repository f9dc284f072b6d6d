import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DB_POOL_SIZE = _int_env("DB_POOL_SIZE", 20)
DB_MAX_OVERFLOW = _int_env("DB_MAX_OVERFLOW", 30)

# JWT Configuration (tokens are issued by the external auth service)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "your-secret-key-here")
JWT_ALGORITHM = "HS256"
ADMIN_ROLES = ("admin", "super_admin")

# Session reaper
REAPER_ENABLED = _bool_env("REAPER_ENABLED", True)
REAPER_INTERVAL_SECONDS = _int_env("REAPER_INTERVAL_SECONDS", 10 * 60)
SESSION_IDLE_MINUTES = _int_env("SESSION_IDLE_MINUTES", 30)

# Identity resolution. Unset means the IP+UA fallback looks back without limit.
IDENTITY_LOOKBACK_DAYS = _int_env("IDENTITY_LOOKBACK_DAYS", None)

# Reporting
DEFAULT_PERIOD = "30d"
EXPORT_ROW_LIMIT = _int_env("EXPORT_ROW_LIMIT", 50000)
TOP_LOCATIONS_LIMIT = _int_env("TOP_LOCATIONS_LIMIT", 10)
MAX_PAGE_SIZE = 100

# Enrichment / classification
GEOIP_DB_PATH = os.getenv("GEOIP_DB_PATH", "./GeoLite2-City.mmdb")
SITE_HOST = os.getenv("SITE_HOST")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
