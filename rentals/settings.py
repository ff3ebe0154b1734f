import os

DB_URL = os.environ.get("DB_URL", "sqlite+aiosqlite:///./rentals.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
notifications_ms_url = os.environ.get(
    "NOTIFICATIONS_MS_URL", "http://localhost:8004"
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.environ.get("LOG_JSON", "false").lower() == "true"

OCCUPIED_CACHE_TTL = int(os.environ.get("OCCUPIED_CACHE_TTL", "60"))
# Month calendars carry prices, which change outside this service
CALENDAR_CACHE_TTL = int(os.environ.get("CALENDAR_CACHE_TTL", "300"))
BOOKING_NUMBER_PREFIX = os.environ.get("BOOKING_NUMBER_PREFIX", "BK")
