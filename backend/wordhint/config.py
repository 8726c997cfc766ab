"""Centralised runtime configuration loaded from environment variables."""

import os


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _list(name: str, default: str) -> list[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


# ---------------------------------------------------------------------------
# Answer resolution
# ---------------------------------------------------------------------------
WORDLE_ENDPOINTS: list[str] = _list(
    "WORDLE_ENDPOINTS",
    "https://wordle-api.vercel.app/api/today,"
    "https://www.nytimes.com/svc/wordle/v2/{date}.json",
)
WORDLE_API_KEY: str = os.getenv("WORDLE_API_KEY", "")

ENDPOINT_TIMEOUT_SECONDS: float = float(os.getenv("ENDPOINT_TIMEOUT_SECONDS", "5.0"))
RESOLVE_TIMEOUT_SECONDS: float = float(os.getenv("RESOLVE_TIMEOUT_SECONDS", "8.0"))
# 0 means "one attempt per configured endpoint"
RESOLVE_MAX_ATTEMPTS: int = int(os.getenv("RESOLVE_MAX_ATTEMPTS", "0"))

ANSWER_CACHE_TTL_HOURS: float = float(os.getenv("ANSWER_CACHE_TTL_HOURS", "24"))
FALLBACK_CACHE_TTL_MINUTES: float = float(os.getenv("FALLBACK_CACHE_TTL_MINUTES", "15"))
ANSWER_TIMEZONE: str = os.getenv("ANSWER_TIMEZONE", "UTC")
WORD_LENGTH: int = int(os.getenv("WORD_LENGTH", "5"))

# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------
STORAGE_PATH: str = os.getenv("STORAGE_PATH", "./data/articles")
MAX_ITEMS_PER_KEY: int = int(os.getenv("MAX_ITEMS_PER_KEY", "5"))
STORE_EXPIRY_HOURS: float = float(os.getenv("STORE_EXPIRY_HOURS", "24"))

UPSTASH_REDIS_REST_URL: str = os.getenv("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN: str = os.getenv("UPSTASH_REDIS_REST_TOKEN", "")
CF_ACCOUNT_ID: str = os.getenv("CF_ACCOUNT_ID", "")
CF_KV_NAMESPACE_ID: str = os.getenv("CF_KV_NAMESPACE_ID", "")
CF_API_TOKEN: str = os.getenv("CF_API_TOKEN", "")
# Key of the snapshot in whichever mirror is configured (Cloudflare KV wins over Upstash)
MIRROR_KEY: str = os.getenv("MIRROR_KEY", "wordle:articles:v1")

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------
SCHEDULER_ENABLED: bool = _bool("SCHEDULER_ENABLED", "true")
GENERATION_TIME: str = os.getenv("GENERATION_TIME", "00:01")
# Empty means the server's local timezone
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "")
CACHE_CLEANUP_INTERVAL_HOURS: float = float(os.getenv("CACHE_CLEANUP_INTERVAL_HOURS", "6"))
RESOLVER_REFRESH_INTERVAL_HOURS: float = float(
    os.getenv("RESOLVER_REFRESH_INTERVAL_HOURS", "1")
)
HEALTH_CHECK_INTERVAL_MINUTES: float = float(
    os.getenv("HEALTH_CHECK_INTERVAL_MINUTES", "5")
)

# ---------------------------------------------------------------------------
# Logging / admin
# ---------------------------------------------------------------------------
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE: str = os.getenv("LOG_FILE", "")
ADMIN_MODE: bool = _bool("ADMIN_MODE", "true")
