import os
from dataclasses import dataclass

# Matching thresholds
MIN_BASE_CONFIDENCE = 0.1   # unique matches / query length below this is noise
HEAVY_DUPLICATE_RATIO = 2.0
HEAVY_DUPLICATE_PENALTY = 0.8
MEDIUM_DUPLICATE_RATIO = 1.5
MEDIUM_DUPLICATE_PENALTY = 0.9

# Text index
MIN_TITLE_TOKEN_LENGTH = 3
TEXT_FIELDS = ("title", "artist", "genre")

# Local Postgres used when DATABASE_URL is not set
LOCAL_DB = {
    "dbname": "audioprint",
    "user": "postgres",
    "host": "localhost",
}

STORE_BACKENDS = ("postgres", "memory")


@dataclass(frozen=True)
class Settings:
    database_url: str | None = None
    store: str = "postgres"
    pool_min: int = 1
    pool_max: int = 8
    max_workers: int = 8
    lookup_batch_size: int = 500
    posting_batch_size: int = 1000
    log_level: str = "INFO"


def _int_env(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def load_settings() -> Settings:
    """Reads settings from the environment (Render and friends set DATABASE_URL)."""
    store = os.getenv("AUDIOPRINT_STORE", "postgres").strip().lower()
    if store not in STORE_BACKENDS:
        raise ValueError(f"AUDIOPRINT_STORE must be one of {STORE_BACKENDS}, got {store!r}")

    pool_min = _int_env("AUDIOPRINT_POOL_MIN", 1)
    pool_max = _int_env("AUDIOPRINT_POOL_MAX", 8)
    if pool_max < pool_min:
        raise ValueError("AUDIOPRINT_POOL_MAX must not be smaller than AUDIOPRINT_POOL_MIN")

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        store=store,
        pool_min=pool_min,
        pool_max=pool_max,
        max_workers=_int_env("AUDIOPRINT_MAX_WORKERS", 8),
        lookup_batch_size=_int_env("AUDIOPRINT_LOOKUP_BATCH", 500),
        posting_batch_size=_int_env("AUDIOPRINT_POSTING_BATCH", 1000),
        log_level=os.getenv("AUDIOPRINT_LOG_LEVEL", "INFO").upper(),
    )
