from __future__ import annotations

import logging
import os
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]

# Ledger data changes during the business day, so snapshots live minutes, not hours.
MAX_CACHE_TTL_SECONDS = 900


def _int_env(name: str, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%s below minimum %s, clamping", name, value, minimum)
        value = minimum
    if maximum is not None and value > maximum:
        logger.warning("%s=%s above maximum %s, clamping", name, value, maximum)
        value = maximum
    return value


def analytics_cache_backend() -> str:
    backend = (os.getenv("ANALYTICS_CACHE_BACKEND") or "memory").strip().lower()
    if backend not in {"memory", "sql"}:
        logger.warning("Unknown ANALYTICS_CACHE_BACKEND=%r, falling back to memory", backend)
        return "memory"
    return backend


def analytics_cache_ttl_seconds() -> int:
    return _int_env("ANALYTICS_CACHE_TTL_SECONDS", 300, maximum=MAX_CACHE_TTL_SECONDS)


def analytics_cache_max_entries() -> int:
    return _int_env("ANALYTICS_CACHE_MAX_ENTRIES", 2000)


def ledger_query_row_limit() -> int:
    return _int_env("LEDGER_QUERY_ROW_LIMIT", 50000)


def ledger_query_workers() -> int:
    return _int_env("LEDGER_QUERY_WORKERS", 4, maximum=16)


def cors_origins() -> List[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = list(DEFAULT_CORS_ORIGINS)
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    if not any(origin in origins for origin in DEFAULT_CORS_ORIGINS):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins
