"""
Shared snapshot cache for analytics responses.

Backends store serialized responses (JSON strings) under deterministic keys.
Writes are idempotent, so two requests computing the same cold key and both
writing is harmless; no lock is taken around population.

- InMemoryAnalyticsCache: per-process, TTL + LRU, thread-safe.
- SqlAnalyticsCache: a table shared by every process on the same database.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from firmledger.app.analytics.core import EntityRef
from firmledger.app.analytics.errors import CacheUnavailableError
from firmledger.app.models import AnalyticsCacheEntry

logger = logging.getLogger(__name__)

CACHE_PREFIX = "analytics"


class AnalyticsCache(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def invalidate(self, prefix: str) -> int:
        ...


# -------------------------
# Keys
# -------------------------

def entity_cache_prefix(entity: EntityRef) -> str:
    return f"{CACHE_PREFIX}:{entity.scope}:{entity.key}:"


def build_cache_key(
    kind: str,
    entity: EntityRef,
    *,
    date_from: date,
    date_to: date,
    resolution: str = "-",
    granularity: str = "-",
    metric: str = "-",
    categories: Optional[Iterable[str]] = None,
    include_lockup: bool = False,
) -> str:
    """
    Every parameter that changes the output is part of the key.
    Categories are de-duplicated and sorted so filter order does not matter.
    """
    cats = ",".join(sorted({c.strip() for c in categories or [] if c and c.strip()})) or "*"
    return ":".join(
        [
            entity_cache_prefix(entity) + kind,
            metric,
            granularity,
            resolution,
            cats,
            date_from.isoformat(),
            date_to.isoformat(),
            "lockup" if include_lockup else "plain",
        ]
    )


# -------------------------
# In-memory backend
# -------------------------

class InMemoryAnalyticsCache:
    """Thread-safe TTL cache with LRU eviction and prefix invalidation."""

    def __init__(self, max_entries: int = 2000, default_ttl: int = 300, clock: Callable[[], float] = time.monotonic):
        # key -> (value, expires_at, last_access)
        self._entries: Dict[str, Tuple[str, float, float]] = {}
        self._lock = threading.RLock()
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, expires_at, _ = entry
            now = self._clock()
            if now >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries[key] = (value, expires_at, now)
            self.hits += 1
            return value

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self._clock()
            self._entries[key] = (value, now + ttl, now)
            while len(self._entries) > self._max_entries:
                self._evict_lru()

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_lru(self) -> None:
        # caller holds the lock
        lru_key = min(self._entries, key=lambda k: self._entries[k][2])
        del self._entries[lru_key]
        logger.debug("Evicted LRU analytics cache key: %s", lru_key)


# -------------------------
# SQL backend
# -------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlAnalyticsCache:
    """
    Cache table shared across processes. Every database failure is reported as
    CacheUnavailableError so callers can degrade to computing uncached.
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = _utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        now = self._clock()
        try:
            with self._session_factory() as db:
                value = db.execute(
                    select(AnalyticsCacheEntry.value_json).where(
                        AnalyticsCacheEntry.key == key,
                        AnalyticsCacheEntry.expires_at > now,
                    )
                ).scalar_one_or_none()
                if value is None:
                    # prune the expired row, if any, so the table does not grow unbounded
                    db.execute(
                        delete(AnalyticsCacheEntry).where(
                            AnalyticsCacheEntry.key == key,
                            AnalyticsCacheEntry.expires_at <= now,
                        )
                    )
                    db.commit()
                return value
        except SQLAlchemyError as exc:
            raise CacheUnavailableError(f"cache read failed for {key}") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        try:
            with self._session_factory() as db:
                db.execute(delete(AnalyticsCacheEntry).where(AnalyticsCacheEntry.key == key))
                db.add(
                    AnalyticsCacheEntry(
                        key=key,
                        value_json=value,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                        created_at=now,
                    )
                )
                db.commit()
        except SQLAlchemyError as exc:
            raise CacheUnavailableError(f"cache write failed for {key}") from exc

    def invalidate(self, prefix: str) -> int:
        try:
            with self._session_factory() as db:
                result = db.execute(
                    delete(AnalyticsCacheEntry).where(AnalyticsCacheEntry.key.startswith(prefix, autoescape=True))
                )
                db.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise CacheUnavailableError(f"cache invalidation failed for {prefix}") from exc


def build_cache(backend: str, *, session_factory: Any = None, max_entries: int = 2000, default_ttl: int = 300) -> AnalyticsCache:
    if backend == "sql":
        if session_factory is None:
            raise ValueError("sql cache backend requires a session factory")
        return SqlAnalyticsCache(session_factory)
    return InMemoryAnalyticsCache(max_entries=max_entries, default_ttl=default_ttl)
