from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from firmledger.app.analytics.cache import (
    InMemoryAnalyticsCache,
    SqlAnalyticsCache,
    build_cache,
    build_cache_key,
    entity_cache_prefix,
)
from firmledger.app.analytics.core import EntityRef
from firmledger.app.analytics.errors import CacheUnavailableError


CLIENT = EntityRef(scope="client", key="C-100")


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def _key(**overrides):
    params = dict(
        date_from=date(2024, 1, 1),
        date_to=date(2024, 12, 31),
        resolution="low",
        granularity="day",
        metric="wip",
        categories=None,
        include_lockup=False,
    )
    params.update(overrides)
    return build_cache_key("graphs", CLIENT, **params)


# -------------------------
# Keys
# -------------------------

def test_cache_key_is_deterministic_and_category_order_insensitive():
    assert _key(categories=["TAX", "AUDIT"]) == _key(categories=["AUDIT", "TAX", "TAX"])


def test_cache_key_changes_with_every_output_parameter():
    base = _key()
    variants = [
        _key(date_from=date(2024, 1, 2)),
        _key(date_to=date(2024, 11, 30)),
        _key(resolution="high"),
        _key(granularity="month"),
        _key(metric="debtors"),
        _key(categories=["TAX"]),
        _key(include_lockup=True),
        build_cache_key("graphs", EntityRef(scope="group", key="C-100"), date_from=date(2024, 1, 1), date_to=date(2024, 12, 31)),
    ]
    assert all(variant != base for variant in variants)
    assert len(set(variants)) == len(variants)


def test_cache_key_starts_with_entity_prefix():
    assert _key().startswith(entity_cache_prefix(CLIENT))
    assert entity_cache_prefix(CLIENT) == "analytics:client:C-100:"


# -------------------------
# In-memory backend
# -------------------------

def test_memory_cache_expires_entries_after_ttl():
    clock = FakeClock(1000.0)
    cache = InMemoryAnalyticsCache(clock=clock)
    cache.set("k", "v", 300)

    clock.now = 1299.0
    assert cache.get("k") == "v"
    clock.now = 1300.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_memory_cache_evicts_least_recently_used():
    clock = FakeClock(0.0)
    cache = InMemoryAnalyticsCache(max_entries=2, clock=clock)
    cache.set("a", "1", 60)
    clock.now = 1.0
    cache.set("b", "2", 60)
    clock.now = 2.0
    assert cache.get("a") == "1"
    clock.now = 3.0
    cache.set("c", "3", 60)

    assert cache.get("b") is None
    assert cache.get("a") == "1"
    assert cache.get("c") == "3"


def test_memory_cache_invalidates_by_prefix():
    cache = InMemoryAnalyticsCache()
    prefix = entity_cache_prefix(CLIENT)
    cache.set(prefix + "graphs:x", "1", 60)
    cache.set(prefix + "overview:y", "2", 60)
    cache.set("analytics:client:C-1000:graphs:x", "3", 60)

    assert cache.invalidate(prefix) == 2
    assert cache.get("analytics:client:C-1000:graphs:x") == "3"


def test_memory_cache_tracks_hits_and_misses():
    cache = InMemoryAnalyticsCache()
    cache.get("missing")
    cache.set("k", "v", 60)
    cache.get("k")

    assert (cache.hits, cache.misses) == (1, 1)


# -------------------------
# SQL backend
# -------------------------

def test_sql_cache_round_trip_and_expiry(sqlite_session):
    from firmledger.app.db import SessionLocal

    clock = FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))
    cache = SqlAnalyticsCache(SessionLocal, clock=clock)

    cache.set("analytics:client:C-100:graphs:a", '{"x": 1}', 300)
    assert cache.get("analytics:client:C-100:graphs:a") == '{"x": 1}'

    clock.now = clock.now + timedelta(seconds=301)
    assert cache.get("analytics:client:C-100:graphs:a") is None


def test_sql_cache_overwrites_existing_key(sqlite_session):
    from firmledger.app.db import SessionLocal

    cache = SqlAnalyticsCache(SessionLocal)
    cache.set("analytics:client:C-100:graphs:a", "old", 300)
    cache.set("analytics:client:C-100:graphs:a", "new", 300)

    assert cache.get("analytics:client:C-100:graphs:a") == "new"


def test_sql_cache_invalidates_by_prefix_literally(sqlite_session):
    from firmledger.app.db import SessionLocal

    cache = SqlAnalyticsCache(SessionLocal)
    cache.set("analytics:client:C_1:graphs:a", "1", 300)
    cache.set("analytics:client:CX1:graphs:a", "2", 300)

    removed = cache.invalidate(entity_cache_prefix(EntityRef(scope="client", key="C_1")))

    assert removed == 1
    assert cache.get("analytics:client:CX1:graphs:a") == "2"


def test_sql_cache_failures_raise_cache_unavailable():
    def broken_session():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    cache = SqlAnalyticsCache(broken_session)

    with pytest.raises(CacheUnavailableError):
        cache.get("k")
    with pytest.raises(CacheUnavailableError):
        cache.set("k", "v", 60)
    with pytest.raises(CacheUnavailableError):
        cache.invalidate("k")


def test_build_cache_selects_backend():
    assert isinstance(build_cache("memory"), InMemoryAnalyticsCache)
    assert isinstance(build_cache("sql", session_factory=object), SqlAnalyticsCache)
    with pytest.raises(ValueError):
        build_cache("sql")
