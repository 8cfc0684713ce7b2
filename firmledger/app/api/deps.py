# firmledger/app/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging

from fastapi import HTTPException, Request

from firmledger.app.analytics.cache import build_cache
from firmledger.app.api import config
from firmledger.app.db import SessionLocal
from firmledger.app.services.graph_service import GraphService
from firmledger.app.services.ledger_query_service import SqlLedgerAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    email: str | None = None
    user_id: str | None = None

    @property
    def label(self) -> str:
        return self.email or self.user_id or "unknown"


def get_caller(request: Request) -> Caller:
    """
    Dev/pilot identity dependency.

    Reads identity from headers:
      - X-User-Email (preferred)
      - X-User-Id    (fallback)

    Permissions are enforced upstream; the identity is only recorded in logs.
    """
    email = request.headers.get("X-User-Email")
    user_id = request.headers.get("X-User-Id")
    if not email and not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Email or X-User-Id header")

    if email:
        normalized = email.strip().lower()
        if not normalized:
            raise HTTPException(status_code=401, detail="Invalid X-User-Email header")
        return Caller(email=normalized)

    normalized_id = user_id.strip()
    if not normalized_id:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return Caller(user_id=normalized_id)


@lru_cache(maxsize=1)
def get_graph_service() -> GraphService:
    """One GraphService per process; its cache outlives requests."""
    backend = config.analytics_cache_backend()
    ttl = config.analytics_cache_ttl_seconds()
    cache = build_cache(
        backend,
        session_factory=SessionLocal,
        max_entries=config.analytics_cache_max_entries(),
        default_ttl=ttl,
    )
    adapter = SqlLedgerAdapter(SessionLocal, row_limit=config.ledger_query_row_limit())
    logger.info("Analytics graph service ready: cache_backend=%s ttl_seconds=%s", backend, ttl)
    return GraphService(
        adapter,
        cache,
        ttl_seconds=ttl,
        max_workers=config.ledger_query_workers(),
    )
