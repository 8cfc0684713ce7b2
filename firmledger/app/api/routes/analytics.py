# firmledger/app/api/routes/analytics.py
from __future__ import annotations

from datetime import date
import logging
from typing import Callable, Dict, List, Literal, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from firmledger.app.analytics.bucketing import add_months, month_start
from firmledger.app.analytics.core import EntityRef
from firmledger.app.analytics.downsample import DEFAULT_RESOLUTION
from firmledger.app.analytics.errors import DataSourceError, InvalidRangeError
from firmledger.app.api.deps import Caller, get_caller, get_graph_service
from firmledger.app.domain.contracts import GraphResponse, OverviewResponse
from firmledger.app.services.graph_service import GraphService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analytics"])

ScopePath = Literal["clients", "groups", "tasks"]

_SCOPES: Dict[str, str] = {
    "clients": "client",
    "groups": "group",
    "tasks": "task",
}

T = TypeVar("T")


class CacheInvalidateOut(BaseModel):
    invalidated: int


# -------------------------
# Helpers
# -------------------------

def _entity(scope: str, entity_key: str) -> EntityRef:
    try:
        return EntityRef(scope=_SCOPES[scope], key=entity_key)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=404, detail="unknown entity") from exc


def _default_range(start_date: Optional[str], end_date: Optional[str]) -> tuple[str | date, str | date]:
    """Missing bounds default to the trailing twelve months ending today."""
    today = date.today()
    return (
        start_date if start_date is not None else add_months(month_start(today), -11),
        end_date if end_date is not None else today,
    )


def _service_lines(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    items = [item.strip() for item in raw.split(",")]
    return [item for item in items if item] or None


def _call(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except InvalidRangeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DataSourceError as exc:
        raise HTTPException(
            status_code=503,
            detail={"message": "ledger data source unavailable", "retryable": exc.retryable},
        ) from exc


# -------------------------
# Endpoints
# -------------------------

@router.get("/{scope}/{entity_key}/analytics/graphs", response_model=GraphResponse)
def analytics_graphs(
    scope: ScopePath,
    entity_key: str,
    resolution: Literal["high", "standard", "low"] = Query(DEFAULT_RESOLUTION),
    start_date: Optional[str] = Query(None, description="Inclusive start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="Inclusive end date (YYYY-MM-DD)"),
    metric: Literal["wip", "debtors"] = Query("wip"),
    granularity: Literal["day", "month"] = Query("day"),
    service_lines: Optional[str] = Query(None, description="Comma-separated master service line codes"),
    include_lockup: bool = Query(False),
    caller: Caller = Depends(get_caller),
    service: GraphService = Depends(get_graph_service),
):
    entity = _entity(scope, entity_key)
    date_from, date_to = _default_range(start_date, end_date)
    logger.info(
        "Analytics graphs requested: caller=%s entity=%s metric=%s resolution=%s",
        caller.label,
        entity.token,
        metric,
        resolution,
    )
    return _call(
        lambda: service.get_series(
            entity,
            date_from,
            date_to,
            resolution,
            _service_lines(service_lines),
            metric=metric,
            granularity=granularity,
            include_lockup=include_lockup,
        )
    )


@router.get("/{scope}/{entity_key}/analytics/overview", response_model=OverviewResponse)
def analytics_overview(
    scope: ScopePath,
    entity_key: str,
    start_date: Optional[str] = Query(None, description="Inclusive start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="Inclusive end date (YYYY-MM-DD)"),
    service_lines: Optional[str] = Query(None, description="Comma-separated master service line codes"),
    caller: Caller = Depends(get_caller),
    service: GraphService = Depends(get_graph_service),
):
    entity = _entity(scope, entity_key)
    date_from, date_to = _default_range(start_date, end_date)
    logger.info("Analytics overview requested: caller=%s entity=%s", caller.label, entity.token)
    return _call(lambda: service.get_overview(entity, date_from, date_to, _service_lines(service_lines)))


@router.post("/{scope}/{entity_key}/analytics/cache/invalidate", response_model=CacheInvalidateOut)
def analytics_cache_invalidate(
    scope: ScopePath,
    entity_key: str,
    caller: Caller = Depends(get_caller),
    service: GraphService = Depends(get_graph_service),
):
    entity = _entity(scope, entity_key)
    removed = service.invalidate(entity)
    logger.info("Analytics cache invalidation requested: caller=%s entity=%s removed=%s", caller.label, entity.token, removed)
    return CacheInvalidateOut(invalidated=removed)
