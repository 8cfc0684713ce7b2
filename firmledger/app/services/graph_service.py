from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from firmledger.app.analytics.balances import (
    accumulate,
    collections,
    formula_for,
    net_billings,
    net_revenue,
    summarize,
)
from firmledger.app.analytics.bucketing import bucket_rows
from firmledger.app.analytics.cache import (
    AnalyticsCache,
    build_cache_key,
    entity_cache_prefix,
)
from firmledger.app.analytics.core import (
    MOVEMENT_KINDS,
    UNCATEGORIZED,
    EntityRef,
    Granularity,
    MetricFamily,
    PeriodMetrics,
    Resolution,
    Summary,
    TransactionRow,
    ZERO,
    as_date,
)
from firmledger.app.analytics.downsample import DEFAULT_RESOLUTION, downsample, target_points
from firmledger.app.analytics.errors import CacheUnavailableError, InvalidRangeError
from firmledger.app.analytics.lockup import LockupPoint, lockup_series, lookback_start
from firmledger.app.domain.contracts import (
    CategoryInfo,
    GraphResponse,
    LockupPointOut,
    MetricBucket,
    OverviewMonth,
    OverviewResponse,
    SeriesOut,
    SeriesSummary,
)
from firmledger.app.services.ledger_query_service import LedgerQueryAdapter

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

SnapshotT = TypeVar("SnapshotT", bound=BaseModel)

_REVENUE_FNS: Dict[str, Callable[[PeriodMetrics], Decimal]] = {
    "wip": net_revenue,
    "debtors": net_billings,
}


def resolve_date_range(start: Any, end: Any) -> Tuple[date, date]:
    """
    Parse both bounds. A reversed range is returned as-is (it yields an empty
    result downstream); only missing or unparsable bounds are errors.
    """
    start_date = _parse_bound(start, "start")
    end_date = _parse_bound(end, "end")
    return start_date, end_date


def _parse_bound(value: Any, label: str) -> date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidRangeError(f"{label} date is required")
    if not isinstance(value, (date, datetime, str)):
        raise InvalidRangeError(f"{label} date has unsupported type {type(value).__name__}")
    parsed = as_date(value)
    if parsed is None:
        raise InvalidRangeError(f"{label} date is not a valid date: {value!r}")
    return parsed


def _f(value: Decimal) -> float:
    return float(value)


def _bucket_out(bucket: PeriodMetrics) -> MetricBucket:
    return MetricBucket(
        date=bucket.period,
        balance=_f(bucket.balance),
        **{kind.value: _f(bucket.amount(kind)) for kind in MOVEMENT_KINDS},
    )


def _summary_out(summary: Summary) -> SeriesSummary:
    return SeriesSummary(
        opening_balance=_f(summary.opening_balance),
        current_balance=_f(summary.current_balance),
        **{f"total_{kind.value}": _f(summary.total(kind)) for kind in MOVEMENT_KINDS},
    )


def _lockup_out(points: Sequence[LockupPoint]) -> List[LockupPointOut]:
    return [
        LockupPointOut(
            month=point.month,
            balance=_f(point.balance),
            trailing_sum=_f(point.trailing_sum),
            lockup_days=_f(point.days),
        )
        for point in points
    ]


def _month_end_balances(buckets: Sequence[PeriodMetrics]) -> List[Tuple[date, Decimal]]:
    """(month start, last balance in that month) for an accumulated series of any granularity."""
    out: Dict[date, Decimal] = {}
    for bucket in buckets:
        out[bucket.period.replace(day=1)] = bucket.balance
    return sorted(out.items())


class GraphService:
    """
    Builds chart-ready WIP / debtors series for an entity.

    The adapter and cache are injected; their lifecycles belong to the host
    process. The service itself holds no per-request state.
    """

    def __init__(
        self,
        adapter: LedgerQueryAdapter,
        cache: Optional[AnalyticsCache] = None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_workers: int = 4,
    ):
        self.adapter = adapter
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.max_workers = max(1, max_workers)

    # -------------------------
    # Public operations
    # -------------------------

    def get_series(
        self,
        entity: EntityRef,
        date_from: Any,
        date_to: Any,
        resolution: Resolution = DEFAULT_RESOLUTION,
        categories: Optional[Sequence[str]] = None,
        *,
        metric: MetricFamily = "wip",
        granularity: Granularity = "day",
        include_lockup: bool = False,
    ) -> GraphResponse:
        start_date, end_date = resolve_date_range(date_from, date_to)
        target = target_points(resolution)
        formula = formula_for(metric)
        if granularity not in ("day", "month"):
            raise ValueError(f"unknown granularity: {granularity!r}")
        category_filter = _normalize_categories(categories)

        key = build_cache_key(
            "graphs",
            entity,
            date_from=start_date,
            date_to=end_date,
            resolution=resolution,
            granularity=granularity,
            metric=metric,
            categories=category_filter,
            include_lockup=include_lockup,
        )
        cached = self._cached_snapshot(key, GraphResponse)
        if cached is not None:
            logger.debug("Analytics graphs served from cache: key=%s", key)
            return cached

        if start_date > end_date:
            logger.debug("Empty date range for %s: %s > %s", entity.token, start_date, end_date)
            return self._empty_graph(entity, start_date, end_date, resolution, metric, granularity)

        started = time.monotonic()
        fetch_from = lookback_start(start_date) if include_lockup else start_date
        fetched = self._fetch_concurrently(
            {
                "rows": lambda: self.adapter.fetch_rows(
                    entity, fetch_from, end_date, category_filter, family=metric
                ),
                "opening": lambda: self.adapter.fetch_opening_balance(
                    entity, start_date, category_filter, family=metric
                ),
                "opening_by_category": lambda: self.adapter.fetch_opening_balances_by_category(
                    entity, start_date, category_filter, family=metric
                ),
            }
        )
        rows: List[TransactionRow] = list(fetched["rows"])
        opening: Decimal = fetched["opening"]
        opening_by_category: Dict[str, Decimal] = fetched["opening_by_category"] or {}

        # a category with an opening balance keeps its series even without rows in range
        seeded = [category for category, amount in opening_by_category.items() if amount != 0]
        display = bucket_rows(rows, granularity, start_date, end_date, categories=seeded)
        if display.unclassified_count:
            logger.warning(
                "Unclassified ledger rows for %s (%s): %s rows counted separately",
                entity.token,
                metric,
                display.unclassified_count,
            )

        monthly_raw = bucket_rows(rows, "month", fetch_from, end_date) if include_lockup else None
        revenue_fn = _REVENUE_FNS[metric]

        def build(buckets: List[PeriodMetrics], opening_balance: Decimal, category: Optional[str]) -> SeriesOut:
            accumulated = accumulate(buckets, opening_balance, formula)
            summary = summarize(accumulated, opening_balance)
            lockup = None
            if monthly_raw is not None:
                raw = monthly_raw.overall if category is None else monthly_raw.by_category.get(category, [])
                lockup = _lockup_out(lockup_series(_month_end_balances(accumulated), raw, revenue_fn))
            return SeriesOut(
                series=[_bucket_out(bucket) for bucket in downsample(accumulated, target)],
                summary=_summary_out(summary),
                lockup=lockup,
            )

        overall = build(display.overall, opening, None)
        by_category = {
            category: build(buckets, opening_by_category.get(category, ZERO), category)
            for category, buckets in display.by_category.items()
        }

        response = GraphResponse(
            entity_scope=entity.scope,
            entity_key=entity.key,
            metric=metric,
            granularity=granularity,
            resolution=resolution,
            start_date=start_date,
            end_date=end_date,
            overall=overall,
            by_category=by_category,
            categories=self._category_info(display.categories),
        )

        self._cache_set(key, response.model_dump_json())
        logger.info(
            "Analytics graphs generated: entity=%s metric=%s granularity=%s resolution=%s rows=%s range=%s..%s duration_ms=%s",
            entity.token,
            metric,
            granularity,
            resolution,
            display.row_count,
            start_date,
            end_date,
            int((time.monotonic() - started) * 1000),
        )
        return response

    def get_overview(
        self,
        entity: EntityRef,
        date_from: Any,
        date_to: Any,
        categories: Optional[Sequence[str]] = None,
    ) -> OverviewResponse:
        """
        Monthly WIP and debtors metrics with lockup days, as shown on a
        practice overview dashboard.
        """
        start_date, end_date = resolve_date_range(date_from, date_to)
        category_filter = _normalize_categories(categories)

        key = build_cache_key(
            "overview",
            entity,
            date_from=start_date,
            date_to=end_date,
            granularity="month",
            categories=category_filter,
            include_lockup=True,
        )
        cached = self._cached_snapshot(key, OverviewResponse)
        if cached is not None:
            logger.debug("Analytics overview served from cache: key=%s", key)
            return cached

        if start_date > end_date:
            return OverviewResponse(
                entity_scope=entity.scope,
                entity_key=entity.key,
                start_date=start_date,
                end_date=end_date,
                months=[],
            )

        started = time.monotonic()
        fetch_from = lookback_start(start_date)
        fetched = self._fetch_concurrently(
            {
                "wip_rows": lambda: self.adapter.fetch_rows(
                    entity, fetch_from, end_date, category_filter, family="wip"
                ),
                "drs_rows": lambda: self.adapter.fetch_rows(
                    entity, fetch_from, end_date, category_filter, family="debtors"
                ),
                "wip_opening": lambda: self.adapter.fetch_opening_balance(
                    entity, start_date, category_filter, family="wip"
                ),
                "drs_opening": lambda: self.adapter.fetch_opening_balance(
                    entity, start_date, category_filter, family="debtors"
                ),
            }
        )

        families: Dict[str, Tuple[List[PeriodMetrics], List[LockupPoint]]] = {}
        for family, rows_key, opening_key in (("wip", "wip_rows", "wip_opening"), ("debtors", "drs_rows", "drs_opening")):
            rows = list(fetched[rows_key])
            display = bucket_rows(rows, "month", start_date, end_date).overall
            accumulated = accumulate(display, fetched[opening_key], formula_for(family))
            raw = bucket_rows(rows, "month", fetch_from, end_date).overall
            points = lockup_series(
                [(bucket.period, bucket.balance) for bucket in accumulated],
                raw,
                _REVENUE_FNS[family],
            )
            families[family] = (accumulated, points)

        wip_buckets, wip_lockup = families["wip"]
        drs_buckets, drs_lockup = families["debtors"]
        months = [
            OverviewMonth(
                month=wip.period,
                net_revenue=_f(net_revenue(wip)),
                billings=_f(wip.billing),
                collections=_f(collections(drs)),
                wip_balance=_f(wip.balance),
                debtors_balance=_f(drs.balance),
                trailing12_revenue=_f(wip_point.trailing_sum),
                trailing12_billings=_f(drs_point.trailing_sum),
                wip_lockup_days=_f(wip_point.days),
                debtors_lockup_days=_f(drs_point.days),
            )
            for wip, drs, wip_point, drs_point in zip(wip_buckets, drs_buckets, wip_lockup, drs_lockup)
        ]

        response = OverviewResponse(
            entity_scope=entity.scope,
            entity_key=entity.key,
            start_date=start_date,
            end_date=end_date,
            months=months,
        )
        self._cache_set(key, response.model_dump_json())
        logger.info(
            "Analytics overview generated: entity=%s months=%s duration_ms=%s",
            entity.token,
            len(months),
            int((time.monotonic() - started) * 1000),
        )
        return response

    def invalidate(self, entity: EntityRef) -> int:
        """Drop every cached snapshot for an entity after its transactions change."""
        if self.cache is None:
            return 0
        prefix = entity_cache_prefix(entity)
        try:
            removed = self.cache.invalidate(prefix)
        except CacheUnavailableError:
            logger.warning("Analytics cache unavailable; could not invalidate %s", prefix, exc_info=True)
            return 0
        logger.info("Analytics cache invalidated: entity=%s removed=%s", entity.token, removed)
        return removed

    # -------------------------
    # Internals
    # -------------------------

    def _fetch_concurrently(self, calls: Dict[str, Callable[[], Any]]) -> Dict[str, Any]:
        """
        Run independent adapter calls on a thread pool and wait for all of
        them. The first failure is re-raised; nothing partial is returned.
        """
        workers = min(self.max_workers, len(calls))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ledger-query") as pool:
            futures = {name: pool.submit(call) for name, call in calls.items()}
            return {name: future.result() for name, future in futures.items()}

    def _cache_get(self, key: str) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except CacheUnavailableError:
            logger.warning("Analytics cache unavailable on read; computing uncached: key=%s", key, exc_info=True)
            return None

    def _cached_snapshot(self, key: str, model: Type[SnapshotT]) -> Optional[SnapshotT]:
        """A snapshot that no longer parses (e.g. written by an older release) is a miss."""
        cached = self._cache_get(key)
        if cached is None:
            return None
        try:
            return model.model_validate_json(cached)
        except ValidationError:
            logger.warning("Discarding unreadable analytics cache entry: key=%s", key, exc_info=True)
            return None

    def _cache_set(self, key: str, value: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, value, self.ttl_seconds)
        except CacheUnavailableError:
            logger.warning("Analytics cache unavailable on write; response not cached: key=%s", key, exc_info=True)

    def _category_info(self, codes: Sequence[str]) -> List[CategoryInfo]:
        labels = self.adapter.category_labels(codes) if codes else {}
        out = []
        for code in codes:
            if code == UNCATEGORIZED:
                label = "Uncategorized"
            else:
                label = labels.get(code) or code
            out.append(CategoryInfo(key=code, label=label))
        return out

    def _empty_graph(
        self,
        entity: EntityRef,
        start_date: date,
        end_date: date,
        resolution: str,
        metric: str,
        granularity: str,
    ) -> GraphResponse:
        return GraphResponse(
            entity_scope=entity.scope,
            entity_key=entity.key,
            metric=metric,
            granularity=granularity,
            resolution=resolution,
            start_date=start_date,
            end_date=end_date,
            overall=SeriesOut(series=[], summary=SeriesSummary()),
            by_category={},
            categories=[],
        )


def _normalize_categories(categories: Optional[Sequence[str]]) -> Optional[List[str]]:
    if not categories:
        return None
    cleaned = sorted({c.strip() for c in categories if c and c.strip()})
    return cleaned or None
