from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from firmledger.app.analytics.core import (
    Granularity,
    PeriodMetrics,
    TransactionKind,
    TransactionRow,
    ZERO,
    period_metrics,
)


@dataclass(frozen=True)
class BucketedRows:
    overall: List[PeriodMetrics]
    by_category: Dict[str, List[PeriodMetrics]] = field(default_factory=dict)
    row_count: int = 0
    excluded_count: int = 0
    unclassified_count: int = 0

    @property
    def categories(self) -> List[str]:
        return sorted(self.by_category.keys())


def month_start(day: date) -> date:
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """First day of the month `months` away from `day`'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_index(day: date) -> int:
    return day.year * 12 + (day.month - 1)


def bucket_start(day: date, granularity: Granularity, date_from: date) -> date:
    if granularity == "month":
        # a month bucket never starts before the query's start date
        return max(month_start(day), date_from)
    return day


def period_starts(date_from: date, date_to: date, granularity: Granularity) -> List[date]:
    if date_from > date_to:
        return []
    if granularity == "month":
        starts = [date_from]
        current = add_months(date_from, 1)
        while current <= date_to:
            starts.append(current)
            current = add_months(current, 1)
        return starts
    return [date_from + timedelta(days=offset) for offset in range((date_to - date_from).days + 1)]


def bucket_rows(
    rows: Iterable[TransactionRow],
    granularity: Granularity,
    date_from: date,
    date_to: date,
    *,
    categories: Iterable[str] = (),
) -> BucketedRows:
    """
    Fold rows into zero-filled, chronologically ordered buckets.

    One pass: each in-range row is added to the overall map and to its
    category's map, so overall totals always equal the sum of categories.
    Rows outside [date_from, date_to] are dropped even if the source was asked
    to respect that range. Input order does not matter.

    `categories` seeds zero-filled series for categories that must appear
    even without rows in range (e.g. ones carrying an opening balance).
    """
    starts = period_starts(date_from, date_to, granularity)
    if not starts:
        return BucketedRows(overall=[])

    overall: Dict[date, Dict[TransactionKind, Decimal]] = {start: {} for start in starts}
    by_category: Dict[str, Dict[date, Dict[TransactionKind, Decimal]]] = {
        category: {start: {} for start in starts} for category in categories
    }

    row_count = 0
    excluded = 0
    unclassified = 0

    for row in rows:
        if row.date < date_from or row.date > date_to:
            excluded += 1
            continue
        row_count += 1
        if row.kind == TransactionKind.UNCLASSIFIED:
            unclassified += 1

        key = bucket_start(row.date, granularity, date_from)
        category_map = by_category.get(row.category_key)
        if category_map is None:
            category_map = {start: {} for start in starts}
            by_category[row.category_key] = category_map

        for target in (overall[key], category_map[key]):
            target[row.kind] = target.get(row.kind, ZERO) + row.amount

    return BucketedRows(
        overall=_freeze(overall),
        by_category={category: _freeze(buckets) for category, buckets in sorted(by_category.items())},
        row_count=row_count,
        excluded_count=excluded,
        unclassified_count=unclassified,
    )


def _freeze(buckets: Dict[date, Dict[TransactionKind, Decimal]]) -> List[PeriodMetrics]:
    ordered: List[Tuple[date, Dict[TransactionKind, Decimal]]] = sorted(buckets.items())
    return [period_metrics(period, totals) for period, totals in ordered]
