"""
Lockup days: how many days of trailing revenue (or billings) are tied up in a
balance.

    lockup = balance(t) * 365 / sum(revenue over months t-11 .. t)

The trailing sum is taken over the non-cumulative monthly series. Entities with
less than twelve months of history use whatever history exists.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from firmledger.app.analytics.bucketing import add_months, month_index, month_start
from firmledger.app.analytics.core import PeriodMetrics, ZERO, to_decimal

LOCKUP_WINDOW_MONTHS = 12
DAYS_PER_YEAR = Decimal(365)
_CENT = Decimal("0.01")

RevenueFn = Callable[[PeriodMetrics], Decimal]


@dataclass(frozen=True)
class LockupPoint:
    month: date
    balance: Decimal
    trailing_sum: Decimal
    days: Decimal


def lookback_start(date_from: date, window: int = LOCKUP_WINDOW_MONTHS) -> date:
    """Earliest date whose movements can fall inside the first month's window."""
    return add_months(month_start(date_from), -(window - 1))


def lockup_days(balance: Decimal, trailing_sum: Decimal) -> Decimal:
    balance = to_decimal(balance)
    trailing_sum = to_decimal(trailing_sum)
    if trailing_sum == 0:
        return ZERO
    days = balance * DAYS_PER_YEAR / trailing_sum
    if not days.is_finite() or days < 0:
        return ZERO
    return days.quantize(_CENT, rounding=ROUND_HALF_UP)


def trailing_sums(
    monthly_raw: Iterable[PeriodMetrics],
    revenue_fn: RevenueFn,
    months: Sequence[date],
    window: int = LOCKUP_WINDOW_MONTHS,
) -> Dict[date, Decimal]:
    """
    For each month in `months`, sum `revenue_fn` over the inclusive trailing
    window of calendar months ending at that month.
    """
    by_index: Dict[int, Decimal] = {}
    for bucket in monthly_raw:
        idx = month_index(bucket.period)
        by_index[idx] = by_index.get(idx, ZERO) + to_decimal(revenue_fn(bucket))

    out: Dict[date, Decimal] = {}
    for month in months:
        end = month_index(month)
        total = ZERO
        for idx in range(end - window + 1, end + 1):
            total += by_index.get(idx, ZERO)
        out[month] = total
    return out


def lockup_series(
    balances: Sequence[Tuple[date, Decimal]],
    monthly_raw: Sequence[PeriodMetrics],
    revenue_fn: RevenueFn,
    window: int = LOCKUP_WINDOW_MONTHS,
) -> List[LockupPoint]:
    """
    `balances` are (month, cumulative balance) pairs for the display months;
    `monthly_raw` is the non-cumulative monthly series covering the lookback.
    """
    sums = trailing_sums(monthly_raw, revenue_fn, [month for month, _ in balances], window)
    points: List[LockupPoint] = []
    for month, balance in balances:
        trailing = sums.get(month, ZERO)
        points.append(
            LockupPoint(
                month=month,
                balance=balance,
                trailing_sum=trailing,
                days=lockup_days(balance, trailing),
            )
        )
    return points
