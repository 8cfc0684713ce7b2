from datetime import date
from decimal import Decimal

from firmledger.app.analytics.balances import net_billings, net_revenue
from firmledger.app.analytics.core import PeriodMetrics
from firmledger.app.analytics.lockup import (
    lockup_days,
    lockup_series,
    lookback_start,
    trailing_sums,
)


def _month(year: int, month: int, **amounts) -> PeriodMetrics:
    return PeriodMetrics(period=date(year, month, 1), **{k: Decimal(str(v)) for k, v in amounts.items()})


def test_lockup_days_basic_ratio():
    assert lockup_days(Decimal("100000"), Decimal("365000")) == Decimal("100.00")


def test_lockup_days_zero_trailing_sum_is_zero():
    assert lockup_days(Decimal("5000"), Decimal("0")) == 0


def test_lockup_days_negative_ratio_is_clamped():
    assert lockup_days(Decimal("-500"), Decimal("1000")) == 0
    assert lockup_days(Decimal("500"), Decimal("-1000")) == 0


def test_lookback_start_reaches_eleven_months_back():
    assert lookback_start(date(2024, 3, 15)) == date(2023, 4, 1)


def test_trailing_sum_window_is_twelve_months_inclusive():
    monthly = [_month(2023, m, time=100) for m in range(1, 13)] + [_month(2024, 1, time=100)]

    sums = trailing_sums(monthly, net_revenue, [date(2023, 12, 1), date(2024, 1, 1)])

    assert sums[date(2023, 12, 1)] == Decimal("1200")
    # January 2023 drops out of the window ending January 2024
    assert sums[date(2024, 1, 1)] == Decimal("1200")


def test_partial_history_uses_available_months_only():
    monthly = [_month(2024, 1, time=300), _month(2024, 2, time=300, adjustment=-100)]

    points = lockup_series(
        [(date(2024, 1, 1), Decimal("300")), (date(2024, 2, 1), Decimal("500"))],
        monthly,
        net_revenue,
    )

    assert [point.trailing_sum for point in points] == [Decimal("300"), Decimal("500")]
    assert [point.days for point in points] == [Decimal("365.00"), Decimal("365.00")]


def test_debtors_lockup_uses_net_billings():
    monthly = [_month(2024, 1, fee=730, other_net_billing=0, receipt=-100)]

    points = lockup_series([(date(2024, 1, 1), Decimal("100"))], monthly, net_billings)

    assert points[0].trailing_sum == Decimal("730")
    assert points[0].days == Decimal("50.00")


def test_lockup_with_no_revenue_in_window_is_zero():
    points = lockup_series([(date(2024, 6, 1), Decimal("2500"))], [], net_revenue)

    assert points[0].trailing_sum == 0
    assert points[0].days == 0
