from datetime import date, timedelta
from decimal import Decimal

import pytest

from firmledger.app.analytics.core import PeriodMetrics
from firmledger.app.analytics.downsample import downsample, target_points


def _series(days: int, non_zero_offsets) -> list:
    start = date(2023, 1, 1)
    out = []
    for offset in range(days):
        amount = Decimal("10") if offset in non_zero_offsets else Decimal("0")
        out.append(PeriodMetrics(period=start + timedelta(days=offset), time=amount, balance=Decimal(offset)))
    return out


def test_short_series_is_returned_unchanged():
    series = _series(30, {3})

    out = downsample(series, 60)

    assert out == series
    assert out is not series


def test_keeps_every_non_zero_bucket_and_strides_zeros():
    non_zero = {5, 77, 150, 301, 399}
    series = _series(400, non_zero)

    out = downsample(series, target_points("low"))

    kept_non_zero = [bucket for bucket in out if bucket.has_movement()]
    assert len(kept_non_zero) == 5
    assert {bucket.period for bucket in kept_non_zero} == {series[i].period for i in non_zero}
    assert len(out) - len(kept_non_zero) == 50
    assert len(out) <= 60
    assert [bucket.period for bucket in out] == sorted(bucket.period for bucket in out)


def test_non_zero_buckets_alone_may_exceed_target():
    series = _series(100, set(range(80)))

    out = downsample(series, 60)

    assert len(out) == 80
    assert all(bucket.has_movement() for bucket in out)


def test_downsampled_points_keep_their_balances():
    series = _series(400, {10, 200})

    out = downsample(series, 120)

    by_period = {bucket.period: bucket for bucket in series}
    assert all(by_period[bucket.period].balance == bucket.balance for bucket in out)


def test_resolution_targets():
    assert target_points("high") == 365
    assert target_points("standard") == 120
    assert target_points("low") == 60
    with pytest.raises(ValueError):
        target_points("ultra")
