from __future__ import annotations

import math
from typing import Dict, List, Sequence

from firmledger.app.analytics.core import PeriodMetrics

RESOLUTION_TARGETS: Dict[str, int] = {
    "high": 365,
    "standard": 120,
    "low": 60,
}
DEFAULT_RESOLUTION = "low"


def target_points(resolution: str) -> int:
    try:
        return RESOLUTION_TARGETS[resolution]
    except KeyError:
        raise ValueError(f"unknown resolution: {resolution!r}") from None


def downsample(buckets: Sequence[PeriodMetrics], target: int) -> List[PeriodMetrics]:
    """
    Bound the number of points for display without dropping signal.

    Every bucket with a non-zero movement is kept. Remaining budget is filled by
    striding evenly through the zero buckets. If the non-zero buckets alone
    exceed the target they are all returned anyway.

    Display-only: apply to accumulated series, never to accumulator input.
    """
    if len(buckets) <= target:
        return list(buckets)

    non_zero: List[PeriodMetrics] = []
    zero: List[PeriodMetrics] = []
    for bucket in buckets:
        (non_zero if bucket.has_movement() else zero).append(bucket)

    result = list(non_zero)
    remaining = target - len(non_zero)
    if remaining > 0 and zero:
        step = math.ceil(len(zero) / remaining)
        result.extend(zero[::step])

    result.sort(key=lambda bucket: bucket.period)
    return result
