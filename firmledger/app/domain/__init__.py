"""Domain contracts and shared types."""

from firmledger.app.domain.contracts import (  # noqa: F401
    CategoryInfo,
    GraphResponse,
    LockupPointOut,
    MetricBucket,
    OverviewMonth,
    OverviewResponse,
    SeriesOut,
    SeriesSummary,
)
