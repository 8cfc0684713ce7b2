from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for analytics engine failures."""


class DataSourceError(AnalyticsError):
    """
    A ledger query failed or timed out.

    Fatal for the request: no partial series is ever synthesized. Callers may
    retry; the engine itself never does.
    """

    retryable = True


class InvalidRangeError(AnalyticsError, ValueError):
    """The requested date range could not be parsed. Raised before any query."""


class CacheUnavailableError(AnalyticsError):
    """The shared cache backend failed. Non-fatal: results are computed uncached."""
