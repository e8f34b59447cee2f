"""Exception taxonomy for the trading-intelligence core.

Insufficient history is not an error: the affected metric is ``None``.
Safety gates are not errors either: they surface as a non-tradable score
with a rejection reason.
"""

from __future__ import annotations


class TradeIntelError(Exception):
    """Base class for all tradeintel errors."""

    pass


class InvalidInputError(TradeIntelError, ValueError):
    """Input cannot be processed at all (empty series, unknown symbol, bad prices)."""

    pass


class UpstreamUnavailableError(TradeIntelError):
    """A market-data source or dependent API is unreachable or throttling.

    Callers may retry; the core never retries on its own.
    """

    retryable = True

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)


class RulesConflictError(TradeIntelError):
    """The rule set changed underneath an update, or another writer holds the lock."""

    def __init__(self, message: str, expected_version: int | None = None, actual_version: int | None = None) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(message)
