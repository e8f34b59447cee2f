"""Market data connectors module."""

from tradeintel.connectors.market_data import (
    AlphaVantageSource,
    FallbackMarketDataSource,
    MarketDataSource,
    RateLimiter,
    clean_symbol,
)

__all__ = [
    "AlphaVantageSource",
    "FallbackMarketDataSource",
    "MarketDataSource",
    "RateLimiter",
    "clean_symbol",
]
