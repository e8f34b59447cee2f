"""Async intraday market-data sources with rate limiting."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import structlog

from tradeintel.config.settings import MarketDataConfig
from tradeintel.errors import InvalidInputError, UpstreamUnavailableError
from tradeintel.models import Candle
from tradeintel.monitoring.metrics import Metrics

EXCHANGE_SUFFIXES = (".NSE", ".BSE", ".NS", ".BO")
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def clean_symbol(symbol: str) -> str:
    """Upper-case a ticker and strip any exchange suffix."""
    cleaned = symbol.strip().upper()
    for suffix in EXCHANGE_SUFFIXES:
        if cleaned.endswith(suffix):
            return cleaned[: -len(suffix)]
    return cleaned


class MarketDataSource(Protocol):
    name: str

    async def fetch_candles(self, symbol: str, interval: str) -> list[Candle]:
        """Return candles newest first; an empty list means no data."""
        ...


class RateLimiter:
    """Track requests per minute and wait for the window to reset when full."""

    def __init__(self, max_requests_per_minute: int = 5) -> None:
        self.max_requests = max_requests_per_minute
        self.used = 0
        self.reset_at = time.time() + 60

    async def acquire(self) -> None:
        now = time.time()
        if now >= self.reset_at:
            self.used = 0
            self.reset_at = now + 60
        if self.used >= self.max_requests:
            await asyncio.sleep(max(0.0, self.reset_at - now))
            self.used = 0
            self.reset_at = time.time() + 60
        self.used += 1

    @property
    def remaining(self) -> int:
        if time.time() >= self.reset_at:
            return self.max_requests
        return max(0, self.max_requests - self.used)


def _zone(name: str | None) -> ZoneInfo | timezone:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def parse_intraday_payload(data: dict[str, Any], interval: str) -> list[Candle]:
    """Normalize an intraday time-series payload, newest first."""
    series = data.get(f"Time Series ({interval})")
    if not series:
        return []
    tz = _zone((data.get("Meta Data") or {}).get("6. Time Zone"))
    candles = []
    for stamp, values in series.items():
        local = datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S").replace(tzinfo=tz)
        candles.append(
            Candle(
                timestamp=local.astimezone(timezone.utc),
                open=float(values["1. open"]),
                high=float(values["2. high"]),
                low=float(values["3. low"]),
                close=float(values["4. close"]),
                volume=float(values["5. volume"]),
            )
        )
    candles.sort(key=lambda c: c.timestamp, reverse=True)
    return candles


class AlphaVantageSource:
    """Alpha Vantage intraday client. The API key never reaches the logs."""

    name = "alpha_vantage"

    def __init__(
        self,
        api_key: str,
        config: MarketDataConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        http: httpx.AsyncClient | None = None,
        log_http: bool = False,
    ) -> None:
        self.config = config or MarketDataConfig()
        self._api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter(self.config.requests_per_minute)
        self.http = http or httpx.AsyncClient(
            base_url=self.config.base_url, timeout=self.config.request_timeout_sec
        )
        self.log_http = log_http
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        await self.http.aclose()

    async def fetch_candles(self, symbol: str, interval: str | None = None) -> list[Candle]:
        interval = interval or self.config.interval
        params = {
            "function": "TIME_SERIES_INTRADAY",
            "symbol": f"{clean_symbol(symbol)}{self.config.symbol_suffix}",
            "interval": interval,
            "outputsize": self.config.outputsize,
            "apikey": self._api_key,
        }
        data = await self._request(params)
        if data.get("Note") or data.get("Information"):
            raise UpstreamUnavailableError("API rate limit reached", source=self.name)
        if data.get("Error Message"):
            raise InvalidInputError(f"unknown_symbol: {symbol}")
        candles = parse_intraday_payload(data, interval)
        if not candles:
            self.log.warning("market_data_empty", symbol=symbol, interval=interval)
        else:
            self.log.debug("market_data_fetched", symbol=symbol, candles=len(candles))
        return candles

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        await self.rate_limiter.acquire()
        attempts = self.config.retry_attempts + 1
        last_error: str = "no attempts made"
        for attempt in range(attempts):
            start = time.perf_counter()
            try:
                response = await self.http.get("/query", params=params)
                latency_ms = round((time.perf_counter() - start) * 1000, 2)
                if response.status_code in RETRYABLE_STATUS:
                    last_error = f"HTTP {response.status_code}"
                    self.log.warning(
                        "market_data_http_retrying",
                        path="/query",
                        status_code=response.status_code,
                        latency_ms=latency_ms,
                        attempt=attempt + 1,
                    )
                    if attempt + 1 < attempts:
                        await asyncio.sleep(2**attempt)
                    continue
                response.raise_for_status()
                if self.log_http:
                    self.log.info(
                        "market_data_response",
                        path="/query",
                        status_code=response.status_code,
                        latency_ms=latency_ms,
                    )
                return response.json()
            except httpx.HTTPStatusError as exc:
                self.log.error(
                    "market_data_fetch_failed",
                    path="/query",
                    status_code=exc.response.status_code,
                )
                raise UpstreamUnavailableError(
                    f"HTTP {exc.response.status_code}", source=self.name
                ) from exc
            except (httpx.TransportError, ValueError) as exc:
                last_error = type(exc).__name__
                self.log.warning(
                    "market_data_request_error",
                    path="/query",
                    error=last_error,
                    attempt=attempt + 1,
                )
                if attempt + 1 < attempts:
                    await asyncio.sleep(2**attempt)
        self.log.error("market_data_fetch_failed", path="/query", error=last_error)
        raise UpstreamUnavailableError(f"Market data unavailable: {last_error}", source=self.name)


class FallbackMarketDataSource:
    """Try each source in order; the first one with candles wins."""

    name = "fallback"

    def __init__(self, sources: Sequence[MarketDataSource], metrics: Metrics | None = None) -> None:
        if not sources:
            raise ValueError("at least one market data source is required")
        self.sources = list(sources)
        self.metrics = metrics
        self.log = structlog.get_logger(__name__)

    async def fetch_candles(self, symbol: str, interval: str) -> list[Candle]:
        failure: UpstreamUnavailableError | None = None
        for source in self.sources:
            try:
                candles = await source.fetch_candles(symbol, interval)
            except UpstreamUnavailableError as exc:
                failure = exc
                self.log.warning(
                    "market_data_source_failed", source=source.name, symbol=symbol, error=str(exc)
                )
                if self.metrics:
                    self.metrics.market_data_failures_total.labels(source=source.name).inc()
                continue
            if candles:
                return candles
        if failure is not None:
            raise UpstreamUnavailableError(
                f"All market data sources failed for {symbol}", source=self.name
            ) from failure
        return []
