"""Technical indicator calculations.

All series functions expect chronological (oldest-first) input and return a
Series aligned to the input index, NaN where the window is not yet filled.
"""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np
import pandas as pd

from tradeintel.errors import InvalidInputError
from tradeintel.models import Candle, CandlePattern


OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Build a chronologically sorted OHLCV frame from candles in any order."""
    rows = [
        {
            "timestamp": c.timestamp,
            "open": float(c.open),
            "high": float(c.high),
            "low": float(c.low),
            "close": float(c.close),
            "volume": float(c.volume),
        }
        for c in candles
    ]
    if not rows:
        raise InvalidInputError("empty_candle_series")
    df = pd.DataFrame(rows)
    # Stable sort keeps caller order for duplicate timestamps
    return df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)


def _smooth(series: pd.Series, period: int, alpha: float | None = None) -> pd.Series:
    """Recursive smoothing seeded with the simple mean of the first `period` values.

    alpha defaults to Wilder's 1/period; pass 2/(period+1) for a standard EMA.
    Leading NaNs are skipped before seeding.
    """
    if alpha is None:
        alpha = 1.0 / period
    values = series.dropna()
    if len(values) < period:
        return pd.Series(np.nan, index=series.index, dtype=float)
    seed = pd.Series([values.iloc[:period].mean()], index=[values.index[period - 1]])
    seeded = pd.concat([seed, values.iloc[period:]])
    return seeded.ewm(alpha=alpha, adjust=False).mean().reindex(series.index)


def calculate_ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average with an SMA seed."""
    return _smooth(series, period, alpha=2.0 / (period + 1))


def calculate_sma(series: pd.Series, period: int) -> pd.Series:
    return series.rolling(window=period, min_periods=period).mean()


def calculate_true_range(df: pd.DataFrame) -> pd.Series:
    """True range; undefined for the first candle, which has no previous close."""
    prev_close = df["close"].shift(1)
    true_range = pd.concat(
        [
            (df["high"] - df["low"]).abs(),
            (df["high"] - prev_close).abs(),
            (df["low"] - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1)
    true_range[prev_close.isna()] = np.nan
    return true_range


def calculate_atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    """Average True Range (Wilder)."""
    return _smooth(calculate_true_range(df), period)


def calculate_rsi(series: pd.Series, period: int = 14) -> pd.Series:
    """Relative Strength Index (Wilder). 100 when there are no losses."""
    delta = series.diff()
    gains = delta.clip(lower=0.0)
    losses = (-delta).clip(lower=0.0)
    avg_gain = _smooth(gains, period)
    avg_loss = _smooth(losses, period)
    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gain / avg_loss
        rsi = 100 - (100 / (1 + rs))
    rsi = rsi.where(avg_loss != 0, 100.0)
    return rsi.where(avg_gain.notna())


def calculate_macd(
    series: pd.Series,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> pd.DataFrame:
    """MACD line, signal line and histogram.

    The MACD line exists from the `slow`-th value; the signal line needs
    `signal` MACD values on top of that.
    """
    macd_line = calculate_ema(series, fast) - calculate_ema(series, slow)
    signal_line = calculate_ema(macd_line, signal)
    return pd.DataFrame(
        {
            "macd": macd_line,
            "macd_signal": signal_line,
            "macd_histogram": macd_line - signal_line,
        },
        index=series.index,
    )


def calculate_vwap(df: pd.DataFrame) -> float | None:
    """Volume-weighted average of typical price over the whole window."""
    total_volume = df["volume"].sum()
    if total_volume <= 0:
        return None
    typical_price = (df["high"] + df["low"] + df["close"]) / 3
    return float((typical_price * df["volume"]).sum() / total_volume)


def calculate_relative_volume(volume: pd.Series, period: int = 20) -> float | None:
    """Latest volume against the mean of the `period` candles before it."""
    if len(volume) < period + 1:
        return None
    baseline = volume.iloc[-(period + 1):-1].mean()
    if baseline <= 0:
        return None
    return float(volume.iloc[-1] / baseline)


def calculate_trend_strength(
    df: pd.DataFrame,
    sma_period: int = 20,
    momentum_period: int = 10,
    consistency_window: int = 10,
) -> float | None:
    """Signed trend strength in [-100, 100].

    Direction is the side of the SMA the latest close sits on. Magnitude blends
    the absolute percent move over `momentum_period` candles (x2) with the
    percentage of trailing candles whose body agrees with that direction (x0.5),
    capped at 100.
    """
    required = max(sma_period, momentum_period + 1, consistency_window)
    if len(df) < required:
        return None
    close = df["close"]
    latest = close.iloc[-1]
    sma = close.iloc[-sma_period:].mean()
    direction = 1.0 if latest > sma else -1.0

    reference = close.iloc[-(momentum_period + 1)]
    if reference == 0:
        return None
    momentum_pct = abs((latest - reference) / reference * 100)

    window = df.iloc[-consistency_window:]
    if direction > 0:
        agreeing = int((window["close"] > window["open"]).sum())
    else:
        agreeing = int((window["close"] < window["open"]).sum())
    consistency_pct = agreeing / consistency_window * 100

    magnitude = min(100.0, momentum_pct * 2 + consistency_pct * 0.5)
    return float(direction * magnitude)


def detect_candle_pattern(df: pd.DataFrame) -> CandlePattern | None:
    """Classify the latest candle against the previous one (first match wins)."""
    if len(df) < 2:
        return None
    current = df.iloc[-1]
    previous = df.iloc[-2]
    c_open, c_high, c_low, c_close = current["open"], current["high"], current["low"], current["close"]
    p_open, p_close = previous["open"], previous["close"]

    body = abs(c_close - c_open)
    upper_wick = c_high - max(c_open, c_close)
    lower_wick = min(c_open, c_close) - c_low
    candle_range = c_high - c_low
    bullish = c_close > c_open
    bearish = c_close < c_open

    if lower_wick >= body * 2 and upper_wick <= body * 0.5 and bullish:
        return CandlePattern.HAMMER
    if upper_wick >= body * 2 and lower_wick <= body * 0.5 and bullish:
        return CandlePattern.INVERTED_HAMMER
    if upper_wick >= body * 2 and lower_wick <= body * 0.5 and bearish:
        return CandlePattern.SHOOTING_STAR
    if p_close < p_open and bullish and c_open < p_close and c_close > p_open:
        return CandlePattern.BULLISH_ENGULFING
    if p_close > p_open and bearish and c_open > p_close and c_close < p_open:
        return CandlePattern.BEARISH_ENGULFING
    if candle_range > 0 and body / candle_range < 0.1:
        return CandlePattern.DOJI
    return None


def last_value(series: pd.Series) -> float | None:
    """Return the final value as a float, or None when it is NaN/inf."""
    if series.empty:
        return None
    value = float(series.iloc[-1])
    if math.isnan(value) or math.isinf(value):
        return None
    return value
