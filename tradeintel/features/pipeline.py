"""Indicator engine: candles in, one rounded snapshot out."""

from __future__ import annotations

from typing import Iterable

import pandas as pd
import structlog

from tradeintel.config.settings import IndicatorConfig
from tradeintel.errors import InvalidInputError
from tradeintel.features.indicators import (
    calculate_atr,
    calculate_macd,
    calculate_relative_volume,
    calculate_rsi,
    calculate_trend_strength,
    calculate_vwap,
    candles_to_frame,
    detect_candle_pattern,
    last_value,
)
from tradeintel.models import Candle, IndicatorSnapshot

log = structlog.get_logger(__name__)

# Decimal places per metric; rounding happens only here
PRICE_DECIMALS = 2
RATIO_DECIMALS = 4
OSCILLATOR_DECIMALS = 2
MACD_DECIMALS = 6


def _round(value: float | None, digits: int) -> float | None:
    if value is None:
        return None
    return round(float(value), digits)


def _to_datetime(value):
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


class IndicatorEngine:
    """Compute indicators for a candle series of one symbol."""

    def __init__(self, indicators: IndicatorConfig | None = None) -> None:
        self._indicators = indicators or IndicatorConfig()

    def compute_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """Return a new DataFrame with per-candle indicator columns appended."""
        required_cols = {"open", "high", "low", "close", "volume"}
        missing = required_cols.difference(df.columns)
        if missing:
            raise InvalidInputError(f"missing_columns: {sorted(missing)}")
        cfg = self._indicators
        result = df.copy()
        result["rsi"] = calculate_rsi(result["close"], cfg.rsi_period)
        result["atr"] = calculate_atr(result, cfg.atr_period)
        macd = calculate_macd(result["close"], cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
        result = pd.concat([result, macd], axis=1)
        return result

    def compute(
        self,
        symbol: str,
        candles: Iterable[Candle],
        timeframe: str = "5min",
    ) -> IndicatorSnapshot:
        """Compute a snapshot. Metrics without enough history are None."""
        if not symbol or not symbol.strip():
            raise InvalidInputError("unknown_symbol")
        cfg = self._indicators
        df = candles_to_frame(candles)
        frame = self.compute_frame(df)

        snapshot = IndicatorSnapshot(
            symbol=symbol.strip().upper(),
            timeframe=timeframe,
            computed_at=_to_datetime(df["timestamp"].iloc[-1]),
            close=_round(float(df["close"].iloc[-1]), PRICE_DECIMALS),
            vwap=_round(calculate_vwap(df), PRICE_DECIMALS),
            rsi=_round(last_value(frame["rsi"]), OSCILLATOR_DECIMALS),
            macd=_round(last_value(frame["macd"]), MACD_DECIMALS),
            macd_signal=_round(last_value(frame["macd_signal"]), MACD_DECIMALS),
            macd_histogram=_round(last_value(frame["macd_histogram"]), MACD_DECIMALS),
            atr=_round(last_value(frame["atr"]), PRICE_DECIMALS),
            relative_volume=_round(
                calculate_relative_volume(df["volume"], cfg.relative_volume_period),
                RATIO_DECIMALS,
            ),
            trend_strength=_round(
                calculate_trend_strength(
                    df,
                    sma_period=cfg.trend_sma_period,
                    momentum_period=cfg.trend_momentum_period,
                    consistency_window=cfg.trend_consistency_window,
                ),
                OSCILLATOR_DECIMALS,
            ),
            pattern=detect_candle_pattern(df),
            data_points=len(df),
        )
        log.debug(
            "indicators_computed",
            symbol=snapshot.symbol,
            timeframe=timeframe,
            data_points=snapshot.data_points,
            rsi=snapshot.rsi,
            trend_strength=snapshot.trend_strength,
        )
        return snapshot
