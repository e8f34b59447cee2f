"""Technical indicators and the indicator engine."""

from tradeintel.features.indicators import (
    calculate_atr,
    calculate_ema,
    calculate_macd,
    calculate_relative_volume,
    calculate_rsi,
    calculate_trend_strength,
    calculate_vwap,
    candles_to_frame,
    detect_candle_pattern,
)
from tradeintel.features.pipeline import IndicatorEngine

__all__ = [
    "calculate_atr",
    "calculate_ema",
    "calculate_macd",
    "calculate_relative_volume",
    "calculate_rsi",
    "calculate_trend_strength",
    "calculate_vwap",
    "candles_to_frame",
    "detect_candle_pattern",
    "IndicatorEngine",
]
