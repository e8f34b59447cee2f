from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from tradeintel.config.settings import PaperConfig
from tradeintel.errors import InvalidInputError
from tradeintel.models import IndicatorSnapshot, MarketRegimeType
from tradeintel.strategy.signals import SignalGenerator

NOW = datetime(2024, 1, 10, 5, 0, tzinfo=timezone.utc)


def _snapshot(**overrides) -> IndicatorSnapshot:
    data = dict(
        symbol="TCS",
        timeframe="5min",
        computed_at=NOW,
        close=100.0,
        vwap=99.5,
        atr=1.5,
        trend_strength=30.0,
    )
    data.update(overrides)
    return IndicatorSnapshot(**data)


def _score(final_score: int = 72) -> SimpleNamespace:
    return SimpleNamespace(
        raw_score=80,
        final_score=final_score,
        regime=MarketRegimeType.TRENDING,
        is_tradable=True,
        rejection_reason=None,
    )


def test_buy_signal_uses_atr_multiples() -> None:
    signal = SignalGenerator().generate(_snapshot(), NOW)
    assert signal is not None
    assert signal.direction == "BUY"
    assert signal.entry_price == 100.0
    assert signal.target_price == 103.0
    assert signal.stoploss_price == 98.5
    assert signal.expires_at == NOW + timedelta(minutes=15)
    assert signal.final_score is None


def test_sell_signal_falls_back_to_percent_levels() -> None:
    signal = SignalGenerator().generate(_snapshot(trend_strength=-30.0, vwap=100.5, atr=None), NOW)
    assert signal is not None
    assert signal.direction == "SELL"
    assert signal.target_price == 99.0
    assert signal.stoploss_price == 100.5


def test_no_signal_without_agreement() -> None:
    generator = SignalGenerator()
    assert generator.generate(_snapshot(vwap=101.0), NOW) is None
    assert generator.generate(_snapshot(trend_strength=-30.0), NOW) is None
    assert generator.generate(_snapshot(trend_strength=None), NOW) is None
    assert generator.generate(_snapshot(close=None), NOW) is None


def test_validity_comes_from_config() -> None:
    signal = SignalGenerator(PaperConfig(signal_validity_minutes=5)).generate(_snapshot(), NOW)
    assert signal is not None
    assert signal.is_open_for_scoring(NOW + timedelta(minutes=4))
    assert signal.is_expired(NOW + timedelta(minutes=5))


def test_scoring_refused_after_expiry_or_conversion() -> None:
    generator = SignalGenerator()
    signal = generator.generate(_snapshot(), NOW)
    signal.apply_score(_score(), NOW)
    assert signal.final_score == 72
    assert signal.regime == MarketRegimeType.TRENDING

    with pytest.raises(InvalidInputError):
        signal.apply_score(_score(10), NOW + timedelta(minutes=15))

    converted = generator.generate(_snapshot(), NOW)
    converted.mark_converted()
    with pytest.raises(InvalidInputError):
        converted.apply_score(_score(), NOW)
    assert converted.final_score is None
