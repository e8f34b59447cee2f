from datetime import datetime, timedelta, timezone

import pytest

from tradeintel.errors import InvalidInputError
from tradeintel.ledger.state import TradingState
from tradeintel.models import CandlePattern, IndicatorSnapshot, MarketRegimeType, TradingRules
from tradeintel.strategy.regime import MarketRegime
from tradeintel.strategy.scoring import (
    MacdFactor,
    PatternFactor,
    RsiFactor,
    SignalScorer,
    TrendFactor,
    VolumeFactor,
    VwapFactor,
)
from tradeintel.strategy.session import TimeOfDay

MORNING = datetime(2024, 1, 10, 5, 0, tzinfo=timezone.utc)  # 10:30 IST
MIDDAY = datetime(2024, 1, 10, 6, 30, tzinfo=timezone.utc)  # 12:00 IST
AFTER_CLOSE = datetime(2024, 1, 10, 10, 30, tzinfo=timezone.utc)  # 16:00 IST


def _snapshot(**overrides) -> IndicatorSnapshot:
    # trend 10 + vwap 10 + volume 5 + macd 8 = 33 points over the base of 50
    data = dict(
        symbol="RELIANCE",
        timeframe="5min",
        computed_at=MORNING,
        close=100.0,
        vwap=100.7,
        rsi=50.0,
        macd_histogram=-0.5,
        relative_volume=1.0,
        trend_strength=40.0,
        pattern=None,
    )
    data.update(overrides)
    return IndicatorSnapshot(**data)


def _regime(regime: MarketRegimeType, classified_at: datetime) -> MarketRegime:
    return MarketRegime(
        regime=regime,
        confidence=80,
        reasoning=(),
        time_of_day=TimeOfDay.MORNING_SESSION,
        classified_at=classified_at,
        expires_at=classified_at + timedelta(minutes=5),
    )


def test_trend_factor_caps_at_25() -> None:
    factor = TrendFactor()
    assert factor.compute(None) == 0.0
    assert factor.compute(-40.0) == 10.0
    assert factor.compute(100.0) == 25.0


def test_rsi_factor_bands() -> None:
    factor = RsiFactor()
    assert factor.compute(None) == 0.0
    assert factor.compute(35.0) == 15.0
    assert factor.compute(65.0) == 15.0
    assert factor.compute(27.0) == 10.0
    assert factor.compute(73.0) == 10.0
    assert factor.compute(50.0) == 0.0
    assert factor.compute(15.0) == 5.0
    assert factor.compute(85.0) == 5.0
    assert factor.compute(22.0) == 0.0


def test_vwap_factor_bands() -> None:
    factor = VwapFactor()
    assert factor.compute(100.0, 100.2) == 15.0
    assert factor.compute(100.0, 100.7) == 10.0
    assert factor.compute(100.0, 102.0) == 0.0
    assert factor.compute(100.0, None) == 0.0
    assert factor.compute(100.0, 0.0) == 0.0


def test_volume_pattern_and_macd_factors() -> None:
    volume = VolumeFactor()
    assert volume.compute(1.6) == 15.0
    assert volume.compute(1.3) == 10.0
    assert volume.compute(0.9) == 5.0
    assert volume.compute(0.8) == 0.0

    pattern = PatternFactor()
    assert pattern.compute(CandlePattern.BULLISH_ENGULFING) == 10.0
    assert pattern.compute(CandlePattern.DOJI) == 3.0
    assert pattern.compute(None) == 0.0

    macd = MacdFactor()
    assert macd.compute(0.5) == 10.0
    assert macd.compute(-0.5) == 8.0
    assert macd.compute(0.001) == 0.0
    assert macd.compute(None) == 0.0


def test_raw_score_is_clamped_to_100() -> None:
    snapshot = _snapshot(
        trend_strength=80.0,
        rsi=65.0,
        vwap=100.2,
        relative_volume=1.6,
        pattern=CandlePattern.HAMMER,
        macd_histogram=0.5,
    )
    score = SignalScorer().score(snapshot, MarketRegimeType.TRENDING, TradingState(), TradingRules(), MORNING)
    assert score.raw_score == 100
    assert score.final_score == 100


def test_range_regime_in_morning_is_tradable() -> None:
    score = SignalScorer().score(_snapshot(), MarketRegimeType.RANGE, TradingState(), TradingRules(), MORNING)
    assert score.raw_score == 83
    assert score.final_score == 66
    assert score.market_multiplier == 0.8
    assert score.time_multiplier == 1.0
    assert score.risk_multiplier == 1.0
    assert score.is_tradable
    assert score.rejection_reason is None


def test_midday_discount_drops_below_threshold() -> None:
    score = SignalScorer().score(_snapshot(), MarketRegimeType.RANGE, TradingState(), TradingRules(), MIDDAY)
    assert score.final_score == 53
    assert not score.is_tradable
    assert score.rejection_reason == "Score below threshold (53 < 60)"


def test_no_trade_regime_scores_zero() -> None:
    score = SignalScorer().score(_snapshot(), MarketRegimeType.NO_TRADE, TradingState(), TradingRules(), MORNING)
    assert score.final_score == 0
    assert score.rejection_reason == "Market conditions not suitable for trading"


def test_closed_market_scores_zero() -> None:
    score = SignalScorer().score(
        _snapshot(), MarketRegimeType.TRENDING, TradingState(), TradingRules(), AFTER_CLOSE
    )
    assert score.final_score == 0
    assert score.time_of_day == TimeOfDay.MARKET_CLOSED
    assert score.failed_checks == ["Score below threshold (0 < 60)", "Market is closed"]


def test_loss_streak_scales_and_limit_blocks() -> None:
    scorer = SignalScorer()
    two_losses = scorer.score(
        _snapshot(), MarketRegimeType.RANGE, TradingState(consecutive_losses=2), TradingRules(), MORNING
    )
    assert two_losses.risk_multiplier == 0.7
    assert two_losses.final_score == 46

    three_losses = scorer.score(
        _snapshot(), MarketRegimeType.RANGE, TradingState(consecutive_losses=3), TradingRules(), MORNING
    )
    assert three_losses.final_score == 0
    assert "Consecutive loss limit reached (3)" in three_losses.failed_checks


def test_drawdown_scales_score() -> None:
    score = SignalScorer().score(
        _snapshot(), MarketRegimeType.RANGE, TradingState(daily_pnl=-3000.0), TradingRules(), MORNING
    )
    assert score.risk_multiplier == 0.6
    assert score.final_score == 40


def test_disabled_auto_mode_blocks_trading() -> None:
    state = TradingState(auto_mode_active=False)
    score = SignalScorer().score(_snapshot(), MarketRegimeType.RANGE, state, TradingRules(), MORNING)
    assert score.final_score == 66
    assert not score.is_tradable
    assert score.rejection_reason == "Auto-mode disabled"


def test_missing_snapshot_is_rejected() -> None:
    with pytest.raises(InvalidInputError):
        SignalScorer().score(None, MarketRegimeType.RANGE, TradingState(), TradingRules(), MORNING)


def test_missing_or_expired_regime_scores_as_range() -> None:
    scorer = SignalScorer()
    missing = scorer.score(_snapshot(), None, TradingState(), TradingRules(), MORNING)
    assert missing.regime == MarketRegimeType.RANGE
    assert missing.final_score == 66

    stale = _regime(MarketRegimeType.TRENDING, MORNING - timedelta(hours=1))
    expired = scorer.score(_snapshot(), stale, TradingState(), TradingRules(), MORNING)
    assert expired.regime == MarketRegimeType.RANGE

    fresh = _regime(MarketRegimeType.TRENDING, MORNING - timedelta(minutes=1))
    current = scorer.score(_snapshot(), fresh, TradingState(), TradingRules(), MORNING)
    assert current.regime == MarketRegimeType.TRENDING
    assert current.final_score == 100
