"""Signal scoring with modular factor architecture and layered multipliers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from tradeintel.config.settings import ScoringConfig
from tradeintel.errors import InvalidInputError
from tradeintel.ledger.events import utc_now
from tradeintel.models import CandlePattern, IndicatorSnapshot, MarketRegimeType, TradingRules
from tradeintel.risk.engine import RiskEngine
from tradeintel.strategy.regime import MarketRegime, resolve_regime, round_half_up
from tradeintel.strategy.session import TimeOfDay, TradingSession

if TYPE_CHECKING:
    from tradeintel.ledger.state import TradingState

log = structlog.get_logger(__name__)

BASE_SCORE = 50.0

DIRECTIONAL_PATTERNS = frozenset(
    {
        CandlePattern.HAMMER,
        CandlePattern.INVERTED_HAMMER,
        CandlePattern.SHOOTING_STAR,
        CandlePattern.BULLISH_ENGULFING,
        CandlePattern.BEARISH_ENGULFING,
    }
)


def _clamp(value: float, min_val: float, max_val: float) -> float:
    return max(min_val, min(max_val, value))


class TrendFactor:
    """Up to 25 points for trend strength in either direction."""

    def compute(self, trend_strength: float | None) -> float:
        if trend_strength is None:
            return 0.0
        return min(25.0, abs(trend_strength) / 4)


class RsiFactor:
    """Reward RSI in the momentum bands, a little for extremes."""

    def compute(self, rsi: float | None) -> float:
        if rsi is None:
            return 0.0
        if 30 <= rsi <= 40 or 60 <= rsi <= 70:
            return 15.0
        if 25 <= rsi <= 45 or 55 <= rsi <= 75:
            return 10.0
        if rsi < 20 or rsi > 80:
            return 5.0
        return 0.0


class VwapFactor:
    """Reward prices close to VWAP."""

    def __init__(self, tight_pct: float = 0.5, near_pct: float = 1.0) -> None:
        self.tight_pct = tight_pct
        self.near_pct = near_pct

    def compute(self, price: float | None, vwap: float | None) -> float:
        if price is None or not vwap:
            return 0.0
        distance_pct = abs(price - vwap) / vwap * 100
        if distance_pct < self.tight_pct:
            return 15.0
        if distance_pct < self.near_pct:
            return 10.0
        return 0.0


class VolumeFactor:
    def compute(self, relative_volume: float | None) -> float:
        if relative_volume is None:
            return 0.0
        if relative_volume > 1.5:
            return 15.0
        if relative_volume > 1.2:
            return 10.0
        if relative_volume > 0.8:
            return 5.0
        return 0.0


class PatternFactor:
    def compute(self, pattern: CandlePattern | None) -> float:
        if pattern in DIRECTIONAL_PATTERNS:
            return 10.0
        if pattern == CandlePattern.DOJI:
            return 3.0
        return 0.0


class MacdFactor:
    """Points for a MACD histogram clearly away from zero; bullish earns more."""

    def __init__(self, epsilon: float = 0.001) -> None:
        self.epsilon = epsilon

    def compute(self, histogram: float | None) -> float:
        if histogram is None or abs(histogram) <= self.epsilon:
            return 0.0
        return 10.0 if histogram > 0 else 8.0


@dataclass(frozen=True)
class SignalScore:
    """Raw and final score plus the tradability verdict."""

    symbol: str
    raw_score: int
    final_score: int
    is_tradable: bool
    rejection_reason: str | None
    regime: MarketRegimeType
    time_of_day: TimeOfDay
    market_multiplier: float
    time_multiplier: float
    risk_multiplier: float
    components: dict[str, float] = field(default_factory=dict)
    failed_checks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "raw_score": self.raw_score,
            "final_score": self.final_score,
            "is_tradable": self.is_tradable,
            "rejection_reason": self.rejection_reason,
            "regime": self.regime.value,
            "time_of_day": self.time_of_day.value,
            "market_multiplier": self.market_multiplier,
            "time_multiplier": self.time_multiplier,
            "risk_multiplier": self.risk_multiplier,
            "components": dict(self.components),
            "failed_checks": list(self.failed_checks),
        }


class SignalScorer:
    """Score a candidate symbol and decide whether it may be traded."""

    def __init__(
        self,
        config: ScoringConfig | None = None,
        session: TradingSession | None = None,
        risk_engine: RiskEngine | None = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.session = session or TradingSession()
        self.risk_engine = risk_engine or RiskEngine()
        self.trend_factor = TrendFactor()
        self.rsi_factor = RsiFactor()
        self.vwap_factor = VwapFactor(self.config.vwap_tight_pct, self.config.vwap_near_pct)
        self.volume_factor = VolumeFactor()
        self.pattern_factor = PatternFactor()
        self.macd_factor = MacdFactor(self.config.macd_epsilon)

    def raw_components(self, snapshot: IndicatorSnapshot) -> dict[str, float]:
        return {
            "trend": self.trend_factor.compute(snapshot.trend_strength),
            "rsi": self.rsi_factor.compute(snapshot.rsi),
            "vwap": self.vwap_factor.compute(snapshot.close, snapshot.vwap),
            "volume": self.volume_factor.compute(snapshot.relative_volume),
            "pattern": self.pattern_factor.compute(snapshot.pattern),
            "macd": self.macd_factor.compute(snapshot.macd_histogram),
        }

    def score(
        self,
        snapshot: IndicatorSnapshot | None,
        regime: MarketRegime | MarketRegimeType | None,
        state: TradingState,
        rules: TradingRules,
        now: datetime | None = None,
    ) -> SignalScore:
        if snapshot is None:
            raise InvalidInputError("no_indicator_snapshot")
        now = now or utc_now()
        if isinstance(regime, MarketRegimeType):
            regime_type = regime
        else:
            regime_type = resolve_regime(regime, now)

        components = self.raw_components(snapshot)
        raw = round_half_up(_clamp(BASE_SCORE + sum(components.values()), 0.0, 100.0))

        bucket = self.session.time_of_day(now)
        market_multiplier = rules.market_multiplier(regime_type)
        time_multiplier = self.session.time_multiplier(bucket)
        risk_multiplier = self.risk_engine.risk_multiplier(state, rules)
        final = round_half_up(
            _clamp(raw * market_multiplier * time_multiplier * risk_multiplier, 0.0, 100.0)
        )

        check = self.risk_engine.evaluate(regime_type, state, rules, final, time_multiplier)
        result = SignalScore(
            symbol=snapshot.symbol,
            raw_score=raw,
            final_score=final,
            is_tradable=check.approved,
            rejection_reason=check.rejection_reason,
            regime=regime_type,
            time_of_day=bucket,
            market_multiplier=market_multiplier,
            time_multiplier=time_multiplier,
            risk_multiplier=risk_multiplier,
            components=components,
            failed_checks=check.reasons,
        )
        log.info(
            "signal_scored",
            symbol=result.symbol,
            raw_score=raw,
            final_score=final,
            regime=regime_type.value,
            is_tradable=result.is_tradable,
            rejection_reason=result.rejection_reason,
        )
        return result
