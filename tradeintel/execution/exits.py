"""Exit decisions for open positions: target, stop, regime flip and early-exit scoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from tradeintel.config.settings import ExitConfig
from tradeintel.errors import InvalidInputError
from tradeintel.ledger.events import utc_now
from tradeintel.models import ExitType, IndicatorSnapshot, MarketRegimeType, Position
from tradeintel.strategy.regime import MarketRegime, resolve_regime

log = structlog.get_logger(__name__)

HOSTILE_REGIMES = frozenset({MarketRegimeType.NO_TRADE, MarketRegimeType.HIGH_VOLATILITY})


@dataclass(frozen=True)
class ExitDecision:
    should_exit: bool
    exit_type: ExitType | None
    reason: str
    confidence: int
    score: float = 0.0
    factors: list[str] = field(default_factory=list)


class ExitDecisionEngine:
    """Decide whether an open position should be closed now."""

    def __init__(self, config: ExitConfig | None = None) -> None:
        self.config = config or ExitConfig()

    def price_stalled(self, position: Position, price: float, minutes_open: float) -> bool:
        move_pct = abs((price - position.entry_price) / position.entry_price) * 100
        if minutes_open > self.config.stall_short_minutes and move_pct < self.config.stall_short_move_pct:
            return True
        if minutes_open > self.config.stall_long_minutes and move_pct < self.config.stall_long_move_pct:
            return True
        return False

    def momentum_weakening(self, position: Position, snapshot: IndicatorSnapshot) -> bool:
        cfg = self.config
        rsi = snapshot.rsi
        histogram = snapshot.macd_histogram
        trend = snapshot.trend_strength
        if position.direction == "BUY":
            return (
                (rsi is not None and rsi > cfg.rsi_overbought)
                or (histogram is not None and histogram < -cfg.macd_epsilon)
                or (trend is not None and trend < -cfg.trend_reversal)
            )
        return (
            (rsi is not None and rsi < cfg.rsi_oversold)
            or (histogram is not None and histogram > cfg.macd_epsilon)
            or (trend is not None and trend > cfg.trend_reversal)
        )

    def volume_dried_up(self, snapshot: IndicatorSnapshot) -> bool:
        return (
            snapshot.relative_volume is not None
            and snapshot.relative_volume < self.config.min_relative_volume
        )

    def vwap_lost(self, position: Position, price: float, snapshot: IndicatorSnapshot) -> bool:
        if not snapshot.vwap:
            return False
        tolerance = snapshot.vwap * self.config.vwap_tolerance_pct / 100
        if position.direction == "BUY":
            return price < snapshot.vwap - tolerance
        return price > snapshot.vwap + tolerance

    def evaluate(
        self,
        position: Position,
        current_price: float,
        snapshot: IndicatorSnapshot | None,
        regime: MarketRegime | MarketRegimeType | None,
        target: float | None = None,
        stop: float | None = None,
        now: datetime | None = None,
    ) -> ExitDecision:
        if current_price is None or current_price <= 0:
            raise InvalidInputError(f"invalid_price: {current_price}")
        now = now or utc_now()
        target = target if target is not None else position.target_price
        stop = stop if stop is not None else position.stoploss_price
        is_long = position.direction == "BUY"

        if target is not None:
            if (is_long and current_price >= target) or (not is_long and current_price <= target):
                return ExitDecision(True, ExitType.TARGET_HIT, "Target price reached", 100)
        if stop is not None:
            if (is_long and current_price <= stop) or (not is_long and current_price >= stop):
                return ExitDecision(True, ExitType.STOPLOSS_HIT, "Stoploss triggered", 100)

        regime_type = regime if isinstance(regime, MarketRegimeType) else resolve_regime(regime, now)
        if regime_type in HOSTILE_REGIMES:
            return ExitDecision(
                True,
                ExitType.EARLY_EXIT,
                f"Market condition changed to {regime_type.value}",
                85,
            )

        if snapshot is None:
            return ExitDecision(False, None, "Indicators unavailable", 100)

        cfg = self.config
        minutes_open = position.minutes_open(now)
        checks = [
            ("Price stalled", cfg.stall_weight, self.price_stalled(position, current_price, minutes_open)),
            ("Momentum weakening", cfg.momentum_weight, self.momentum_weakening(position, snapshot)),
            ("Volume drying up", cfg.volume_weight, self.volume_dried_up(snapshot)),
            ("Lost VWAP support/resistance", cfg.vwap_weight, self.vwap_lost(position, current_price, snapshot)),
            ("Trade open too long", cfg.time_weight, minutes_open > cfg.max_hold_minutes),
        ]
        factors = [name for name, _, triggered in checks if triggered]
        score = sum(weight for _, weight, triggered in checks if triggered)

        if score >= cfg.exit_threshold:
            decision = ExitDecision(
                True,
                ExitType.EARLY_EXIT,
                ", ".join(factors),
                int(min(95, score + 20)),
                score=score,
                factors=factors,
            )
            log.info(
                "early_exit_signalled",
                position_id=position.position_id,
                symbol=position.symbol,
                score=score,
                factors=factors,
            )
            return decision
        return ExitDecision(
            False,
            None,
            "Conditions still favorable",
            int(max(0, 100 - score)),
            score=score,
            factors=factors,
        )
