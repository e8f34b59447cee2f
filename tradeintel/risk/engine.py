"""Deterministic risk engine: loss-streak/drawdown scaling and the tradability gate."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tradeintel.models import MarketRegimeType, TradingRules

if TYPE_CHECKING:
    from tradeintel.ledger.state import TradingState


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


@dataclass(frozen=True)
class RiskCheckResult:
    """Outcome of the gate. `reasons` lists every failing check in gate order."""

    approved: bool
    reasons: list[str] = field(default_factory=list)

    @property
    def rejection_reason(self) -> str | None:
        return self.reasons[0] if self.reasons else None


class RiskEngine:
    """Evaluate trading state against the active rules."""

    def risk_multiplier(self, state: TradingState, rules: TradingRules) -> float:
        if state.consecutive_losses >= rules.consecutive_loss_limit:
            return 0.0
        multiplier = 1.0
        for losses, factor in sorted(rules.loss_streak_curve, reverse=True):
            if state.consecutive_losses >= losses:
                multiplier *= factor
                break
        if rules.max_daily_loss > 0:
            drawdown_ratio = abs(state.daily_pnl) / rules.max_daily_loss
            for ratio, factor in sorted(rules.drawdown_curve, reverse=True):
                if drawdown_ratio > ratio:
                    multiplier *= factor
                    break
        return multiplier

    def safety_gate(self, state: TradingState, rules: TradingRules) -> str | None:
        """Return the reason a hard limit is breached, if any.

        These are the limits that should switch auto mode off.
        """
        if state.daily_pnl <= -rules.max_daily_loss:
            return f"Daily loss limit reached ({_fmt(rules.max_daily_loss)})"
        if state.consecutive_losses >= rules.consecutive_loss_limit:
            return f"Consecutive loss limit reached ({rules.consecutive_loss_limit})"
        return None

    def evaluate(
        self,
        regime: MarketRegimeType,
        state: TradingState,
        rules: TradingRules,
        final_score: int,
        time_multiplier: float,
    ) -> RiskCheckResult:
        reasons: list[str] = []
        if regime == MarketRegimeType.NO_TRADE:
            reasons.append("Market conditions not suitable for trading")
        if not state.auto_mode_active:
            reasons.append(state.stop_reason or "Auto-mode disabled")
        if state.trades_today >= rules.max_daily_trades:
            reasons.append(f"Daily trade limit reached ({rules.max_daily_trades})")
        if state.daily_pnl <= -rules.max_daily_loss:
            reasons.append(f"Daily loss limit reached ({_fmt(rules.max_daily_loss)})")
        if state.consecutive_losses >= rules.consecutive_loss_limit:
            reasons.append(f"Consecutive loss limit reached ({rules.consecutive_loss_limit})")
        if final_score < rules.min_score_threshold:
            reasons.append(
                f"Score below threshold ({final_score} < {_fmt(rules.min_score_threshold)})"
            )
        if time_multiplier == 0:
            reasons.append("Market is closed")
        return RiskCheckResult(approved=not reasons, reasons=reasons)
