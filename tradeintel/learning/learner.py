"""Outcome learner: rule-based analysis of closed trades and damped rule nudging.

Nothing here is a trained model. Proposals only appear once a group has at
least ``min_sample_size`` trades, and applying a proposal moves the live value
a fixed fraction of the way toward it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Iterable

import structlog

from tradeintel.config.settings import LearningConfig
from tradeintel.ledger.events import Event, EventType, format_timestamp, parse_timestamp, utc_now
from tradeintel.models import (
    PARAMETER_MARKET_MULTIPLIERS,
    PARAMETER_MIN_SCORE,
    ClosedTrade,
    MarketRegimeType,
    Signal,
    TradingRules,
)
from tradeintel.monitoring.metrics import Metrics
from tradeintel.strategy.regime import round_half_up

log = structlog.get_logger(__name__)

SCORE_BUCKETS = ("0-40", "40-60", "60-80", "80-100")
UNKNOWN_REGIME = "UNKNOWN"


def score_bucket(score: float) -> str:
    if score >= 80:
        return "80-100"
    if score >= 60:
        return "60-80"
    if score >= 40:
        return "40-60"
    return "0-40"


def _win_rate(wins: int, total: int) -> int:
    return round_half_up(wins / total * 100) if total else 0


def _avg(total: float, count: int) -> float:
    return round(total / count, 2) if count else 0.0


@dataclass(frozen=True)
class LearningAdjustment:
    """A proposed change to one rule parameter."""

    condition_type: str
    original_value: float
    adjusted_value: float
    reason: str
    trade_count: int
    success_rate: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition_type": self.condition_type,
            "original_value": self.original_value,
            "adjusted_value": self.adjusted_value,
            "reason": self.reason,
            "trade_count": self.trade_count,
            "success_rate": self.success_rate,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearningAdjustment":
        return cls(
            condition_type=data["condition_type"],
            original_value=float(data["original_value"]),
            adjusted_value=float(data["adjusted_value"]),
            reason=data.get("reason", ""),
            trade_count=int(data.get("trade_count", 0)),
            success_rate=int(data.get("success_rate", 0)),
            created_at=parse_timestamp(data["created_at"]),
        )


@dataclass
class GroupPerformance:
    name: str
    trades: int = 0
    wins: int = 0
    total_pnl: float = 0.0

    @property
    def win_rate(self) -> int:
        return _win_rate(self.wins, self.trades)

    @property
    def avg_pnl(self) -> float:
        return _avg(self.total_pnl, self.trades)

    def add(self, pnl: float) -> None:
        self.trades += 1
        self.total_pnl += pnl
        if pnl > 0:
            self.wins += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trades": self.trades,
            "wins": self.wins,
            "win_rate": self.win_rate,
            "avg_pnl": self.avg_pnl,
        }


@dataclass
class TradeStatistics:
    """Overall statistics for the analysis window."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0  # positive magnitude

    @property
    def win_rate(self) -> int:
        return _win_rate(self.winning_trades, self.total_trades)

    @property
    def avg_win(self) -> float:
        return _avg(self.gross_profit, self.winning_trades)

    @property
    def avg_loss(self) -> float:
        return _avg(self.gross_loss, self.losing_trades)

    @property
    def risk_reward_ratio(self) -> float:
        if self.avg_loss == 0:
            return 0.0
        return round(self.avg_win / self.avg_loss, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "avg_win": self.avg_win,
            "avg_loss": self.avg_loss,
            "risk_reward_ratio": self.risk_reward_ratio,
        }


@dataclass
class LearningReport:
    window_start: datetime
    window_end: datetime
    statistics: TradeStatistics
    regime_performance: dict[str, GroupPerformance] = field(default_factory=dict)
    score_buckets: dict[str, GroupPerformance] = field(default_factory=dict)
    exit_effectiveness: dict[str, GroupPerformance] = field(default_factory=dict)
    adjustments: list[LearningAdjustment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_start": format_timestamp(self.window_start),
            "window_end": format_timestamp(self.window_end),
            "statistics": self.statistics.to_dict(),
            "regime_performance": [p.to_dict() for p in self.regime_performance.values()],
            "score_buckets": [p.to_dict() for p in self.score_buckets.values()],
            "exit_effectiveness": [p.to_dict() for p in self.exit_effectiveness.values()],
            "adjustments": [a.to_dict() for a in self.adjustments],
        }


@dataclass(frozen=True)
class RuleChange:
    parameter: str
    previous_value: float
    new_value: float
    proposed_value: float

    def describe(self) -> str:
        return f"{self.parameter}: {self.previous_value:g} -> {self.new_value:g}"


@dataclass(frozen=True)
class AppliedAdjustments:
    rules: TradingRules
    changes: list[RuleChange] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return bool(self.changes)


def collect_outcomes(events: Iterable[Event]) -> tuple[list[ClosedTrade], list[Signal]]:
    """Pull closed trades and the latest version of each scored signal from ledger events."""
    trades: list[ClosedTrade] = []
    signals: dict[str, Signal] = {}
    for event in events:
        if event.event_type == EventType.POSITION_CLOSED and "trade" in event.payload:
            trades.append(ClosedTrade.from_dict(event.payload["trade"]))
        elif event.event_type == EventType.SIGNAL_SCORED and "signal" in event.payload:
            signal = Signal.from_dict(event.payload["signal"])
            signals[signal.signal_id] = signal
    return trades, list(signals.values())


class OutcomeLearner:
    """Analyze trade outcomes and propose bounded rule adjustments."""

    def __init__(self, config: LearningConfig | None = None, metrics: Metrics | None = None) -> None:
        self.config = config or LearningConfig()
        self.metrics = metrics

    def _bounded_multiplier(self, value: float) -> float:
        return round(max(self.config.min_multiplier, min(self.config.max_multiplier, value)), 4)

    def _bounded_threshold(self, value: float) -> float:
        return max(0.0, min(self.config.max_score_threshold, value))

    def analyze(
        self,
        closed_trades: Iterable[ClosedTrade],
        signals: Iterable[Signal],
        rules: TradingRules,
        now: datetime | None = None,
    ) -> LearningReport:
        now = now or utc_now()
        window_start = now - timedelta(days=self.config.window_days)
        trades = [t for t in closed_trades if window_start <= t.closed_at <= now]
        signal_by_id = {s.signal_id: s for s in signals}

        stats = TradeStatistics()
        regimes: dict[str, GroupPerformance] = {}
        exits: dict[str, GroupPerformance] = {}
        buckets = {name: GroupPerformance(name) for name in SCORE_BUCKETS}

        for trade in trades:
            pnl = trade.realized_pnl
            stats.total_trades += 1
            if pnl > 0:
                stats.winning_trades += 1
                stats.gross_profit += pnl
            elif pnl < 0:
                stats.losing_trades += 1
                stats.gross_loss += abs(pnl)

            signal = signal_by_id.get(trade.position.signal_id) if trade.position.signal_id else None
            regime = trade.position.regime_at_entry or (signal.regime if signal else None)
            regime_name = regime.value if regime else UNKNOWN_REGIME
            regimes.setdefault(regime_name, GroupPerformance(regime_name)).add(pnl)

            exit_name = trade.exit_type.value
            exits.setdefault(exit_name, GroupPerformance(exit_name)).add(pnl)

            if signal is not None:
                score = signal.final_score if signal.final_score is not None else signal.raw_score
                if score is not None:
                    buckets[score_bucket(score)].add(pnl)

        report = LearningReport(
            window_start=window_start,
            window_end=now,
            statistics=stats,
            regime_performance=regimes,
            score_buckets=buckets,
            exit_effectiveness=exits,
        )
        report.adjustments = self._propose(regimes, buckets, rules, now)
        log.info(
            "learning_analysis_complete",
            total_trades=stats.total_trades,
            win_rate=stats.win_rate,
            adjustments_proposed=len(report.adjustments),
        )
        return report

    def _propose(
        self,
        regimes: dict[str, GroupPerformance],
        buckets: dict[str, GroupPerformance],
        rules: TradingRules,
        now: datetime,
    ) -> list[LearningAdjustment]:
        cfg = self.config
        proposals: list[LearningAdjustment] = []

        def propose(parameter: str, target: float, perf: GroupPerformance, reason: str) -> None:
            current = rules.get_parameter(parameter)
            if target == current:
                return
            proposals.append(
                LearningAdjustment(
                    condition_type=parameter,
                    original_value=current,
                    adjusted_value=target,
                    reason=reason,
                    trade_count=perf.trades,
                    success_rate=perf.win_rate,
                    created_at=now,
                )
            )

        trending = regimes.get(MarketRegimeType.TRENDING.value)
        if trending and trending.trades >= cfg.min_sample_size and trending.win_rate < cfg.trending_min_win_rate:
            current = rules.market_multiplier(MarketRegimeType.TRENDING)
            propose(
                "market_multiplier_trending",
                self._bounded_multiplier(current - cfg.multiplier_step),
                trending,
                f"TRENDING condition has {trending.win_rate}% win rate, reduce multiplier",
            )

        ranging = regimes.get(MarketRegimeType.RANGE.value)
        if ranging and ranging.trades >= cfg.min_sample_size and ranging.win_rate > cfg.range_max_win_rate:
            current = rules.market_multiplier(MarketRegimeType.RANGE)
            propose(
                "market_multiplier_range",
                self._bounded_multiplier(current + cfg.multiplier_step / 2),
                ranging,
                f"RANGE condition performing well ({ranging.win_rate}% win rate), increase multiplier",
            )

        volatile = regimes.get(MarketRegimeType.HIGH_VOLATILITY.value)
        if (
            volatile
            and volatile.trades >= cfg.min_sample_size
            and volatile.win_rate < cfg.high_volatility_min_win_rate
        ):
            current = rules.market_multiplier(MarketRegimeType.HIGH_VOLATILITY)
            propose(
                "market_multiplier_volatility",
                self._bounded_multiplier(current - cfg.multiplier_step),
                volatile,
                f"HIGH_VOLATILITY has poor {volatile.win_rate}% win rate, reduce exposure",
            )

        mid = buckets["60-80"]
        if mid.trades >= cfg.min_sample_size and mid.win_rate < cfg.bucket_min_win_rate:
            propose(
                PARAMETER_MIN_SCORE,
                self._bounded_threshold(rules.min_score_threshold + cfg.threshold_step),
                mid,
                f"Scores 60-80 have {mid.win_rate}% win rate, raise threshold",
            )
        return proposals

    def apply_adjustments(
        self,
        rules: TradingRules,
        adjustments: Iterable[LearningAdjustment],
        now: datetime | None = None,
    ) -> AppliedAdjustments:
        """Move each parameter a damped step toward its most recent fresh proposal."""
        now = now or utc_now()
        cutoff = now - timedelta(hours=self.config.proposal_max_age_hours)
        latest: dict[str, LearningAdjustment] = {}
        for adjustment in adjustments:
            if adjustment.created_at < cutoff or adjustment.created_at > now:
                continue
            known = latest.get(adjustment.condition_type)
            if known is None or adjustment.created_at >= known.created_at:
                latest[adjustment.condition_type] = adjustment

        updated = rules
        changes: list[RuleChange] = []
        for name, adjustment in latest.items():
            if name not in PARAMETER_MARKET_MULTIPLIERS and name != PARAMETER_MIN_SCORE:
                log.warning("unknown_adjustment_skipped", condition_type=name)
                continue
            current = updated.get_parameter(name)
            proposed = adjustment.adjusted_value
            stepped = current + (proposed - current) * self.config.damping
            if name == PARAMETER_MIN_SCORE:
                new_value = float(round_half_up(self._bounded_threshold(stepped)))
            else:
                new_value = self._bounded_multiplier(stepped)
            # never overshoot the proposal or move away from it
            low, high = sorted((current, proposed))
            new_value = max(low, min(high, new_value))
            if new_value == current:
                continue
            updated = updated.with_parameter(name, new_value)
            changes.append(RuleChange(name, current, new_value, proposed))

        if not changes:
            return AppliedAdjustments(rules=rules)

        updated = replace(updated, version=rules.version + 1, updated_at=now)
        if self.metrics:
            self.metrics.adjustments_applied_total.inc(len(changes))
        log.info(
            "adjustments_applied",
            version=updated.version,
            changes=[change.describe() for change in changes],
        )
        return AppliedAdjustments(rules=updated, changes=changes)
