"""Exit monitoring loop: evaluate open positions and close the ones that should exit."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Mapping

import structlog

from tradeintel.execution.exits import ExitDecision, ExitDecisionEngine
from tradeintel.ledger.bus import EventBus
from tradeintel.ledger.events import EventType, format_timestamp
from tradeintel.ledger.state import DEFAULT_USER, StateManager
from tradeintel.models import (
    ClosedTrade,
    ExitType,
    IndicatorSnapshot,
    MarketRegimeType,
    Position,
    TradingRules,
)
from tradeintel.monitoring.metrics import Metrics
from tradeintel.risk.engine import RiskEngine
from tradeintel.strategy.regime import MarketRegime, resolve_regime

log = structlog.get_logger(__name__)

MonitorStatus = Literal["CLOSED", "OPEN", "NO_PRICE"]


@dataclass(frozen=True)
class MonitorResult:
    position_id: str
    symbol: str
    status: MonitorStatus
    decision: ExitDecision | None = None
    trade: ClosedTrade | None = None
    unrealized_pnl: float | None = None


def exit_context(
    price: float,
    snapshot: IndicatorSnapshot | None,
    regime: MarketRegimeType,
) -> dict:
    """Indicator context recorded alongside every exit."""
    vwap = snapshot.vwap if snapshot else None
    return {
        "market_condition": regime.value,
        "momentum_at_exit": snapshot.trend_strength if snapshot else None,
        "volume_at_exit": snapshot.relative_volume if snapshot else None,
        "vwap_position": None if vwap is None else ("ABOVE" if price >= vwap else "BELOW"),
    }


class ExitMonitor:
    """Close positions through the event bus so state and journal stay in step.

    The state manager must be subscribed to the bus for position and
    auto-mode events.
    """

    def __init__(
        self,
        bus: EventBus,
        state_manager: StateManager,
        engine: ExitDecisionEngine | None = None,
        risk_engine: RiskEngine | None = None,
        metrics: Metrics | None = None,
        user_id: str = DEFAULT_USER,
    ) -> None:
        self.bus = bus
        self.state_manager = state_manager
        self.engine = engine or ExitDecisionEngine()
        self.risk_engine = risk_engine or RiskEngine()
        self.metrics = metrics
        self.user_id = user_id

    async def monitor(
        self,
        prices: Mapping[str, float],
        snapshots: Mapping[str, IndicatorSnapshot],
        regime: MarketRegime | MarketRegimeType | None,
        rules: TradingRules,
        now: datetime,
        position_ids: set[str] | None = None,
    ) -> list[MonitorResult]:
        """Evaluate open positions, restricted to `position_ids` when given."""
        regime_type = regime if isinstance(regime, MarketRegimeType) else resolve_regime(regime, now)
        results: list[MonitorResult] = []
        for position in self.state_manager.open_positions():
            if position_ids is not None and position.position_id not in position_ids:
                continue
            price = prices.get(position.symbol)
            if price is None:
                log.warning("exit_check_skipped_no_price", position_id=position.position_id, symbol=position.symbol)
                results.append(MonitorResult(position.position_id, position.symbol, "NO_PRICE"))
                continue
            snapshot = snapshots.get(position.symbol)
            decision = self.engine.evaluate(position, price, snapshot, regime_type, now=now)
            if decision.should_exit and decision.exit_type is not None:
                trade = await self.close_position(
                    position,
                    price,
                    decision.exit_type,
                    decision.reason,
                    snapshot,
                    regime_type,
                    rules,
                    now,
                )
                results.append(
                    MonitorResult(position.position_id, position.symbol, "CLOSED", decision, trade)
                )
            else:
                pnl, _ = position.unrealized_pnl(price)
                results.append(
                    MonitorResult(
                        position.position_id,
                        position.symbol,
                        "OPEN",
                        decision,
                        unrealized_pnl=pnl,
                    )
                )
        return results

    async def close_position(
        self,
        position: Position,
        price: float,
        exit_type: ExitType,
        reason: str,
        snapshot: IndicatorSnapshot | None,
        regime: MarketRegimeType,
        rules: TradingRules,
        now: datetime,
    ) -> ClosedTrade:
        trade = position.close(price, exit_type, reason, now)
        await self.bus.publish(
            EventType.POSITION_CLOSED,
            {
                "user_id": self.user_id,
                "occurred_at": format_timestamp(now),
                "trade": trade.to_dict(),
                "exit_context": exit_context(price, snapshot, regime),
            },
            {"source": "exit_monitor"},
        )
        log.info(
            "position_closed",
            position_id=position.position_id,
            symbol=position.symbol,
            exit_type=exit_type.value,
            reason=reason,
            realized_pnl=trade.realized_pnl,
            minutes_held=trade.minutes_held,
        )
        if self.metrics:
            self.metrics.exits_total.labels(exit_type=exit_type.value).inc()
        await self._enforce_safety_gate(rules, now)
        return trade

    async def stop_all(
        self,
        prices: Mapping[str, float],
        reason: str,
        rules: TradingRules,
        now: datetime,
    ) -> list[ClosedTrade]:
        """Flatten every priced position with AUTO_STOP."""
        closed = []
        for position in self.state_manager.open_positions():
            price = prices.get(position.symbol)
            if price is None:
                continue
            closed.append(
                await self.close_position(
                    position, price, ExitType.AUTO_STOP, reason, None, MarketRegimeType.NO_TRADE, rules, now
                )
            )
        return closed

    async def _enforce_safety_gate(self, rules: TradingRules, now: datetime) -> None:
        state = self.state_manager.state_for(self.user_id, now)
        reason = self.risk_engine.safety_gate(state, rules)
        if reason is None or not state.auto_mode_active:
            return
        await self.bus.publish(
            EventType.AUTO_MODE_STOPPED,
            {"user_id": self.user_id, "occurred_at": format_timestamp(now), "reason": reason},
            {"source": "exit_monitor"},
        )
        log.warning("auto_mode_stopped", user_id=self.user_id, reason=reason)
