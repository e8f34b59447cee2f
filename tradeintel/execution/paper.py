"""Paper trading: convert tradable signals into simulated positions.

Positions are opened by publishing ``POSITION_OPENED`` to the event bus; the
state manager folds the event into the daily counters, so the paper book and
the safety gate always agree.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

import structlog

from tradeintel.config.settings import PaperConfig
from tradeintel.ledger.bus import EventBus
from tradeintel.ledger.events import EventType, format_timestamp
from tradeintel.ledger.state import DEFAULT_USER, StateManager
from tradeintel.models import MarketRegimeType, Position, Signal
from tradeintel.monitoring.metrics import Metrics
from tradeintel.strategy.regime import MarketRegime, resolve_regime

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaperTradeResult:
    """Result of a paper entry attempt."""

    opened: bool
    position: Position | None = None
    reason: str | None = None  # Why the entry was refused


class PaperTrader:
    def __init__(
        self,
        bus: EventBus,
        state_manager: StateManager,
        config: PaperConfig | None = None,
        metrics: Metrics | None = None,
        user_id: str = DEFAULT_USER,
    ) -> None:
        self.bus = bus
        self.state_manager = state_manager
        self.config = config or PaperConfig()
        self.metrics = metrics
        self.user_id = user_id

    def _refusal(
        self, signal: Signal, regime: MarketRegimeType, now: datetime
    ) -> str | None:
        if not self.config.enabled:
            return "Paper trading disabled"
        if regime == MarketRegimeType.NO_TRADE:
            return "Market conditions not suitable for trading"
        if signal.converted or self.state_manager.has_position_for_signal(signal.signal_id):
            return "Signal already converted"
        if signal.is_expired(now):
            return "Signal expired"
        if not signal.is_tradable:
            return signal.rejection_reason or "Signal not tradable"
        return None

    async def open_from_signal(
        self,
        signal: Signal,
        regime: MarketRegime | MarketRegimeType | None,
        now: datetime,
        quantity: float | None = None,
    ) -> PaperTradeResult:
        regime_type = regime if isinstance(regime, MarketRegimeType) else resolve_regime(regime, now)
        reason = self._refusal(signal, regime_type, now)
        if reason:
            log.info("paper_entry_refused", signal_id=signal.signal_id, symbol=signal.symbol, reason=reason)
            return PaperTradeResult(opened=False, reason=reason)

        position = Position(
            position_id=str(uuid4()),
            symbol=signal.symbol,
            direction=signal.direction,
            entry_price=signal.entry_price,
            quantity=quantity or self.config.default_quantity,
            opened_at=now,
            signal_id=signal.signal_id,
            target_price=signal.target_price,
            stoploss_price=signal.stoploss_price,
            regime_at_entry=regime_type,
            score_at_entry=signal.final_score,
        )
        await self.bus.publish(
            EventType.POSITION_OPENED,
            {
                "user_id": self.user_id,
                "occurred_at": format_timestamp(now),
                "position": position.to_dict(),
            },
            {"source": "paper_trader"},
        )
        signal.mark_converted()
        log.info(
            "paper_position_opened",
            position_id=position.position_id,
            symbol=position.symbol,
            direction=position.direction,
            entry_price=position.entry_price,
            score=signal.final_score,
        )
        if self.metrics:
            self.metrics.update_state(
                self.state_manager.state_for(self.user_id, now),
                len(self.state_manager.open_positions()),
            )
        return PaperTradeResult(opened=True, position=position)

    def status(self, now: datetime) -> dict:
        """Summary of today's paper book."""
        state = self.state_manager.state_for(self.user_id, now)
        decided = state.wins_today + state.losses_today
        return {
            "enabled": self.config.enabled,
            "open_positions": len(self.state_manager.open_positions()),
            "trades_today": state.trades_today,
            "daily_pnl": state.daily_pnl,
            "win_rate": round(state.wins_today / decided * 100, 2) if decided else 0.0,
            "auto_mode_active": state.auto_mode_active,
            "stop_reason": state.stop_reason,
        }
