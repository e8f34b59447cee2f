"""Per-day trading state rebuilt from ledger events."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any

import structlog

from tradeintel.ledger.events import Event, EventType
from tradeintel.models import ClosedTrade, Position
from tradeintel.strategy.session import TradingSession

log = structlog.get_logger(__name__)

DEFAULT_USER = "default"


@dataclass
class TradingState:
    """Safety-gate counters for one user on one trading day."""

    user_id: str = DEFAULT_USER
    trading_date: date | None = None
    trades_today: int = 0
    daily_pnl: float = 0.0
    consecutive_losses: int = 0
    auto_mode_active: bool = True
    stop_reason: str | None = None
    last_trade_time: datetime | None = None
    wins_today: int = 0
    losses_today: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "trading_date": self.trading_date.isoformat() if self.trading_date else None,
            "trades_today": self.trades_today,
            "daily_pnl": self.daily_pnl,
            "consecutive_losses": self.consecutive_losses,
            "auto_mode_active": self.auto_mode_active,
            "stop_reason": self.stop_reason,
            "last_trade_time": self.last_trade_time.isoformat() if self.last_trade_time else None,
            "wins_today": self.wins_today,
            "losses_today": self.losses_today,
        }


class StateManager:
    """Rebuilds and updates state using events.

    One ``TradingState`` exists per (user, trading day in the exchange timezone);
    a new day starts from a fresh state. All mutation happens under a lock so
    the loss counters cannot lose updates.
    """

    def __init__(self, session: TradingSession | None = None) -> None:
        self.session = session or TradingSession()
        self._states: dict[tuple[str, date], TradingState] = {}
        self.positions: dict[str, Position] = {}
        self.closed_trades: list[ClosedTrade] = []
        self.last_event_sequence = 0
        self._lock = threading.RLock()

    def rebuild(self, events: list[Event]) -> None:
        with self._lock:
            self._states = {}
            self.positions = {}
            self.closed_trades = []
            self.last_event_sequence = 0
            for event in events:
                self.apply_event(event)

    def state_for(self, user_id: str, now: datetime) -> TradingState:
        """Return a copy of the user's state for the trading day containing `now`."""
        with self._lock:
            return replace(self._state(user_id, self.session.trading_date(now)))

    def open_positions(self) -> list[Position]:
        with self._lock:
            return list(self.positions.values())

    def has_position_for_signal(self, signal_id: str) -> bool:
        with self._lock:
            return any(p.signal_id == signal_id for p in self.positions.values())

    def _state(self, user_id: str, trading_date: date) -> TradingState:
        key = (user_id, trading_date)
        state = self._states.get(key)
        if state is None:
            state = TradingState(user_id=user_id, trading_date=trading_date)
            self._states[key] = state
        return state

    def apply_event(self, event: Event) -> None:
        handler = {
            EventType.POSITION_OPENED: self._handle_position_opened,
            EventType.POSITION_CLOSED: self._handle_position_closed,
            EventType.AUTO_MODE_STOPPED: self._handle_auto_mode_stopped,
            EventType.AUTO_MODE_REARMED: self._handle_auto_mode_rearmed,
            EventType.MANUAL_INTERVENTION: self._handle_manual_intervention,
        }.get(event.event_type)
        with self._lock:
            self.last_event_sequence = max(self.last_event_sequence, event.sequence_num)
            if handler:
                user_id = event.payload.get("user_id") or DEFAULT_USER
                state = self._state(user_id, self.session.trading_date(event.occurred_at))
                handler(state, event.payload, event.occurred_at)

    def _handle_position_opened(
        self, state: TradingState, payload: dict[str, Any], timestamp: datetime
    ) -> None:
        position = Position.from_dict(payload["position"])
        self.positions[position.position_id] = position
        state.trades_today += 1
        state.last_trade_time = timestamp

    def _handle_position_closed(
        self, state: TradingState, payload: dict[str, Any], timestamp: datetime
    ) -> None:
        trade = ClosedTrade.from_dict(payload["trade"])
        self.positions.pop(trade.position.position_id, None)
        self.closed_trades.append(trade)
        state.daily_pnl = round(state.daily_pnl + trade.realized_pnl, 2)
        if trade.realized_pnl < 0:
            state.consecutive_losses += 1
            state.losses_today += 1
        else:
            state.consecutive_losses = 0
            if trade.realized_pnl > 0:
                state.wins_today += 1

    def _handle_auto_mode_stopped(
        self, state: TradingState, payload: dict[str, Any], timestamp: datetime
    ) -> None:
        state.auto_mode_active = False
        state.stop_reason = payload.get("reason") or "Auto-mode disabled"

    def _handle_auto_mode_rearmed(
        self, state: TradingState, payload: dict[str, Any], timestamp: datetime
    ) -> None:
        # The daily-loss gate is left alone; it clears only with the next trading day.
        state.auto_mode_active = True
        state.stop_reason = None
        state.consecutive_losses = 0

    def _handle_manual_intervention(
        self, state: TradingState, payload: dict[str, Any], timestamp: datetime
    ) -> None:
        state.auto_mode_active = False
        state.stop_reason = f"Manual intervention required: {payload.get('action', 'UNKNOWN')}"
        log.warning("auto_mode_halted", user_id=state.user_id, action=payload.get("action"))
