"""Event ledger and sourcing module."""

from tradeintel.ledger.bus import EventBus
from tradeintel.ledger.events import Event, EventType
from tradeintel.ledger.state import StateManager, TradingState
from tradeintel.ledger.store import EventLedger

__all__ = ["Event", "EventType", "EventLedger", "EventBus", "StateManager", "TradingState"]
