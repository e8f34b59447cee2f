"""Exit decisions, exit monitoring and paper execution."""

from tradeintel.execution.exits import ExitDecision, ExitDecisionEngine
from tradeintel.execution.monitor import ExitMonitor, MonitorResult
from tradeintel.execution.paper import PaperTradeResult, PaperTrader

__all__ = [
    "ExitDecision",
    "ExitDecisionEngine",
    "ExitMonitor",
    "MonitorResult",
    "PaperTrader",
    "PaperTradeResult",
]
