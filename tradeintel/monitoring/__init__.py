"""Monitoring utilities."""

from tradeintel.monitoring.logging import configure_logging
from tradeintel.monitoring.metrics import Metrics
from tradeintel.monitoring.trade_log import TradeJournal

__all__ = ["configure_logging", "Metrics", "TradeJournal"]
