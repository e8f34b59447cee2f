"""Prometheus metrics definitions."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from tradeintel.ledger.state import TradingState
from tradeintel.models import MarketRegimeType


class Metrics:
    """Expose pipeline metrics for monitoring.

    Each instance owns its registry so several can coexist in one process.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        r = self.registry

        self.signals_scored_total = Counter(
            "signals_scored_total", "Signals scored", ["tradable"], registry=r
        )
        self.signal_final_score = Histogram(
            "signal_final_score",
            "Final signal score",
            buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
            registry=r,
        )
        self.exits_total = Counter("exits_total", "Positions closed", ["exit_type"], registry=r)
        self.adjustments_applied_total = Counter(
            "adjustments_applied_total", "Damped rule adjustments applied", registry=r
        )
        self.market_data_failures_total = Counter(
            "market_data_failures_total", "Market data fetch failures", ["source"], registry=r
        )

        self.regime = Gauge(
            "market_regime", "Active regime (1 for the current one)", ["regime"], registry=r
        )
        self.regime_confidence = Gauge(
            "market_regime_confidence", "Confidence of the current regime", registry=r
        )
        self.daily_pnl = Gauge("daily_pnl", "Realized PnL for the trading day", registry=r)
        self.consecutive_losses = Gauge("consecutive_losses", "Current losing streak", registry=r)
        self.trades_today = Gauge("trades_today", "Trades opened today", registry=r)
        self.auto_mode_active = Gauge("auto_mode_active", "Auto mode armed", registry=r)
        self.open_positions = Gauge("open_positions", "Number of open positions", registry=r)

    def start(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    def record_regime(self, regime: MarketRegimeType, confidence: int) -> None:
        for value in MarketRegimeType:
            self.regime.labels(regime=value.value).set(1 if value == regime else 0)
        self.regime_confidence.set(confidence)

    def record_score(self, final_score: int, tradable: bool) -> None:
        self.signals_scored_total.labels(tradable=str(tradable).lower()).inc()
        self.signal_final_score.observe(final_score)

    def update_state(self, state: TradingState, open_positions: int) -> None:
        self.daily_pnl.set(state.daily_pnl)
        self.consecutive_losses.set(state.consecutive_losses)
        self.trades_today.set(state.trades_today)
        self.auto_mode_active.set(1 if state.auto_mode_active else 0)
        self.open_positions.set(open_positions)
