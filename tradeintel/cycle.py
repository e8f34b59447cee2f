"""One refresh → classify → score → monitor cycle across tracked symbols."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Literal

import structlog

from tradeintel.config.settings import Settings
from tradeintel.connectors.market_data import MarketDataSource, clean_symbol
from tradeintel.errors import InvalidInputError, UpstreamUnavailableError
from tradeintel.execution.exits import ExitDecisionEngine
from tradeintel.execution.monitor import ExitMonitor, MonitorResult
from tradeintel.execution.paper import PaperTrader
from tradeintel.features.pipeline import IndicatorEngine
from tradeintel.learning.store import RulesStore
from tradeintel.ledger.bus import EventBus
from tradeintel.ledger.events import EventType, format_timestamp, utc_now
from tradeintel.ledger.state import StateManager
from tradeintel.models import IndicatorSnapshot, Signal, TradingRules
from tradeintel.monitoring.metrics import Metrics
from tradeintel.risk.engine import RiskEngine
from tradeintel.strategy.regime import MarketClassifier, MarketRegime
from tradeintel.strategy.scoring import SignalScorer
from tradeintel.strategy.session import TradingSession
from tradeintel.strategy.signals import SignalGenerator

log = structlog.get_logger(__name__)

UpdateStatus = Literal["ok", "insufficient_data", "error"]


@dataclass(frozen=True)
class SymbolUpdate:
    symbol: str
    status: UpdateStatus
    snapshot: IndicatorSnapshot | None = None
    error: str | None = None


@dataclass
class CycleResult:
    started_at: datetime
    updates: list[SymbolUpdate] = field(default_factory=list)
    regime: MarketRegime | None = None
    signals: list[Signal] = field(default_factory=list)
    opened: list[str] = field(default_factory=list)
    exits: list[MonitorResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": format_timestamp(self.started_at),
            "updates": [
                {"symbol": u.symbol, "status": u.status, "error": u.error} for u in self.updates
            ],
            "regime": self.regime.to_dict() if self.regime else None,
            "signals": [s.to_dict() for s in self.signals],
            "opened": list(self.opened),
            "exits": [
                {
                    "position_id": r.position_id,
                    "symbol": r.symbol,
                    "status": r.status,
                    "reason": r.decision.reason if r.decision else None,
                    "unrealized_pnl": r.unrealized_pnl,
                }
                for r in self.exits
            ],
        }


class TradingCycle:
    """Wire the pipeline components together for one cycle."""

    def __init__(
        self,
        settings: Settings,
        source: MarketDataSource,
        bus: EventBus,
        state_manager: StateManager,
        rules_store: RulesStore | None = None,
        metrics: Metrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.source = source
        self.bus = bus
        self.state_manager = state_manager
        self.rules_store = rules_store
        self.metrics = metrics
        self._sleep = sleep

        session = TradingSession(settings.session)
        risk_engine = RiskEngine()
        self.engine = IndicatorEngine(settings.indicators)
        self.classifier = MarketClassifier(settings.regime, session)
        self.generator = SignalGenerator(settings.paper)
        self.scorer = SignalScorer(settings.scoring, session, risk_engine)
        self.exit_monitor = ExitMonitor(
            bus,
            state_manager,
            ExitDecisionEngine(settings.exits),
            risk_engine,
            metrics,
            settings.user_id,
        )
        self.paper = PaperTrader(bus, state_manager, settings.paper, metrics, settings.user_id)
        self.snapshots: dict[str, IndicatorSnapshot] = {}
        self.regime: MarketRegime | None = None

    def active_rules(self) -> TradingRules:
        if self.rules_store is not None:
            return self.rules_store.load()
        return TradingRules.from_config(self.settings.rules)

    async def refresh_symbol(self, symbol: str, now: datetime) -> SymbolUpdate:
        interval = self.settings.market_data.interval
        try:
            candles = await self.source.fetch_candles(symbol, interval)
        except UpstreamUnavailableError as exc:
            log.warning("market_data_unavailable", symbol=symbol, source=exc.source, error=str(exc))
            await self.bus.publish(
                EventType.MARKET_DATA_UNAVAILABLE,
                {"symbol": symbol, "source": exc.source, "error": str(exc), "occurred_at": format_timestamp(now)},
                {"source": "cycle"},
            )
            return SymbolUpdate(symbol, "error", error=str(exc))
        except InvalidInputError as exc:
            log.warning("market_data_rejected", symbol=symbol, error=str(exc))
            return SymbolUpdate(symbol, "error", error=str(exc))

        if not candles:
            return SymbolUpdate(symbol, "insufficient_data")
        await self.bus.publish(
            EventType.CANDLES_FETCHED,
            {"symbol": symbol, "count": len(candles), "occurred_at": format_timestamp(now)},
            {"source": "cycle"},
        )
        snapshot = self.engine.compute(symbol, candles, interval)
        self.snapshots[snapshot.symbol] = snapshot
        await self.bus.publish(
            EventType.INDICATORS_COMPUTED,
            {"snapshot": snapshot.to_dict(), "occurred_at": format_timestamp(now)},
            {"source": "cycle"},
        )
        status: UpdateStatus = "ok" if snapshot.has_data else "insufficient_data"
        return SymbolUpdate(symbol, status, snapshot)

    async def score_symbol(
        self, snapshot: IndicatorSnapshot, rules: TradingRules, now: datetime
    ) -> Signal | None:
        signal = self.generator.generate(snapshot, now)
        if signal is None:
            return None
        state = self.state_manager.state_for(self.settings.user_id, now)
        score = self.scorer.score(snapshot, self.regime, state, rules, now)
        signal.apply_score(score, now)
        await self.bus.publish(
            EventType.SIGNAL_SCORED,
            {
                "user_id": self.settings.user_id,
                "occurred_at": format_timestamp(now),
                "signal": signal.to_dict(),
                "score": score.to_dict(),
            },
            {"source": "cycle"},
        )
        if self.metrics:
            self.metrics.record_score(score.final_score, score.is_tradable)
        return signal

    async def run(self, symbols: list[str] | None = None, now: datetime | None = None) -> CycleResult:
        now = now or utc_now()
        symbols = [clean_symbol(s) for s in (symbols or self.settings.market_data.symbols)]
        result = CycleResult(started_at=now)
        # only this run's fetches feed classification and exit prices
        self.snapshots = {}
        pacing = self.settings.market_data.pacing_delay_ms / 1000

        for index, symbol in enumerate(symbols):
            if index and pacing:
                await self._sleep(pacing)
            try:
                update = await self.refresh_symbol(symbol, now)
            except InvalidInputError as exc:
                update = SymbolUpdate(symbol, "error", error=str(exc))
            result.updates.append(update)

        self.regime = self.classifier.classify(self.snapshots.values(), now)
        result.regime = self.regime
        await self.bus.publish(
            EventType.MARKET_CLASSIFIED,
            {"regime": self.regime.to_dict(), "occurred_at": format_timestamp(now)},
            {"source": "cycle"},
        )
        if self.metrics:
            self.metrics.record_regime(self.regime.regime, self.regime.confidence)

        rules = self.active_rules()
        held_before = {p.position_id for p in self.state_manager.open_positions()}
        for update in result.updates:
            if update.status != "ok" or update.snapshot is None:
                continue
            signal = await self.score_symbol(update.snapshot, rules, now)
            if signal is None:
                continue
            result.signals.append(signal)
            if signal.is_tradable:
                opened = await self.paper.open_from_signal(signal, self.regime, now)
                if opened.position is not None:
                    result.opened.append(opened.position.position_id)

        prices = {symbol: s.close for symbol, s in self.snapshots.items() if s.close}
        result.exits = await self.exit_monitor.monitor(
            prices, self.snapshots, self.regime, rules, now, position_ids=held_before
        )

        if self.metrics:
            self.metrics.update_state(
                self.state_manager.state_for(self.settings.user_id, now),
                len(self.state_manager.open_positions()),
            )
        log.info(
            "cycle_complete",
            symbols=len(symbols),
            ok=sum(1 for u in result.updates if u.status == "ok"),
            regime=self.regime.regime.value,
            signals=len(result.signals),
            opened=len(result.opened),
            closed=sum(1 for r in result.exits if r.status == "CLOSED"),
        )
        return result
