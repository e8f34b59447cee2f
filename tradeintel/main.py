"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import orjson
import structlog

from tradeintel.config.settings import Settings, load_settings
from tradeintel.connectors.market_data import AlphaVantageSource, FallbackMarketDataSource
from tradeintel.cycle import TradingCycle
from tradeintel.errors import RulesConflictError
from tradeintel.learning import AdjustmentStore, OutcomeLearner, RulesStore, collect_outcomes
from tradeintel.ledger import EventBus, EventLedger, EventType, StateManager
from tradeintel.ledger.events import format_timestamp, utc_now
from tradeintel.models import TradingRules
from tradeintel.monitoring import Metrics, TradeJournal, configure_logging
from tradeintel.strategy.session import TradingSession

log = structlog.get_logger(__name__)


def _print(data: dict) -> None:
    print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def _rules_store(settings: Settings) -> RulesStore:
    return RulesStore(settings.storage.state_path, TradingRules.from_config(settings.rules))


def _build_runtime(settings: Settings) -> tuple[EventLedger, EventBus, StateManager]:
    ledger = EventLedger(settings.storage.ledger_path)
    bus = EventBus(ledger)
    state_manager = StateManager(TradingSession(settings.session))
    state_manager.rebuild(ledger.load_all())
    bus.register_all(state_manager.apply_event)
    journal = TradeJournal(Path(settings.storage.logs_path) / "trades.csv")
    bus.register(EventType.POSITION_CLOSED, journal.handle_event)
    return ledger, bus, state_manager


def _build_cycle(settings: Settings, metrics: Metrics) -> tuple[TradingCycle, AlphaVantageSource]:
    _, bus, state_manager = _build_runtime(settings)
    primary = AlphaVantageSource(
        settings.alpha_vantage_api_key,
        settings.market_data,
        log_http=settings.monitoring.log_http,
    )
    source = FallbackMarketDataSource([primary], metrics)
    cycle = TradingCycle(settings, source, bus, state_manager, _rules_store(settings), metrics)
    return cycle, primary


async def run_cycle(settings: Settings, symbols: list[str] | None) -> int:
    errors = settings.validate_for_cycle()
    if errors:
        log.error("settings_validation_failed", errors=errors)
        return 1
    cycle, primary = _build_cycle(settings, Metrics())
    try:
        result = await cycle.run(symbols)
    finally:
        await primary.close()
    _print(result.to_dict())
    return 0


async def watch(
    settings: Settings,
    symbols: list[str] | None,
    every_sec: float,
    max_cycles: int | None = None,
) -> int:
    """Run cycles back to back, serving Prometheus metrics, until interrupted."""
    errors = settings.validate_for_cycle()
    if errors:
        log.error("settings_validation_failed", errors=errors)
        return 1
    metrics = Metrics()
    try:
        metrics.start(settings.monitoring.metrics_port)
    except OSError as exc:
        log.warning("metrics_start_failed", error=str(exc))
    cycle, primary = _build_cycle(settings, metrics)
    completed = 0
    try:
        while max_cycles is None or completed < max_cycles:
            try:
                await cycle.run(symbols)
            except Exception as exc:
                log.warning("cycle_loop_error", error=str(exc))
            completed += 1
            if max_cycles is None or completed < max_cycles:
                await asyncio.sleep(every_sec)
    finally:
        await primary.close()
    return 0


def learn(settings: Settings, apply: bool) -> int:
    ledger = EventLedger(settings.storage.ledger_path)
    learner = OutcomeLearner(settings.learning)
    rules_store = _rules_store(settings)
    adjustment_store = AdjustmentStore(settings.storage.state_path)
    now = utc_now()

    rules = rules_store.load()
    trades, signals = collect_outcomes(ledger.iter_events([EventType.POSITION_CLOSED, EventType.SIGNAL_SCORED]))
    report = learner.analyze(trades, signals, rules, now)
    if report.adjustments:
        adjustment_store.upsert(report.adjustments)
        ledger.append(
            EventType.ADJUSTMENTS_PROPOSED,
            {"occurred_at": format_timestamp(now), "adjustments": [a.to_dict() for a in report.adjustments]},
            {"source": "learn_cli"},
        )
    output = report.to_dict()

    if apply:
        applied = learner.apply_adjustments(rules, adjustment_store.load_all(), now)
        if applied.applied:
            try:
                rules_store.save(applied.rules, expected_version=rules.version)
            except RulesConflictError as exc:
                log.error("rules_update_conflict", error=str(exc))
                return 2
            ledger.append(
                EventType.RULES_ADJUSTED,
                {
                    "occurred_at": format_timestamp(now),
                    "version": applied.rules.version,
                    "changes": [change.describe() for change in applied.changes],
                    "rules": applied.rules.to_dict(),
                },
                {"source": "learn_cli"},
            )
        output["applied_changes"] = [change.describe() for change in applied.changes]
    _print(output)
    return 0


async def rearm(settings: Settings, reason: str) -> int:
    _, bus, state_manager = _build_runtime(settings)
    now = utc_now()
    state = state_manager.state_for(settings.user_id, now)
    await bus.publish(
        EventType.AUTO_MODE_REARMED,
        {
            "user_id": settings.user_id,
            "occurred_at": format_timestamp(now),
            "reason": reason,
            "previous_stop_reason": state.stop_reason,
        },
        {"source": "rearm_cli"},
    )
    if state.auto_mode_active:
        print("Auto mode was already active. Recorded rearm event.")
    else:
        print(f"Auto mode re-armed (was stopped: {state.stop_reason}).")
    return 0


def status(settings: Settings) -> int:
    _, _, state_manager = _build_runtime(settings)
    now = utc_now()
    state = state_manager.state_for(settings.user_id, now)
    data = state.to_dict()
    data["open_positions"] = [p.to_dict() for p in state_manager.open_positions()]
    data["rules"] = _rules_store(settings).load().to_dict()
    _print(data)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradeintel", description="Intraday trading intelligence.")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    cycle = sub.add_parser("run-cycle", help="Refresh indicators, classify, score and monitor once")
    cycle.add_argument("--symbols", nargs="*", default=None, help="Symbols to refresh (default: config)")

    watch_cmd = sub.add_parser("watch", help="Run cycles on an interval and serve metrics")
    watch_cmd.add_argument("--symbols", nargs="*", default=None, help="Symbols to refresh (default: config)")
    watch_cmd.add_argument("--every", type=float, default=300.0, help="Seconds between cycles")
    watch_cmd.add_argument("--max-cycles", type=int, default=None, help="Stop after this many cycles")

    learn_cmd = sub.add_parser("learn", help="Analyze closed trades and propose rule adjustments")
    learn_cmd.add_argument("--apply", action="store_true", help="Apply damped adjustments to the rules")

    rearm_cmd = sub.add_parser("rearm", help="Re-enable auto mode after a safety stop")
    rearm_cmd.add_argument("--reason", default="manual_rearm", help="Reason for re-arming")

    sub.add_parser("status", help="Show today's trading state and active rules")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(settings.monitoring.log_level, settings.storage.logs_path, settings.monitoring)

    if args.command == "run-cycle":
        return asyncio.run(run_cycle(settings, args.symbols))
    if args.command == "watch":
        try:
            return asyncio.run(watch(settings, args.symbols, args.every, args.max_cycles))
        except KeyboardInterrupt:
            log.info("watch_interrupted")
            return 0
    if args.command == "learn":
        return learn(settings, args.apply)
    if args.command == "rearm":
        return asyncio.run(rearm(settings, args.reason))
    return status(settings)


if __name__ == "__main__":
    raise SystemExit(main())
