import os
import threading
from datetime import datetime, timedelta, timezone

import pytest

from tradeintel.errors import RulesConflictError
from tradeintel.learning.learner import LearningAdjustment, OutcomeLearner, collect_outcomes, score_bucket
from tradeintel.learning.store import AdjustmentStore, RulesStore
from tradeintel.ledger.events import Event, EventType
from tradeintel.models import ClosedTrade, ExitType, MarketRegimeType, Position, Signal, TradingRules
from tradeintel.monitoring.metrics import Metrics
from tradeintel.utils.file_lock import LockTimeout, RulesWriteLock

NOW = datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)


def _trade(
    pnl: float,
    regime: MarketRegimeType | None = MarketRegimeType.TRENDING,
    exit_type: ExitType = ExitType.TARGET_HIT,
    signal_id: str | None = None,
    closed_at: datetime = NOW - timedelta(hours=1),
) -> ClosedTrade:
    position = Position(
        position_id=f"p-{signal_id or id(pnl)}",
        symbol="RELIANCE",
        direction="BUY",
        entry_price=100.0,
        quantity=1.0,
        opened_at=closed_at - timedelta(minutes=20),
        signal_id=signal_id,
        regime_at_entry=regime,
    )
    return position.close(100.0 + pnl, exit_type, "test", closed_at)


def _signal(signal_id: str, final_score: int, regime: MarketRegimeType = MarketRegimeType.RANGE) -> Signal:
    return Signal(
        signal_id=signal_id,
        symbol="RELIANCE",
        direction="BUY",
        entry_price=100.0,
        target_price=102.0,
        stoploss_price=99.0,
        created_at=NOW - timedelta(hours=2),
        expires_at=NOW - timedelta(hours=1, minutes=45),
        raw_score=final_score,
        final_score=final_score,
        regime=regime,
        is_tradable=True,
    )


def _adjustment(name: str, original: float, adjusted: float, created_at: datetime = NOW) -> LearningAdjustment:
    return LearningAdjustment(
        condition_type=name,
        original_value=original,
        adjusted_value=adjusted,
        reason="test",
        trade_count=5,
        success_rate=40,
        created_at=created_at,
    )


def test_score_bucket_edges() -> None:
    assert score_bucket(39) == "0-40"
    assert score_bucket(40) == "40-60"
    assert score_bucket(60) == "60-80"
    assert score_bucket(80) == "80-100"


def test_statistics_and_groups() -> None:
    trades = [
        _trade(3.0, exit_type=ExitType.TARGET_HIT),
        _trade(1.0, MarketRegimeType.RANGE, ExitType.EARLY_EXIT),
        _trade(-2.0, MarketRegimeType.RANGE, ExitType.STOPLOSS_HIT),
        _trade(-5.0, closed_at=NOW - timedelta(days=8)),
    ]
    report = OutcomeLearner().analyze(trades, [], TradingRules(), NOW)

    stats = report.statistics
    assert stats.total_trades == 3
    assert stats.win_rate == 67
    assert stats.avg_win == 2.0
    assert stats.avg_loss == 2.0
    assert stats.risk_reward_ratio == 1.0
    assert report.regime_performance["RANGE"].trades == 2
    assert report.regime_performance["RANGE"].win_rate == 50
    assert report.exit_effectiveness["STOPLOSS_HIT"].avg_pnl == -2.0
    assert report.adjustments == []


def test_regime_falls_back_to_signal() -> None:
    trades = [_trade(1.0, regime=None, signal_id="s-1"), _trade(1.0, regime=None, signal_id="s-missing")]
    report = OutcomeLearner().analyze(trades, [_signal("s-1", 85)], TradingRules(), NOW)
    assert report.regime_performance["RANGE"].trades == 1
    assert report.regime_performance["UNKNOWN"].trades == 1
    assert report.score_buckets["80-100"].trades == 1


def test_trending_proposal_needs_sample_size() -> None:
    learner = OutcomeLearner()
    four = [_trade(1.0), _trade(-1.0), _trade(-1.0), _trade(-1.0)]
    assert learner.analyze(four, [], TradingRules(), NOW).adjustments == []

    report = learner.analyze(four + [_trade(1.0)], [], TradingRules(), NOW)
    [adjustment] = report.adjustments
    assert adjustment.condition_type == "market_multiplier_trending"
    assert adjustment.original_value == 1.2
    assert adjustment.adjusted_value == 1.0
    assert adjustment.trade_count == 5
    assert adjustment.success_rate == 40
    assert adjustment.reason == "TRENDING condition has 40% win rate, reduce multiplier"


def test_range_and_volatility_proposals() -> None:
    ranging = [_trade(1.0, MarketRegimeType.RANGE) for _ in range(4)] + [_trade(-1.0, MarketRegimeType.RANGE)]
    volatile = [_trade(-1.0, MarketRegimeType.HIGH_VOLATILITY) for _ in range(4)] + [
        _trade(1.0, MarketRegimeType.HIGH_VOLATILITY)
    ]
    report = OutcomeLearner().analyze(ranging + volatile, [], TradingRules(), NOW)
    proposals = {a.condition_type: a.adjusted_value for a in report.adjustments}
    assert proposals == {"market_multiplier_range": 0.9, "market_multiplier_volatility": 0.4}


def test_mid_bucket_raises_threshold() -> None:
    signals = [_signal(f"s-{i}", 70) for i in range(5)]
    trades = [
        _trade(1.0 if i < 2 else -1.0, MarketRegimeType.RANGE, signal_id=f"s-{i}") for i in range(5)
    ]
    report = OutcomeLearner().analyze(trades, signals, TradingRules(), NOW)
    [adjustment] = report.adjustments
    assert adjustment.condition_type == "min_score_threshold"
    assert adjustment.adjusted_value == 70.0
    assert report.score_buckets["60-80"].win_rate == 40


def test_apply_moves_a_damped_step() -> None:
    metrics = Metrics()
    applied = OutcomeLearner(metrics=metrics).apply_adjustments(
        TradingRules(version=3),
        [
            _adjustment("min_score_threshold", 60.0, 70.0),
            _adjustment("market_multiplier_trending", 1.2, 1.0),
        ],
        NOW,
    )
    assert applied.applied
    assert applied.rules.min_score_threshold == 62.0
    assert applied.rules.market_multiplier(MarketRegimeType.TRENDING) == 1.16
    assert applied.rules.version == 4
    assert applied.rules.updated_at == NOW
    assert [c.describe() for c in applied.changes] == [
        "min_score_threshold: 60 -> 62",
        "market_multiplier_trending: 1.2 -> 1.16",
    ]
    assert metrics.registry.get_sample_value("adjustments_applied_total") == 2.0


def test_apply_ignores_stale_and_unknown_proposals() -> None:
    rules = TradingRules()
    applied = OutcomeLearner().apply_adjustments(
        rules,
        [
            _adjustment("min_score_threshold", 60.0, 70.0, NOW - timedelta(hours=25)),
            _adjustment("high_confidence_bonus", 0.0, 5.0),
        ],
        NOW,
    )
    assert not applied.applied
    assert applied.rules is rules


def test_apply_uses_latest_proposal_per_parameter() -> None:
    applied = OutcomeLearner().apply_adjustments(
        TradingRules(),
        [
            _adjustment("min_score_threshold", 60.0, 70.0, NOW - timedelta(hours=2)),
            _adjustment("min_score_threshold", 60.0, 50.0, NOW - timedelta(hours=1)),
        ],
        NOW,
    )
    assert applied.rules.min_score_threshold == 58.0


def test_apply_never_overshoots() -> None:
    # 59.66 rounds to 60, past the proposal
    rules = TradingRules(min_score_threshold=59.6)
    applied = OutcomeLearner().apply_adjustments(rules, [_adjustment("min_score_threshold", 59.6, 59.9)], NOW)
    assert applied.rules.min_score_threshold == 59.9


def test_collect_outcomes_keeps_latest_signal() -> None:
    trade = _trade(2.0, signal_id="s-1")
    first = _signal("s-1", 50)
    second = _signal("s-1", 75)
    events = [
        Event("e1", EventType.SIGNAL_SCORED, NOW, 1, {"signal": first.to_dict()}),
        Event("e2", EventType.SIGNAL_SCORED, NOW, 2, {"signal": second.to_dict()}),
        Event("e3", EventType.POSITION_CLOSED, NOW, 3, {"trade": trade.to_dict()}),
        Event("e4", EventType.CANDLES_FETCHED, NOW, 4, {"symbol": "TCS"}),
    ]
    trades, signals = collect_outcomes(events)
    assert [t.realized_pnl for t in trades] == [2.0]
    assert [s.final_score for s in signals] == [75]


def test_rules_store_compare_and_set(workspace_tmp_path) -> None:
    store = RulesStore(workspace_tmp_path, TradingRules())
    assert store.load().version == 0

    store.save(TradingRules(min_score_threshold=62.0, version=1), expected_version=0)
    assert store.load().min_score_threshold == 62.0

    with pytest.raises(RulesConflictError) as excinfo:
        store.save(TradingRules(min_score_threshold=64.0, version=1), expected_version=0)
    assert excinfo.value.actual_version == 1
    assert store.load().min_score_threshold == 62.0


def test_rules_store_rejects_concurrent_writer(workspace_tmp_path) -> None:
    store = RulesStore(workspace_tmp_path, lock_timeout_sec=0)
    with RulesWriteLock(store.lock_file):
        with pytest.raises(RulesConflictError, match="already in progress"):
            store.save(TradingRules(version=1), expected_version=0)
    assert not store.rules_file.exists()

    store.save(TradingRules(version=1), expected_version=0)
    assert store.load().version == 1


def test_rules_store_waits_for_lock_release(workspace_tmp_path) -> None:
    store = RulesStore(workspace_tmp_path, lock_timeout_sec=5.0)
    holder = RulesWriteLock(store.lock_file)
    holder.acquire()
    timer = threading.Timer(0.2, holder.release)
    timer.start()
    try:
        store.save(TradingRules(min_score_threshold=61.0, version=1), expected_version=0)
    finally:
        timer.join()
    assert store.load().min_score_threshold == 61.0
    assert not holder.held


def test_write_lock_gives_up_after_timeout(workspace_tmp_path) -> None:
    path = workspace_tmp_path / "rules.lock"
    now = [0.0]
    sleeps: list[float] = []

    def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        now[0] += seconds

    with RulesWriteLock(path):
        waiter = RulesWriteLock(
            path, timeout_sec=0.5, poll_interval_sec=0.125, clock=lambda: now[0], sleep=fake_sleep
        )
        with pytest.raises(LockTimeout) as excinfo:
            waiter.acquire()
    assert len(sleeps) == 4
    assert excinfo.value.waited_sec == 0.5
    assert excinfo.value.holder.startswith(f"{os.getpid()}@")
    assert not waiter.held
    assert path.read_text() == ""


def test_adjustment_store_upserts_by_condition(workspace_tmp_path) -> None:
    store = AdjustmentStore(workspace_tmp_path)
    assert store.upsert([_adjustment("min_score_threshold", 60.0, 70.0, NOW - timedelta(hours=1))]) == 1
    assert store.upsert(
        [
            _adjustment("min_score_threshold", 60.0, 50.0),
            _adjustment("market_multiplier_range", 0.8, 0.9),
        ]
    ) == 2
    stored = {a.condition_type: a for a in store.load_all()}
    assert stored["min_score_threshold"].adjusted_value == 50.0
    assert stored["min_score_threshold"].created_at == NOW
    assert set(stored) == {"min_score_threshold", "market_multiplier_range"}
