import logging
from datetime import datetime, timedelta, timezone

import structlog

from tradeintel.config.settings import MonitoringConfig
from tradeintel.ledger.events import Event, EventType
from tradeintel.models import ExitType, MarketRegimeType, Position
from tradeintel.monitoring.logging import configure_logging
from tradeintel.monitoring.trade_log import TradeJournal

OPENED_AT = datetime(2024, 1, 10, 4, 0, tzinfo=timezone.utc)


def _closed_event(sequence_num: int, exit_context: dict) -> Event:
    position = Position(
        position_id=f"p-{sequence_num}",
        symbol="RELIANCE",
        direction="BUY",
        entry_price=100.0,
        quantity=2.0,
        opened_at=OPENED_AT,
        signal_id="s-1",
        regime_at_entry=MarketRegimeType.TRENDING,
    )
    trade = position.close(102.0, ExitType.TARGET_HIT, "Target reached", OPENED_AT + timedelta(minutes=25))
    return Event(
        event_id=str(sequence_num),
        event_type=EventType.POSITION_CLOSED,
        timestamp=trade.closed_at,
        sequence_num=sequence_num,
        payload={"trade": trade.to_dict(), "exit_context": exit_context},
    )


def test_trade_journal_writes_closed_trades(workspace_tmp_path) -> None:
    journal = TradeJournal(workspace_tmp_path / "logs" / "trades.csv")
    journal.handle_event(
        _closed_event(
            1,
            {
                "market_condition": "TRENDING",
                "momentum_at_exit": 42.5,
                "volume_at_exit": 1.1,
                "vwap_position": "ABOVE",
            },
        )
    )

    [row] = journal.rows()
    assert row["position_id"] == "p-1"
    assert row["exit_type"] == "TARGET_HIT"
    assert float(row["realized_pnl"]) == 4.0
    assert row["minutes_held"] == "25"
    assert row["regime_at_entry"] == "TRENDING"
    assert row["vwap_position"] == "ABOVE"


def test_trade_journal_ignores_other_events_and_blank_context(workspace_tmp_path) -> None:
    path = workspace_tmp_path / "trades.csv"
    journal = TradeJournal(path)
    journal.handle_event(
        Event("0", EventType.POSITION_OPENED, OPENED_AT, 0, {"position": {"position_id": "p-0"}})
    )
    journal.handle_event(
        _closed_event(
            2,
            {"market_condition": "RANGE", "momentum_at_exit": None, "volume_at_exit": None, "vwap_position": None},
        )
    )

    reopened = TradeJournal(path)
    [row] = reopened.rows()
    assert row["position_id"] == "p-2"
    assert row["momentum_at_exit"] == ""
    assert row["vwap_position"] == ""
    assert path.read_text().count("position_id") == 1


def test_configure_logging_writes_errors_file(workspace_tmp_path) -> None:
    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        configure_logging("INFO", str(workspace_tmp_path), MonitoringConfig())
        structlog.get_logger("tradeintel.test").error("ledger_write_failed", path="x")
        structlog.get_logger("tradeintel.test").info("cycle_complete")
        for handler in root.handlers:
            handler.flush()
        content = (workspace_tmp_path / "errors.log").read_text()
        assert "ledger_write_failed" in content
        assert "cycle_complete" not in content
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        structlog.reset_defaults()
