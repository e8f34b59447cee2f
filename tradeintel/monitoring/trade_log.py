"""CSV journal of closed trades."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

from tradeintel.ledger.events import Event, EventType


class TradeJournal:
    """
    Append one row per `PositionClosed` event.

    The row carries the exit context (momentum, volume and VWAP side at exit)
    so exit effectiveness can be reviewed outside the ledger.
    """

    FIELDNAMES = [
        "position_id",
        "signal_id",
        "symbol",
        "direction",
        "quantity",
        "entry_price",
        "exit_price",
        "opened_at",
        "closed_at",
        "minutes_held",
        "realized_pnl",
        "pnl_percent",
        "exit_type",
        "exit_reason",
        "regime_at_entry",
        "market_condition",
        "momentum_at_exit",
        "volume_at_exit",
        "vwap_position",
    ]

    def __init__(self, log_path: str | Path) -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_header()

    def handle_event(self, event: Event) -> None:
        if event.event_type != EventType.POSITION_CLOSED:
            return
        trade = event.payload.get("trade", {})
        context = event.payload.get("exit_context", {})
        row: dict[str, Any] = {name: trade.get(name, "") for name in self.FIELDNAMES}
        for key in ("market_condition", "momentum_at_exit", "volume_at_exit", "vwap_position"):
            value = context.get(key)
            row[key] = "" if value is None else value
        for key, value in list(row.items()):
            if value is None:
                row[key] = ""
        self._append_row(row)

    def rows(self) -> list[dict[str, str]]:
        with open(self.log_path, newline="") as handle:
            return list(csv.DictReader(handle))

    def _ensure_header(self) -> None:
        if self.log_path.exists():
            return
        with open(self.log_path, "w", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.FIELDNAMES)
            writer.writeheader()

    def _append_row(self, row: dict[str, Any]) -> None:
        with open(self.log_path, "a", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.FIELDNAMES)
            writer.writerow(row)
