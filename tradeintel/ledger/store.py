"""Append-only JSONL event ledger."""

from __future__ import annotations

import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable

import orjson

from tradeintel.ledger.events import Event, EventType, new_event


class EventLedger:
    """Append-only event store with sequence tracking."""

    def __init__(self, ledger_path: str | Path) -> None:
        self.ledger_path = Path(ledger_path)
        self.ledger_path.mkdir(parents=True, exist_ok=True)
        self.events_file = self.ledger_path / "events.jsonl"
        self.sequence_file = self.ledger_path / "sequence.txt"
        self._lock = threading.Lock()
        self._sequence = self._load_sequence()

    def _load_sequence(self) -> int:
        seq = 0
        if self.sequence_file.exists():
            try:
                seq = int(self.sequence_file.read_text().strip())
            except ValueError:
                seq = 0
        # sequence.txt may lag the log if a writer died between the two writes
        if self.events_file.exists():
            seq = max(seq, self._read_last_sequence())
        return seq

    def _read_last_sequence(self) -> int:
        with open(self.events_file, "rb") as handle:
            handle.seek(0, os.SEEK_END)
            size = handle.tell()
            if size == 0:
                return 0
            offset = min(size, 4096)
            handle.seek(-offset, os.SEEK_END)
            chunk = handle.read(offset)
        lines = [line for line in chunk.splitlines() if line.strip()]
        if not lines:
            return 0
        try:
            last = orjson.loads(lines[-1])
        except orjson.JSONDecodeError:
            return 0
        return int(last.get("sequence_num", 0))

    def last_sequence(self) -> int:
        """Return the last known sequence number."""
        return self._sequence

    def append(
        self,
        event_type: EventType,
        payload: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Create and append a new event, then return it."""
        with self._lock:
            self._sequence += 1
            event = new_event(event_type, payload, self._sequence, metadata)
            self._write(event)
            self.sequence_file.write_text(str(self._sequence))
        return event

    def _write(self, event: Event) -> None:
        line = orjson.dumps(event.to_dict())
        with open(self.events_file, "ab") as handle:
            handle.write(line + b"\n")

    def iter_events(
        self,
        event_types: Iterable[EventType] | None = None,
        since: datetime | None = None,
    ) -> Iterable[Event]:
        """Iterate events in append order, optionally filtered by type and business time."""
        if not self.events_file.exists():
            return iter(())
        wanted = set(event_types) if event_types is not None else None

        def _iter() -> Iterable[Event]:
            with open(self.events_file, "rb") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    event = Event.from_dict(orjson.loads(line))
                    if wanted is not None and event.event_type not in wanted:
                        continue
                    if since is not None and event.occurred_at < since:
                        continue
                    yield event

        return _iter()

    def load_all(self) -> list[Event]:
        """Load all events into memory."""
        return list(self.iter_events())
