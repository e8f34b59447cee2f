"""File-backed persistence for the active rule set and pending adjustments."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

import orjson
import structlog

from tradeintel.errors import RulesConflictError
from tradeintel.learning.learner import LearningAdjustment
from tradeintel.models import TradingRules
from tradeintel.utils.file_lock import LockTimeout, RulesWriteLock

log = structlog.get_logger(__name__)


def _write_atomic(path: Path, data: object) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
    os.replace(tmp, path)


class RulesStore:
    """Holds the single active ``TradingRules``.

    Writes are compare-and-set on ``version`` and serialized through an
    advisory lock file, so two concurrent apply runs cannot both land.
    """

    def __init__(
        self,
        state_path: str | Path,
        defaults: TradingRules | None = None,
        lock_timeout_sec: float = 2.0,
    ) -> None:
        self.state_path = Path(state_path)
        self.state_path.mkdir(parents=True, exist_ok=True)
        self.rules_file = self.state_path / "rules.json"
        self.lock_file = self.state_path / "rules.lock"
        self.defaults = defaults or TradingRules()
        self.lock_timeout_sec = lock_timeout_sec

    def load(self) -> TradingRules:
        if not self.rules_file.exists():
            return self.defaults
        return TradingRules.from_dict(orjson.loads(self.rules_file.read_bytes()))

    def save(self, rules: TradingRules, expected_version: int) -> TradingRules:
        """Persist `rules` if the stored version still equals `expected_version`."""
        try:
            with RulesWriteLock(self.lock_file, timeout_sec=self.lock_timeout_sec):
                current = self.load()
                if current.version != expected_version:
                    raise RulesConflictError(
                        f"Rules changed concurrently (expected v{expected_version}, found v{current.version})",
                        expected_version=expected_version,
                        actual_version=current.version,
                    )
                _write_atomic(self.rules_file, rules.to_dict())
        except LockTimeout as exc:
            log.warning("rules_lock_timeout", holder=exc.holder, waited_sec=round(exc.waited_sec, 2))
            raise RulesConflictError(
                f"Rules update already in progress ({exc})", expected_version=expected_version
            ) from exc
        log.info("rules_saved", version=rules.version)
        return rules


class AdjustmentStore:
    """Latest proposal per condition type."""

    def __init__(self, state_path: str | Path) -> None:
        self.state_path = Path(state_path)
        self.state_path.mkdir(parents=True, exist_ok=True)
        self.adjustments_file = self.state_path / "adjustments.json"

    def load_all(self) -> list[LearningAdjustment]:
        if not self.adjustments_file.exists():
            return []
        data = orjson.loads(self.adjustments_file.read_bytes())
        return [LearningAdjustment.from_dict(item) for item in data.values()]

    def upsert(self, adjustments: Iterable[LearningAdjustment]) -> int:
        stored = {a.condition_type: a for a in self.load_all()}
        count = 0
        for adjustment in adjustments:
            stored[adjustment.condition_type] = adjustment
            count += 1
        if count:
            _write_atomic(
                self.adjustments_file,
                {name: adj.to_dict() for name, adj in stored.items()},
            )
        return count
