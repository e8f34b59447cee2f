from datetime import datetime, timedelta, timezone

import pytest

from tradeintel.config.settings import MarketDataConfig, Settings
from tradeintel.cycle import TradingCycle
from tradeintel.errors import UpstreamUnavailableError
from tradeintel.learning.store import RulesStore
from tradeintel.ledger.bus import EventBus
from tradeintel.ledger.events import EventType
from tradeintel.ledger.state import StateManager
from tradeintel.ledger.store import EventLedger
from tradeintel.models import Candle, MarketRegimeType, TradingRules

MORNING = datetime(2024, 1, 10, 5, 0, tzinfo=timezone.utc)  # 10:30 IST
AFTER_CLOSE = datetime(2024, 1, 10, 10, 30, tzinfo=timezone.utc)  # 16:00 IST


def _rising(n: int) -> list[Candle]:
    start = MORNING - timedelta(minutes=5 * n)
    return [
        Candle(start + timedelta(minutes=5 * i), 99.5 + i, 100.2 + i, 99.3 + i, 100.0 + i, 1000.0)
        for i in range(n)
    ]


class FakeSource:
    name = "fake"

    def __init__(self) -> None:
        self.requested: list[str] = []
        self.failing: set[str] = set()

    async def fetch_candles(self, symbol: str, interval: str) -> list[Candle]:
        self.requested.append(symbol)
        if symbol == "INFY" or symbol in self.failing:
            raise UpstreamUnavailableError("API rate limit reached", source=self.name)
        if symbol == "TCS":
            return []
        if symbol == "WIPRO":
            return _rising(3)
        return list(reversed(_rising(40)))


class Harness:
    def __init__(self, root, symbols: list[str]) -> None:
        self.settings = Settings(market_data=MarketDataConfig(symbols=symbols, pacing_delay_ms=300))
        self.ledger = EventLedger(root / "ledger")
        self.bus = EventBus(self.ledger)
        self.state = StateManager()
        self.bus.register_all(self.state.apply_event)
        self.source = FakeSource()
        self.sleeps: list[float] = []
        self.rules_store = RulesStore(root / "state", TradingRules())
        self.cycle = TradingCycle(
            self.settings,
            self.source,
            self.bus,
            self.state,
            self.rules_store,
            sleep=self._sleep,
        )

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def event_types(self) -> list[EventType]:
        return [e.event_type for e in self.ledger.load_all()]


@pytest.mark.asyncio
async def test_cycle_reports_status_per_symbol(workspace_tmp_path) -> None:
    harness = Harness(workspace_tmp_path, ["reliance.ns", "TCS", "INFY", "WIPRO"])
    result = await harness.cycle.run(now=MORNING)

    statuses = {u.symbol: u.status for u in result.updates}
    assert statuses == {
        "RELIANCE": "ok",
        "TCS": "insufficient_data",
        "INFY": "error",
        "WIPRO": "insufficient_data",
    }
    assert harness.source.requested == ["RELIANCE", "TCS", "INFY", "WIPRO"]
    assert harness.sleeps == [0.3, 0.3, 0.3]
    assert result.regime is not None
    assert result.regime.regime == MarketRegimeType.TRENDING


@pytest.mark.asyncio
async def test_cycle_scores_and_opens_positions(workspace_tmp_path) -> None:
    harness = Harness(workspace_tmp_path, ["RELIANCE"])
    result = await harness.cycle.run(now=MORNING)

    [signal] = result.signals
    assert signal.symbol == "RELIANCE"
    assert signal.direction == "BUY"
    assert signal.is_tradable
    assert signal.converted
    assert len(result.opened) == 1
    # a position opened this cycle is not exit-checked against its own entry
    assert result.exits == []

    types = harness.event_types()
    for expected in (
        EventType.CANDLES_FETCHED,
        EventType.INDICATORS_COMPUTED,
        EventType.MARKET_CLASSIFIED,
        EventType.SIGNAL_SCORED,
        EventType.POSITION_OPENED,
    ):
        assert expected in types
    assert types.index(EventType.SIGNAL_SCORED) < types.index(EventType.POSITION_OPENED)
    assert harness.state.state_for("default", MORNING).trades_today == 1


@pytest.mark.asyncio
async def test_next_cycle_monitors_held_positions(workspace_tmp_path) -> None:
    harness = Harness(workspace_tmp_path, ["RELIANCE"])
    first = await harness.cycle.run(now=MORNING)
    second = await harness.cycle.run(now=MORNING + timedelta(minutes=5))

    assert [r.position_id for r in second.exits] == first.opened


@pytest.mark.asyncio
async def test_cycle_after_close_opens_nothing(workspace_tmp_path) -> None:
    harness = Harness(workspace_tmp_path, ["RELIANCE"])
    result = await harness.cycle.run(now=AFTER_CLOSE)

    assert result.regime.regime == MarketRegimeType.NO_TRADE
    assert result.opened == []
    assert all(not s.is_tradable for s in result.signals)
    assert EventType.POSITION_OPENED not in harness.event_types()


@pytest.mark.asyncio
async def test_cycle_reads_active_rules_from_store(workspace_tmp_path) -> None:
    harness = Harness(workspace_tmp_path, ["RELIANCE"])
    harness.rules_store.save(TradingRules(max_daily_trades=1, version=1), expected_version=0)
    harness.state.apply_event(
        harness.ledger.append(
            EventType.POSITION_OPENED,
            {
                "user_id": "default",
                "occurred_at": "2024-01-10T04:00:00.000Z",
                "position": {
                    "position_id": "existing",
                    "symbol": "TCS",
                    "direction": "BUY",
                    "entry_price": 100.0,
                    "quantity": 1.0,
                    "opened_at": "2024-01-10T04:00:00+00:00",
                },
            },
        )
    )

    result = await harness.cycle.run(now=MORNING)
    [signal] = result.signals
    assert signal.rejection_reason == "Daily trade limit reached (1)"
    assert result.opened == []


@pytest.mark.asyncio
async def test_failed_fetch_drops_previous_snapshot(workspace_tmp_path) -> None:
    harness = Harness(workspace_tmp_path, ["RELIANCE"])
    first = await harness.cycle.run(now=MORNING)
    assert len(first.opened) == 1

    harness.source.failing.add("RELIANCE")
    second = await harness.cycle.run(now=MORNING + timedelta(hours=3))

    assert [(u.symbol, u.status) for u in second.updates] == [("RELIANCE", "error")]
    assert harness.cycle.snapshots == {}
    assert second.regime.regime == MarketRegimeType.NO_TRADE
    assert second.regime.confidence == 50
    assert [r.status for r in second.exits] == ["NO_PRICE"]
    assert [p.position_id for p in harness.state.open_positions()] == first.opened
    assert EventType.POSITION_CLOSED not in harness.event_types()
