"""Turn an indicator snapshot into a directional trade candidate."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from tradeintel.config.settings import PaperConfig
from tradeintel.models import Direction, IndicatorSnapshot, Signal


class SignalGenerator:
    """Propose entry, target and stop for a symbol; scoring happens separately."""

    def __init__(self, config: PaperConfig | None = None) -> None:
        self.config = config or PaperConfig()

    def direction(self, snapshot: IndicatorSnapshot) -> Direction | None:
        trend = snapshot.trend_strength
        price = snapshot.close
        if trend is None or price is None:
            return None
        vwap = snapshot.vwap if snapshot.vwap is not None else price
        if trend > 0 and price >= vwap:
            return "BUY"
        if trend < 0 and price <= vwap:
            return "SELL"
        return None

    def generate(self, snapshot: IndicatorSnapshot, now: datetime) -> Signal | None:
        direction = self.direction(snapshot)
        if direction is None or not snapshot.close or snapshot.close <= 0:
            return None
        entry = snapshot.close
        if snapshot.atr:
            target_distance = snapshot.atr * self.config.target_atr_multiple
            stop_distance = snapshot.atr * self.config.stop_atr_multiple
        else:
            target_distance = entry * self.config.fallback_target_pct / 100
            stop_distance = entry * self.config.fallback_stop_pct / 100
        sign = 1 if direction == "BUY" else -1
        return Signal(
            signal_id=str(uuid4()),
            symbol=snapshot.symbol,
            direction=direction,
            entry_price=entry,
            target_price=round(entry + sign * target_distance, 2),
            stoploss_price=round(entry - sign * stop_distance, 2),
            created_at=now,
            expires_at=now + timedelta(minutes=self.config.signal_validity_minutes),
        )
