"""Exchange session clock: time-of-day buckets and their score multipliers."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from tradeintel.config.settings import SessionConfig


class TimeOfDay(str, Enum):
    """Intraday session buckets."""

    MARKET_CLOSED = "MARKET_CLOSED"
    OPENING_VOLATILITY = "OPENING_VOLATILITY"
    MORNING_SESSION = "MORNING_SESSION"
    MIDDAY_LULL = "MIDDAY_LULL"
    AFTERNOON_SESSION = "AFTERNOON_SESSION"
    CLOSING_HOUR = "CLOSING_HOUR"


OPTIMAL_BUCKETS = frozenset({TimeOfDay.MORNING_SESSION, TimeOfDay.AFTERNOON_SESSION})
EDGE_BUCKETS = frozenset({TimeOfDay.OPENING_VOLATILITY, TimeOfDay.CLOSING_HOUR})


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


class TradingSession:
    """Map wall-clock instants onto session buckets in the exchange timezone."""

    def __init__(self, config: SessionConfig | None = None) -> None:
        self.config = config or SessionConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self._open = _minutes(self.config.open_time)
        self._boundaries = [
            (_minutes(self.config.opening_end), TimeOfDay.OPENING_VOLATILITY),
            (_minutes(self.config.morning_end), TimeOfDay.MORNING_SESSION),
            (_minutes(self.config.midday_end), TimeOfDay.MIDDAY_LULL),
            (_minutes(self.config.afternoon_end), TimeOfDay.AFTERNOON_SESSION),
            (_minutes(self.config.close_time), TimeOfDay.CLOSING_HOUR),
        ]
        self._multipliers = {
            TimeOfDay.MARKET_CLOSED: self.config.closed_multiplier,
            TimeOfDay.OPENING_VOLATILITY: self.config.opening_multiplier,
            TimeOfDay.MORNING_SESSION: self.config.morning_multiplier,
            TimeOfDay.MIDDAY_LULL: self.config.midday_multiplier,
            TimeOfDay.AFTERNOON_SESSION: self.config.afternoon_multiplier,
            TimeOfDay.CLOSING_HOUR: self.config.closing_multiplier,
        }

    def local_time(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def trading_date(self, now: datetime) -> date:
        """Calendar date of `now` in the exchange timezone."""
        return self.local_time(now).date()

    def time_of_day(self, now: datetime) -> TimeOfDay:
        local = self.local_time(now)
        if self.config.weekends_closed and local.weekday() >= 5:
            return TimeOfDay.MARKET_CLOSED
        minute_of_day = local.hour * 60 + local.minute + local.second / 60
        if minute_of_day < self._open:
            return TimeOfDay.MARKET_CLOSED
        for end, bucket in self._boundaries:
            if minute_of_day < end:
                return bucket
        return TimeOfDay.MARKET_CLOSED

    def is_optimal(self, bucket: TimeOfDay) -> bool:
        return bucket in OPTIMAL_BUCKETS

    def time_multiplier(self, bucket: TimeOfDay) -> float:
        return self._multipliers[bucket]
