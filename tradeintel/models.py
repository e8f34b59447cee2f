"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal

from tradeintel.errors import InvalidInputError


Direction = Literal["BUY", "SELL"]


class MarketRegimeType(str, Enum):
    """Market regimes used to gate and scale scoring."""

    TRENDING = "TRENDING"
    RANGE = "RANGE"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    NO_TRADE = "NO_TRADE"


class CandlePattern(str, Enum):
    """Single-candle patterns, listed in detection priority order."""

    HAMMER = "HAMMER"
    INVERTED_HAMMER = "INVERTED_HAMMER"
    SHOOTING_STAR = "SHOOTING_STAR"
    BULLISH_ENGULFING = "BULLISH_ENGULFING"
    BEARISH_ENGULFING = "BEARISH_ENGULFING"
    DOJI = "DOJI"


class ExitType(str, Enum):
    """Why a position was (or should be) closed."""

    TARGET_HIT = "TARGET_HIT"
    STOPLOSS_HIT = "STOPLOSS_HIT"
    EARLY_EXIT = "EARLY_EXIT"
    MANUAL = "MANUAL"
    AUTO_STOP = "AUTO_STOP"


def _parse_ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Latest indicator values for one symbol/timeframe.

    Every metric is ``None`` when the supplied history is too short for it.
    """

    symbol: str
    timeframe: str
    computed_at: datetime | None
    close: float | None
    vwap: float | None = None
    rsi: float | None = None
    macd: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    atr: float | None = None
    relative_volume: float | None = None
    trend_strength: float | None = None
    pattern: CandlePattern | None = None
    data_points: int = 0

    @property
    def has_data(self) -> bool:
        return any(
            value is not None
            for value in (self.trend_strength, self.atr, self.relative_volume)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
            "close": self.close,
            "vwap": self.vwap,
            "rsi": self.rsi,
            "macd": self.macd,
            "macd_signal": self.macd_signal,
            "macd_histogram": self.macd_histogram,
            "atr": self.atr,
            "relative_volume": self.relative_volume,
            "trend_strength": self.trend_strength,
            "pattern": self.pattern.value if self.pattern else None,
            "data_points": self.data_points,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndicatorSnapshot":
        pattern = data.get("pattern")
        return cls(
            symbol=data["symbol"],
            timeframe=data.get("timeframe", "5min"),
            computed_at=_parse_ts(data.get("computed_at")),
            close=data.get("close"),
            vwap=data.get("vwap"),
            rsi=data.get("rsi"),
            macd=data.get("macd"),
            macd_signal=data.get("macd_signal"),
            macd_histogram=data.get("macd_histogram"),
            atr=data.get("atr"),
            relative_volume=data.get("relative_volume"),
            trend_strength=data.get("trend_strength"),
            pattern=CandlePattern(pattern) if pattern else None,
            data_points=int(data.get("data_points", 0)),
        )


# Learner condition types map onto these rule parameters
PARAMETER_MARKET_MULTIPLIERS = {
    "market_multiplier_trending": MarketRegimeType.TRENDING,
    "market_multiplier_range": MarketRegimeType.RANGE,
    "market_multiplier_volatility": MarketRegimeType.HIGH_VOLATILITY,
}
PARAMETER_MIN_SCORE = "min_score_threshold"


@dataclass(frozen=True)
class TradingRules:
    """The single active rule set consulted by the scorer.

    ``version`` increases on every applied change and is used for
    compare-and-set when persisting.
    """

    market_multipliers: dict[str, float] = field(
        default_factory=lambda: {
            MarketRegimeType.TRENDING.value: 1.2,
            MarketRegimeType.RANGE.value: 0.8,
            MarketRegimeType.HIGH_VOLATILITY.value: 0.6,
            MarketRegimeType.NO_TRADE.value: 0.0,
        }
    )
    # (consecutive losses, multiplier), checked highest first
    loss_streak_curve: tuple[tuple[int, float], ...] = ((2, 0.7), (1, 0.85))
    # (drawdown ratio of max daily loss, multiplier), checked highest first
    drawdown_curve: tuple[tuple[float, float], ...] = ((0.8, 0.3), (0.5, 0.6), (0.3, 0.8))
    min_score_threshold: float = 60.0
    max_daily_trades: int = 10
    max_daily_loss: float = 5000.0
    consecutive_loss_limit: int = 3
    version: int = 0
    updated_at: datetime | None = None

    @classmethod
    def from_config(cls, config: Any) -> "TradingRules":
        return cls(
            market_multipliers={
                MarketRegimeType.TRENDING.value: config.trending_multiplier,
                MarketRegimeType.RANGE.value: config.range_multiplier,
                MarketRegimeType.HIGH_VOLATILITY.value: config.high_volatility_multiplier,
                MarketRegimeType.NO_TRADE.value: 0.0,
            },
            min_score_threshold=config.min_score_threshold,
            max_daily_trades=config.max_daily_trades,
            max_daily_loss=config.max_daily_loss,
            consecutive_loss_limit=config.consecutive_loss_limit,
        )

    def market_multiplier(self, regime: MarketRegimeType | str | None) -> float:
        if regime is None:
            return 1.0
        key = regime.value if isinstance(regime, MarketRegimeType) else str(regime)
        if key == MarketRegimeType.NO_TRADE.value:
            return 0.0
        return float(self.market_multipliers.get(key, 1.0))

    def get_parameter(self, name: str) -> float:
        if name in PARAMETER_MARKET_MULTIPLIERS:
            return self.market_multiplier(PARAMETER_MARKET_MULTIPLIERS[name])
        if name == PARAMETER_MIN_SCORE:
            return self.min_score_threshold
        raise InvalidInputError(f"unknown_rule_parameter: {name}")

    def with_parameter(self, name: str, value: float) -> "TradingRules":
        if name in PARAMETER_MARKET_MULTIPLIERS:
            multipliers = dict(self.market_multipliers)
            multipliers[PARAMETER_MARKET_MULTIPLIERS[name].value] = value
            return replace(self, market_multipliers=multipliers)
        if name == PARAMETER_MIN_SCORE:
            return replace(self, min_score_threshold=value)
        raise InvalidInputError(f"unknown_rule_parameter: {name}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_multipliers": dict(self.market_multipliers),
            "loss_streak_curve": [list(step) for step in self.loss_streak_curve],
            "drawdown_curve": [list(step) for step in self.drawdown_curve],
            "min_score_threshold": self.min_score_threshold,
            "max_daily_trades": self.max_daily_trades,
            "max_daily_loss": self.max_daily_loss,
            "consecutive_loss_limit": self.consecutive_loss_limit,
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradingRules":
        defaults = cls()
        return cls(
            market_multipliers={
                str(k): float(v)
                for k, v in data.get("market_multipliers", defaults.market_multipliers).items()
            },
            loss_streak_curve=tuple(
                (int(n), float(m))
                for n, m in data.get("loss_streak_curve", defaults.loss_streak_curve)
            ),
            drawdown_curve=tuple(
                (float(r), float(m))
                for r, m in data.get("drawdown_curve", defaults.drawdown_curve)
            ),
            min_score_threshold=float(data.get("min_score_threshold", defaults.min_score_threshold)),
            max_daily_trades=int(data.get("max_daily_trades", defaults.max_daily_trades)),
            max_daily_loss=float(data.get("max_daily_loss", defaults.max_daily_loss)),
            consecutive_loss_limit=int(
                data.get("consecutive_loss_limit", defaults.consecutive_loss_limit)
            ),
            version=int(data.get("version", 0)),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass
class Signal:
    """A candidate trade. Score fields stay mutable until expiry or conversion."""

    signal_id: str
    symbol: str
    direction: Direction
    entry_price: float
    target_price: float
    stoploss_price: float
    created_at: datetime
    expires_at: datetime
    raw_score: int | None = None
    final_score: int | None = None
    regime: MarketRegimeType | None = None
    is_tradable: bool = False
    rejection_reason: str | None = None
    converted: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_open_for_scoring(self, now: datetime) -> bool:
        return not self.converted and not self.is_expired(now)

    def apply_score(self, score: Any, now: datetime) -> None:
        """Copy a ``SignalScore`` onto the signal."""
        if not self.is_open_for_scoring(now):
            raise InvalidInputError(f"signal_closed_for_scoring: {self.signal_id}")
        self.raw_score = score.raw_score
        self.final_score = score.final_score
        self.regime = score.regime
        self.is_tradable = score.is_tradable
        self.rejection_reason = score.rejection_reason

    def mark_converted(self) -> None:
        self.converted = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_id": self.signal_id,
            "symbol": self.symbol,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "target_price": self.target_price,
            "stoploss_price": self.stoploss_price,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "raw_score": self.raw_score,
            "final_score": self.final_score,
            "regime": self.regime.value if self.regime else None,
            "is_tradable": self.is_tradable,
            "rejection_reason": self.rejection_reason,
            "converted": self.converted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Signal":
        regime = data.get("regime")
        return cls(
            signal_id=data["signal_id"],
            symbol=data["symbol"],
            direction=data["direction"],
            entry_price=float(data["entry_price"]),
            target_price=float(data["target_price"]),
            stoploss_price=float(data["stoploss_price"]),
            created_at=_parse_ts(data["created_at"]),
            expires_at=_parse_ts(data["expires_at"]),
            raw_score=data.get("raw_score"),
            final_score=data.get("final_score"),
            regime=MarketRegimeType(regime) if regime else None,
            is_tradable=bool(data.get("is_tradable", False)),
            rejection_reason=data.get("rejection_reason"),
            converted=bool(data.get("converted", False)),
        )


def calculate_pnl(
    direction: Direction,
    entry_price: float,
    exit_price: float,
    quantity: float,
) -> tuple[float, float]:
    """Return (realized PnL, PnL percent of entry), both rounded to 2 decimals."""
    sign = 1.0 if direction == "BUY" else -1.0
    pnl = (exit_price - entry_price) * quantity * sign
    pnl_percent = (exit_price - entry_price) / entry_price * 100 * sign if entry_price else 0.0
    return round(pnl, 2), round(pnl_percent, 2)


@dataclass(frozen=True)
class Position:
    """An open trade, real or simulated."""

    position_id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    opened_at: datetime
    signal_id: str | None = None
    target_price: float | None = None
    stoploss_price: float | None = None
    regime_at_entry: MarketRegimeType | None = None
    score_at_entry: int | None = None

    def minutes_open(self, now: datetime) -> float:
        return (now - self.opened_at) / timedelta(minutes=1)

    def unrealized_pnl(self, price: float) -> tuple[float, float]:
        return calculate_pnl(self.direction, self.entry_price, price, self.quantity)

    def close(
        self,
        exit_price: float,
        exit_type: ExitType,
        reason: str,
        closed_at: datetime,
    ) -> "ClosedTrade":
        if exit_price <= 0:
            raise InvalidInputError(f"invalid_exit_price: {exit_price}")
        pnl, pnl_percent = self.unrealized_pnl(exit_price)
        return ClosedTrade(
            position=self,
            exit_price=exit_price,
            exit_type=exit_type,
            exit_reason=reason,
            realized_pnl=pnl,
            pnl_percent=pnl_percent,
            closed_at=closed_at,
            minutes_held=round(self.minutes_open(closed_at)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "symbol": self.symbol,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "opened_at": self.opened_at.isoformat(),
            "signal_id": self.signal_id,
            "target_price": self.target_price,
            "stoploss_price": self.stoploss_price,
            "regime_at_entry": self.regime_at_entry.value if self.regime_at_entry else None,
            "score_at_entry": self.score_at_entry,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        regime = data.get("regime_at_entry")
        return cls(
            position_id=data["position_id"],
            symbol=data["symbol"],
            direction=data["direction"],
            entry_price=float(data["entry_price"]),
            quantity=float(data["quantity"]),
            opened_at=_parse_ts(data["opened_at"]),
            signal_id=data.get("signal_id"),
            target_price=data.get("target_price"),
            stoploss_price=data.get("stoploss_price"),
            regime_at_entry=MarketRegimeType(regime) if regime else None,
            score_at_entry=data.get("score_at_entry"),
        )


@dataclass(frozen=True)
class ClosedTrade:
    """Terminal record of a position. Never mutated after creation."""

    position: Position
    exit_price: float
    exit_type: ExitType
    exit_reason: str
    realized_pnl: float
    pnl_percent: float
    closed_at: datetime
    minutes_held: int

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0

    def to_dict(self) -> dict[str, Any]:
        data = self.position.to_dict()
        data.update(
            {
                "exit_price": self.exit_price,
                "exit_type": self.exit_type.value,
                "exit_reason": self.exit_reason,
                "realized_pnl": self.realized_pnl,
                "pnl_percent": self.pnl_percent,
                "closed_at": self.closed_at.isoformat(),
                "minutes_held": self.minutes_held,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClosedTrade":
        return cls(
            position=Position.from_dict(data),
            exit_price=float(data["exit_price"]),
            exit_type=ExitType(data["exit_type"]),
            exit_reason=data.get("exit_reason", ""),
            realized_pnl=float(data["realized_pnl"]),
            pnl_percent=float(data.get("pnl_percent", 0.0)),
            closed_at=_parse_ts(data["closed_at"]),
            minutes_held=int(data.get("minutes_held", 0)),
        )
