"""Market regime classification from aggregated indicator snapshots and session time."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable

import structlog

from tradeintel.config.settings import RegimeConfig
from tradeintel.models import IndicatorSnapshot, MarketRegimeType
from tradeintel.strategy.session import EDGE_BUCKETS, TimeOfDay, TradingSession

log = structlog.get_logger(__name__)


class VolatilityLevel(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"
    UNKNOWN = "UNKNOWN"


class VolumeLevel(str, Enum):
    DRY = "DRY"
    BELOW_AVERAGE = "BELOW_AVERAGE"
    NORMAL = "NORMAL"
    ABOVE_AVERAGE = "ABOVE_AVERAGE"
    SURGE = "SURGE"
    UNKNOWN = "UNKNOWN"


HEALTHY_VOLUME = frozenset({VolumeLevel.NORMAL, VolumeLevel.ABOVE_AVERAGE, VolumeLevel.SURGE})


class TrendDirection(str, Enum):
    STRONG_BULLISH = "STRONG_BULLISH"
    BULLISH = "BULLISH"
    SIDEWAYS = "SIDEWAYS"
    BEARISH = "BEARISH"
    STRONG_BEARISH = "STRONG_BEARISH"
    UNKNOWN = "UNKNOWN"


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


@dataclass(frozen=True)
class MarketRegime:
    """Result of regime classification. Only usable until `expires_at`."""

    regime: MarketRegimeType
    confidence: int
    reasoning: tuple[str, ...]
    time_of_day: TimeOfDay
    classified_at: datetime
    expires_at: datetime
    trend_direction: TrendDirection = TrendDirection.UNKNOWN
    volatility: VolatilityLevel = VolatilityLevel.UNKNOWN
    volatility_pct: float | None = None
    volume: VolumeLevel = VolumeLevel.UNKNOWN
    mean_trend_strength: float | None = None
    mean_relative_volume: float | None = None
    snapshot_count: int = 0

    def is_valid(self, now: datetime) -> bool:
        return self.classified_at <= now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "regime": self.regime.value,
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "time_of_day": self.time_of_day.value,
            "classified_at": self.classified_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "trend_direction": self.trend_direction.value,
            "volatility": self.volatility.value,
            "volatility_pct": self.volatility_pct,
            "volume": self.volume.value,
            "mean_trend_strength": self.mean_trend_strength,
            "mean_relative_volume": self.mean_relative_volume,
            "snapshot_count": self.snapshot_count,
        }


def resolve_regime(
    regime: MarketRegime | None,
    now: datetime,
    default: MarketRegimeType = MarketRegimeType.RANGE,
) -> MarketRegimeType:
    """Regime to act on: an expired or missing classification counts as absent."""
    if regime is None or not regime.is_valid(now):
        return default
    return regime.regime


class MarketClassifier:
    """Classify the prevailing market regime across tracked symbols."""

    def __init__(
        self,
        config: RegimeConfig | None = None,
        session: TradingSession | None = None,
    ) -> None:
        self.config = config or RegimeConfig()
        self.session = session or TradingSession()

    def classify_volatility(self, volatility_pct: float | None) -> VolatilityLevel:
        if volatility_pct is None:
            return VolatilityLevel.UNKNOWN
        if volatility_pct > self.config.volatility_extreme_pct:
            return VolatilityLevel.EXTREME
        if volatility_pct > self.config.volatility_high_pct:
            return VolatilityLevel.HIGH
        if volatility_pct > self.config.volatility_normal_pct:
            return VolatilityLevel.NORMAL
        return VolatilityLevel.LOW

    def classify_volume(self, relative_volume: float | None) -> VolumeLevel:
        if relative_volume is None:
            return VolumeLevel.UNKNOWN
        if relative_volume > self.config.volume_surge:
            return VolumeLevel.SURGE
        if relative_volume > self.config.volume_above_average:
            return VolumeLevel.ABOVE_AVERAGE
        if relative_volume > self.config.volume_below_average:
            return VolumeLevel.NORMAL
        if relative_volume > self.config.volume_dry:
            return VolumeLevel.BELOW_AVERAGE
        return VolumeLevel.DRY

    def classify_trend(self, trend_strength: float | None) -> TrendDirection:
        if trend_strength is None:
            return TrendDirection.UNKNOWN
        strong = self.config.strong_trend_threshold
        threshold = self.config.trend_threshold
        if trend_strength > strong:
            return TrendDirection.STRONG_BULLISH
        if trend_strength > threshold:
            return TrendDirection.BULLISH
        if trend_strength < -strong:
            return TrendDirection.STRONG_BEARISH
        if trend_strength < -threshold:
            return TrendDirection.BEARISH
        return TrendDirection.SIDEWAYS

    def _recent(self, snapshots: Iterable[IndicatorSnapshot]) -> list[IndicatorSnapshot]:
        ordered = sorted(
            snapshots,
            key=lambda s: s.computed_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return ordered[: self.config.snapshot_limit]

    def classify(
        self,
        snapshots: Iterable[IndicatorSnapshot],
        now: datetime,
    ) -> MarketRegime:
        """Classify the market from the most recent snapshots at instant `now`."""
        bucket = self.session.time_of_day(now)
        expires_at = now + timedelta(minutes=self.config.validity_minutes)

        if bucket == TimeOfDay.MARKET_CLOSED:
            return MarketRegime(
                regime=MarketRegimeType.NO_TRADE,
                confidence=100,
                reasoning=("Market is closed",),
                time_of_day=bucket,
                classified_at=now,
                expires_at=expires_at,
            )

        recent = self._recent(snapshots)
        mean_trend = _mean([s.trend_strength for s in recent if s.trend_strength is not None])
        mean_atr = _mean([s.atr for s in recent if s.atr is not None])
        mean_volume = _mean([s.relative_volume for s in recent if s.relative_volume is not None])

        if mean_trend is None and mean_atr is None and mean_volume is None:
            return MarketRegime(
                regime=MarketRegimeType.NO_TRADE,
                confidence=50,
                reasoning=("Insufficient data to classify market conditions",),
                time_of_day=bucket,
                classified_at=now,
                expires_at=expires_at,
                snapshot_count=len(recent),
            )

        volatility_pct = (
            mean_atr / self.config.volatility_baseline * 100 if mean_atr is not None else None
        )
        volatility = self.classify_volatility(volatility_pct)
        volume = self.classify_volume(mean_volume)
        trend = self.classify_trend(mean_trend)
        trending = mean_trend is not None and abs(mean_trend) > self.config.trend_threshold

        reasons: list[str] = []
        regime = MarketRegimeType.RANGE
        confidence = 50.0
        if volatility == VolatilityLevel.EXTREME:
            regime = MarketRegimeType.HIGH_VOLATILITY
            confidence = 85.0
            reasons.append("Extreme volatility detected")
        elif not self.session.is_optimal(bucket) and volume == VolumeLevel.DRY:
            regime = MarketRegimeType.NO_TRADE
            confidence = 75.0
            reasons.append("Poor trading conditions: low volume during non-optimal hours")
        elif trending and volume in HEALTHY_VOLUME:
            regime = MarketRegimeType.TRENDING
            confidence = min(90.0, 60 + abs(mean_trend) / 2)
            reasons.append(f"Clear {trend.value} trend with healthy volume")
        elif not trending:
            regime = MarketRegimeType.RANGE
            confidence = 70.0
            reasons.append("No clear trend direction, range-bound market")
        else:
            reasons.append(f"{trend.value} trend without volume confirmation")

        if bucket in EDGE_BUCKETS:
            confidence *= self.config.edge_session_confidence_factor
            reasons.append(f"Caution: {bucket.value} period")

        result = MarketRegime(
            regime=regime,
            confidence=round_half_up(confidence),
            reasoning=tuple(reasons),
            time_of_day=bucket,
            classified_at=now,
            expires_at=expires_at,
            trend_direction=trend,
            volatility=volatility,
            volatility_pct=round(volatility_pct, 4) if volatility_pct is not None else None,
            volume=volume,
            mean_trend_strength=round(mean_trend, 2) if mean_trend is not None else None,
            mean_relative_volume=round(mean_volume, 4) if mean_volume is not None else None,
            snapshot_count=len(recent),
        )
        log.info(
            "market_classified",
            regime=result.regime.value,
            confidence=result.confidence,
            time_of_day=bucket.value,
            volatility=volatility.value,
            volume=volume.value,
            trend=trend.value,
        )
        return result
