"""Pure CRT — stricter three-candle sweep with price-action entry refinement.

Differences from the plain CRT detector:

- the sweep must exceed the range boundary by a minimum magnitude;
- the trigger candle must close beyond the range midpoint against the sweep;
- entry refinement looks for a rejection wick or an engulfing candle on the
  last lower-timeframe candles instead of a fair value gap;
- confidence is rule-based, or blended with the heuristic scorer when the
  detection context carries a fitted one, then clamped to a band chosen by
  the current volatility regime.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional, Sequence

from signalforge.strategy.base import DetectorContext, make_signal
from signalforge.strategy.indicators import average_volume, calculate_adx, try_atr
from signalforge.strategy.models import BUY, SELL, TIMEFRAMES, Candle, Signal

logger = logging.getLogger("signalforge.pure_crt")


@dataclass(frozen=True)
class PureCRTSetup:
    sweep_direction: Literal["up", "down"]
    range_high: float
    range_low: float
    sweep_high: float
    sweep_low: float
    trigger_open: float
    trigger_close: float
    trigger_index: int
    magnitude: float

    @property
    def trigger_body(self) -> float:
        if self.trigger_open == 0:
            return 0.0
        return abs(self.trigger_close - self.trigger_open) / self.trigger_open


@dataclass(frozen=True)
class Refinement:
    price: float
    kind: str  # "rejection", "bounce" or "engulfing"
    strength: float


@dataclass(frozen=True)
class MarketFeatures:
    volatility: Optional[float]  # ATR / price
    trend_strength: Optional[float]  # ADX
    volume_ratio: float
    hour: int


@dataclass(frozen=True)
class PureCRTParams:
    """Thresholds and confidence constants."""

    min_sweep: float = 0.0002
    stop_buffer: float = 0.0003
    refine_window: int = 10
    min_refine_candles: int = 5
    min_rejection: float = 0.0005
    base_confidence: float = 0.6
    max_confidence: float = 0.98
    ml_weight: float = 0.6
    quality_weight: float = 0.3
    volume_weight: float = 0.1


# ── Pattern ──────────────────────────────────────────────────────────────


def find_pure_setups(
    candles: Sequence[Candle], min_sweep: float = 0.0002,
) -> list[PureCRTSetup]:
    """All setups passing the magnitude and midpoint checks, oldest first."""
    setups: list[PureCRTSetup] = []
    for i in range(2, len(candles)):
        rng, sweep, trigger = candles[i - 2], candles[i - 1], candles[i]
        high, low = rng.high, rng.low
        if low <= 0:
            continue
        mid = (high + low) / 2

        swept_up = sweep.high > high and sweep.close <= high
        swept_down = sweep.low < low and sweep.close >= low
        if not (swept_up or swept_down):
            continue

        if swept_up:
            magnitude = (sweep.high - high) / high
            confirms = trigger.close < mid
        else:
            magnitude = (low - sweep.low) / low
            confirms = trigger.close > mid
        if magnitude < min_sweep or not confirms:
            continue

        setups.append(PureCRTSetup(
            sweep_direction="up" if swept_up else "down",
            range_high=high,
            range_low=low,
            sweep_high=sweep.high,
            sweep_low=sweep.low,
            trigger_open=trigger.open,
            trigger_close=trigger.close,
            trigger_index=i,
            magnitude=magnitude,
        ))
    return setups


def refine_entry(
    candles: Sequence[Candle],
    setup: PureCRTSetup,
    window: int = 10,
    min_candles: int = 5,
    min_rejection: float = 0.0005,
) -> Optional[Refinement]:
    """Newest rejection/bounce or engulfing candle in the last *window* bars."""
    if len(candles) < min_candles:
        return None
    recent = list(candles)[-window:]

    for i in range(len(recent) - 1, -1, -1):
        c = recent[i]
        if setup.sweep_direction == "up":
            level = setup.range_high
            if c.high >= level and c.close < level and c.close > 0:
                strength = (c.high - c.close) / c.close
                if strength > min_rejection:
                    return Refinement(c.close, "rejection", strength)
        else:
            level = setup.range_low
            if c.low <= level and c.close > level and c.low > 0:
                strength = (c.close - c.low) / c.low
                if strength > min_rejection:
                    return Refinement(c.close, "bounce", strength)

        if i > 0:
            prev = recent[i - 1]
            if setup.sweep_direction == "up":
                engulf = (prev.is_bullish and c.is_bearish
                          and c.close < prev.open and c.open > prev.close)
            else:
                engulf = (prev.is_bearish and c.is_bullish
                          and c.close > prev.open and c.open < prev.close)
            if engulf:
                return Refinement(c.close, "engulfing", 0.8)
    return None


# ── Confidence ───────────────────────────────────────────────────────────


def market_features(candles: Sequence[Candle]) -> MarketFeatures:
    candles = list(candles)
    last = candles[-1]
    atr = try_atr(candles, 14)
    adx = calculate_adx(candles, 14) if len(candles) >= 29 else None
    avg = average_volume(candles[:-1], 20)
    return MarketFeatures(
        volatility=atr / last.close if atr is not None and last.close else None,
        trend_strength=adx,
        volume_ratio=last.volume / avg if avg > 0 else 1.0,
        hour=datetime.fromtimestamp(last.timestamp, tz=timezone.utc).hour,
    )


def basic_confidence(
    setup: PureCRTSetup,
    refinement: Optional[Refinement],
    features: MarketFeatures,
    params: PureCRTParams = PureCRTParams(),
) -> float:
    """Additive rule-based confidence."""
    confidence = params.base_confidence
    if setup.magnitude > 0.0005:
        confidence += 0.12
    if refinement is not None:
        confidence += 0.18
    if setup.trigger_body > 0.0003:
        confidence += 0.08
    if features.volatility is not None and features.volatility < 0.002:
        confidence += 0.05
    if features.trend_strength is not None and features.trend_strength > 25:
        confidence += 0.04
    if features.volume_ratio > 1.5:
        confidence += 0.06
    if 8 <= features.hour <= 11 or 14 <= features.hour <= 17:
        confidence += 0.03
    return min(params.max_confidence, confidence)


def confidence_band(volatility: Optional[float]) -> tuple[float, float]:
    """``(floor, ceiling)`` for the current volatility regime."""
    if volatility is not None and volatility > 0.003:
        return 0.55, 0.85
    if volatility is not None and volatility < 0.001:
        return 0.7, 0.95
    return 0.6, 0.9


def enhanced_confidence(
    setup: PureCRTSetup,
    scorer_probability: float,
    features: MarketFeatures,
    params: PureCRTParams = PureCRTParams(),
) -> float:
    """Blend of scorer output, pattern quality and volume confirmation."""
    quality = 0.6
    if setup.magnitude > 0.0005:
        quality += 0.2
    if setup.trigger_body > 0.0003:
        quality += 0.15
    quality = min(0.95, quality)
    volume = 0.9 if features.volume_ratio > 1.5 else 0.6

    confidence = (
        params.ml_weight * scorer_probability
        + params.quality_weight * quality
        + params.volume_weight * volume
    )
    floor, ceiling = confidence_band(features.volatility)
    return max(floor, min(ceiling, confidence))


# ── Detector ─────────────────────────────────────────────────────────────


class PureCRTDetector:
    """Three-candle sweep with magnitude/midpoint filters and PA refinement."""

    name = "pure_crt"
    pattern_tag = "pure_crt_three_candle"
    timeframes = TIMEFRAMES

    def __init__(self, params: PureCRTParams = PureCRTParams()) -> None:
        self.params = params

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        candles = list(candles)
        if len(candles) < 3:
            return []
        p = self.params
        setups = find_pure_setups(candles, p.min_sweep)
        if not setups:
            return []
        setup = setups[-1]
        refinement = refine_entry(
            context.lower_candles, setup,
            window=p.refine_window,
            min_candles=p.min_refine_candles,
            min_rejection=p.min_rejection,
        )
        window = candles[:setup.trigger_index + 1]
        features = market_features(window)

        if setup.sweep_direction == "up":
            direction = SELL
            stop = setup.sweep_high * (1 + p.stop_buffer)
            target = setup.range_low
        else:
            direction = BUY
            stop = setup.sweep_low * (1 - p.stop_buffer)
            target = setup.range_high

        if context.scorer is not None:
            up = context.scorer.score(window)
            probability = up if direction == BUY else 1.0 - up
            confidence = enhanced_confidence(setup, probability, features, p)
        else:
            confidence = basic_confidence(setup, refinement, features, p)

        notes = ("magnitude=%.5f" % setup.magnitude,)
        if refinement is not None:
            notes += ("refinement=%s" % refinement.kind,)

        logger.debug(
            "%s pure CRT %s sweep=%s conf=%.2f",
            context.symbol, direction, setup.sweep_direction, confidence,
        )
        return [make_signal(
            context,
            direction=direction,
            entry=refinement.price if refinement is not None else setup.trigger_close,
            stop=stop,
            target=target,
            confidence=confidence,
            pattern_tag=self.pattern_tag,
            source=self.name,
            created_at=candles[setup.trigger_index].timestamp,
            notes=notes,
        )]
