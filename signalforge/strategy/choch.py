"""CHOCH analysis — structure + zones summary and the signals derived from it.

``analyze_choch`` bundles the structure snapshot and zone map for one candle
sequence with an additive structure score.  ``CHOCHDetector`` turns that
analysis into reversal signals (on a CHOCH) and order-block signals (when
price sits within 1 % of an active block).
"""

import logging
from dataclasses import dataclass
from typing import Sequence

from signalforge.errors import InsufficientDataError
from signalforge.strategy.base import DetectorContext, make_signal
from signalforge.strategy.models import (
    BUY,
    SELL,
    TIMEFRAMES,
    Candle,
    Signal,
    StructureState,
)
from signalforge.strategy.structure import analyze_structure
from signalforge.strategy.zones import ZoneMap, analyze_zones

logger = logging.getLogger("signalforge.choch")


@dataclass(frozen=True)
class ChochAnalysis:
    structure: StructureState
    zones: ZoneMap
    score: float


def structure_score(structure: StructureState, zones: ZoneMap) -> float:
    """0.5 base plus bonuses for trend, BOS, CHOCH, order blocks and gaps."""
    score = 0.5
    if structure.trend != "neutral":
        score += 0.1
    if structure.bos.any:
        score += 0.15
    if structure.choch.any:
        score += 0.2
    if zones.order_blocks:
        score += 0.1
    if zones.fair_value_gaps:
        score += 0.05
    return min(score, 1.0)


def analyze_choch(
    candles: Sequence[Candle], require_reversal: bool = True, min_bars: int = 0,
) -> ChochAnalysis:
    """Structure, zones and score for *candles*.

    Raises ``InsufficientDataError`` with fewer than *min_bars* candles.
    """
    candles = list(candles)
    if len(candles) < min_bars:
        raise InsufficientDataError(min_bars, len(candles), "CHOCH analysis")
    structure = analyze_structure(candles, require_reversal=require_reversal)
    zones = analyze_zones(candles)
    return ChochAnalysis(structure, zones, structure_score(structure, zones))


@dataclass(frozen=True)
class ChochParams:
    min_bars: int = 50
    require_reversal: bool = True
    stop_pct: float = 0.01
    target_pct: float = 0.02
    reversal_weight: float = 0.8
    order_block_weight: float = 0.7
    order_block_distance: float = 0.01


class CHOCHDetector:
    """Reversal and order-block signals from a full structure analysis."""

    name = "choch"
    pattern_tag = "choch_reversal"
    timeframes = TIMEFRAMES

    def __init__(self, params: ChochParams = ChochParams()) -> None:
        self.params = params

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        candles = list(candles)
        p = self.params
        try:
            analysis = analyze_choch(candles, p.require_reversal, p.min_bars)
        except InsufficientDataError:
            return []
        price = candles[-1].close
        now = candles[-1].timestamp
        signals: list[Signal] = []

        structure = analysis.structure
        # Both sides may break at once; each uses its own broken level.
        candidates = []
        if structure.choch.bullish:
            level = structure.swing_highs[-2].price
            candidates.append((BUY, level * (1 - p.stop_pct), price * (1 + p.target_pct)))
        if structure.choch.bearish:
            level = structure.swing_lows[-2].price
            candidates.append((SELL, level * (1 + p.stop_pct), price * (1 - p.target_pct)))
        for direction, stop, target in candidates:
            if (direction == BUY and stop >= price) or (direction == SELL and stop <= price):
                continue
            signals.append(make_signal(
                context,
                direction=direction,
                entry=price,
                stop=stop,
                target=target,
                confidence=analysis.score * p.reversal_weight,
                pattern_tag=self.pattern_tag,
                source=self.name,
                created_at=now,
            ))

        for ob in analysis.zones.active_order_blocks:
            level = ob.bottom if ob.direction == "bullish" else ob.top
            if level <= 0 or abs(price - level) / price >= p.order_block_distance:
                continue
            impulse = candles[ob.index + 1]
            block = candles[ob.index]
            strength = abs(impulse.close - block.close) / block.close if block.close else 0.0
            if ob.direction == "bullish":
                direction, stop, target = BUY, level * (1 - p.stop_pct), level * (1 + p.target_pct)
            else:
                direction, stop, target = SELL, level * (1 + p.stop_pct), level * (1 - p.target_pct)
            signals.append(make_signal(
                context,
                direction=direction,
                entry=level,
                stop=stop,
                target=target,
                confidence=strength * p.order_block_weight,
                pattern_tag="order_block",
                source=self.name,
                created_at=now,
            ))

        logger.debug(
            "%s CHOCH analysis score=%.2f trend=%s signals=%d",
            context.symbol, analysis.score, analysis.structure.trend, len(signals),
        )
        return signals
