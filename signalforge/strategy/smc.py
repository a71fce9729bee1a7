"""Multi-timeframe confirmation — driver zone → confirmation CHOCH → entry CHOCH.

Top-down stacking of structure and zone analysis across three timeframes:

1. Driver timeframe order blocks; the one whose midpoint is nearest the
   latest confirmation close sets the bias (bullish block = demand = BUY,
   bearish block = supply = SELL).
2. Confirmation candles overlapping that zone must show a CHOCH.
3. A reaction zone comes from the most recent order-block impulse in the
   last few confirmation candles.
4. Entry candles overlapping the reaction zone must show a second CHOCH.
5. A liquidity sweep and/or a fair value gap on the entry timeframe each
   add confidence.

Any stage that fails to confirm ends the evaluation with no signal.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from signalforge.strategy.base import DetectorContext, make_signal
from signalforge.strategy.models import BUY, SELL, Candle, Signal, Zone
from signalforge.strategy.structure import analyze_structure
from signalforge.strategy.zones import (
    apply_mitigation,
    detect_order_blocks,
    fair_value_gap_at,
    latest_order_block,
)

logger = logging.getLogger("signalforge.smc")


@dataclass(frozen=True)
class SMCParams:
    """Tunable thresholds for the top-down confirmation."""

    min_zone_candles: int = 20
    swing_lookback: int = 3
    require_reversal: bool = True
    reaction_search: int = 3
    sweep_lookback: int = 4
    entry_search: int = 50
    stop_buffer: float = 0.001
    target_extension: float = 0.02
    base_confidence: float = 0.6
    factor_bonus: float = 0.1
    max_confidence: float = 0.95


# ── Stages ───────────────────────────────────────────────────────────────


def nearest_zone(zones: Sequence[Zone], price: float) -> Optional[Zone]:
    """Zone whose midpoint is closest to *price* (first wins on ties)."""
    best: Optional[Zone] = None
    best_dist = float("inf")
    for zone in zones:
        dist = abs(price - zone.midpoint)
        if dist < best_dist:
            best, best_dist = zone, dist
    return best


def candles_in_zone(candles: Sequence[Candle], zone: Zone) -> list[Candle]:
    """Candles whose high-low range overlaps the zone's price range."""
    return [c for c in candles if c.low <= zone.top and c.high >= zone.bottom]


def has_choch_in_zone(
    candles: Sequence[Candle], zone: Zone, params: SMCParams = SMCParams(),
) -> bool:
    """True when the candles inside *zone* show a CHOCH in either direction."""
    inside = candles_in_zone(candles, zone)
    if len(inside) < params.min_zone_candles:
        return False
    state = analyze_structure(
        inside,
        lookback=params.swing_lookback,
        require_reversal=params.require_reversal,
    )
    return state.choch.any


def swept_liquidity(candles: Sequence[Candle], lookback: int = 4) -> bool:
    """Last candle wicks beyond the prior *lookback* extreme and closes back."""
    if len(candles) < lookback + 1:
        return False
    last = candles[-1]
    prior = candles[-lookback - 1:-1]
    prior_high = max(c.high for c in prior)
    prior_low = min(c.low for c in prior)
    swept_high = last.high > prior_high and last.close < prior_high
    swept_low = last.low < prior_low and last.close > prior_low
    return swept_high or swept_low


def confirm_top_down(
    driver: Sequence[Candle],
    confirmation: Sequence[Candle],
    entry: Sequence[Candle],
    context: DetectorContext,
    params: SMCParams = SMCParams(),
    source: str = "smc",
) -> Optional[Signal]:
    """Run the full top-down confirmation and return one signal or ``None``."""
    driver, confirmation, entry = list(driver), list(confirmation), list(entry)
    if not driver or not confirmation or not entry:
        return None

    blocks = [z for z in apply_mitigation(detect_order_blocks(driver), driver)
              if not z.mitigated]
    driver_zone = nearest_zone(blocks, confirmation[-1].close)
    if driver_zone is None:
        return None

    if not has_choch_in_zone(confirmation, driver_zone, params):
        logger.debug("%s: no confirmation CHOCH inside driver zone", context.symbol)
        return None

    reaction = latest_order_block(confirmation, search=params.reaction_search)
    if reaction is None:
        return None
    if not has_choch_in_zone(entry, reaction, params):
        logger.debug("%s: no entry CHOCH inside reaction zone", context.symbol)
        return None

    factors = 0
    notes: list[str] = []
    if swept_liquidity(entry, params.sweep_lookback):
        factors += 1
        notes.append("liquidity_sweep")
    if fair_value_gap_at(entry, len(entry) - 1) is not None:
        factors += 1
        notes.append("fair_value_gap")

    entry_zone = latest_order_block(entry, search=params.entry_search, skip_last=2)
    if entry_zone is None:
        entry_zone = reaction

    direction = BUY if driver_zone.direction == "bullish" else SELL
    if direction == BUY:
        price = entry_zone.bottom
        stop = entry_zone.bottom * (1 - params.stop_buffer)
        target = price * (1 + params.target_extension)
    else:
        price = entry_zone.top
        stop = entry_zone.top * (1 + params.stop_buffer)
        target = price * (1 - params.target_extension)

    confidence = min(
        params.max_confidence,
        params.base_confidence + params.factor_bonus * factors,
    )
    return make_signal(
        context,
        direction=direction,
        entry=price,
        stop=stop,
        target=target,
        confidence=confidence,
        pattern_tag="smc_choch_stacked",
        source=source,
        created_at=entry[-1].timestamp,
        notes=tuple(notes),
    )


# ── Detector + async strategy ────────────────────────────────────────────


class SMCDetector:
    """Detector wrapper: *candles* are the entry timeframe, the driver and
    confirmation series come from ``context.series``.
    """

    name = "smc"
    pattern_tag = "smc_choch_stacked"

    def __init__(
        self,
        driver_timeframe: str = "4h",
        confirmation_timeframe: str = "15m",
        entry_timeframes: tuple[str, ...] = ("1m", "5m"),
        params: SMCParams = SMCParams(),
    ) -> None:
        self.driver_timeframe = driver_timeframe
        self.confirmation_timeframe = confirmation_timeframe
        self.timeframes = entry_timeframes
        self.params = params

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        signal = confirm_top_down(
            context.candles_for(self.driver_timeframe),
            context.candles_for(self.confirmation_timeframe),
            candles,
            context,
            self.params,
            source=self.name,
        )
        return [signal] if signal is not None else []


class SMCStrategy:
    """Fetches its three timeframes concurrently, then confirms top-down."""

    def __init__(
        self,
        source,
        driver_timeframe: str = "4h",
        confirmation_timeframe: str = "15m",
        entry_timeframe: str = "1m",
        count: int = 500,
        params: SMCParams = SMCParams(),
    ) -> None:
        self._source = source
        self.driver_timeframe = driver_timeframe
        self.confirmation_timeframe = confirmation_timeframe
        self.entry_timeframe = entry_timeframe
        self.count = count
        self.params = params

    async def evaluate(self, symbol: str) -> list[Signal]:
        driver, confirmation, entry = await asyncio.gather(
            self._source.fetch(symbol, self.driver_timeframe, self.count),
            self._source.fetch(symbol, self.confirmation_timeframe, self.count),
            self._source.fetch(symbol, self.entry_timeframe, self.count),
        )
        context = DetectorContext(symbol=symbol, timeframe=self.entry_timeframe)
        signal = confirm_top_down(
            driver, confirmation, entry, context, self.params,
        )
        if signal is None:
            return []
        logger.info(
            "SMC %s %s entry=%.5f sl=%.5f tp=%.5f conf=%.2f",
            symbol, signal.direction, signal.entry_price,
            signal.stop_loss, signal.take_profit, signal.confidence,
        )
        return [signal]
