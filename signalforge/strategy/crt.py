"""Candle Range Theory — three-candle liquidity-sweep detection.

Candle 1 defines a range.  Candle 2 pierces one boundary intrabar and closes
back inside; a candle 2 close outside the range invalidates the setup
outright.  Candle 3's open is the default entry.  The trade fades the sweep:
sweep up → SELL, sweep down → BUY, targeting the opposite range boundary.

Also holds the simplified momentum + retracement variant used by the
multi-symbol scanner.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from signalforge.strategy.base import DetectorContext, make_signal
from signalforge.strategy.models import BUY, SELL, TIMEFRAMES, Candle, Signal

logger = logging.getLogger("signalforge.crt")


@dataclass(frozen=True)
class CRTSetup:
    """A valid three-candle sweep setup."""

    sweep_direction: Literal["up", "down"]
    range_high: float
    range_low: float
    sweep_high: float
    sweep_low: float
    entry_hint: float
    sweep_timestamp: int
    trigger_index: int


def find_three_candle_setups(candles: Sequence[Candle]) -> list[CRTSetup]:
    """All valid setups, oldest first.

    A sweep candle closing outside the
    range (``close > range_high`` or ``close < range_low``) never yields a
    setup.
    """
    setups: list[CRTSetup] = []
    for i in range(2, len(candles)):
        c1, c2, c3 = candles[i - 2], candles[i - 1], candles[i]
        crh, crl = c1.high, c1.low

        if c2.close > crh or c2.close < crl:
            continue

        if c2.high > crh and c2.close < crh:
            direction = "up"
        elif c2.low < crl and c2.close > crl:
            direction = "down"
        else:
            continue

        setups.append(CRTSetup(
            sweep_direction=direction,
            range_high=crh,
            range_low=crl,
            sweep_high=c2.high,
            sweep_low=c2.low,
            entry_hint=c3.open,
            sweep_timestamp=c2.timestamp,
            trigger_index=i,
        ))
    return setups


def find_first_fvg(
    candles: Sequence[Candle], sweep_direction: str,
) -> Optional[float]:
    """Entry price from the first gap that agrees with the sweep.

    After a sweep up a bearish gap gives a short entry at the earlier
    candle's low; after a sweep down a bullish gap gives a long entry at the
    earlier candle's high.
    """
    for a, b in zip(candles, candles[1:]):
        if sweep_direction == "up" and b.high < a.low:
            return a.low
        if sweep_direction == "down" and b.low > a.high:
            return a.high
    return None


@dataclass(frozen=True)
class CRTParams:
    stop_buffer: float = 0.0005
    base_confidence: float = 0.65
    refined_bonus: float = 0.1
    max_confidence: float = 0.95


class CRTDetector:
    """Most recent three-candle setup, optionally refined on a lower timeframe."""

    name = "crt"
    pattern_tag = "crt_three_candle"
    timeframes = TIMEFRAMES

    def __init__(self, params: CRTParams = CRTParams()) -> None:
        self.params = params

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        if len(candles) < 3:
            return []
        setups = find_three_candle_setups(candles)
        if not setups:
            return []
        setup = setups[-1]
        p = self.params

        lower = [c for c in context.lower_candles if c.timestamp >= setup.sweep_timestamp]
        refined = find_first_fvg(lower, setup.sweep_direction) if lower else None

        if setup.sweep_direction == "up":
            direction = SELL
            stop = setup.sweep_high * (1 + p.stop_buffer)
            target = setup.range_low
        else:
            direction = BUY
            stop = setup.sweep_low * (1 - p.stop_buffer)
            target = setup.range_high

        confidence = p.base_confidence + (p.refined_bonus if refined is not None else 0.0)
        return [make_signal(
            context,
            direction=direction,
            entry=refined if refined is not None else setup.entry_hint,
            stop=stop,
            target=target,
            confidence=min(p.max_confidence, confidence),
            pattern_tag=self.pattern_tag,
            source=self.name,
            created_at=candles[setup.trigger_index].timestamp,
            timeframe=context.lower_timeframe if refined is not None else None,
            notes=("refined_entry",) if refined is not None else (),
        )]


# ── Momentum + retracement (scanner variant) ─────────────────────────────


@dataclass(frozen=True)
class MomentumParams:
    """Thresholds for the scanner's momentum + retracement variant."""

    min_history: int = 20
    min_body_pct: float = 0.005
    min_move_pct: float = 0.01
    retrace_min: float = 0.382
    retrace_max: float = 0.618
    max_wait: int = 5
    max_age: int = 10
    stop_buffer: float = 0.002
    target_extension: float = 0.015
    confidence: float = 0.7


def find_momentum_retracements(
    candles: Sequence[Candle], params: MomentumParams = MomentumParams(),
) -> list[tuple[str, int, float, float, float]]:
    """Strong impulse candles followed by a 38.2–61.8 % retracement.

    Returns ``(direction, trigger_index, entry, stop, target)`` tuples, oldest
    first, for triggers within the last ``max_age`` bars.
    """
    out: list[tuple[str, int, float, float, float]] = []
    n = len(candles)
    for i in range(params.min_history, n - 1):
        cur = candles[i]
        rng = cur.high - cur.low
        if rng <= 0 or cur.open <= 0:
            continue
        body = (cur.close - cur.open) / cur.open
        bullish = body > params.min_body_pct and cur.close > cur.open * (1 + params.min_move_pct)
        bearish = -body > params.min_body_pct and cur.close < cur.open * (1 - params.min_move_pct)
        if not (bullish or bearish):
            continue

        for j in range(i + 1, min(n, i + 1 + params.max_wait)):
            nxt = candles[j]
            if bullish:
                retrace = (cur.high - nxt.low) / rng
            else:
                retrace = (nxt.high - cur.low) / rng
            if params.retrace_min <= retrace <= params.retrace_max:
                if j >= n - params.max_age:
                    if bullish:
                        out.append((BUY, j, nxt.close,
                                    nxt.low * (1 - params.stop_buffer),
                                    cur.high * (1 + params.target_extension)))
                    else:
                        out.append((SELL, j, nxt.close,
                                    nxt.high * (1 + params.stop_buffer),
                                    cur.low * (1 - params.target_extension)))
                break
    return out


class MomentumCRTDetector:
    """Detector wrapper around :func:`find_momentum_retracements`."""

    name = "crt_momentum"
    pattern_tag = "crt_momentum_retracement"
    timeframes = TIMEFRAMES

    def __init__(self, params: MomentumParams = MomentumParams()) -> None:
        self.params = params

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        if len(candles) < self.params.min_history + 2:
            return []
        return [
            make_signal(
                context,
                direction=direction,
                entry=entry,
                stop=stop,
                target=target,
                confidence=self.params.confidence,
                pattern_tag=self.pattern_tag,
                source=self.name,
                created_at=candles[index].timestamp,
            )
            for direction, index, entry, stop, target
            in find_momentum_retracements(candles, self.params)
        ]
