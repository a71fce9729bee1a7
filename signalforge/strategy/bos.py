"""Break-of-structure continuation detector.

Reads short-term structure from 3-bar fractals over the last
``structure_lookback`` candles.  In an uptrend, a confirmed close above the
latest swing high that has carried price at least 1.5 × ATR beyond it is a
continuation BUY; a downtrend mirrors with a SELL below the latest swing low.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from signalforge.strategy.base import DetectorContext, make_signal
from signalforge.strategy.indicators import try_atr
from signalforge.strategy.models import BUY, SELL, TIMEFRAMES, Candle, Signal
from signalforge.strategy.structure import (
    classify_trend,
    find_swing_highs,
    find_swing_lows,
)


@dataclass(frozen=True)
class BOSParams:
    min_bars: int = 50
    structure_lookback: int = 20
    recent_bars: int = 5
    confirmation_candles: int = 2
    min_volatility: float = 0.0005  # ATR / price
    min_move_atr: float = 1.5
    stop_atr: float = 0.5
    target_multiple: float = 1.5
    max_confidence: float = 0.9


def _confirmed_break(
    candles: list[Candle],
    level: float,
    after_index: int,
    bullish: bool,
    recent_bars: int,
    confirmations: int,
) -> bool:
    """First candle in the last *recent_bars* to pierce *level* (after the
    swing) starts a run whose closes must all stay beyond the level.

    The run is that candle plus up to *confirmations* more, and is accepted
    once it holds at least *confirmations* candles.  With two confirmations
    a pierce on the second-to-last bar needs only the last bar to close
    beyond the level, and a pierce on the last bar alone is rejected.
    """
    start = max(after_index + 1, len(candles) - recent_bars)
    for i in range(start, len(candles)):
        c = candles[i]
        pierced = c.high > level if bullish else c.low < level
        if not pierced:
            continue
        run = candles[i:i + confirmations + 1]
        if len(run) < confirmations:
            return False
        if bullish:
            return all(x.close > level for x in run)
        return all(x.close < level for x in run)
    return False


class BOSDetector:
    """Trend-continuation signal on a confirmed break of the latest swing."""

    name = "bos"
    pattern_tag = "bos_continuation"
    timeframes = TIMEFRAMES

    def __init__(self, params: BOSParams = BOSParams()) -> None:
        self.params = params

    def _signal(
        self, candles: list[Candle], context: DetectorContext,
    ) -> Optional[Signal]:
        p = self.params
        atr = try_atr(candles, 14)
        price = candles[-1].close
        if atr is None or atr <= 0 or price <= 0 or atr / price < p.min_volatility:
            return None

        offset = len(candles) - p.structure_lookback
        window = candles[offset:]
        highs = find_swing_highs(window, 1)
        lows = find_swing_lows(window, 1)
        trend = classify_trend(highs, lows)

        if trend == "bullish":
            swing = highs[-1]
            move = price - swing.price
            if not _confirmed_break(candles, swing.price, offset + swing.index, True,
                                    p.recent_bars, p.confirmation_candles):
                return None
            direction, stop, target = BUY, swing.price - atr * p.stop_atr, price + move * p.target_multiple
        elif trend == "bearish":
            swing = lows[-1]
            move = swing.price - price
            if not _confirmed_break(candles, swing.price, offset + swing.index, False,
                                    p.recent_bars, p.confirmation_candles):
                return None
            direction, stop, target = SELL, swing.price + atr * p.stop_atr, price - move * p.target_multiple
        else:
            return None

        if move <= atr * p.min_move_atr:
            return None

        return make_signal(
            context,
            direction=direction,
            entry=price,
            stop=stop,
            target=target,
            confidence=min(p.max_confidence, move / atr),
            pattern_tag=self.pattern_tag,
            source=self.name,
            created_at=candles[-1].timestamp,
            notes=("atr=%.6f" % atr,),
        )

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        candles = list(candles)
        if len(candles) < max(self.params.min_bars, self.params.structure_lookback):
            return []
        signal = self._signal(candles, context)
        return [signal] if signal is not None else []
