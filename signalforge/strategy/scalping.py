"""Scalping detectors — reversal candle at a short-term support/resistance level.

Both detectors follow the same shape: find nearby swing levels → check the
latest candle for a pin bar or an engulfing reversal at a level → emit.
``PureScalpingDetector`` is gated on the London / New York sessions (by
candle time) and uses a 5-bar fractal for its levels;
``PriceActionScalpingDetector`` trades any hour with 3-bar fractals.
"""

from dataclasses import dataclass
from typing import Sequence

from signalforge.strategy.base import DetectorContext, make_signal
from signalforge.strategy.models import BUY, SELL, Candle, Signal
from signalforge.strategy.session_filter import SESSIONS, is_trading_session


SCALPING_TIMEFRAMES: tuple[str, ...] = ("1m", "5m")


@dataclass(frozen=True)
class ScalpingParams:
    min_bars: int = 20
    level_tolerance: float = 0.0002
    stop_offset: float = 0.0001
    reward_multiple: float = 1.5
    pin_bar_confidence: float = 0.75
    engulfing_confidence: float = 0.8
    engulfing_body_ratio: float = 1.5


# ── Candle patterns ──────────────────────────────────────────────────────


def is_pin_bar(candle: Candle, bullish: bool, max_body_ratio: float = 0.3) -> bool:
    """Small body with a dominant wick against the trade direction.

    A bullish pin bar has a lower wick at least twice the body and twice the
    upper wick; bearish mirrors on the upper wick.
    """
    body = abs(candle.close - candle.open)
    upper = candle.high - max(candle.open, candle.close)
    lower = min(candle.open, candle.close) - candle.low
    rng = candle.high - candle.low
    if rng <= 0 or body > rng * max_body_ratio:
        return False
    if bullish:
        return lower > body * 2 and lower > upper * 2
    return upper > body * 2 and upper > lower * 2


def is_engulfing(
    current: Candle, previous: Candle, bullish: bool, body_ratio: float = 1.5,
) -> bool:
    prev_body = abs(previous.close - previous.open)
    cur_body = abs(current.close - current.open)
    if cur_body <= prev_body * body_ratio:
        return False
    if bullish:
        return (current.is_bullish and previous.is_bearish
                and current.open <= previous.close and current.close > previous.open)
    return (current.is_bearish and previous.is_bullish
            and current.open >= previous.close and current.close < previous.open)


# ── Levels and trend ─────────────────────────────────────────────────────


def fractal_levels(
    candles: Sequence[Candle], width: int = 1,
) -> tuple[list[float], list[float]]:
    """``(support, resistance)`` prices from fractal swing points.

    With ``width=1`` a level is a low below both neighbours (3-bar fractal).
    With ``width=2`` the neighbours must also step away from the pivot on
    both sides (5-bar fractal).
    """
    support: list[float] = []
    resistance: list[float] = []
    start = 3 if width > 1 else 1
    for i in range(start, len(candles) - width):
        c, prev, nxt = candles[i], candles[i - 1], candles[i + 1]
        low_pivot = c.low < prev.low and c.low < nxt.low
        high_pivot = c.high > prev.high and c.high > nxt.high
        if width > 1:
            low_pivot = low_pivot and prev.low > candles[i - 2].low and nxt.low > candles[i + 2].low
            high_pivot = high_pivot and prev.high < candles[i - 2].high and nxt.high < candles[i + 2].high
        if low_pivot:
            support.append(c.low)
        if high_pivot:
            resistance.append(c.high)
    return support, resistance


def short_term_trend(candles: Sequence[Candle], length: int = 5) -> int:
    """+1 up, -1 down, 0 range, from counts of higher highs / lower lows
    across the last *length* candles."""
    recent = list(candles)[-length:]
    if len(recent) < length:
        return 0
    higher = sum(1 for a, b in zip(recent, recent[1:]) if b.high > a.high)
    lower = sum(1 for a, b in zip(recent, recent[1:]) if b.low < a.low)
    if higher >= 3 and higher > lower:
        return 1
    if lower >= 3 and lower > higher:
        return -1
    return 0


def close_trend(candles: Sequence[Candle], length: int = 5) -> int:
    """+1 / -1 / 0 from up-close versus down-close counts."""
    recent = list(candles)[-length:]
    if len(recent) < length:
        return 0
    up = sum(1 for a, b in zip(recent, recent[1:]) if b.close > a.close)
    down = (len(recent) - 1) - up
    if up > down * 1.5:
        return 1
    if down > up * 1.5:
        return -1
    return 0


# ── Detectors ────────────────────────────────────────────────────────────


class _LevelReversalDetector:
    """Shared emit logic: pin bar / engulfing at a level, once per pattern."""

    name = ""
    pattern_tag = "pin_bar"
    timeframes = SCALPING_TIMEFRAMES
    fractal_width = 1

    def __init__(self, params: ScalpingParams) -> None:
        self.params = params

    def _trend(self, candles: Sequence[Candle]) -> int:
        raise NotImplementedError

    def _gate(self, candles: Sequence[Candle]) -> bool:
        return True

    def _near(self, price: float, levels: list[float]) -> bool:
        return any(abs(price - lv) <= self.params.level_tolerance for lv in levels)

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        candles = list(candles)
        p = self.params
        if len(candles) < p.min_bars or not self._gate(candles):
            return []

        cur, prev = candles[-1], candles[-2]
        trend = self._trend(candles)
        support, resistance = fractal_levels(candles, self.fractal_width)
        signals: list[Signal] = []

        def emit(direction, stop, confidence, tag):
            if direction == BUY:
                target = cur.close + (cur.close - stop) * p.reward_multiple
            else:
                target = cur.close - (stop - cur.close) * p.reward_multiple
            signals.append(make_signal(
                context,
                direction=direction,
                entry=cur.close,
                stop=stop,
                target=target,
                confidence=confidence,
                pattern_tag=tag,
                source=self.name,
                created_at=cur.timestamp,
            ))

        if trend >= 0 and self._near(cur.low, support):
            if is_pin_bar(cur, bullish=True):
                emit(BUY, cur.low - p.stop_offset, p.pin_bar_confidence, "pin_bar")
            if is_engulfing(cur, prev, True, p.engulfing_body_ratio):
                emit(BUY, min(cur.low, prev.low) - p.stop_offset,
                     p.engulfing_confidence, "engulfing")

        if trend <= 0 and self._near(cur.high, resistance):
            if is_pin_bar(cur, bullish=False):
                emit(SELL, cur.high + p.stop_offset, p.pin_bar_confidence, "pin_bar")
            if is_engulfing(cur, prev, False, p.engulfing_body_ratio):
                emit(SELL, max(cur.high, prev.high) + p.stop_offset,
                     p.engulfing_confidence, "engulfing")

        return signals


class PureScalpingDetector(_LevelReversalDetector):
    """Session-gated reversal scalps at 5-bar fractal levels."""

    name = "pure_scalping"
    fractal_width = 2

    def __init__(
        self,
        params: ScalpingParams = ScalpingParams(),
        sessions: dict[str, tuple[int, int]] = SESSIONS,
    ) -> None:
        super().__init__(params)
        self.sessions = sessions

    def _gate(self, candles):
        return is_trading_session(candles[-1].timestamp, self.sessions)

    def _trend(self, candles):
        return short_term_trend(candles)


class PriceActionScalpingDetector(_LevelReversalDetector):
    """Ungated reversal scalps at 3-bar fractal levels."""

    name = "price_action"

    def __init__(
        self,
        params: ScalpingParams = ScalpingParams(
            pin_bar_confidence=0.7, engulfing_confidence=0.75,
        ),
    ) -> None:
        super().__init__(params)

    def _trend(self, candles):
        return close_trend(candles)
