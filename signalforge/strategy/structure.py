"""Market structure analysis — swings, trend, BOS and CHOCH. Pure functions.

Every call builds a fresh ``StructureState`` from the candle sequence it is
given; nothing is cached between calls, so the same input always yields the
same snapshot.

BOS and CHOCH both look at "did the latest swing break the previous one".
CHOCH additionally needs three swings of the relevant kind and, unless
``require_reversal`` is switched off, the swings *before* the break must
point the other way: a bullish CHOCH breaks a run of lower highs, a bearish
CHOCH breaks a run of higher lows.
"""

from signalforge.strategy.models import (
    Candle,
    StructureBreak,
    StructureState,
    SwingPoint,
)


DEFAULT_SWING_LOOKBACK = 5


def find_swing_highs(
    candles: list[Candle], lookback: int = DEFAULT_SWING_LOOKBACK,
) -> list[SwingPoint]:
    """Identify swing highs.

    A swing high is a candle whose high is strictly higher than the highs
    of the *lookback* candles on each side.  Bars closer than *lookback*
    to either end of the sequence are never swings.
    """
    swings: list[SwingPoint] = []
    for i in range(lookback, len(candles) - lookback):
        high = candles[i].high
        is_swing = True
        for j in range(1, lookback + 1):
            if candles[i - j].high >= high or candles[i + j].high >= high:
                is_swing = False
                break
        if is_swing:
            swings.append(SwingPoint(i, high, "high", candles[i].timestamp))
    return swings


def find_swing_lows(
    candles: list[Candle], lookback: int = DEFAULT_SWING_LOOKBACK,
) -> list[SwingPoint]:
    """Identify swing lows (mirror of :func:`find_swing_highs`)."""
    swings: list[SwingPoint] = []
    for i in range(lookback, len(candles) - lookback):
        low = candles[i].low
        is_swing = True
        for j in range(1, lookback + 1):
            if candles[i - j].low <= low or candles[i + j].low <= low:
                is_swing = False
                break
        if is_swing:
            swings.append(SwingPoint(i, low, "low", candles[i].timestamp))
    return swings


def find_swing_points(
    candles: list[Candle], lookback: int = DEFAULT_SWING_LOOKBACK,
) -> tuple[list[SwingPoint], list[SwingPoint]]:
    """Return ``(swing_highs, swing_lows)``, both oldest first."""
    return find_swing_highs(candles, lookback), find_swing_lows(candles, lookback)


def classify_trend(
    swing_highs: list[SwingPoint], swing_lows: list[SwingPoint],
) -> str:
    """Compare the two most recent swing highs and swing lows.

    Returns ``"bullish"`` for higher highs + higher lows, ``"bearish"`` for
    lower highs + lower lows, ``"neutral"`` otherwise (including when fewer
    than two swings of either kind exist).
    """
    if len(swing_highs) < 2 or len(swing_lows) < 2:
        return "neutral"
    last_h, prev_h = swing_highs[-1].price, swing_highs[-2].price
    last_l, prev_l = swing_lows[-1].price, swing_lows[-2].price
    if last_h > prev_h and last_l > prev_l:
        return "bullish"
    if last_h < prev_h and last_l < prev_l:
        return "bearish"
    return "neutral"


def detect_bos(
    swing_highs: list[SwingPoint], swing_lows: list[SwingPoint],
) -> StructureBreak:
    """Break of structure: latest swing beyond the previous one.

    When both sides break, the recorded level is the bearish one.
    """
    bullish = bearish = False
    level = None
    if len(swing_highs) >= 2 and swing_highs[-1].price > swing_highs[-2].price:
        bullish = True
        level = swing_highs[-2].price
    if len(swing_lows) >= 2 and swing_lows[-1].price < swing_lows[-2].price:
        bearish = True
        level = swing_lows[-2].price
    return StructureBreak(bullish=bullish, bearish=bearish, level=level)


def detect_choch(
    swing_highs: list[SwingPoint],
    swing_lows: list[SwingPoint],
    require_reversal: bool = True,
) -> StructureBreak:
    """Change of character: a break against the prior structure.

    Args:
        swing_highs: Swing highs, oldest first.
        swing_lows: Swing lows, oldest first.
        require_reversal: When ``True`` a bullish CHOCH also needs the two
            highs before the break to be descending (bearish structure), and
            a bearish CHOCH needs the two lows before it to be ascending.
            ``False`` keeps only the three-swing minimum.
    """
    bullish = bearish = False
    level = None

    if len(swing_highs) >= 3:
        last, prev, older = (s.price for s in swing_highs[-1:-4:-1])
        if last > prev and (not require_reversal or prev < older):
            bullish = True
            level = prev

    if len(swing_lows) >= 3:
        last, prev, older = (s.price for s in swing_lows[-1:-4:-1])
        if last < prev and (not require_reversal or prev > older):
            bearish = True
            level = prev

    return StructureBreak(bullish=bullish, bearish=bearish, level=level)


_REGIMES = {
    "bullish": "bullish_trend",
    "bearish": "bearish_trend",
    "neutral": "ranging",
}


def analyze_structure(
    candles: list[Candle],
    lookback: int = DEFAULT_SWING_LOOKBACK,
    require_reversal: bool = True,
) -> StructureState:
    """Build a ``StructureState`` snapshot for *candles*.

    With fewer than ``2 × lookback + 1`` candles no swing can exist; the
    result is a neutral state with no breaks, which callers should read as
    "insufficient data".
    """
    if len(candles) < 2 * lookback + 1:
        return StructureState(trend="neutral", regime="ranging")

    highs = find_swing_highs(candles, lookback)
    lows = find_swing_lows(candles, lookback)
    trend = classify_trend(highs, lows)

    return StructureState(
        trend=trend,
        regime=_REGIMES[trend],
        swing_highs=tuple(highs),
        swing_lows=tuple(lows),
        bos=detect_bos(highs, lows),
        choch=detect_choch(highs, lows, require_reversal=require_reversal),
    )
