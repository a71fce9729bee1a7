"""Technical indicators — ATR, ADX, volume averages. Pure functions, no I/O."""

from signalforge.strategy.models import Candle


def true_ranges(candles: list[Candle]) -> list[float]:
    """True range of every bar after the first.

        TR = max(high - low, |high - prev_close|, |low - prev_close|)
    """
    out: list[float] = []
    for prev, cur in zip(candles, candles[1:]):
        out.append(
            max(
                cur.high - cur.low,
                abs(cur.high - prev.close),
                abs(cur.low - prev.close),
            )
        )
    return out


def calculate_atr(candles: list[Candle], period: int = 14) -> float:
    """Average True Range over the last *period* bars.

    Requires at least ``period + 1`` candles (need a previous close for TR).
    Returns the simple average of the last *period* true ranges.

    Raises ``ValueError`` if insufficient data.
    """
    if len(candles) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} candles for ATR({period}), "
            f"got {len(candles)}"
        )
    recent = true_ranges(candles)[-period:]
    return sum(recent) / len(recent)


def try_atr(candles: list[Candle], period: int = 14) -> float | None:
    """ATR, or ``None`` when the sequence is too short."""
    if len(candles) < period + 1:
        return None
    return calculate_atr(candles, period)


def calculate_adx(candles: list[Candle], period: int = 14) -> float:
    """Latest Wilder ADX value.

    Requires at least ``2 × period + 1`` candles; raises ``ValueError``
    otherwise.
    """
    if len(candles) < 2 * period + 1:
        raise ValueError(
            f"Need at least {2 * period + 1} candles for ADX({period}), "
            f"got {len(candles)}"
        )

    plus_dm: list[float] = []
    minus_dm: list[float] = []
    for prev, cur in zip(candles, candles[1:]):
        up = cur.high - prev.high
        down = prev.low - cur.low
        plus_dm.append(up if up > down and up > 0 else 0.0)
        minus_dm.append(down if down > up and down > 0 else 0.0)
    trs = true_ranges(candles)

    s_plus = sum(plus_dm[:period])
    s_minus = sum(minus_dm[:period])
    s_tr = sum(trs[:period])

    def _dx() -> float:
        if s_tr == 0:
            return 0.0
        plus_di = 100.0 * s_plus / s_tr
        minus_di = 100.0 * s_minus / s_tr
        total = plus_di + minus_di
        return 0.0 if total == 0 else 100.0 * abs(plus_di - minus_di) / total

    dx = [_dx()]
    for i in range(period, len(trs)):
        s_plus = s_plus - s_plus / period + plus_dm[i]
        s_minus = s_minus - s_minus / period + minus_dm[i]
        s_tr = s_tr - s_tr / period + trs[i]
        dx.append(_dx())

    adx = sum(dx[:period]) / period
    for value in dx[period:]:
        adx = (adx * (period - 1) + value) / period
    return adx


def average_volume(candles: list[Candle], period: int = 20) -> float:
    """Mean volume of the last *period* candles (0.0 for an empty list)."""
    recent = candles[-period:]
    if not recent:
        return 0.0
    return sum(c.volume for c in recent) / len(recent)
