"""Zone detection — order blocks, fair value gaps, breakers, liquidity levels.

Pure functions over an immutable candle sequence.  Mitigation produces new
``Zone`` values through ``dataclasses.replace``; a mitigated zone is never
turned back into an unmitigated one.
"""

from dataclasses import dataclass, replace

from signalforge.strategy.models import Candle, LiquidityLevel, Zone


DEFAULT_LEVEL_THRESHOLD = 0.001  # 0.1 % price proximity
DEFAULT_MAX_LEVELS = 5


@dataclass(frozen=True)
class ZoneMap:
    """All zones and levels detected in one candle sequence."""

    order_blocks: tuple[Zone, ...] = ()
    fair_value_gaps: tuple[Zone, ...] = ()
    breaker_blocks: tuple[Zone, ...] = ()
    support: tuple[LiquidityLevel, ...] = ()
    resistance: tuple[LiquidityLevel, ...] = ()

    @property
    def active_order_blocks(self) -> tuple[Zone, ...]:
        return tuple(z for z in self.order_blocks if not z.mitigated)


# ── Order blocks ─────────────────────────────────────────────────────────


def order_block_at(candles: list[Candle], i: int) -> Zone | None:
    """Return the order block formed by candle *i* and its successor, if any.

    Bullish: candle *i* is a down candle and candle *i+1* is an up candle
    closing above candle *i*'s high.  The zone spans ``[low, open]``.
    Bearish: the mirror, spanning ``[open, high]``.
    """
    if i < 0 or i + 1 >= len(candles):
        return None
    b = candles[i]
    c = candles[i + 1]
    if b.is_bearish and c.is_bullish and c.close > b.high:
        return Zone("order_block", "bullish", top=b.open, bottom=b.low,
                    created_at=b.timestamp, index=i)
    if b.is_bullish and c.is_bearish and c.close < b.low:
        return Zone("order_block", "bearish", top=b.high, bottom=b.open,
                    created_at=b.timestamp, index=i)
    return None


def detect_order_blocks(candles: list[Candle]) -> list[Zone]:
    """All order blocks in *candles*, oldest first, unmitigated."""
    blocks: list[Zone] = []
    for i in range(len(candles) - 1):
        zone = order_block_at(candles, i)
        if zone is not None:
            blocks.append(zone)
    return blocks


def latest_order_block(
    candles: list[Candle], search: int = 50, skip_last: int = 0,
) -> Zone | None:
    """Most recent order block within the last *search* candles.

    *skip_last* excludes that many trailing candles from the search, so the
    impulse candle of the returned block is always fully formed.
    """
    stop = max(-1, len(candles) - search - 1)
    for i in range(len(candles) - 2 - skip_last, stop, -1):
        zone = order_block_at(candles, i)
        if zone is not None:
            return zone
    return None


# ── Fair value gaps ──────────────────────────────────────────────────────


def fair_value_gap_at(candles: list[Candle], n: int) -> Zone | None:
    """Return the gap between candle *n-1* and candle *n*, if any.

    Bullish when candle *n*'s low is above candle *n-1*'s high; bearish
    when candle *n*'s high is below candle *n-1*'s low.  The zone spans the
    two prices that did not overlap.
    """
    if n < 1 or n >= len(candles):
        return None
    prev = candles[n - 1]
    cur = candles[n]
    if cur.low > prev.high:
        return Zone("fair_value_gap", "bullish", top=cur.low, bottom=prev.high,
                    created_at=cur.timestamp, index=n)
    if cur.high < prev.low:
        return Zone("fair_value_gap", "bearish", top=prev.low, bottom=cur.high,
                    created_at=cur.timestamp, index=n)
    return None


def detect_fair_value_gaps(candles: list[Candle]) -> list[Zone]:
    """All fair value gaps in *candles*, oldest first, unmitigated."""
    gaps: list[Zone] = []
    for n in range(1, len(candles)):
        gap = fair_value_gap_at(candles, n)
        if gap is not None:
            gaps.append(gap)
    return gaps


# ── Mitigation ───────────────────────────────────────────────────────────


def mitigate(zone: Zone, candle: Candle) -> Zone:
    """Apply one later candle to *zone*.

    A bullish zone is mitigated when the candle's low reaches its bottom; a
    bearish zone when the candle's high reaches its top.  Already-mitigated
    zones are returned unchanged.
    """
    if zone.mitigated:
        return zone
    if zone.direction == "bullish" and candle.low <= zone.bottom:
        return replace(zone, mitigated=True, mitigated_at=candle.timestamp)
    if zone.direction == "bearish" and candle.high >= zone.top:
        return replace(zone, mitigated=True, mitigated_at=candle.timestamp)
    return zone


def apply_mitigation(zones: list[Zone], candles: list[Candle]) -> list[Zone]:
    """Run every candle after each zone's formation through :func:`mitigate`.

    For an order block the impulse candle itself is the first one checked.
    """
    result: list[Zone] = []
    for zone in zones:
        for candle in candles[zone.index + 1:]:
            zone = mitigate(zone, candle)
            if zone.mitigated:
                break
        result.append(zone)
    return result


def detect_breaker_blocks(candles: list[Candle]) -> list[Zone]:
    """Mitigated order blocks re-emitted with their direction flipped."""
    breakers: list[Zone] = []
    for ob in apply_mitigation(detect_order_blocks(candles), candles):
        if ob.mitigated:
            breakers.append(replace(
                ob,
                kind="breaker_block",
                direction="bearish" if ob.direction == "bullish" else "bullish",
                mitigated=False,
                mitigated_at=None,
                created_at=ob.mitigated_at,
            ))
    return breakers


# ── Liquidity levels ─────────────────────────────────────────────────────


def _cluster_prices(
    prices: list[tuple[int, float]], threshold: float,
) -> list[list[tuple[int, float]]]:
    """Group ``(index, price)`` pairs whose price is within *threshold*
    (relative) of a cluster's first price.  Chronological, first match wins.
    """
    clusters: list[list[tuple[int, float]]] = []
    for idx, price in prices:
        for cluster in clusters:
            anchor = cluster[0][1]
            if anchor and abs(price - anchor) / anchor < threshold:
                cluster.append((idx, price))
                break
        else:
            clusters.append([(idx, price)])
    return clusters


def _levels(
    side: str,
    prices: list[tuple[int, float]],
    threshold: float,
    max_levels: int,
) -> tuple[LiquidityLevel, ...]:
    levels = [
        LiquidityLevel(
            side=side,
            price=sum(p for _, p in cluster) / len(cluster),
            strength=len(cluster),
            last_index=max(i for i, _ in cluster),
        )
        for cluster in _cluster_prices(prices, threshold)
    ]
    levels.sort(key=lambda lv: (-lv.strength, -lv.last_index))
    kept = levels[:max_levels]
    kept.sort(key=lambda lv: lv.price)
    return tuple(kept)


def detect_liquidity_levels(
    candles: list[Candle],
    threshold: float = DEFAULT_LEVEL_THRESHOLD,
    max_levels: int = DEFAULT_MAX_LEVELS,
) -> tuple[tuple[LiquidityLevel, ...], tuple[LiquidityLevel, ...]]:
    """Cluster raw lows into support and raw highs into resistance.

    Strength is the number of touches in a cluster.  The *max_levels*
    strongest clusters per side are kept (ties go to the most recent) and
    returned sorted by price.

    Returns:
        ``(support, resistance)``.
    """
    lows = [(i, c.low) for i, c in enumerate(candles)]
    highs = [(i, c.high) for i, c in enumerate(candles)]
    return (
        _levels("support", lows, threshold, max_levels),
        _levels("resistance", highs, threshold, max_levels),
    )


def analyze_zones(candles: list[Candle]) -> ZoneMap:
    """Detect every zone type in *candles* with mitigation applied."""
    order_blocks = apply_mitigation(detect_order_blocks(candles), candles)
    gaps = apply_mitigation(detect_fair_value_gaps(candles), candles)
    support, resistance = detect_liquidity_levels(candles)
    return ZoneMap(
        order_blocks=tuple(order_blocks),
        fair_value_gaps=tuple(gaps),
        breaker_blocks=tuple(detect_breaker_blocks(candles)),
        support=support,
        resistance=resistance,
    )
