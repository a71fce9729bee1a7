"""Tests for multi-timeframe confirmation (driver → confirmation → entry)."""

import pytest

from signalforge.data.source import InMemoryCandleSource
from signalforge.strategy.base import DetectorContext
from signalforge.strategy.models import BUY, Candle, Zone
from signalforge.strategy.smc import (
    SMCDetector,
    SMCStrategy,
    candles_in_zone,
    confirm_top_down,
    has_choch_in_zone,
    nearest_zone,
    swept_liquidity,
)

_T0 = 1_700_000_000


def _make_candle(ts, o, h, l, c, vol=1000):
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c, volume=vol)


# Centre prices: swing highs 100.6 → 100.3 → 100.8 (lower high, then a break)
# with three-bar swings on each side; the last two candles form a bullish
# order block spanning 99.7–100.0.
_PATTERN = [
    99.6, 99.8, 100.0, 100.6, 100.0, 99.6, 99.4, 99.6, 99.8, 100.3,
    99.8, 99.5, 99.3, 99.5, 99.8, 100.0, 100.8, 100.4, 100.2, 100.0,
]
_BLOCK = [(100.0, 100.05, 99.7, 99.8), (99.8, 100.25, 99.75, 100.2)]


def _pattern_candles(step: int, centre: float = 100.0, scale: float = 1.0) -> list[Candle]:
    def tx(p):
        return centre + (p - 100.0) * scale

    rows = [(p, p + 0.1, p - 0.1, p) for p in _PATTERN] + _BLOCK
    return [
        _make_candle(_T0 + i * step, tx(o), tx(h), tx(l), tx(c))
        for i, (o, h, l, c) in enumerate(rows)
    ]


def _driver() -> list[Candle]:
    """One bullish order block spanning 99–101, never revisited."""
    return [
        _make_candle(_T0 - 2 * 14400, 101.0, 101.5, 99.0, 100.0),
        _make_candle(_T0 - 14400, 100.0, 103.0, 99.5, 102.5),
    ]


def _confirmation() -> list[Candle]:
    return _pattern_candles(900)


def _entry() -> list[Candle]:
    # Same shape squeezed into the 99.7–100.0 reaction zone.
    return _pattern_candles(60, centre=99.85, scale=0.2)


def _ctx(**kw) -> DetectorContext:
    kw.setdefault("symbol", "R_100")
    kw.setdefault("timeframe", "1m")
    return DetectorContext(**kw)


# ── Helpers ──────────────────────────────────────────────────────────────


class TestHelpers:
    def _zone(self, top, bottom):
        return Zone("order_block", "bullish", top=top, bottom=bottom, created_at=0, index=0)

    def test_nearest_zone_by_midpoint(self):
        a, b = self._zone(101, 99), self._zone(111, 109)
        assert nearest_zone([a, b], 108) is b
        assert nearest_zone([a, b], 100) is a
        assert nearest_zone([], 100) is None

    def test_candles_in_zone_overlap(self):
        zone = self._zone(100.0, 99.7)
        candles = [
            _make_candle(0, 100.2, 100.3, 100.1, 100.2),   # above
            _make_candle(1, 99.9, 100.1, 99.8, 100.0),     # overlaps
            _make_candle(2, 99.5, 99.6, 99.4, 99.5),       # below
        ]
        assert [c.timestamp for c in candles_in_zone(candles, zone)] == [1]

    def test_choch_requires_enough_candles_in_zone(self):
        zone = self._zone(101, 99)
        assert has_choch_in_zone(_confirmation(), zone)
        assert not has_choch_in_zone(_confirmation()[:15], zone)

    def test_swept_liquidity(self):
        prior = [_make_candle(i, 100, 101, 99, 100) for i in range(4)]
        sweep = _make_candle(4, 100, 101.5, 99.5, 100.5)
        inside = _make_candle(4, 100, 100.5, 99.5, 100.2)
        assert swept_liquidity(prior + [sweep], 4)
        assert not swept_liquidity(prior + [inside], 4)
        assert not swept_liquidity(prior, 4)


# ── Top-down confirmation ────────────────────────────────────────────────


class TestConfirmTopDown:
    def test_full_stack_buys_at_reaction_zone(self):
        signal = confirm_top_down(_driver(), _confirmation(), _entry(), _ctx())
        assert signal is not None
        assert signal.direction == BUY
        assert signal.entry_price == pytest.approx(99.7)
        assert signal.stop_loss == pytest.approx(99.7 * 0.999)
        assert signal.take_profit == pytest.approx(99.7 * 1.02)
        assert signal.confidence == pytest.approx(0.6)
        assert signal.pattern_tag == "smc_choch_stacked"

    def test_mitigated_driver_zone_stops(self):
        driver = _driver() + [_make_candle(_T0, 100.0, 100.5, 98.5, 100.2)]
        assert confirm_top_down(driver, _confirmation(), _entry(), _ctx()) is None

    def test_no_entry_choch_stops(self):
        flat_entry = [_make_candle(_T0 + i * 60, 99.85, 99.9, 99.8, 99.85) for i in range(30)]
        assert confirm_top_down(_driver(), _confirmation(), flat_entry, _ctx()) is None

    def test_missing_series_stops(self):
        assert confirm_top_down([], _confirmation(), _entry(), _ctx()) is None
        assert confirm_top_down(_driver(), [], _entry(), _ctx()) is None


class TestSMCDetector:
    def test_reads_other_timeframes_from_context(self):
        ctx = _ctx(series={"4h": _driver(), "15m": _confirmation()})
        [signal] = SMCDetector().detect(_entry(), ctx)
        assert signal.source_detector == "smc"
        assert signal.symbol == "R_100"

    def test_without_context_series(self):
        assert SMCDetector().detect(_entry(), _ctx()) == []


class TestSMCStrategy:
    @pytest.mark.asyncio
    async def test_fetches_three_timeframes(self):
        source = InMemoryCandleSource({
            ("R_100", "4h"): _driver(),
            ("R_100", "15m"): _confirmation(),
            ("R_100", "1m"): _entry(),
        })
        [signal] = await SMCStrategy(source).evaluate("R_100")
        assert signal.direction == BUY

    @pytest.mark.asyncio
    async def test_no_data(self):
        assert await SMCStrategy(InMemoryCandleSource()).evaluate("R_100") == []
