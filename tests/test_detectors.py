"""Tests for the CHOCH, BOS and scalping detectors, sessions and the registry."""

import pytest

from signalforge.errors import InsufficientDataError, InvalidConfigurationError
from signalforge.strategy.base import Detector, DetectorContext
from signalforge.strategy.bos import BOSDetector, _confirmed_break
from signalforge.strategy.choch import CHOCHDetector, analyze_choch
from signalforge.strategy.crt import CRTDetector
from signalforge.strategy.models import BUY, SELL, Candle
from signalforge.strategy.registry import DETECTOR_REGISTRY, get_detector
from signalforge.strategy.scalping import (
    PriceActionScalpingDetector,
    PureScalpingDetector,
    fractal_levels,
    is_engulfing,
    is_pin_bar,
)
from signalforge.strategy.session_filter import is_in_session, is_trading_session

# 2023-11-14 00:00:00 UTC
_MIDNIGHT = 1_699_920_000


def _make_candle(ts, o, h, l, c, vol=1000):
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c, volume=vol)


def _doji_series(values, spread, start=_MIDNIGHT, step=3600):
    return [
        _make_candle(start + i * step, v, v + spread, v - spread, v)
        for i, v in enumerate(values)
    ]


def _zigzag(pivots, steps):
    values = []
    for a, b in zip(pivots, pivots[1:]):
        values.extend(a + (b - a) * s / steps for s in range(steps))
    values.append(pivots[-1])
    return values


def _ctx(tf="1h"):
    return DetectorContext(symbol="R_75", timeframe=tf)


# ── CHOCH ────────────────────────────────────────────────────────────────


class TestCHOCHDetector:
    def _choch_candles(self):
        # Highs 103 → 102 → 104 break the descending run; ends at 103.5.
        return _doji_series(_zigzag([100, 103, 99, 102, 98.5, 104, 103.5], 9), 0.5)

    def test_reversal_signal(self):
        [signal] = CHOCHDetector().detect(self._choch_candles(), _ctx())
        assert signal.direction == BUY
        assert signal.pattern_tag == "choch_reversal"
        assert signal.entry_price == pytest.approx(103.5)
        assert signal.stop_loss == pytest.approx(102.5 * 0.99)
        assert signal.take_profit == pytest.approx(103.5 * 1.02)
        # score: 0.5 + BOS 0.15 + CHOCH 0.2, weighted 0.8
        assert signal.confidence == pytest.approx(0.68)

    def test_analysis_score(self):
        analysis = analyze_choch(self._choch_candles())
        assert analysis.structure.choch.bullish
        assert analysis.score == pytest.approx(0.85)

    def test_order_block_near_price(self):
        candles = _doji_series([100.0] * 48, 0.5)
        t = candles[-1].timestamp
        candles.append(_make_candle(t + 3600, 100.0, 100.1, 99.7, 99.8))
        candles.append(_make_candle(t + 7200, 99.8, 100.35, 99.75, 100.3))
        [signal] = CHOCHDetector().detect(candles, _ctx())
        assert signal.pattern_tag == "order_block"
        assert signal.direction == BUY
        assert signal.entry_price == pytest.approx(99.7)

    def test_insufficient_data(self):
        candles = self._choch_candles()[:49]
        assert CHOCHDetector().detect(candles, _ctx()) == []
        with pytest.raises(InsufficientDataError):
            analyze_choch(candles, min_bars=50)


# ── BOS ──────────────────────────────────────────────────────────────────


# Last 20 bars: lows 100 → 101 → 102.5 and highs 102 → 103, then a run to 108.
_BOS_WINDOW = [
    101.0, 100.5, 100.0, 101.0, 102.0, 101.5, 101.0, 102.0, 103.0, 102.5,
    103.5, 104.0, 104.5, 105.0, 105.5, 106.0, 106.5, 107.0, 107.5, 108.0,
]


class TestBOSDetector:
    def _candles(self, mirror=False):
        values = [101.0] * 40 + _BOS_WINDOW
        if mirror:
            values = [216.0 - v for v in values]
        return _doji_series(values, 0.2)

    def test_bullish_continuation(self):
        [signal] = BOSDetector().detect(self._candles(), _ctx())
        assert signal.direction == BUY
        assert signal.entry_price == pytest.approx(108.0)
        assert signal.take_profit == pytest.approx(108.0 + 4.8 * 1.5)
        assert signal.stop_loss < 103.2
        assert signal.confidence == pytest.approx(0.9)
        assert signal.pattern_tag == "bos_continuation"

    def test_bearish_continuation(self):
        [signal] = BOSDetector().detect(self._candles(mirror=True), _ctx())
        assert signal.direction == SELL
        assert signal.take_profit == pytest.approx(108.0 - 4.8 * 1.5)
        assert signal.stop_loss > 112.8

    def test_flat_market(self):
        assert BOSDetector().detect(_doji_series([101.0] * 60, 0.2), _ctx()) == []

    def test_short_input(self):
        assert BOSDetector().detect(self._candles()[:30], _ctx()) == []

    def test_confirmed_break_needs_closes_beyond_level(self):
        candles = _doji_series([100, 100, 100, 100, 102, 102, 99], 0.5)
        assert not _confirmed_break(candles, 101, 0, True, 5, 2)
        candles = _doji_series([100, 100, 100, 100, 102, 102, 102], 0.5)
        assert _confirmed_break(candles, 101, 0, True, 5, 2)

    def test_break_on_second_to_last_bar_needs_one_confirming_close(self):
        candles = _doji_series([100] * 5 + [102, 102], 0.5)
        assert _confirmed_break(candles, 101, 0, True, 5, 2)
        candles = _doji_series([100] * 5 + [102, 100], 0.5)
        assert not _confirmed_break(candles, 101, 0, True, 5, 2)

    def test_break_on_last_bar_is_unconfirmed(self):
        candles = _doji_series([100] * 6 + [102], 0.5)
        assert not _confirmed_break(candles, 101, 0, True, 5, 2)


# ── Scalping ─────────────────────────────────────────────────────────────


def _scalp_candles(start: int) -> list[Candle]:
    """Fractal support at 1.0980, last candle a bullish pin bar testing it."""
    candles = _doji_series([1.1000] * 16, 0.0005, start=start, step=60)
    t = start + 16 * 60
    candles += [
        _make_candle(t, 1.0999, 1.1004, 1.0994, 1.0999),
        _make_candle(t + 60, 1.1000, 1.1005, 1.0995, 1.1000),
        _make_candle(t + 120, 1.1001, 1.1006, 1.0980, 1.1001),
        _make_candle(t + 180, 1.1002, 1.1007, 1.0997, 1.1002),
        _make_candle(t + 240, 1.1000, 1.1005, 1.0981, 1.1003),
    ]
    return candles


class TestScalping:
    def test_pin_bar(self):
        pin = _make_candle(0, 1.1000, 1.1005, 1.0981, 1.1003)
        assert is_pin_bar(pin, bullish=True)
        assert not is_pin_bar(pin, bullish=False)

    def test_engulfing(self):
        prev = _make_candle(0, 1.1005, 1.1006, 1.0999, 1.1000)
        cur = _make_candle(60, 1.0999, 1.1015, 1.0998, 1.1012)
        assert is_engulfing(cur, prev, bullish=True)
        assert not is_engulfing(cur, prev, bullish=False)

    def test_fractal_levels(self):
        support, resistance = fractal_levels(_scalp_candles(_MIDNIGHT), 1)
        assert 1.0980 in support
        assert 1.1007 in resistance

    def test_price_action_buy_at_support(self):
        [signal] = PriceActionScalpingDetector().detect(
            _scalp_candles(_MIDNIGHT + 3 * 3600), _ctx("1m"),
        )
        assert signal.direction == BUY
        assert signal.pattern_tag == "pin_bar"
        assert signal.source_detector == "price_action"
        assert signal.confidence == pytest.approx(0.7)
        assert signal.stop_loss == pytest.approx(1.0980)
        assert signal.take_profit == pytest.approx(1.1003 + 0.0023 * 1.5)

    def test_pure_scalping_in_session(self):
        [signal] = PureScalpingDetector().detect(
            _scalp_candles(_MIDNIGHT + 9 * 3600), _ctx("1m"),
        )
        assert signal.direction == BUY
        assert signal.confidence == pytest.approx(0.75)

    def test_pure_scalping_outside_session(self):
        assert PureScalpingDetector().detect(
            _scalp_candles(_MIDNIGHT + 3 * 3600), _ctx("1m"),
        ) == []

    def test_short_input(self):
        assert PriceActionScalpingDetector().detect(_scalp_candles(_MIDNIGHT)[:10], _ctx("1m")) == []


class TestSessionFilter:
    def test_hour_window(self):
        assert is_in_session(7)
        assert is_in_session(15)
        assert not is_in_session(16)
        assert not is_in_session(6)

    def test_candle_time_gate(self):
        assert is_trading_session(_MIDNIGHT + 14 * 3600)
        assert is_trading_session(_MIDNIGHT + 21 * 3600)
        assert not is_trading_session(_MIDNIGHT + 23 * 3600)
        assert not is_trading_session(_MIDNIGHT + 14 * 3600, {"asia": (0, 6)})


# ── Registry ─────────────────────────────────────────────────────────────


class TestRegistry:
    def test_lookup(self):
        assert isinstance(get_detector("crt"), CRTDetector)

    def test_every_entry_satisfies_protocol(self):
        for name in DETECTOR_REGISTRY:
            detector = get_detector(name)
            assert isinstance(detector, Detector)
            assert detector.name == name

    def test_unknown_detector(self):
        with pytest.raises(InvalidConfigurationError, match="Unknown detector"):
            get_detector("nope")
        with pytest.raises(ValueError):
            get_detector("nope")
