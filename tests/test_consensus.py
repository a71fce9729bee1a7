"""Tests for consensus grouping, risk adjustment, filtering and the generator."""

import pytest

from signalforge.consensus import (
    SignalGenerator,
    adjust_for_risk,
    build_consensus,
    consensus_confidence,
    group_by_pattern,
    passes_filter,
)
from signalforge.errors import InvalidConfigurationError
from signalforge.models.strategy_profile import StrategyProfile
from signalforge.risk.service import FALLBACK_RISK_PROFILE
from signalforge.strategy.base import DetectorContext
from signalforge.strategy.models import (
    BUY,
    SELL,
    TIMEFRAMES,
    Candle,
    RiskProfile,
    Signal,
    risk_reward,
)


def _signal(direction=BUY, confidence=0.8, tag="crt_three_candle", entry=100.0,
            stop=None, target=None, source="crt") -> Signal:
    if stop is None:
        stop = entry - 1 if direction == BUY else entry + 1
    if target is None:
        target = entry + 3 if direction == BUY else entry - 3
    return Signal(
        symbol="R_100", timeframe="1h", direction=direction,
        entry_price=entry, stop_loss=stop, take_profit=target,
        confidence=confidence,
        risk_reward=risk_reward(direction, entry, stop, target),
        pattern_tag=tag,
        source_detector=source, created_at=1_700_000_000,
    )


def _candles(n=40):
    return [Candle(1_700_000_000 + i * 3600, 100, 100.5, 99.5, 100, 1000) for i in range(n)]


class _StubDetector:
    timeframes = TIMEFRAMES

    def __init__(self, name, signals=(), error=None):
        self.name = name
        self.pattern_tag = name
        self._signals = list(signals)
        self._error = error
        self.contexts = []

    def detect(self, candles, context):
        self.contexts.append(context)
        if self._error is not None:
            raise self._error
        return list(self._signals)


_PROFILE = StrategyProfile(
    name="test",
    min_confidence=0.5,
    min_risk_reward=1.5,
    timeframes=("1h",),
    detectors=("a", "b", "c"),
    use_scorer=False,
)


# ── Consensus ────────────────────────────────────────────────────────────


class TestConsensus:
    def test_split_vote_is_zero(self):
        members = [_signal(BUY, 0.9), _signal(SELL, 0.7)]
        assert consensus_confidence(members) == 0.0

    def test_unanimous_keeps_mean(self):
        members = [_signal(BUY, 0.9), _signal(BUY, 0.7)]
        assert consensus_confidence(members) == pytest.approx(0.8)

    def test_majority_scaled(self):
        members = [_signal(BUY, 0.9), _signal(BUY, 0.6), _signal(SELL, 0.6)]
        assert consensus_confidence(members) == pytest.approx(0.7 / 3)

    def test_empty(self):
        assert consensus_confidence([]) == 0.0

    def test_grouping_keeps_first_appearance_order(self):
        groups = group_by_pattern([_signal(tag="b"), _signal(tag="a"), _signal(tag="b")])
        assert list(groups) == ["b", "a"]
        assert len(groups["b"]) == 2

    def test_representative_from_majority(self):
        members = [_signal(SELL, 0.95, entry=101), _signal(BUY, 0.6, entry=99),
                   _signal(BUY, 0.7, entry=98)]
        [group] = build_consensus(members)
        assert group.signal.direction == BUY
        assert group.signal.entry_price == 98
        assert group.buy_count == 2 and group.sell_count == 1
        assert group.signal.confidence == pytest.approx(0.75 / 3)


# ── Risk adjustment / filter ─────────────────────────────────────────────


class TestRiskAdjustment:
    def test_high_risk_halves_size(self):
        adjusted = adjust_for_risk(_signal(), FALLBACK_RISK_PROFILE)
        assert adjusted.size_multiplier == 0.5
        assert "size_reduced" in adjusted.notes

    def test_atr_widens_stop(self):
        risk = RiskProfile(volatility=0.01, atr=1.0, liquidity_ratio=1.0, risk_score=0.2)
        adjusted = adjust_for_risk(_signal(BUY, entry=100, stop=99, target=106), risk)
        assert adjusted.stop_loss == pytest.approx(98.0)
        assert adjusted.risk_reward == pytest.approx(3.0)
        assert "stop_widened" in adjusted.notes
        assert adjusted.size_multiplier == 1.0

    def test_atr_never_tightens_stop(self):
        risk = RiskProfile(volatility=0.01, atr=0.1, liquidity_ratio=1.0, risk_score=0.2)
        adjusted = adjust_for_risk(_signal(SELL, entry=100, stop=102, target=94), risk)
        assert adjusted.stop_loss == 102

    def test_no_profile_is_identity(self):
        signal = _signal()
        assert adjust_for_risk(signal, None) is signal

    def test_filter(self):
        ok = RiskProfile(volatility=0.0, atr=None, liquidity_ratio=1.0, risk_score=0.3)
        hot = RiskProfile(volatility=0.0, atr=None, liquidity_ratio=1.0, risk_score=0.9)
        assert passes_filter(_signal(confidence=0.8), ok, 0.6, 1.5)
        assert not passes_filter(_signal(confidence=0.5), ok, 0.6, 1.5)
        assert not passes_filter(_signal(confidence=0.8), hot, 0.6, 1.5)
        assert not passes_filter(_signal(confidence=0.8, target=101), ok, 0.6, 1.5)
        assert passes_filter(_signal(confidence=0.8), None, 0.6, 1.5)


# ── Generator ────────────────────────────────────────────────────────────


class TestSignalGenerator:
    def _generator(self, **detectors):
        defaults = {
            "a": _StubDetector("a", [_signal(BUY, 0.9, tag="x")]),
            "b": _StubDetector("b", [_signal(BUY, 0.7, tag="x")]),
            "c": _StubDetector("c", [_signal(SELL, 0.6, tag="y", entry=105)]),
        }
        defaults.update(detectors)
        return SignalGenerator(defaults)

    def test_groups_and_filters(self):
        signals = self._generator().generate("R_100", "1h", _candles(), _PROFILE)
        assert [(s.pattern_tag, s.direction) for s in signals] == [("x", BUY), ("y", SELL)]
        assert signals[0].confidence == pytest.approx(0.8)

    def test_failing_detector_is_recorded_and_excluded(self):
        gen = self._generator(b=_StubDetector("b", error=ZeroDivisionError("boom")))
        report = gen.generate_report("R_100", "1h", _candles(), _PROFILE)
        assert [f.detector for f in report.failures] == ["b"]
        assert "ZeroDivisionError" in report.failures[0].error
        assert len(report.raw_signals) == 2
        assert report.signals[0].confidence == pytest.approx(0.9)

    def test_risk_profile_drops_everything_above_threshold(self):
        hot = RiskProfile(volatility=0.0, atr=None, liquidity_ratio=1.0, risk_score=0.95)
        assert self._generator().generate("R_100", "1h", _candles(), _PROFILE, risk_profile=hot) == []

    def test_fallback_profile_halves_size(self):
        signals = self._generator().generate(
            "R_100", "1h", _candles(), _PROFILE, risk_profile=FALLBACK_RISK_PROFILE,
        )
        assert signals
        assert all(s.size_multiplier == 0.5 for s in signals)

    def test_deterministic(self):
        gen = self._generator()
        first = gen.generate("R_100", "1h", _candles(), _PROFILE)
        assert gen.generate("R_100", "1h", _candles(), _PROFILE) == first

    def test_unknown_profile(self):
        with pytest.raises(InvalidConfigurationError):
            self._generator().generate("R_100", "1h", _candles(), "yolo")

    def test_unknown_timeframe(self):
        with pytest.raises(InvalidConfigurationError):
            self._generator().generate("R_100", "2h", _candles(), _PROFILE)

    def test_timeframe_outside_profile(self):
        assert self._generator().generate("R_100", "1m", _candles(), _PROFILE) == []

    def test_unknown_detector_in_profile(self):
        profile = StrategyProfile("bad", 0.5, 1.5, ("1h",), ("missing",), use_scorer=False)
        with pytest.raises(InvalidConfigurationError):
            SignalGenerator().generate("R_100", "1h", _candles(), profile)

    def test_context_passed_through(self):
        gen = self._generator()
        ctx = DetectorContext(symbol="R_100", timeframe="1h", series={"5m": []})
        gen.generate("R_100", "1h", _candles(), _PROFILE, context=ctx)
        assert gen._detectors["a"].contexts[-1].series == {"5m": []}

    def test_builtin_profile_on_real_detectors(self):
        signals = SignalGenerator().generate("R_100", "1h", _candles(80), "day_trading")
        assert signals == []
