"""Tests for the concurrent signal pipeline."""

import pytest

from signalforge.consensus import SignalGenerator
from signalforge.data.source import InMemoryCandleSource
from signalforge.errors import InvalidConfigurationError
from signalforge.models.strategy_profile import StrategyProfile
from signalforge.pipeline import LOWER_TIMEFRAME, SignalPipeline
from signalforge.risk.service import LocalRiskService
from signalforge.strategy.base import make_signal
from signalforge.strategy.models import BUY, TIMEFRAMES, Candle

_PROFILE = StrategyProfile(
    name="test",
    min_confidence=0.5,
    min_risk_reward=1.5,
    timeframes=("1h",),
    detectors=("stub",),
    use_scorer=False,
)


def _candles(n=40, step=3600, price=100.0):
    return [Candle(1_700_000_000 + i * step, price, price + 0.5, price - 0.5, price, 1000)
            for i in range(n)]


class _StubDetector:
    name = "stub"
    pattern_tag = "stub"
    timeframes = TIMEFRAMES

    def __init__(self):
        self.contexts = []

    def detect(self, candles, context):
        self.contexts.append(context)
        last = candles[-1]
        return [make_signal(
            context, direction=BUY, entry=last.close, stop=last.close - 1,
            target=last.close + 3, confidence=0.8, pattern_tag=self.pattern_tag,
            source=self.name, created_at=last.timestamp,
        )]


class _BrokenRiskService:
    async def assess(self, symbol, candles):
        raise ConnectionError("risk service down")


class _CountingSource(InMemoryCandleSource):
    def __init__(self, series):
        super().__init__(series)
        self.calls = []

    async def fetch(self, symbol, timeframe, count):
        self.calls.append((symbol, timeframe))
        return await super().fetch(symbol, timeframe, count)


def _pipeline(source, risk_service=None, **kw):
    detector = _StubDetector()
    pipeline = SignalPipeline(
        source,
        risk_service=risk_service,
        generator=SignalGenerator({"stub": detector}),
        **kw,
    )
    return pipeline, detector


@pytest.mark.asyncio
async def test_analyze_signals_with_local_risk():
    source = InMemoryCandleSource({("R_100", "1h"): _candles()})
    pipeline, _ = _pipeline(source, LocalRiskService())
    result = await pipeline.analyze("R_100", "1h", _PROFILE)
    assert result.status == "ok"
    assert result.candle_count == 40
    assert result.risk_profile.source == "service"
    [signal] = result.signals
    assert signal.size_multiplier == 1.0


@pytest.mark.asyncio
async def test_risk_service_failure_uses_fallback():
    source = InMemoryCandleSource({("R_100", "1h"): _candles()})
    pipeline, _ = _pipeline(source, _BrokenRiskService())
    result = await pipeline.analyze("R_100", "1h", _PROFILE)
    assert result.risk_profile.source == "fallback"
    [signal] = result.signals
    assert signal.size_multiplier == 0.5
    assert "size_reduced" in signal.notes


@pytest.mark.asyncio
async def test_no_candles_is_no_data():
    pipeline, detector = _pipeline(InMemoryCandleSource())
    result = await pipeline.analyze("R_100", "1h", _PROFILE)
    assert result.status == "no_data"
    assert result.signals == ()
    assert result.risk_profile is None
    assert detector.contexts == []


@pytest.mark.asyncio
async def test_unknown_profile_raises_before_fetch():
    source = _CountingSource({})
    pipeline, _ = _pipeline(source)
    with pytest.raises(InvalidConfigurationError):
        await pipeline.analyze("R_100", "1h", "yolo")
    with pytest.raises(InvalidConfigurationError):
        await pipeline.analyze("R_100", "3h", _PROFILE)
    assert source.calls == []


@pytest.mark.asyncio
async def test_context_carries_lower_and_extra_timeframes():
    source = _CountingSource({
        ("R_100", "1h"): _candles(),
        ("R_100", "5m"): _candles(step=300),
        ("R_100", "4h"): _candles(step=14400),
    })
    pipeline, detector = _pipeline(source, extra_timeframes=("4h",))
    await pipeline.analyze("R_100", "1h", _PROFILE)

    [ctx] = detector.contexts
    assert LOWER_TIMEFRAME["1h"] == "5m"
    assert ctx.lower_timeframe == "5m"
    assert set(ctx.series) == {"1h", "5m", "4h"}
    assert len(ctx.series["5m"]) == 40
    assert sorted(source.calls) == [("R_100", "1h"), ("R_100", "4h"), ("R_100", "5m")]


@pytest.mark.asyncio
async def test_analyze_many_keeps_input_order():
    source = InMemoryCandleSource({
        ("R_100", "1h"): _candles(),
        ("R_50", "1h"): _candles(price=50.0),
    })
    pipeline, _ = _pipeline(source, concurrency=1)
    results = await pipeline.analyze_many(
        [("R_50", "1h"), ("R_75", "1h"), ("R_100", "1h")], _PROFILE,
    )
    assert [r.symbol for r in results] == ["R_50", "R_75", "R_100"]
    assert [r.status for r in results] == ["ok", "no_data", "ok"]
    assert results[0].signals[0].entry_price == 50.0


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError, match="concurrency"):
        SignalPipeline(InMemoryCandleSource(), concurrency=0)
