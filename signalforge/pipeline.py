"""SignalPipeline — fetch, assess, generate for many (symbol, timeframe) units.

The only awaits are the Candle Source fetches and the Risk Service
assessment; detector work is synchronous.  Units run concurrently under a
single semaphore.  Upstream failures never propagate: a failed fetch is an
empty candle list, a failed assessment is the fallback risk profile.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from signalforge.consensus import DetectorFailure, SignalGenerator
from signalforge.errors import InvalidConfigurationError
from signalforge.models.strategy_profile import StrategyProfile, get_profile
from signalforge.risk.service import FALLBACK_RISK_PROFILE, LocalRiskService
from signalforge.strategy.base import DetectorContext
from signalforge.strategy.models import TIMEFRAMES, Candle, RiskProfile, Signal

logger = logging.getLogger("signalforge.pipeline")


# Lower timeframe fetched alongside each analysis timeframe for entry
# refinement.
LOWER_TIMEFRAME: dict[str, str] = {
    "5m": "1m",
    "15m": "1m",
    "1h": "5m",
    "4h": "15m",
    "1d": "1h",
}


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one (symbol, timeframe) unit."""

    symbol: str
    timeframe: str
    signals: tuple[Signal, ...]
    risk_profile: Optional[RiskProfile]
    candle_count: int
    failures: tuple[DetectorFailure, ...] = ()
    status: str = "ok"  # "ok", "no_data"


class SignalPipeline:
    """Concurrent signal generation over a Candle Source and Risk Service.

    Args:
        source: Candle Source.
        risk_service: Risk Service; defaults to ``LocalRiskService()``.
        generator: Signal generator; defaults to a fresh ``SignalGenerator``.
        concurrency: Maximum units in flight.
        candle_count: Candles requested per timeframe.
        extra_timeframes: Further timeframes fetched into the detector
            context (e.g. driver and confirmation for multi-timeframe
            confirmation).
    """

    def __init__(
        self,
        source,
        risk_service=None,
        generator: Optional[SignalGenerator] = None,
        concurrency: int = 5,
        candle_count: int = 300,
        extra_timeframes: Sequence[str] = (),
    ) -> None:
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self._source = source
        self._risk = risk_service if risk_service is not None else LocalRiskService()
        self._generator = generator or SignalGenerator()
        self._semaphore = asyncio.Semaphore(concurrency)
        self.candle_count = candle_count
        self.extra_timeframes = tuple(extra_timeframes)

    async def _fetch(self, symbol: str, timeframe: str) -> list[Candle]:
        try:
            return list(await self._source.fetch(symbol, timeframe, self.candle_count))
        except InvalidConfigurationError:
            raise
        except Exception as exc:
            logger.error("Candle Source failed for %s %s: %s", symbol, timeframe, exc)
            return []

    async def _assess(self, symbol: str, candles: list[Candle]) -> RiskProfile:
        try:
            return await self._risk.assess(symbol, candles)
        except Exception as exc:
            logger.warning(
                "Risk Service unavailable for %s (%s); using fallback profile",
                symbol, exc,
            )
            return FALLBACK_RISK_PROFILE

    async def analyze(
        self,
        symbol: str,
        timeframe: str,
        profile: Union[str, StrategyProfile],
    ) -> AnalysisResult:
        """Run one unit.  Raises ``InvalidConfigurationError`` for an unknown
        profile or timeframe before any fetch happens."""
        if isinstance(profile, str):
            profile = get_profile(profile)
        if timeframe not in TIMEFRAMES:
            raise InvalidConfigurationError(
                f"Unknown timeframe '{timeframe}'. Available: {', '.join(TIMEFRAMES)}"
            )

        async with self._semaphore:
            lower = LOWER_TIMEFRAME.get(timeframe)
            others = [tf for tf in (lower, *self.extra_timeframes)
                      if tf is not None and tf != timeframe]
            fetched = await asyncio.gather(
                self._fetch(symbol, timeframe),
                *(self._fetch(symbol, tf) for tf in others),
            )
            candles = fetched[0]
            if not candles:
                logger.warning("No candles for %s %s", symbol, timeframe)
                return AnalysisResult(symbol, timeframe, (), None, 0, status="no_data")
            risk_profile = await self._assess(symbol, candles)

        series = {timeframe: candles}
        series.update(zip(others, fetched[1:]))
        context = DetectorContext(
            symbol=symbol,
            timeframe=timeframe,
            series=series,
            lower_timeframe=lower,
        )
        report = self._generator.generate_report(
            symbol, timeframe, candles, profile, context, risk_profile,
        )
        return AnalysisResult(
            symbol=symbol,
            timeframe=timeframe,
            signals=report.signals,
            risk_profile=risk_profile,
            candle_count=len(candles),
            failures=report.failures,
        )

    async def analyze_many(
        self,
        units: Sequence[tuple[str, str]],
        profile: Union[str, StrategyProfile],
    ) -> list[AnalysisResult]:
        """Analyze ``(symbol, timeframe)`` units concurrently, results in
        input order."""
        return list(await asyncio.gather(
            *(self.analyze(symbol, tf, profile) for symbol, tf in units)
        ))
