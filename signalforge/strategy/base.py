"""Detector protocol and shared detection context.

Defines the interface that all pattern detectors must implement, plus the
context value they receive.  Detectors are synchronous and pure: everything
they need arrives through ``candles`` and ``context``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

from signalforge.strategy.models import Candle, Signal, risk_reward
from signalforge.strategy.scorer import FittedScorer


@dataclass(frozen=True)
class DetectorContext:
    """What a detector may look at besides its own candle window.

    ``series`` maps timeframe → candles for detectors that need other
    timeframes (multi-timeframe confirmation, lower-timeframe refinement).
    ``scorer`` is a fitted heuristic scorer for the current batch, if any.
    """

    symbol: str = ""
    timeframe: str = "1m"
    series: Mapping[str, Sequence[Candle]] = field(default_factory=dict)
    lower_timeframe: Optional[str] = None
    scorer: Optional[FittedScorer] = None

    def candles_for(self, timeframe: Optional[str]) -> list[Candle]:
        """Candles for *timeframe*, or an empty list when not supplied."""
        if timeframe is None:
            return []
        return list(self.series.get(timeframe, ()))

    @property
    def lower_candles(self) -> list[Candle]:
        return self.candles_for(self.lower_timeframe)


@runtime_checkable
class Detector(Protocol):
    """Interface that all pattern detectors must satisfy."""

    name: str
    pattern_tag: str
    timeframes: tuple[str, ...]

    def detect(
        self, candles: Sequence[Candle], context: DetectorContext,
    ) -> list[Signal]:
        """Return zero or more signals for the latest state of *candles*.

        Must return ``[]`` (never raise) when *candles* is shorter than the
        detector's minimum.
        """
        ...


def make_signal(
    context: DetectorContext,
    *,
    direction: str,
    entry: float,
    stop: float,
    target: float,
    confidence: float,
    pattern_tag: str,
    source: str,
    created_at: int,
    timeframe: Optional[str] = None,
    notes: tuple[str, ...] = (),
) -> Signal:
    """Build a ``Signal`` with risk-reward computed and confidence clamped."""
    return Signal(
        symbol=context.symbol,
        timeframe=timeframe or context.timeframe,
        direction=direction,
        entry_price=entry,
        stop_loss=stop,
        take_profit=target,
        confidence=min(1.0, max(0.0, confidence)),
        risk_reward=risk_reward(direction, entry, stop, target),
        pattern_tag=pattern_tag,
        source_detector=source,
        created_at=created_at,
        notes=notes,
    )
