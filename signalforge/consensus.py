"""Signal consensus engine — detectors → consensus → risk adjustment → filter.

``SignalGenerator.generate`` runs the detectors of a strategy profile over
one candle window, groups their raw signals by pattern tag, promotes each
group to a single consensus signal, applies the risk profile and drops
anything below the profile thresholds.  The output order is deterministic:
confidence descending, then pattern tag.

Consensus confidence for a group of *n* signals::

    mean(member confidences) × |buy_count − sell_count| / n

so a perfectly split group collapses to 0 and a unanimous group keeps the
plain mean.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from signalforge.errors import InvalidConfigurationError
from signalforge.models.strategy_profile import StrategyProfile, get_profile
from signalforge.strategy.base import Detector, DetectorContext
from signalforge.strategy.models import (
    BUY,
    SELL,
    TIMEFRAMES,
    Candle,
    ConsensusSignal,
    RiskProfile,
    Signal,
    risk_reward,
)
from signalforge.strategy.registry import get_detector
from signalforge.strategy.scorer import fit_scorer

logger = logging.getLogger("signalforge.consensus")


@dataclass(frozen=True)
class DetectorFailure:
    """A detector that raised during one generation round."""

    detector: str
    error: str


@dataclass(frozen=True)
class GenerationReport:
    """Everything one generation round produced."""

    signals: tuple[Signal, ...]
    groups: tuple[ConsensusSignal, ...]
    raw_signals: tuple[Signal, ...]
    failures: tuple[DetectorFailure, ...]


# ── Consensus ────────────────────────────────────────────────────────────


def group_by_pattern(signals: Sequence[Signal]) -> dict[str, list[Signal]]:
    """Group by ``pattern_tag``, groups in order of first appearance."""
    groups: dict[str, list[Signal]] = {}
    for signal in signals:
        groups.setdefault(signal.pattern_tag, []).append(signal)
    return groups


def consensus_confidence(members: Sequence[Signal]) -> float:
    if not members:
        return 0.0
    buys = sum(1 for s in members if s.direction == BUY)
    sells = len(members) - buys
    mean = sum(s.confidence for s in members) / len(members)
    return mean * abs(buys - sells) / len(members)


def build_consensus(signals: Sequence[Signal]) -> list[ConsensusSignal]:
    """One ``ConsensusSignal`` per pattern group.

    The representative is the highest-confidence member of the majority
    direction (the first such member on ties); on a split vote it is the
    highest-confidence member overall.  Its confidence is replaced by the
    consensus confidence.
    """
    result: list[ConsensusSignal] = []
    for members in group_by_pattern(signals).values():
        buys = sum(1 for s in members if s.direction == BUY)
        sells = len(members) - buys
        if buys > sells:
            pool = [s for s in members if s.direction == BUY]
        elif sells > buys:
            pool = [s for s in members if s.direction == SELL]
        else:
            pool = list(members)
        best = max(pool, key=lambda s: s.confidence)
        result.append(ConsensusSignal(
            signal=dataclasses.replace(best, confidence=consensus_confidence(members)),
            members=tuple(members),
            buy_count=buys,
            sell_count=sells,
        ))
    return result


# ── Risk adjustment and filter ───────────────────────────────────────────


def adjust_for_risk(
    signal: Signal,
    risk_profile: Optional[RiskProfile],
    size_reduction_risk: float = 0.7,
    atr_multiplier: float = 2.0,
) -> Signal:
    """Apply the risk profile to one signal.

    - risk score above *size_reduction_risk* halves ``size_multiplier``;
    - with an ATR, the stop moves to ``entry ∓ atr_multiplier × ATR`` when
      that is farther from entry than the current stop, and risk-reward is
      recomputed.
    """
    if risk_profile is None:
        return signal

    size = signal.size_multiplier
    notes = list(signal.notes)
    if risk_profile.risk_score > size_reduction_risk:
        size *= 0.5
        notes.append("size_reduced")

    stop = signal.stop_loss
    atr = risk_profile.atr
    if atr is not None and atr > 0:
        if signal.direction == BUY:
            atr_stop = signal.entry_price - atr_multiplier * atr
            if atr_stop < stop:
                stop = atr_stop
                notes.append("stop_widened")
        else:
            atr_stop = signal.entry_price + atr_multiplier * atr
            if atr_stop > stop:
                stop = atr_stop
                notes.append("stop_widened")

    return dataclasses.replace(
        signal,
        stop_loss=stop,
        risk_reward=risk_reward(signal.direction, signal.entry_price, stop, signal.take_profit),
        size_multiplier=size,
        notes=tuple(notes),
    )


def passes_filter(
    signal: Signal,
    risk_profile: Optional[RiskProfile],
    min_confidence: float,
    min_risk_reward: float,
    max_risk_score: float = 0.8,
) -> bool:
    """Pure threshold check on (signal, risk profile, thresholds)."""
    if signal.confidence < min_confidence:
        return False
    if signal.risk_reward < min_risk_reward:
        return False
    if risk_profile is not None and risk_profile.risk_score > max_risk_score:
        return False
    return True


def _sort_key(signal: Signal):
    return (-signal.confidence, signal.pattern_tag, signal.direction, signal.entry_price)


# ── Generator ────────────────────────────────────────────────────────────


class SignalGenerator:
    """Runs profile detectors and turns their output into filtered signals.

    Args:
        detectors: Optional detector instances keyed by registry name;
            names a profile asks for that are missing here are instantiated
            from the registry on first use.
    """

    def __init__(self, detectors: Optional[dict[str, Detector]] = None) -> None:
        self._detectors: dict[str, Detector] = dict(detectors or {})

    def _detector(self, name: str) -> Detector:
        if name not in self._detectors:
            self._detectors[name] = get_detector(name)
        return self._detectors[name]

    def generate(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        profile: Union[str, StrategyProfile],
        context: Optional[DetectorContext] = None,
        risk_profile: Optional[RiskProfile] = None,
    ) -> list[Signal]:
        """Filtered consensus signals for one (symbol, timeframe) window.

        Raises ``InvalidConfigurationError`` for an unknown profile or
        timeframe.  A timeframe the profile does not trade yields ``[]``.
        """
        report = self.generate_report(
            symbol, timeframe, candles, profile, context, risk_profile,
        )
        return list(report.signals)

    def generate_report(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        profile: Union[str, StrategyProfile],
        context: Optional[DetectorContext] = None,
        risk_profile: Optional[RiskProfile] = None,
    ) -> GenerationReport:
        if isinstance(profile, str):
            profile = get_profile(profile)
        if timeframe not in TIMEFRAMES:
            raise InvalidConfigurationError(
                f"Unknown timeframe '{timeframe}'. Available: {', '.join(TIMEFRAMES)}"
            )
        if timeframe not in profile.timeframes:
            logger.info(
                "Profile %s does not trade %s; no signals for %s",
                profile.name, timeframe, symbol,
            )
            return GenerationReport((), (), (), ())

        candles = list(candles)
        if context is None:
            context = DetectorContext(symbol=symbol, timeframe=timeframe)
        if context.scorer is None and profile.use_scorer:
            scorer = fit_scorer(candles)
            if scorer is not None:
                context = dataclasses.replace(context, scorer=scorer)

        raw: list[Signal] = []
        failures: list[DetectorFailure] = []
        for name in profile.detectors:
            detector = self._detector(name)
            if timeframe not in detector.timeframes:
                continue
            try:
                raw.extend(detector.detect(candles, context))
            except Exception as exc:
                logger.exception("Detector %s failed on %s %s", name, symbol, timeframe)
                failures.append(DetectorFailure(name, repr(exc)))

        groups = build_consensus(raw)
        signals: list[Signal] = []
        for group in groups:
            adjusted = adjust_for_risk(
                group.signal,
                risk_profile,
                size_reduction_risk=profile.size_reduction_risk,
                atr_multiplier=profile.atr_stop_multiplier,
            )
            if passes_filter(
                adjusted,
                risk_profile,
                profile.min_confidence,
                profile.min_risk_reward,
                profile.max_risk_score,
            ):
                signals.append(adjusted)
        signals.sort(key=_sort_key)

        logger.info(
            "%s %s [%s]: %d raw, %d groups, %d passed, %d detector failures",
            symbol, timeframe, profile.name, len(raw), len(groups),
            len(signals), len(failures),
        )
        return GenerationReport(
            signals=tuple(signals),
            groups=tuple(groups),
            raw_signals=tuple(raw),
            failures=tuple(failures),
        )
