"""Strategy profile dataclass and the built-in profiles.

A profile selects which detectors run, on which timeframes, and the
confidence / risk-reward thresholds a signal must meet.
"""

from dataclasses import dataclass

from signalforge.errors import InvalidConfigurationError


@dataclass(frozen=True)
class StrategyProfile:
    """Configuration for one trading style."""

    name: str
    min_confidence: float
    min_risk_reward: float
    timeframes: tuple[str, ...]
    detectors: tuple[str, ...]  # detector registry keys
    use_scorer: bool = True
    size_reduction_risk: float = 0.7  # halve size above this risk score
    max_risk_score: float = 0.8  # drop signals above this risk score
    atr_stop_multiplier: float = 2.0


PROFILES: dict[str, StrategyProfile] = {
    "scalping": StrategyProfile(
        name="scalping",
        min_confidence=0.7,
        min_risk_reward=1.5,
        timeframes=("1m", "5m"),
        detectors=("pure_scalping", "price_action"),
    ),
    "day_trading": StrategyProfile(
        name="day_trading",
        min_confidence=0.65,
        min_risk_reward=2.0,
        timeframes=("15m", "1h"),
        detectors=("crt", "pure_crt", "choch"),
    ),
    "swing_trading": StrategyProfile(
        name="swing_trading",
        min_confidence=0.6,
        min_risk_reward=3.0,
        timeframes=("4h", "1d"),
        detectors=("crt", "choch"),
    ),
}


def get_profile(name: str) -> StrategyProfile:
    """Look up a built-in profile by name.

    Raises ``InvalidConfigurationError`` if the name is unknown.
    """
    if name not in PROFILES:
        raise InvalidConfigurationError(
            f"Unknown strategy profile '{name}'. "
            f"Available: {', '.join(PROFILES.keys())}"
        )
    return PROFILES[name]
