"""Strategy data models — typed, immutable representations of analysis outputs."""

from dataclasses import dataclass, field
from typing import Literal, Optional


TIMEFRAMES: tuple[str, ...] = ("1m", "5m", "15m", "1h", "4h", "1d")

TIMEFRAME_SECONDS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
}

BUY = "BUY"
SELL = "SELL"


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  ``timestamp`` is epoch seconds (UTC)."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class SwingPoint:
    """A local extremum over a symmetric lookback window."""

    index: int
    price: float
    kind: Literal["high", "low"]
    timestamp: int


@dataclass(frozen=True)
class StructureBreak:
    """Result of a BOS or CHOCH check."""

    bullish: bool = False
    bearish: bool = False
    level: Optional[float] = None

    @property
    def any(self) -> bool:
        return self.bullish or self.bearish


@dataclass(frozen=True)
class StructureState:
    """Snapshot of market structure for one candle sequence."""

    trend: Literal["bullish", "bearish", "neutral"]
    regime: str  # "bullish_trend", "bearish_trend" or "ranging"
    swing_highs: tuple[SwingPoint, ...] = ()
    swing_lows: tuple[SwingPoint, ...] = ()
    bos: StructureBreak = StructureBreak()
    choch: StructureBreak = StructureBreak()


@dataclass(frozen=True)
class Zone:
    """An order block, fair value gap or breaker block price zone."""

    kind: Literal["order_block", "fair_value_gap", "breaker_block"]
    direction: Literal["bullish", "bearish"]
    top: float
    bottom: float
    created_at: int
    index: int
    mitigated: bool = False
    mitigated_at: Optional[int] = None

    @property
    def midpoint(self) -> float:
        return (self.top + self.bottom) / 2


@dataclass(frozen=True)
class LiquidityLevel:
    """A clustered support or resistance level."""

    side: Literal["support", "resistance"]
    price: float
    strength: int  # number of touches
    last_index: int


@dataclass(frozen=True)
class Signal:
    """A directional trade idea produced by exactly one detector."""

    symbol: str
    timeframe: str
    direction: Literal["BUY", "SELL"]
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float
    risk_reward: float
    pattern_tag: str
    source_detector: str
    created_at: int
    size_multiplier: float = 1.0
    notes: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "confidence": self.confidence,
            "risk_reward": self.risk_reward,
            "pattern_tag": self.pattern_tag,
            "source_detector": self.source_detector,
            "created_at": self.created_at,
            "size_multiplier": self.size_multiplier,
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class ConsensusSignal:
    """A signal promoted from a group of same-pattern detector outputs."""

    signal: Signal
    members: tuple[Signal, ...]
    buy_count: int
    sell_count: int


@dataclass(frozen=True)
class RiskProfile:
    """Risk assessment supplied by the Risk Service (read-only input)."""

    volatility: float
    atr: Optional[float]
    liquidity_ratio: float
    risk_score: float
    recommendations: tuple[str, ...] = field(default_factory=tuple)
    source: str = "service"  # "service" or "fallback"


def risk_reward(direction: str, entry: float, stop: float, target: float) -> float:
    """Reward distance divided by risk distance (0.0 when risk is zero)."""
    risk = abs(entry - stop)
    if risk <= 0:
        return 0.0
    reward = (target - entry) if direction == BUY else (entry - target)
    return max(reward, 0.0) / risk
