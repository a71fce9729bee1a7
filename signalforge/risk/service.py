"""Risk Service contract and a local reference implementation.

``LocalRiskService`` owns the only mutable counters in the system (daily P&L
and trade count); both are updated under a lock so concurrent callers see
atomic increments.  The counters reset on their own when the UTC date
changes.
"""

import logging
import threading
import time
from datetime import date, datetime, timezone
from typing import Callable, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from signalforge.risk.position_sizer import calculate_position_size
from signalforge.strategy.indicators import average_volume, try_atr
from signalforge.strategy.models import Candle, RiskProfile, Signal, risk_reward

logger = logging.getLogger("signalforge.risk")


# Conservative profile applied when the Risk Service cannot be reached.
# Its score is above the size-reduction threshold but below the drop
# threshold, so signals survive at half size.
FALLBACK_RISK_PROFILE = RiskProfile(
    volatility=0.0,
    atr=None,
    liquidity_ratio=1.0,
    risk_score=0.75,
    recommendations=("risk_service_unavailable", "reduce_position_size"),
    source="fallback",
)


@runtime_checkable
class RiskService(Protocol):
    """Interface the pipeline consumes for risk assessment."""

    async def assess(self, symbol: str, candles: Sequence[Candle]) -> RiskProfile:
        ...

    def validate(self, signal: Signal, current_price: float) -> bool:
        ...

    def position_size(
        self, entry: float, stop: float, risk_pct: Optional[float] = None,
    ) -> float:
        ...

    def record_outcome(self, pnl: float) -> None:
        ...


def assess_candles(
    candles: Sequence[Candle],
    volatility_window: int = 20,
    high_volatility: float = 0.01,
) -> RiskProfile:
    """Risk profile from recent price action.

    ``volatility`` is the standard deviation of close returns over the last
    *volatility_window* bars; ``liquidity_ratio`` is the latest volume over
    the average of the preceding bars.  The score weights volatility
    (relative to *high_volatility*) at 0.7 and thin liquidity at 0.3.
    """
    candles = list(candles)
    if len(candles) < 2:
        return RiskProfile(volatility=0.0, atr=None, liquidity_ratio=1.0,
                           risk_score=0.5, recommendations=("insufficient_data",))

    closes = np.array([c.close for c in candles[-(volatility_window + 1):]], dtype=float)
    returns = np.diff(closes) / closes[:-1]
    volatility = float(np.std(returns)) if len(returns) > 1 else 0.0

    avg = average_volume(candles[:-1], volatility_window)
    liquidity_ratio = candles[-1].volume / avg if avg > 0 else 1.0

    vol_component = min(1.0, volatility / high_volatility)
    if liquidity_ratio < 0.5:
        liq_component = 1.0
    elif liquidity_ratio < 1.0:
        liq_component = 0.5
    else:
        liq_component = 0.0
    score = min(1.0, 0.7 * vol_component + 0.3 * liq_component)

    recommendations: list[str] = []
    if score > 0.8:
        recommendations.append("avoid_trading")
    if score > 0.7:
        recommendations.append("reduce_position_size")
    if vol_component >= 1.0:
        recommendations.append("widen_stops")
    if liquidity_ratio < 0.5:
        recommendations.append("low_liquidity")

    return RiskProfile(
        volatility=volatility,
        atr=try_atr(candles, 14),
        liquidity_ratio=liquidity_ratio,
        risk_score=score,
        recommendations=tuple(recommendations),
    )


class LocalRiskService:
    """In-process Risk Service with daily loss and trade-count limits.

    Args:
        capital: Account capital used for sizing and the daily loss limit.
        risk_per_trade: Default fraction of capital risked per trade.
        max_daily_loss: Fraction of capital; validation fails once the
            absolute daily P&L reaches it.
        max_daily_trades: Validation fails once this many outcomes are
            recorded for the day.
        min_risk_reward: Minimum reward/risk measured from the current price.
        min_confidence: Minimum signal confidence.
        clock: Epoch-seconds clock used to detect the UTC day rollover.
    """

    def __init__(
        self,
        capital: float = 10_000.0,
        risk_per_trade: float = 0.01,
        max_daily_loss: float = 0.05,
        max_daily_trades: int = 5,
        min_risk_reward: float = 1.5,
        min_confidence: float = 0.6,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.capital = capital
        self.risk_per_trade = risk_per_trade
        self.max_daily_loss = max_daily_loss
        self.max_daily_trades = max_daily_trades
        self.min_risk_reward = min_risk_reward
        self.min_confidence = min_confidence
        self._clock = clock
        self._lock = threading.RLock()
        self._day: date = self._today()
        self._daily_pnl = 0.0
        self._daily_trades = 0

    def _today(self) -> date:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()

    def _roll_day(self) -> None:
        # Caller holds the lock.
        today = self._today()
        if today != self._day:
            logger.info("New trading day %s; daily risk counters reset", today)
            self._day = today
            self.reset_daily()

    async def assess(self, symbol: str, candles: Sequence[Candle]) -> RiskProfile:
        profile = assess_candles(candles)
        logger.debug("%s risk score %.2f", symbol, profile.risk_score)
        return profile

    def validate(self, signal: Signal, current_price: float) -> bool:
        rr = risk_reward(signal.direction, current_price, signal.stop_loss, signal.take_profit)
        if rr < self.min_risk_reward:
            logger.info("Trade rejected: risk/reward %.2f below %.2f", rr, self.min_risk_reward)
            return False
        with self._lock:
            self._roll_day()
            daily_pnl, daily_trades = self._daily_pnl, self._daily_trades
        if abs(daily_pnl) >= self.capital * self.max_daily_loss:
            logger.info("Trade rejected: daily loss limit reached")
            return False
        if daily_trades >= self.max_daily_trades:
            logger.info("Trade rejected: maximum daily trades reached")
            return False
        if signal.confidence < self.min_confidence:
            logger.info("Trade rejected: low confidence %.2f", signal.confidence)
            return False
        return True

    def position_size(
        self, entry: float, stop: float, risk_pct: Optional[float] = None,
    ) -> float:
        """Units to trade; 0.0 when entry equals stop."""
        risk = self.risk_per_trade if risk_pct is None else risk_pct
        try:
            return calculate_position_size(self.capital, risk, entry, stop)
        except ValueError as exc:
            logger.warning("Position size unavailable: %s", exc)
            return 0.0

    def record_outcome(self, pnl: float) -> None:
        with self._lock:
            self._roll_day()
            self._daily_pnl += pnl
            self._daily_trades += 1

    def reset_daily(self) -> None:
        with self._lock:
            self._daily_pnl = 0.0
            self._daily_trades = 0

    @property
    def daily_pnl(self) -> float:
        with self._lock:
            self._roll_day()
            return self._daily_pnl

    @property
    def daily_trades(self) -> int:
        with self._lock:
            self._roll_day()
            return self._daily_trades
