"""Backtest engine — replays historical candles through a signal strategy.

Iterates candle data chronologically, feeding a fixed-size window to the
strategy at each bar and simulating at most one open position with
virtual capital.  No real orders are placed.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional, Sequence, Union

from signalforge.backtest.stats import calculate_stats
from signalforge.consensus import SignalGenerator
from signalforge.models.strategy_profile import StrategyProfile, get_profile
from signalforge.risk.drawdown import DrawdownBreaker
from signalforge.strategy.base import Detector, DetectorContext
from signalforge.strategy.models import BUY, Candle, Signal

logger = logging.getLogger("signalforge.backtest")


@dataclass(frozen=True)
class BacktestConfig:
    initial_capital: float = 10_000.0
    risk_per_trade: float = 0.01
    lookback: int = 30
    max_drawdown_pct: Optional[float] = None  # None disables the breaker

    def __post_init__(self) -> None:
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got {self.initial_capital}")
        if not 0 < self.risk_per_trade <= 1:
            raise ValueError(f"risk_per_trade must be in (0, 1], got {self.risk_per_trade}")
        if self.lookback <= 0:
            raise ValueError(f"lookback must be positive, got {self.lookback}")
        if self.max_drawdown_pct is not None and self.max_drawdown_pct <= 0:
            raise ValueError(f"max_drawdown_pct must be positive, got {self.max_drawdown_pct}")


@dataclass(frozen=True)
class BacktestTrade:
    """A completed round trip."""

    symbol: str
    direction: str
    entry_price: float
    stop_loss: float
    take_profit: float
    size: float
    opened_at: int
    closed_at: int
    exit_price: float
    exit_reason: str  # "SL hit", "TP hit", "end_of_data"
    pnl: float
    pattern_tag: str = ""


@dataclass(frozen=True)
class EquityPoint:
    timestamp: int
    equity: float


@dataclass(frozen=True)
class BacktestReport:
    symbol: str
    initial_capital: float
    final_capital: float
    trades: tuple[BacktestTrade, ...]
    equity_curve: tuple[EquityPoint, ...]
    metrics: dict = field(default_factory=dict)
    errors: int = 0
    halted_at: Optional[int] = None  # bar timestamp the drawdown breaker tripped

    @property
    def total_return_pct(self) -> float:
        return (self.final_capital - self.initial_capital) / self.initial_capital * 100.0

    def to_dict(self) -> dict:
        """JSON-safe view.  Infinite metrics (a profit factor with no losing
        trades) are emitted as ``None``; ``metrics`` itself keeps ``inf``."""
        return {
            "symbol": self.symbol,
            "final_capital": round(self.final_capital, 2),
            "total_return_pct": round(self.total_return_pct, 4),
            "trades": [asdict(t) for t in self.trades],
            "equity_curve": [asdict(p) for p in self.equity_curve],
            "metrics": {
                k: None if isinstance(v, float) and math.isinf(v) else v
                for k, v in self.metrics.items()
            },
            "halted_at": self.halted_at,
        }

    def format_report(self) -> str:
        """Plain-text summary for the CLI."""
        m = self.metrics
        lines = [
            f"Backtest {self.symbol}",
            f"  Initial capital : {self.initial_capital:,.2f}",
            f"  Final capital   : {self.final_capital:,.2f}",
            f"  Total return    : {self.total_return_pct:.2f}%",
            f"  Trades          : {m.get('total_trades', 0)}"
            f" ({m.get('winning_trades', 0)} won / {m.get('losing_trades', 0)} lost)",
            f"  Win rate        : {m.get('win_rate', 0.0) * 100:.1f}%",
            f"  Avg win / loss  : {m.get('avg_win', 0.0):.2f} / {m.get('avg_loss', 0.0):.2f}",
            f"  Profit factor   : {m.get('profit_factor', 0.0):.2f}",
            f"  Max drawdown    : {m.get('max_drawdown_pct', 0.0):.2f}%",
            f"  Sharpe / Sortino: {m.get('sharpe_ratio', 0.0):.2f} / {m.get('sortino_ratio', 0.0):.2f}",
        ]
        if self.errors:
            lines.append(f"  Skipped bars    : {self.errors}")
        if self.halted_at is not None:
            lines.append(f"  Halted at       : {self.halted_at} (drawdown breaker)")
        return "\n".join(lines)


# ── Strategies ───────────────────────────────────────────────────────────

# A strategy is either a callable ``(window, symbol) -> signal(s)`` or an
# object with ``signals(window, symbol)``.
StrategyFn = Callable[[Sequence[Candle], str], Union[None, Signal, Sequence[Signal]]]


class DetectorStrategy:
    """Runs a single detector over each window."""

    def __init__(self, detector: Detector, timeframe: str = "1h") -> None:
        self._detector = detector
        self.timeframe = timeframe

    def signals(self, window: Sequence[Candle], symbol: str) -> list[Signal]:
        context = DetectorContext(symbol=symbol, timeframe=self.timeframe)
        return self._detector.detect(window, context)


class GeneratorStrategy:
    """Runs the full consensus generator for one profile over each window."""

    def __init__(
        self,
        profile: Union[str, StrategyProfile] = "day_trading",
        timeframe: Optional[str] = None,
        generator: Optional[SignalGenerator] = None,
    ) -> None:
        self.profile = get_profile(profile) if isinstance(profile, str) else profile
        self.timeframe = timeframe or self.profile.timeframes[0]
        self._generator = generator or SignalGenerator()

    def signals(self, window: Sequence[Candle], symbol: str) -> list[Signal]:
        return self._generator.generate(symbol, self.timeframe, window, self.profile)


def _as_signals(result) -> list[Signal]:
    if result is None:
        return []
    if isinstance(result, Signal):
        return [result]
    return list(result)


# ── Engine ───────────────────────────────────────────────────────────────


class _OpenPosition:
    __slots__ = ("signal", "size", "opened_at")

    def __init__(self, signal: Signal, size: float, opened_at: int) -> None:
        self.signal = signal
        self.size = size
        self.opened_at = opened_at


class BacktestEngine:
    """Simulates trading a strategy on historical candles.

    Args:
        config: Capital, risk per trade, window length and optional
            drawdown circuit breaker.
    """

    def __init__(self, config: Optional[BacktestConfig] = None) -> None:
        self._config = config or BacktestConfig()

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        strategy: Union[StrategyFn, object],
        candles: Sequence[Candle],
        symbol: str = "",
    ) -> BacktestReport:
        """Execute a full backtest.

        At bar *i* the strategy sees ``candles[i - lookback + 1 : i + 1]``.
        An open position is checked for exits from the bar after entry on;
        signals arriving while a position is open are ignored.  A position
        still open after the last bar is closed at its close.
        """
        cfg = self._config
        evaluate = strategy.signals if hasattr(strategy, "signals") else strategy
        candles = list(candles)

        capital = cfg.initial_capital
        breaker = (
            DrawdownBreaker(cfg.initial_capital, cfg.max_drawdown_pct)
            if cfg.max_drawdown_pct is not None else None
        )
        position: Optional[_OpenPosition] = None
        trades: list[BacktestTrade] = []
        equity_curve: list[EquityPoint] = []
        errors = 0

        for i in range(cfg.lookback - 1, len(candles)):
            candle = candles[i]
            try:
                # 1 — Check open position for SL / TP exit
                if position is not None:
                    result = self._check_exit(position.signal, candle)
                    if result is not None:
                        exit_price, reason = result
                        trade = self._close(position, symbol, exit_price, reason, candle.timestamp)
                        trades.append(trade)
                        capital += trade.pnl
                        position = None
                        if breaker is not None and breaker.observe(capital, candle.timestamp):
                            logger.warning(
                                "Drawdown %.2f%% reached at %s; no new entries",
                                breaker.drawdown_pct, candle.timestamp,
                            )

                # 2 — Entry, unless already in a trade or breaker tripped
                if position is None and not (breaker and breaker.tripped):
                    window = candles[max(0, i - cfg.lookback + 1): i + 1]
                    signals = _as_signals(evaluate(window, symbol))
                    if signals:
                        position = self._open(signals[0], capital, candle.timestamp)
            except Exception:
                errors += 1
                logger.exception("Backtest bar %d (%s) failed; skipping", i, candle.timestamp)

            equity_curve.append(EquityPoint(candle.timestamp, capital))

        # Close any remaining position at last candle close
        if position is not None:
            last = candles[-1]
            trade = self._close(position, symbol, last.close, "end_of_data", last.timestamp)
            trades.append(trade)
            capital += trade.pnl
            equity_curve[-1] = EquityPoint(last.timestamp, capital)

        metrics = calculate_stats(
            [t.pnl for t in trades],
            [cfg.initial_capital] + [p.equity for p in equity_curve],
        )
        logger.info(
            "Backtest %s: %d bars, %d trades, final capital %.2f",
            symbol, len(candles), len(trades), capital,
        )
        return BacktestReport(
            symbol=symbol,
            initial_capital=cfg.initial_capital,
            final_capital=capital,
            trades=tuple(trades),
            equity_curve=tuple(equity_curve),
            metrics=metrics,
            errors=errors,
            halted_at=breaker.tripped_at if breaker is not None else None,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _open(self, signal: Signal, capital: float, timestamp: int) -> Optional[_OpenPosition]:
        distance = abs(signal.entry_price - signal.stop_loss)
        if distance == 0:
            logger.warning("Ignoring signal with entry equal to stop at %s", timestamp)
            return None
        size = capital * self._config.risk_per_trade / distance
        logger.debug("Open %s %s at %.5f size %.4f", signal.direction,
                     signal.symbol, signal.entry_price, size)
        return _OpenPosition(signal, size, timestamp)

    @staticmethod
    def _close(
        position: _OpenPosition, symbol: str, exit_price: float, reason: str, timestamp: int,
    ) -> BacktestTrade:
        s = position.signal
        return BacktestTrade(
            symbol=symbol or s.symbol,
            direction=s.direction,
            entry_price=s.entry_price,
            stop_loss=s.stop_loss,
            take_profit=s.take_profit,
            size=position.size,
            opened_at=position.opened_at,
            closed_at=timestamp,
            exit_price=exit_price,
            exit_reason=reason,
            pnl=BacktestEngine._calc_pnl(s.direction, s.entry_price, exit_price, position.size),
            pattern_tag=s.pattern_tag,
        )

    @staticmethod
    def _check_exit(signal: Signal, candle: Candle) -> Optional[tuple[float, str]]:
        """Check if *candle* triggers an SL or TP exit.

        Returns ``(exit_price, reason)`` or ``None``.  When both are hit in
        the same candle, SL is assumed first.
        """
        if signal.direction == BUY:
            sl_hit = candle.low <= signal.stop_loss
            tp_hit = candle.high >= signal.take_profit
        else:
            sl_hit = candle.high >= signal.stop_loss
            tp_hit = candle.low <= signal.take_profit

        if sl_hit:
            return signal.stop_loss, "SL hit"
        if tp_hit:
            return signal.take_profit, "TP hit"
        return None

    @staticmethod
    def _calc_pnl(direction: str, entry: float, exit_price: float, size: float) -> float:
        if direction == BUY:
            return (exit_price - entry) * size
        return (entry - exit_price) * size
