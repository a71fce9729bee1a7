"""Backtest statistics — pure functions over closed trades and the equity curve."""

import math
from typing import Sequence

_PERIODS_PER_YEAR = 252


def calculate_stats(
    pnls: Sequence[float],
    equity: Sequence[float],
) -> dict:
    """Compute summary metrics for one backtest run.

    Args:
        pnls: Realized P&L of every closed trade, in close order.
        equity: Equity after each replayed bar (initial capital first).

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``win_rate`` (fraction), ``avg_win``, ``avg_loss`` (positive),
        ``profit_factor``, ``max_drawdown_pct``, ``sharpe_ratio``,
        ``sortino_ratio`` and ``net_pnl``.  With no trades every value is 0.
    """
    pnls = list(pnls)
    if not pnls:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "profit_factor": 0.0,
            "max_drawdown_pct": 0.0,
            "sharpe_ratio": 0.0,
            "sortino_ratio": 0.0,
            "net_pnl": 0.0,
        }

    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]
    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    returns = _returns(equity)

    return {
        "total_trades": len(pnls),
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": round(len(winners) / len(pnls), 4),
        "avg_win": round(gross_profit / len(winners), 2) if winners else 0.0,
        "avg_loss": round(gross_loss / len(losers), 2) if losers else 0.0,
        "profit_factor": _profit_factor(gross_profit, gross_loss),
        "max_drawdown_pct": round(max_drawdown_pct(equity), 4),
        "sharpe_ratio": round(sharpe_ratio(returns), 4),
        "sortino_ratio": round(sortino_ratio(returns), 4),
        "net_pnl": round(sum(pnls), 2),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _profit_factor(gross_profit: float, gross_loss: float) -> float:
    """Gross profit over gross loss; ``inf`` when nothing was lost."""
    if gross_loss == 0:
        return math.inf if gross_profit > 0 else 0.0
    return round(gross_profit / gross_loss, 4)


def _returns(equity: Sequence[float]) -> list[float]:
    return [
        (cur - prev) / prev
        for prev, cur in zip(equity, equity[1:])
        if prev != 0
    ]


def sharpe_ratio(returns: Sequence[float]) -> float:
    """Annualised Sharpe ratio of per-bar returns.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(_PERIODS_PER_YEAR)


def sortino_ratio(returns: Sequence[float]) -> float:
    """Annualised Sortino ratio; only negative returns count as risk."""
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    downside = math.sqrt(sum(min(r, 0.0) ** 2 for r in returns) / n)
    if downside == 0:
        return 0.0
    return (mean / downside) * math.sqrt(_PERIODS_PER_YEAR)


def max_drawdown_pct(equity: Sequence[float]) -> float:
    """Largest peak-to-trough decline of the equity curve, in percent."""
    peak = 0.0
    max_dd = 0.0
    for value in equity:
        if value > peak:
            peak = value
        if peak > 0:
            dd = (peak - value) / peak * 100.0
            if dd > max_dd:
                max_dd = dd
    return max_dd
