"""Drawdown circuit breaker for replayed equity — pure math, no I/O.

The backtest engine feeds realized capital after every closed trade.  Once
drawdown from the running peak reaches the threshold the breaker latches:
no further entries are taken for the rest of the replay, even if a
position closed afterwards would lift equity again.
"""

from typing import Optional


class DrawdownBreaker:
    """Peak-to-trough tracker that latches at *max_drawdown_pct*.

    Args:
        initial_equity: Starting capital.
        max_drawdown_pct: Threshold in percent (10.0 for 10 %).
    """

    def __init__(self, initial_equity: float, max_drawdown_pct: float = 10.0) -> None:
        if initial_equity <= 0:
            raise ValueError(f"initial_equity must be positive, got {initial_equity}")
        if max_drawdown_pct <= 0:
            raise ValueError(f"max_drawdown_pct must be positive, got {max_drawdown_pct}")
        self.threshold_pct = max_drawdown_pct
        self._peak = initial_equity
        self._equity = initial_equity
        self.tripped_at: Optional[int] = None

    def observe(self, equity: float, timestamp: int) -> bool:
        """Record *equity* as of *timestamp*; returns ``True`` once tripped."""
        self._equity = equity
        self._peak = max(self._peak, equity)
        if self.tripped_at is None and self.drawdown_pct >= self.threshold_pct:
            self.tripped_at = timestamp
        return self.tripped

    @property
    def tripped(self) -> bool:
        return self.tripped_at is not None

    @property
    def drawdown_pct(self) -> float:
        return (self._peak - self._equity) / self._peak * 100.0
