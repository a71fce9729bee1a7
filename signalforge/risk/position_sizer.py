"""Position sizing — pure math, no I/O.

Calculates position size from capital, risk fraction and the distance
between entry and stop.
"""


def calculate_position_size(
    capital: float,
    risk_fraction: float,
    entry: float,
    stop: float,
) -> float:
    """Calculate position size in units.

    Formula::

        risk_amount = capital × risk_fraction
        size        = risk_amount / |entry − stop|

    Args:
        capital: Current capital (e.g. 10_000.0).
        risk_fraction: Fraction of capital to risk per trade (0.01 for 1 %).
        entry: Entry price.
        stop: Stop-loss price.

    Returns:
        Position size in units (always positive).

    Raises:
        ValueError: If capital or risk fraction is non-positive, or entry
            equals stop.
    """
    if capital <= 0:
        raise ValueError(f"capital must be positive, got {capital}")
    if risk_fraction <= 0:
        raise ValueError(f"risk_fraction must be positive, got {risk_fraction}")
    distance = abs(entry - stop)
    if distance <= 0:
        raise ValueError(f"stop distance must be positive, got entry={entry} stop={stop}")
    return capital * risk_fraction / distance

