"""Session filter — pure functions, checks whether a UTC hour or candle time
falls within a trading session window."""

from datetime import datetime, timezone


# name → (start hour inclusive, end hour exclusive), UTC
SESSIONS: dict[str, tuple[int, int]] = {
    "london": (7, 16),
    "new_york": (13, 22),
}


def is_in_session(
    utc_hour: int,
    session_start: int = 7,
    session_end: int = 16,
) -> bool:
    """Return True if *utc_hour* falls within ``[session_start, session_end)``.

    Args:
        utc_hour: The hour in UTC (0–23).
        session_start: Session start hour (inclusive).
        session_end: Session end hour (exclusive).
    """
    return session_start <= utc_hour < session_end


def is_trading_session(
    timestamp: int, sessions: dict[str, tuple[int, int]] = SESSIONS,
) -> bool:
    """True if the epoch-second *timestamp* falls inside any of *sessions*.

    The gate is driven by candle time, not the wall clock, so replaying
    history gives the same answer as running live.
    """
    hour = datetime.fromtimestamp(timestamp, tz=timezone.utc).hour
    return any(is_in_session(hour, start, end) for start, end in sessions.values())
