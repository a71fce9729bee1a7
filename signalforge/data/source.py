"""Candle Source contract and implementations.

``HttpCandleSource`` talks to an upstream candle API over httpx with
exponential-backoff retry.  ``InMemoryCandleSource`` serves fixed series
(tests, backtests).  ``SyntheticCandleSource`` is a seeded random walk for
demo mode and is logged as such on every fetch; it is never used unless
explicitly selected.
"""

import asyncio
import logging
import time
import zlib
from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

import httpx
import numpy as np
import pandas as pd

from signalforge.errors import InvalidConfigurationError, UpstreamUnavailableError
from signalforge.strategy.models import TIMEFRAME_SECONDS, TIMEFRAMES, Candle

logger = logging.getLogger("signalforge.data")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


@runtime_checkable
class CandleSource(Protocol):
    """Ordered OHLCV candles per (symbol, timeframe), most recent last.

    Returns fewer than *count* candles when history is short and an empty
    list when the upstream is unavailable.
    """

    async def fetch(self, symbol: str, timeframe: str, count: int) -> list[Candle]:
        ...


def _check_timeframe(timeframe: str) -> None:
    if timeframe not in TIMEFRAMES:
        raise InvalidConfigurationError(
            f"Unknown timeframe '{timeframe}'. Available: {', '.join(TIMEFRAMES)}"
        )


def _parse_timestamp(value) -> int:
    """Epoch seconds from an int/float (seconds or milliseconds) or ISO string."""
    if isinstance(value, (int, float)):
        ts = int(value)
        return ts // 1000 if ts > 10**11 else ts
    text = str(value).strip()
    if text.isdigit():
        return _parse_timestamp(int(text))
    return int(pd.Timestamp(text).timestamp())


def normalize_candles(candles: Iterable[Candle], count: Optional[int] = None) -> list[Candle]:
    """Sort ascending, drop duplicate timestamps (last wins), keep the last *count*."""
    by_ts: dict[int, Candle] = {}
    for c in candles:
        by_ts[c.timestamp] = c
    ordered = [by_ts[ts] for ts in sorted(by_ts)]
    if count is not None:
        ordered = ordered[-count:] if count > 0 else []
    return ordered


def parse_candle(raw: dict) -> Candle:
    """Build a ``Candle`` from one upstream JSON record."""
    ts = raw.get("timestamp", raw.get("time"))
    if ts is None:
        raise ValueError(f"candle record without timestamp: {raw!r}")
    return Candle(
        timestamp=_parse_timestamp(ts),
        open=float(raw["open"]),
        high=float(raw["high"]),
        low=float(raw["low"]),
        close=float(raw["close"]),
        volume=float(raw.get("volume") or 0.0),
    )


# ── HTTP ─────────────────────────────────────────────────────────────────


class HttpCandleSource:
    """Async client for an upstream candle API.

    ``GET {base_url}/candles?symbol=..&timeframe=..&count=..`` must return
    either a JSON list of candle records or ``{"candles": [...]}``.
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    async def _request_with_retry(self, url: str, params: dict) -> httpx.Response:
        """GET with exponential-backoff retry on transient failures.

        Raises ``UpstreamUnavailableError`` once retries are exhausted or on
        a non-retryable HTTP error.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url, params=params, headers=self._headers, timeout=self._timeout,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Candle API GET %s returned %d, retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Candle API GET %s transport error (%s), retry %d/%d in %.1fs",
                    url, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)
            except httpx.HTTPStatusError as exc:
                raise UpstreamUnavailableError(str(exc)) from exc

        raise UpstreamUnavailableError(f"Candle API unavailable: {last_exc}")

    async def fetch(self, symbol: str, timeframe: str, count: int) -> list[Candle]:
        _check_timeframe(timeframe)
        url = f"{self._base_url}/candles"
        params = {"symbol": symbol, "timeframe": timeframe, "count": count}
        try:
            resp = await self._request_with_retry(url, params)
            data = resp.json()
            records = data.get("candles", []) if isinstance(data, dict) else data
            candles = [parse_candle(r) for r in records]
        except UpstreamUnavailableError as exc:
            logger.error("Candle fetch failed for %s %s: %s", symbol, timeframe, exc)
            return []
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Malformed candle payload for %s %s: %s", symbol, timeframe, exc)
            return []
        return normalize_candles(candles, count)


# ── In-memory / synthetic ────────────────────────────────────────────────


class InMemoryCandleSource:
    """Serves pre-loaded series keyed by ``(symbol, timeframe)``."""

    def __init__(self, series: Optional[dict[tuple[str, str], Sequence[Candle]]] = None) -> None:
        self._series: dict[tuple[str, str], list[Candle]] = {}
        for key, candles in (series or {}).items():
            self.add(key[0], key[1], candles)

    def add(self, symbol: str, timeframe: str, candles: Sequence[Candle]) -> None:
        _check_timeframe(timeframe)
        self._series[(symbol, timeframe)] = normalize_candles(candles)

    async def fetch(self, symbol: str, timeframe: str, count: int) -> list[Candle]:
        _check_timeframe(timeframe)
        return normalize_candles(self._series.get((symbol, timeframe), []), count)


class SyntheticCandleSource:
    """Seeded random-walk candles for DEMO MODE ONLY.

    The walk is deterministic per ``(symbol, timeframe, seed)`` and ends at
    *end_timestamp* (default: now, floored to the timeframe).
    """

    def __init__(
        self,
        seed: int = 0,
        base_price: float = 100.0,
        volatility: float = 0.002,
        end_timestamp: Optional[int] = None,
    ) -> None:
        self.seed = seed
        self.base_price = base_price
        self.volatility = volatility
        self.end_timestamp = end_timestamp

    async def fetch(self, symbol: str, timeframe: str, count: int) -> list[Candle]:
        _check_timeframe(timeframe)
        logger.warning(
            "DEMO MODE: serving synthetic candles for %s %s (not market data)",
            symbol, timeframe,
        )
        return self.generate(symbol, timeframe, count)

    def generate(self, symbol: str, timeframe: str, count: int) -> list[Candle]:
        if count <= 0:
            return []
        step = TIMEFRAME_SECONDS[timeframe]
        end = self.end_timestamp if self.end_timestamp is not None else int(time.time())
        end -= end % step
        rng = np.random.default_rng(zlib.crc32(f"{symbol}:{timeframe}:{self.seed}".encode()))

        returns = rng.normal(0.0, self.volatility, size=count)
        closes = self.base_price * np.exp(np.cumsum(returns))
        opens = np.concatenate(([self.base_price], closes[:-1]))
        wick = np.abs(rng.normal(0.0, self.volatility / 2, size=(2, count))) * closes
        highs = np.maximum(opens, closes) + wick[0]
        lows = np.minimum(opens, closes) - wick[1]
        volumes = rng.integers(500, 1500, size=count)

        start = end - step * (count - 1)
        return [
            Candle(
                timestamp=start + i * step,
                open=float(opens[i]),
                high=float(highs[i]),
                low=float(lows[i]),
                close=float(closes[i]),
                volume=float(volumes[i]),
            )
            for i in range(count)
        ]


# ── CSV ──────────────────────────────────────────────────────────────────


_TIME_COLUMNS = ("timestamp", "time", "date", "datetime")


def load_candles_csv(path: str) -> list[Candle]:
    """Load candles from a CSV with open/high/low/close[/volume] columns and
    a ``timestamp``/``time``/``date`` column (epoch or ISO-8601).

    Raises ``ValueError`` when required columns are missing.
    """
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]

    time_col = next((c for c in _TIME_COLUMNS if c in df.columns), None)
    missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
    if time_col is None or missing:
        raise ValueError(
            f"CSV {path} needs a time column and open/high/low/close; "
            f"missing: {missing or ['timestamp']}"
        )

    if pd.api.types.is_numeric_dtype(df[time_col]):
        stamps = [_parse_timestamp(int(v)) for v in df[time_col]]
    else:
        parsed = pd.to_datetime(df[time_col], utc=True)
        stamps = [int(ts.timestamp()) for ts in parsed]

    volumes = df["volume"].fillna(0.0) if "volume" in df.columns else [0.0] * len(df)
    candles = [
        Candle(
            timestamp=ts,
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v),
        )
        for ts, o, h, lo, c, v in zip(
            stamps, df["open"], df["high"], df["low"], df["close"], volumes,
        )
    ]
    logger.info("Loaded %d candles from %s", len(candles), path)
    return normalize_candles(candles)
