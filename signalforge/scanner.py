"""CRTScanner — periodic multi-symbol scan that pushes signals into a channel.

Symbols are scanned in fixed-size concurrent batches (``asyncio.gather``).
A scan-in-progress flag keeps two scans from overlapping; ``stop()`` takes
effect after the running scan completes.  Discovered signals go into an
explicit ``SignalChannel``, which consumers subscribe to (``on_signal``)
or, when it was built with a queue, read from (``get``).
"""

import asyncio
import dataclasses
import inspect
import logging
import time
from typing import Callable, Optional, Sequence

from signalforge.strategy.base import Detector, DetectorContext
from signalforge.strategy.crt import MomentumCRTDetector
from signalforge.strategy.models import Signal

logger = logging.getLogger("signalforge.scanner")


def strategy_for_timeframe(timeframe: str) -> str:
    """Trading style label for a timeframe."""
    if timeframe in ("1m", "5m"):
        return "scalping"
    if timeframe in ("15m", "1h"):
        return "day_trading"
    return "swing_trading"


class SignalChannel:
    """Subscriber callbacks, plus an optional queue, between the scanner and
    consumers.

    Queueing is opt-in: a channel built with ``queue=True`` also keeps every
    published signal until it is read with ``get`` or ``drain``.  Without it
    signals only reach subscribers, so a long-running subscriber-only scan
    holds nothing.
    """

    def __init__(self, queue: bool = False, maxsize: int = 0) -> None:
        self._queue: Optional[asyncio.Queue] = asyncio.Queue(maxsize) if queue else None
        self._callbacks: list[Callable] = []

    @property
    def queued(self) -> bool:
        return self._queue is not None

    def on_signal(self, callback: Callable) -> Callable[[], None]:
        """Register *callback* (sync or async); returns an unsubscribe function."""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    async def publish(self, signal: Signal) -> None:
        """Notify subscribers, then enqueue if queueing.  A failing subscriber
        is logged and does not stop delivery to the others."""
        for callback in list(self._callbacks):
            try:
                result = callback(signal)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Signal subscriber %r failed", callback)
        if self._queue is not None:
            await self._queue.put(signal)

    async def get(self) -> Signal:
        if self._queue is None:
            raise RuntimeError("SignalChannel was created without a queue")
        return await self._queue.get()

    def drain(self) -> list[Signal]:
        """Everything currently queued, without waiting."""
        items: list[Signal] = []
        while self._queue is not None and not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def qsize(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0


class CRTScanner:
    """Scans tracked symbols on a timer with the momentum CRT variant.

    Args:
        source: Candle Source.
        symbols: Symbols to scan.
        channel: Where discovered signals are published.
        timeframe: Timeframe to scan.
        batch_size: Symbols fetched and analyzed concurrently.
        interval_seconds: Pause between scans in :meth:`run`.
        count: Candles requested per symbol.
        min_candles: Symbols with fewer candles are skipped.
        min_confidence: Signals below this confidence are dropped.
        min_risk_reward: Signals below this risk-reward are dropped.
        detector: Defaults to ``MomentumCRTDetector``.
    """

    def __init__(
        self,
        source,
        symbols: Sequence[str],
        channel: Optional[SignalChannel] = None,
        timeframe: str = "1m",
        batch_size: int = 5,
        interval_seconds: int = 300,
        count: int = 100,
        min_candles: int = 50,
        min_confidence: float = 0.6,
        min_risk_reward: float = 1.5,
        detector: Optional[Detector] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._source = source
        self.symbols = list(symbols)
        self.channel = channel or SignalChannel()
        self.timeframe = timeframe
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.count = count
        self.min_candles = min_candles
        self.min_confidence = min_confidence
        self.min_risk_reward = min_risk_reward
        self._detector = detector or MomentumCRTDetector()
        self._scanning = False
        self._running = False
        self.last_scan_time: Optional[float] = None

    @property
    def scanning(self) -> bool:
        return self._scanning

    def is_valid(self, signal: Signal) -> bool:
        return (
            signal.confidence >= self.min_confidence
            and signal.risk_reward >= self.min_risk_reward
        )

    async def scan_symbol(self, symbol: str) -> list[Signal]:
        """Fetch and analyze one symbol; errors resolve to ``[]``."""
        try:
            candles = await self._source.fetch(symbol, self.timeframe, self.count)
            if len(candles) < self.min_candles:
                logger.info("Insufficient data for %s %s (%d candles)",
                            symbol, self.timeframe, len(candles))
                return []
            context = DetectorContext(symbol=symbol, timeframe=self.timeframe)
            style = "strategy=%s" % strategy_for_timeframe(self.timeframe)
            return [
                dataclasses.replace(s, notes=s.notes + (style,))
                for s in self._detector.detect(candles, context)
                if self.is_valid(s)
            ]
        except Exception:
            logger.exception("Error scanning %s", symbol)
            return []

    async def scan_all(self) -> list[Signal]:
        """One pass over all symbols.  Returns ``[]`` without scanning when a
        scan is already in progress."""
        if self._scanning:
            logger.info("Scan already in progress")
            return []

        self._scanning = True
        logger.info("Starting CRT scan of %d symbols on %s", len(self.symbols), self.timeframe)
        found: list[Signal] = []
        try:
            for i in range(0, len(self.symbols), self.batch_size):
                batch = self.symbols[i:i + self.batch_size]
                results = await asyncio.gather(*(self.scan_symbol(s) for s in batch))
                for signals in results:
                    found.extend(signals)
            for signal in found:
                await self.channel.publish(signal)
        finally:
            self._scanning = False
            self.last_scan_time = time.time()

        logger.info("CRT scan complete: %d signals", len(found))
        return found

    def stop(self) -> None:
        """Signal the loop to stop after the current scan."""
        self._running = False

    async def run(self, max_scans: int = 0) -> list[int]:
        """Scan until stopped.

        Args:
            max_scans: Stop after this many scans (0 = unlimited).

        Returns:
            Number of signals found by each scan.
        """
        self._running = True
        counts: list[int] = []

        while self._running:
            counts.append(len(await self.scan_all()))
            if max_scans > 0 and len(counts) >= max_scans:
                break

            # Interruptible sleep, checks _running every second
            for _ in range(self.interval_seconds):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        return counts
