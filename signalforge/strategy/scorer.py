"""Heuristic scorer — a linear score over standardized candle features.

This is a heuristic, NOT a statistically validated predictive model.  Each
feature's weight is simply its covariance with next-bar direction over the
window the scorer was fitted on; the weighted sum is squashed through a
logistic curve so the result reads like a probability that the next bar
closes up.  Fitting happens in-process on the same candles the detectors
see, and the result is an explicit ``FittedScorer`` value passed around by
callers; nothing is cached on any object.

Features (all computed from bars at or before the scored bar):

- ``price_change``: one-bar close return.
- ``volatility``: rolling standard deviation of returns.
- ``volume_ratio``: volume over its rolling mean.
- ``choch_score``: +1 / -1 for a bullish / bearish CHOCH among swings
  already confirmed at that bar, 0 otherwise.
- ``regime``: +1 bullish trend, -1 bearish trend, 0 ranging.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from signalforge.strategy.models import Candle
from signalforge.strategy.structure import (
    DEFAULT_SWING_LOOKBACK,
    classify_trend,
    detect_choch,
    find_swing_highs,
    find_swing_lows,
)


FEATURE_NAMES: tuple[str, ...] = (
    "price_change",
    "volatility",
    "volume_ratio",
    "choch_score",
    "regime",
)

_REGIME_VALUE = {"bullish": 1.0, "bearish": -1.0, "neutral": 0.0}


@dataclass(frozen=True)
class FittedScorer:
    """Feature statistics and weights from one in-process fit."""

    means: tuple[float, ...]
    stds: tuple[float, ...]
    weights: tuple[float, ...]
    samples: int
    swing_lookback: int = DEFAULT_SWING_LOOKBACK
    volatility_window: int = 10
    volume_window: int = 20
    gain: float = 4.0

    def score_vector(self, features: Sequence[float]) -> float:
        """Logistic score in ``(0, 1)`` for one raw feature vector."""
        total = 0.0
        for value, mean, std, weight in zip(features, self.means, self.stds, self.weights):
            total += weight * (value - mean) / std
        x = max(-60.0, min(60.0, self.gain * total))
        return 1.0 / (1.0 + math.exp(-x))

    def score(self, candles: Sequence[Candle]) -> float:
        """Score the latest bar of *candles*.

        Returns a neutral 0.5 when the latest bar's features are not yet
        defined (too little history).
        """
        frame = feature_frame(
            candles,
            swing_lookback=self.swing_lookback,
            volatility_window=self.volatility_window,
            volume_window=self.volume_window,
        )
        if frame.empty:
            return 0.5
        row = frame.iloc[-1]
        if row.isna().any():
            return 0.5
        return self.score_vector([float(row[name]) for name in FEATURE_NAMES])


def feature_frame(
    candles: Sequence[Candle],
    swing_lookback: int = DEFAULT_SWING_LOOKBACK,
    volatility_window: int = 10,
    volume_window: int = 20,
) -> pd.DataFrame:
    """One row of features per candle; rows without full history hold NaN."""
    candles = list(candles)
    n = len(candles)
    if n == 0:
        return pd.DataFrame(columns=list(FEATURE_NAMES))

    closes = pd.Series([c.close for c in candles], dtype=float)
    volumes = pd.Series([c.volume for c in candles], dtype=float)

    returns = closes.pct_change()
    avg_volume = volumes.rolling(volume_window).mean()
    volume_ratio = (volumes / avg_volume).where(avg_volume != 0, 1.0)

    # A swing at index j is only known once j + lookback bars exist.
    highs = find_swing_highs(candles, swing_lookback)
    lows = find_swing_lows(candles, swing_lookback)
    choch = np.zeros(n)
    regime = np.zeros(n)
    hi = lo = 0
    for i in range(n):
        while hi < len(highs) and highs[hi].index + swing_lookback <= i:
            hi += 1
        while lo < len(lows) and lows[lo].index + swing_lookback <= i:
            lo += 1
        known_highs, known_lows = highs[:hi], lows[:lo]
        brk = detect_choch(known_highs, known_lows)
        choch[i] = float(brk.bullish) - float(brk.bearish)
        regime[i] = _REGIME_VALUE[classify_trend(known_highs, known_lows)]

    return pd.DataFrame({
        "price_change": returns,
        "volatility": returns.rolling(volatility_window).std(),
        "volume_ratio": volume_ratio,
        "choch_score": choch,
        "regime": regime,
    })


def fit_scorer(
    candles: Sequence[Candle],
    min_samples: int = 30,
    swing_lookback: int = DEFAULT_SWING_LOOKBACK,
    volatility_window: int = 10,
    volume_window: int = 20,
) -> Optional[FittedScorer]:
    """Fit weights on *candles*; ``None`` with fewer than *min_samples* rows.

    The target for bar *i* is 1 when bar *i+1* closes above bar *i*, else 0,
    so the last bar never contributes a training row.
    """
    frame = feature_frame(candles, swing_lookback, volatility_window, volume_window)
    if len(frame) < 2:
        return None

    closes = pd.Series([c.close for c in candles], dtype=float)
    data = frame.iloc[:-1].copy()
    data["target"] = (closes.shift(-1) > closes).astype(float).iloc[:-1]
    data = data.replace([np.inf, -np.inf], np.nan).dropna()
    if len(data) < min_samples:
        return None

    x = data[list(FEATURE_NAMES)].to_numpy(dtype=float)
    y = data["target"].to_numpy(dtype=float)
    means = x.mean(axis=0)
    stds = x.std(axis=0)
    stds[stds == 0] = 1.0
    z = (x - means) / stds
    weights = (z * (y - y.mean())[:, None]).mean(axis=0)

    return FittedScorer(
        means=tuple(float(v) for v in means),
        stds=tuple(float(v) for v in stds),
        weights=tuple(float(v) for v in weights),
        samples=len(data),
        swing_lookback=swing_lookback,
        volatility_window=volatility_window,
        volume_window=volume_window,
    )
