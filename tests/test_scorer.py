"""Tests for the heuristic scorer."""

import math

import pytest

from signalforge.data.source import SyntheticCandleSource
from signalforge.strategy.scorer import (
    FEATURE_NAMES,
    FittedScorer,
    feature_frame,
    fit_scorer,
)


def _candles(n: int = 200):
    return SyntheticCandleSource(seed=7, end_timestamp=1_700_000_000).generate("R_50", "1h", n)


class TestFeatureFrame:
    def test_columns_and_length(self):
        frame = feature_frame(_candles(60))
        assert list(frame.columns) == list(FEATURE_NAMES)
        assert len(frame) == 60

    def test_early_rows_undefined(self):
        frame = feature_frame(_candles(60))
        assert math.isnan(frame["volatility"].iloc[5])
        assert not frame.iloc[-1].isna().any()

    def test_no_lookahead(self):
        candles = _candles(120)
        full = feature_frame(candles)
        prefix = feature_frame(candles[:80])
        for name in FEATURE_NAMES:
            assert full[name].iloc[79] == pytest.approx(prefix[name].iloc[79], nan_ok=True)

    def test_empty(self):
        assert feature_frame([]).empty


class TestFitScorer:
    def test_fit(self):
        scorer = fit_scorer(_candles())
        assert scorer is not None
        assert len(scorer.weights) == len(FEATURE_NAMES)
        assert scorer.samples >= 30
        assert all(s > 0 for s in scorer.stds)

    def test_too_little_history(self):
        assert fit_scorer(_candles(30)) is None
        assert fit_scorer([]) is None

    def test_deterministic(self):
        assert fit_scorer(_candles()) == fit_scorer(_candles())

    def test_score_in_unit_interval(self):
        candles = _candles()
        score = fit_scorer(candles).score(candles)
        assert 0.0 < score < 1.0

    def test_short_window_scores_neutral(self):
        scorer = fit_scorer(_candles())
        assert scorer.score(_candles(5)) == 0.5


class TestScoreVector:
    def test_zero_weights_neutral(self):
        n = len(FEATURE_NAMES)
        scorer = FittedScorer((0.0,) * n, (1.0,) * n, (0.0,) * n, samples=50)
        assert scorer.score_vector([3.0] * n) == 0.5

    def test_sign_follows_weights(self):
        n = len(FEATURE_NAMES)
        scorer = FittedScorer((0.0,) * n, (1.0,) * n, (0.1,) + (0.0,) * (n - 1), samples=50)
        assert scorer.score_vector([1.0] + [0.0] * (n - 1)) > 0.5
        assert scorer.score_vector([-1.0] + [0.0] * (n - 1)) < 0.5

    def test_extreme_input_does_not_overflow(self):
        n = len(FEATURE_NAMES)
        scorer = FittedScorer((0.0,) * n, (1.0,) * n, (1.0,) * n, samples=50)
        assert scorer.score_vector([-1e6] * n) == pytest.approx(0.0, abs=1e-12)
