"""
Tests for statistical primitives and the Beta distribution
Run with: pytest tests/test_statistics.py -v
"""

import math
from collections import deque

import numpy as np
import pytest

from edge_engine.core.errors import InvalidInputError
from edge_engine.core.statistics import (
    BetaDistribution,
    conditional_var,
    cosine_similarity,
    ema,
    levenshtein_distance,
    mean,
    normalize,
    pearson_correlation,
    percentile,
    rolling,
    sharpe_ratio,
    standard_deviation,
    value_at_risk,
    z_score,
)


class TestEmptyInput:
    """Empty input degrades to 0 or [] instead of raising"""

    @pytest.mark.parametrize("fn", [mean, standard_deviation, value_at_risk,
                                    conditional_var, sharpe_ratio])
    def test_scalar_reducers_return_zero(self, fn):
        assert fn([]) == 0.0

    def test_percentile_empty(self):
        assert percentile([], 50) == 0.0

    def test_sequence_transforms_return_empty(self):
        assert ema([], 5) == []
        assert normalize([]) == []
        assert z_score([]) == []
        assert rolling([], 3, np.mean) == []

    def test_none_is_empty(self):
        assert mean(None) == 0.0


class TestLocationAndDispersion:
    """Mean, population SD, percentile"""

    def test_mean(self):
        assert mean([1, 2, 3, 4]) == pytest.approx(2.5)

    def test_population_sd(self):
        # Population SD of [2,4,4,4,5,5,7,9] is exactly 2
        assert standard_deviation([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)

    def test_accepts_deque(self):
        assert mean(deque([1.0, 3.0])) == pytest.approx(2.0)

    @pytest.mark.parametrize("values,p,expected", [
        ([1, 2, 3, 4, 5], 50, 3.0),
        ([1, 2, 3, 4], 50, 2.5),
        ([5, 1, 4, 2, 3], 0, 1.0),
        ([5, 1, 4, 2, 3], 100, 5.0),
        ([10, 20], 25, 12.5),
    ])
    def test_percentile_linear_interpolation(self, values, p, expected):
        assert percentile(values, p) == pytest.approx(expected)


class TestPearson:
    """Pearson correlation edge cases"""

    def test_perfect_positive(self):
        assert pearson_correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert pearson_correlation([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)

    def test_zero_variance(self):
        assert pearson_correlation([1, 1, 1], [1, 2, 3]) == 0.0

    def test_length_mismatch(self):
        assert pearson_correlation([1, 2, 3], [1, 2]) == 0.0

    def test_empty(self):
        assert pearson_correlation([], []) == 0.0

    def test_bounded(self):
        rng = np.random.default_rng(1)
        x = rng.normal(size=200)
        y = 0.5 * x + rng.normal(size=200)
        r = pearson_correlation(x, y)
        assert -1.0 <= r <= 1.0
        assert r == pytest.approx(np.corrcoef(x, y)[0, 1])


class TestTailRisk:
    """VaR, CVaR and Sharpe"""

    def test_var_is_negated_lower_percentile(self):
        returns = list(range(-10, 10))  # -10 .. 9
        assert value_at_risk(returns, 0.95) == pytest.approx(-percentile(returns, 5))

    def test_var_on_simple_losses(self):
        returns = [-10, -5, 0, 5, 10]
        # 5th percentile: index 0.2 → -10 + 0.2 * 5 = -9
        assert value_at_risk(returns, 0.95) == pytest.approx(9.0)

    def test_cvar_at_least_var(self):
        rng = np.random.default_rng(3)
        returns = rng.normal(0, 1, 1000)
        assert conditional_var(returns, 0.95) >= value_at_risk(returns, 0.95)

    def test_cvar_mean_of_tail(self):
        returns = [-10, -5, 0, 5, 10]
        # VaR = 9; only -10 has loss >= 9
        assert conditional_var(returns, 0.95) == pytest.approx(10.0)

    def test_cvar_threshold_is_inclusive(self):
        # Constant gains: VaR is -2 and every return sits exactly on it.
        assert conditional_var([2.0, 2.0, 2.0]) == pytest.approx(-2.0)

    def test_sharpe_zero_sd(self):
        assert sharpe_ratio([0.1, 0.1, 0.1]) == 0.0

    def test_sharpe_value(self):
        returns = [1.0, -1.0, 1.0, -1.0, 2.0]
        expected = np.mean(returns) / np.std(returns)
        assert sharpe_ratio(returns) == pytest.approx(expected)

    def test_sharpe_risk_free(self):
        returns = [0.2, 0.4]
        assert sharpe_ratio(returns, risk_free_rate=0.1) == pytest.approx(0.2 / 0.1)


class TestTransforms:
    """EMA, rolling, normalise, z-score, cosine"""

    def test_ema_seeded_with_first_value(self):
        out = ema([10, 20, 30], period=3)  # k = 0.5
        assert out == pytest.approx([10.0, 15.0, 22.5])

    def test_ema_same_length(self):
        assert len(ema([1, 2, 3, 4, 5], 2)) == 5

    def test_rolling(self):
        assert rolling([1, 2, 3, 4], 2, np.sum) == pytest.approx([3.0, 5.0, 7.0])

    def test_rolling_too_short(self):
        assert rolling([1, 2], 3, np.mean) == []

    def test_normalize(self):
        assert normalize([0, 5, 10]) == pytest.approx([0.0, 0.5, 1.0])

    def test_normalize_constant(self):
        assert normalize([3, 3, 3]) == [0.5, 0.5, 0.5]

    def test_z_score(self):
        out = z_score([1, 2, 3])
        assert np.mean(out) == pytest.approx(0.0)
        assert np.std(out) == pytest.approx(1.0)

    def test_z_score_constant(self):
        assert z_score([4, 4]) == [0.0, 0.0]

    def test_cosine(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 2], [2, 4]) == pytest.approx(1.0)

    def test_cosine_degenerate(self):
        assert cosine_similarity([0, 0], [1, 1]) == 0.0
        assert cosine_similarity([1, 2, 3], [1, 2]) == 0.0

    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ("kitten", "sitting", 3),
            ("flaw", "lawn", 2),
            ("", "abc", 3),
            ("abc", "", 3),
            ("R_10", "R_10", 0),
        ],
    )
    def test_levenshtein(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_levenshtein_symmetric(self):
        assert levenshtein_distance("R_100", "R_10") == levenshtein_distance("R_10", "R_100") == 1


class TestBetaDistribution:
    """Beta posterior arithmetic"""

    def test_uniform_prior(self):
        d = BetaDistribution()
        assert d.mean() == pytest.approx(0.5)
        assert d.observations == 0

    def test_update(self):
        d = BetaDistribution()
        d.update(True)
        d.update(True)
        d.update(False)
        assert (d.alpha, d.beta) == (3.0, 2.0)
        assert d.mean() == pytest.approx(0.6)
        assert d.observations == 3

    def test_observations_with_custom_prior(self):
        d = BetaDistribution(5, 3)
        d.update(False)
        assert d.observations == 1

    def test_mode(self):
        d = BetaDistribution(3, 2)
        assert d.mode() == pytest.approx(2 / 3)

    def test_mode_falls_back_to_mean(self):
        d = BetaDistribution(1, 4)
        assert d.mode() == pytest.approx(d.mean())

    def test_variance(self):
        d = BetaDistribution(2, 2)
        assert d.variance() == pytest.approx(4 / (16 * 5))
        assert d.std_dev() == pytest.approx(math.sqrt(0.05))

    @pytest.mark.parametrize("alpha,beta", [(0.5, 1), (1, 0), (float("nan"), 1), (1, float("inf"))])
    def test_invalid_parameters(self, alpha, beta):
        with pytest.raises(InvalidInputError):
            BetaDistribution(alpha, beta)

    def test_invalid_parameters_are_value_errors(self):
        with pytest.raises(ValueError):
            BetaDistribution(0, 0)

    def test_normal_interval(self):
        d = BetaDistribution(11, 11)
        lo, hi = d.credible_interval(0.95)
        half = 1.96 * d.std_dev()
        assert lo == pytest.approx(0.5 - half)
        assert hi == pytest.approx(0.5 + half)

    def test_interval_clipped(self):
        d = BetaDistribution(1, 30)
        lo, hi = d.credible_interval(0.99)
        assert lo == 0.0
        assert 0.0 < hi <= 1.0

    def test_uncommon_confidence_uses_ppf(self):
        d = BetaDistribution(20, 20)
        lo, hi = d.credible_interval(0.80)
        assert hi - lo == pytest.approx(2 * 1.2815515655 * d.std_dev(), rel=1e-6)

    def test_exact_interval(self):
        d = BetaDistribution(3, 9)
        lo, hi = d.credible_interval(0.95, exact=True)
        assert 0.0 < lo < d.mean() < hi < 1.0

    def test_exact_wider_for_small_samples(self):
        d = BetaDistribution(2, 1)
        lo_n, hi_n = d.credible_interval(0.95)
        lo_e, hi_e = d.credible_interval(0.95, exact=True)
        assert hi_n == 1.0
        assert hi_e < 1.0

    @pytest.mark.parametrize("confidence", [0.0, 1.0, 1.5])
    def test_bad_confidence(self, confidence):
        with pytest.raises(InvalidInputError):
            BetaDistribution().credible_interval(confidence)
