"""
Tests for accumulator Kelly sizing
Run with: pytest tests/test_kelly.py -v
"""

import pytest

from edge_engine.core.kelly import (
    TARGET_KELLY_HIGH,
    KellyCheck,
    estimate_payout_ratio,
    expected_value,
    kelly_fraction,
    optimal_growth_rate,
    stake_size,
    validate_trade,
)


class TestKellyFraction:
    """Full Kelly for a binary bet"""

    def test_even_money_edge(self):
        # (1 * 0.6 - 0.4) / 1 = 0.2
        assert kelly_fraction(0.6, 1.0) == pytest.approx(0.2)

    def test_negative_edge_is_zero(self):
        assert kelly_fraction(0.4, 1.0) == 0.0

    @pytest.mark.parametrize("p", [0.0, 1.0, -0.1, 1.5])
    def test_degenerate_probability(self, p):
        assert kelly_fraction(p, 1.0) == 0.0

    @pytest.mark.parametrize("b", [0.0, -0.5])
    def test_non_positive_payout(self, b):
        assert kelly_fraction(0.7, b) == 0.0

    def test_higher_payout_higher_kelly(self):
        assert kelly_fraction(0.6, 2.0) > kelly_fraction(0.6, 1.0)


class TestPayoutAndEV:
    """Payout ratio and expected value"""

    def test_payout_ratio(self):
        assert estimate_payout_ratio(0.03, 10) == pytest.approx(1.03 ** 10 - 1)

    def test_zero_growth(self):
        assert estimate_payout_ratio(0.0, 10) == 0.0

    def test_expected_value(self):
        # 0.6 * 10 * 1 - 0.4 * 10 = 2
        assert expected_value(0.6, 1.0, 10.0) == pytest.approx(2.0)


class TestStakeSize:
    """Fractional Kelly stake with clamping"""

    def test_default_multiplier(self):
        # 100 * 0.2 * 0.35 = 7
        assert stake_size(0.6, 1.0, 100.0) == pytest.approx(7.0)

    def test_clamped_to_max(self):
        assert stake_size(0.6, 1.0, 100.0, kelly_multiplier=1.0) == pytest.approx(20.0)

    def test_clamped_to_min_on_zero_kelly(self):
        assert stake_size(0.4, 1.0, 100.0) == pytest.approx(0.35)

    def test_custom_bounds(self):
        assert stake_size(0.6, 1.0, 1000.0, min_stake=1.0, max_stake=50.0) == pytest.approx(50.0)

    def test_rounded_to_cents(self):
        stake = stake_size(0.55, 0.9, 123.0)
        assert stake == round(stake, 2)


class TestOptimalGrowthRate:
    """Bisection into the target Kelly band"""

    def test_within_bounds(self):
        g = optimal_growth_rate(0.8)
        assert 0.01 <= g <= 0.08

    def test_returns_min_when_no_edge(self):
        assert optimal_growth_rate(0.05) == 0.01

    def test_kelly_not_above_band_for_strong_edge(self):
        g = optimal_growth_rate(0.9, target_ticks=10)
        k = kelly_fraction(0.9, estimate_payout_ratio(g, 10))
        assert k > 0.0
        assert 0.01 < g < 0.08

    def test_stops_inside_band(self):
        mid = 0.045
        payout = estimate_payout_ratio(mid, 10)
        # p such that kelly == 0.075 at the midpoint: p = (0.075 * b + 1) / (b + 1)
        p = (0.075 * payout + 1) / (payout + 1)
        assert optimal_growth_rate(p) == pytest.approx(mid)

    def test_band_constant(self):
        assert TARGET_KELLY_HIGH == pytest.approx(0.10)


class TestValidateTrade:
    """Trade validation verdicts"""

    def test_valid(self):
        check = validate_trade(0.6, 1.0, 0.35)
        assert isinstance(check, KellyCheck)
        assert check.is_valid
        assert check.kelly == pytest.approx(0.2)
        assert check.fractional_kelly == pytest.approx(0.07)
        assert check.expected_value == pytest.approx(0.2)
        assert check.reason == "Valid trade"

    def test_negative_kelly(self):
        check = validate_trade(0.3, 1.0)
        assert not check.is_valid
        assert check.reason.startswith("Negative Kelly")

    def test_to_dict(self):
        d = validate_trade(0.6, 1.0).to_dict()
        assert set(d) == {"is_valid", "kelly", "fractional_kelly", "expected_value", "reason"}
