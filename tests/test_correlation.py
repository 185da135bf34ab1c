"""
Tests for cross-instrument correlation tracking
Run with: pytest tests/test_correlation.py -v
"""

import math
from datetime import datetime

import pytest

from edge_engine.core.engine_config import CorrelationConfig
from edge_engine.core.errors import InvalidInputError
from edge_engine.services.correlation import CandidateScore, CorrelationTracker

N = 100
X = [1.0, -1.0] * (N // 2)
Z = [1.0, 1.0, -1.0, -1.0] * (N // 4)
# corr(X, Y) = 0.9, corr(X, Z) = 0
Y = [0.9 * x + math.sqrt(0.19) * z for x, z in zip(X, Z)]


def _tracker(series, **overrides):
    cfg = CorrelationConfig(update_frequency=10_000, **overrides)
    tracker = CorrelationTracker(cfg, clock=lambda: datetime(2024, 5, 1, 8, 0))
    for name, values in series.items():
        for v in values:
            tracker.add_tick(name, v)
    tracker.update_correlations()
    return tracker


@pytest.fixture
def tracker():
    return _tracker({"X": X, "Y": Y, "Z": Z, "X2": list(X)})


class TestIngestion:
    """Tick windows and rebuild cadence"""

    def test_window_bounded(self):
        t = CorrelationTracker(CorrelationConfig(correlation_window=5, min_samples=2))
        for i in range(12):
            t.add_tick("R_10", i)
        assert t.window("R_10") == [7.0, 8.0, 9.0, 10.0, 11.0]

    def test_rebuild_every_update_frequency(self):
        t = CorrelationTracker(CorrelationConfig(update_frequency=10))
        for i in range(9):
            t.add_tick("R_10", i)
        assert t.last_update is None
        t.add_tick("R_25", 1.0)
        assert t.last_update is not None
        assert t.tick_count == 10

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "abc", None])
    def test_rejects_bad_tick(self, value):
        t = CorrelationTracker()
        with pytest.raises(InvalidInputError):
            t.add_tick("R_10", value)
        assert t.tick_count == 0

    def test_unknown_window(self):
        assert CorrelationTracker().window("nope") == []

    def test_instruments(self, tracker):
        assert tracker.instruments == ["X", "Y", "Z", "X2"]


class TestMatrix:
    """Pairwise Pearson coefficients"""

    def test_known_correlations(self, tracker):
        assert tracker.correlation("X", "Y") == pytest.approx(0.9)
        assert tracker.correlation("X", "Z") == pytest.approx(0.0, abs=1e-12)
        assert tracker.correlation("X", "X2") == pytest.approx(1.0)

    def test_symmetric(self, tracker):
        assert tracker.correlation("Y", "X") == tracker.correlation("X", "Y")

    def test_self_is_one(self, tracker):
        assert tracker.correlation("Z", "Z") == 1.0
        assert tracker.correlation("never-seen", "never-seen") == 1.0

    def test_unknown_pair_zero(self, tracker):
        assert tracker.correlation("X", "nope") == 0.0

    def test_below_min_samples(self):
        t = _tracker({"A": X[:40], "B": X[:40]})
        assert t.correlation("A", "B") == 0.0

    def test_uses_common_trailing_length(self):
        t = _tracker({"A": [5.0] * 10 + X, "B": X})
        assert t.correlation("A", "B") == pytest.approx(1.0)

    def test_matrix_is_copy(self, tracker):
        m = tracker.correlation_matrix()
        m["X"]["Y"] = -1.0
        assert tracker.correlation("X", "Y") == pytest.approx(0.9)
        assert m["Z"]["Z"] == 1.0


class TestQueries:
    """Correlated sets, effective N and candidate choice"""

    def test_correlated_assets_sorted(self, tracker):
        found = tracker.correlated_assets("X")
        assert [c.asset for c in found] == ["X2", "Y"]
        assert found[0].correlation == pytest.approx(1.0)

    def test_correlated_assets_custom_threshold(self, tracker):
        assert [c.asset for c in tracker.correlated_assets("X", threshold=0.95)] == ["X2"]

    def test_portfolio_correlation(self, tracker):
        assert tracker.portfolio_correlation(["X"]) == 0.0
        assert tracker.portfolio_correlation(["X", "Y"]) == pytest.approx(0.9)

    def test_effective_n_identical(self, tracker):
        assert tracker.effective_n_bets(["X", "X2"]) == pytest.approx(1.0)

    def test_effective_n_independent(self, tracker):
        assert tracker.effective_n_bets(["X", "Z"]) == pytest.approx(2.0)

    def test_effective_n_trivial(self, tracker):
        assert tracker.effective_n_bets([]) == 0.0
        assert tracker.effective_n_bets(["X"]) == 1.0

    def test_find_uncorrelated(self, tracker):
        best = tracker.find_uncorrelated_asset(["X"], ["Y", "Z", "X2"])
        assert isinstance(best, CandidateScore)
        assert best.asset == "Z"
        assert best.score == pytest.approx(1.0)

    def test_find_uncorrelated_no_candidates(self, tracker):
        assert tracker.find_uncorrelated_asset(["X"], []) is None

    def test_find_uncorrelated_tie_keeps_order(self, tracker):
        best = tracker.find_uncorrelated_asset([], ["Y", "Z"])
        assert best.asset == "Y"


class TestPositionAdjustment:
    """Correlation-aware stake shrinkage"""

    def test_no_active(self, tracker):
        assert tracker.adjust_position_for_correlation(10.0, "X") == 10.0

    def test_uncorrelated_active(self, tracker):
        assert tracker.adjust_position_for_correlation(10.0, "X", ["Z"]) == 10.0

    def test_one_correlated(self, tracker):
        # n = 2, factor = 0.95
        expected = 10.0 / math.sqrt(2 * 0.95)
        assert tracker.adjust_position_for_correlation(10.0, "X", ["Y", "Z"]) == pytest.approx(expected)

    def test_floor(self):
        series = {name: list(X) for name in ("A", "B", "C", "D", "E")}
        t = _tracker(series)
        # n = 5, factor = 1 → 10 / sqrt(5) ≈ 4.47, floored to 5
        assert t.adjust_position_for_correlation(10.0, "A", ["B", "C", "D", "E"]) == pytest.approx(5.0)

    def test_never_increases(self, tracker):
        for active in (["Y"], ["X2"], ["Y", "X2"], ["Z"]):
            assert tracker.adjust_position_for_correlation(10.0, "X", active) <= 10.0


class TestStatistics:
    """Matrix summary"""

    def test_none_below_two(self):
        assert CorrelationTracker().correlation_statistics() is None
        assert _tracker({"A": X}).correlation_statistics() is None

    def test_summary(self, tracker):
        stats = tracker.correlation_statistics()
        assert stats["total_pairs"] == 6
        assert stats["max_correlation"] == pytest.approx(1.0)
        # X-X2 and X-Y, X2-Y pass 0.7
        assert stats["highly_correlated_pairs"] == 3
        assert stats["top_correlations"][0]["pair"] == "X-X2"
        assert len(stats["top_correlations"]) == 5
        assert stats["last_update"] == "2024-05-01T08:00:00"
