"""
Cross-instrument correlation tracking and correlation-aware sizing.

Simultaneous accumulator positions on correlated instruments are, for risk
purposes, closer to one large position than to several independent ones.
This module keeps a bounded tick window per instrument, periodically
rebuilds a Pearson correlation matrix across all of them, and uses it to:

    1. Shrink a new stake when correlated instruments are already active.
    2. Estimate the effective number of independent bets in a portfolio.
    3. Pick the candidate instrument least correlated with open positions.

The matrix is rebuilt wholesale every ``update_frequency`` ticks (counted
across all instruments), not incrementally.
"""

import itertools
import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence

from edge_engine.core.engine_config import CorrelationConfig
from edge_engine.core.errors import InvalidInputError
from edge_engine.core.statistics import mean, pearson_correlation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CorrelatedAsset:
    """An instrument whose correlation with the query instrument passed the threshold."""

    asset: str
    correlation: float


@dataclass(frozen=True)
class CandidateScore:
    """Diversification score of a candidate instrument against active ones."""

    asset: str
    avg_correlation: float
    score: float


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------

class CorrelationTracker:
    """
    Per-instrument tick windows plus a periodically rebuilt correlation matrix.

    Correlations between an instrument and itself are always 1.0; pairs that
    have never been computed (or lacked ``min_samples`` data at the last
    rebuild) read as 0.
    """

    def __init__(
        self,
        config: Optional[CorrelationConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or CorrelationConfig()
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._matrix: Dict[str, Dict[str, float]] = {}
        self.tick_count = 0
        self.last_update: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Tick ingestion
    # ------------------------------------------------------------------

    def add_tick(self, instrument: str, value: float) -> None:
        """Append one tick; rebuild the matrix every ``update_frequency`` ticks."""
        try:
            value = float(value)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"tick for {instrument!r} must be numeric, got {value!r}") from exc
        if not math.isfinite(value):
            raise InvalidInputError(f"tick for {instrument!r} must be finite, got {value!r}")

        window = self._windows.get(instrument)
        if window is None:
            window = deque(maxlen=self.config.correlation_window)
            self._windows[instrument] = window
        window.append(value)

        self.tick_count += 1
        if self.tick_count % self.config.update_frequency == 0:
            self.update_correlations()

    def window(self, instrument: str) -> List[float]:
        """Copy of an instrument's current tick window (oldest first)."""
        return list(self._windows.get(instrument, ()))

    @property
    def instruments(self) -> List[str]:
        return list(self._windows)

    # ------------------------------------------------------------------
    # Matrix
    # ------------------------------------------------------------------

    def _pair_correlation(self, a: str, b: str) -> float:
        data_a = self._windows.get(a)
        data_b = self._windows.get(b)
        min_samples = self.config.min_samples
        if not data_a or not data_b or len(data_a) < min_samples or len(data_b) < min_samples:
            return 0.0
        length = min(len(data_a), len(data_b))
        return pearson_correlation(list(data_a)[-length:], list(data_b)[-length:])

    def update_correlations(self) -> None:
        """Rebuild the full matrix from the current windows."""
        instruments = list(self._windows)
        matrix: Dict[str, Dict[str, float]] = {name: {name: 1.0} for name in instruments}
        for a, b in itertools.combinations(instruments, 2):
            corr = self._pair_correlation(a, b)
            matrix[a][b] = corr
            matrix[b][a] = corr

        self._matrix = matrix
        self.last_update = self._clock()
        logger.debug(
            "Correlation matrix rebuilt: %d instruments, tick %d",
            len(instruments), self.tick_count,
        )

    def correlation(self, a: str, b: str) -> float:
        if a == b:
            return 1.0
        return self._matrix.get(a, {}).get(b, 0.0)

    def correlation_matrix(self) -> Dict[str, Dict[str, float]]:
        return {a: dict(row) for a, row in self._matrix.items()}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def correlated_assets(self, instrument: str, threshold: Optional[float] = None) -> List[CorrelatedAsset]:
        """Other instruments with ``|corr| >= threshold``, strongest first."""
        if threshold is None:
            threshold = self.config.correlation_threshold
        row = self._matrix.get(instrument, {})
        found = [
            CorrelatedAsset(other, corr)
            for other, corr in row.items()
            if other != instrument and abs(corr) >= threshold
        ]
        return sorted(found, key=lambda c: abs(c.correlation), reverse=True)

    def portfolio_correlation(self, instruments: Sequence[str]) -> float:
        """Mean ``|corr|`` over every unordered pair; 0 for fewer than two."""
        if len(instruments) <= 1:
            return 0.0
        return mean([abs(self.correlation(a, b)) for a, b in itertools.combinations(instruments, 2)])

    def adjust_position_for_correlation(
        self,
        base_stake: float,
        instrument: str,
        active: Iterable[str] = (),
    ) -> float:
        """
        Shrink ``base_stake`` for exposure to already-active correlated instruments.

        With ``k`` active instruments at ``|corr| >= threshold`` and mean
        absolute correlation ``ρ`` among them::

            n       = k + 1
            factor  = 0.5 + 0.5 · ρ            (0.5 .. 1.0)
            stake   = base / sqrt(n · factor)

        floored at ``position_floor × base`` (half the base stake by default).
        Uncorrelated or no active instruments leave the stake unchanged.
        """
        threshold = self.config.correlation_threshold
        correlated = [
            abs(self.correlation(instrument, other))
            for other in active
            if abs(self.correlation(instrument, other)) >= threshold
        ]
        if not correlated:
            return base_stake

        n = len(correlated) + 1
        factor = 0.5 + 0.5 * mean(correlated)
        adjusted = base_stake / math.sqrt(n * factor)
        return max(base_stake * self.config.position_floor, adjusted)

    def effective_n_bets(self, instruments: Sequence[str]) -> float:
        """``n / (1 + (n − 1)·ρ̄)`` where ``ρ̄`` is the mean pairwise ``|corr|``."""
        n = len(instruments)
        if n <= 1:
            return float(n)
        avg = self.portfolio_correlation(instruments)
        return n / (1.0 + (n - 1) * avg)

    def find_uncorrelated_asset(
        self,
        active: Sequence[str],
        candidates: Sequence[str],
    ) -> Optional[CandidateScore]:
        """Candidate with the lowest mean ``|corr|`` against ``active``; ties keep input order."""
        if not candidates:
            return None

        scores = []
        for candidate in candidates:
            avg = mean([abs(self.correlation(candidate, other)) for other in active]) if active else 0.0
            scores.append(CandidateScore(candidate, avg, 1.0 - avg))
        return max(scores, key=lambda s: s.score)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def correlation_statistics(self) -> Optional[dict]:
        instruments = list(self._matrix)
        if len(instruments) < 2:
            return None

        pairs = [
            {"pair": f"{a}-{b}", "correlation": self.correlation(a, b)}
            for a, b in itertools.combinations(instruments, 2)
        ]
        ranked = sorted(pairs, key=lambda p: abs(p["correlation"]), reverse=True)
        values = [p["correlation"] for p in pairs]
        return {
            "total_pairs": len(pairs),
            "average_correlation": mean(values),
            "max_correlation": max(abs(v) for v in values),
            "highly_correlated_pairs": sum(
                1 for v in values if abs(v) >= self.config.correlation_threshold
            ),
            "top_correlations": ranked[:5],
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }
