"""Statistical primitives: the single source of truth for engine math.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement a mean or a percentile locally in
services.

Conventions
-----------
* Inputs are any sequence of numbers (lists, tuples, ``deque`` windows,
  ``numpy`` arrays).  Outputs are plain Python ``float`` values so results
  serialise cleanly.
* Empty input never raises.  Scalar reducers return ``0.0``; sequence
  transforms return ``[]``.  Callers infer "no data" from sample counts, not
  from exceptions.
* Standard deviation is the **population** form (divide by ``n``), matching
  how the tick-frequency and per-trade return series are summarised
  throughout the engine.

Run tests with::

    pytest tests/test_statistics.py -v
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Final, List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import beta as beta_dist
from scipy.stats import norm

from edge_engine.core.errors import InvalidInputError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Two-sided z-scores for the common credible levels.  Looked up before
#: falling back to ``norm.ppf`` so that the 95% interval keeps using the
#: textbook 1.96 rather than 1.959964.
_Z_SCORES: Final[dict] = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}


def _as_array(values: Optional[Sequence[float]]) -> np.ndarray:
    if values is None:
        return np.empty(0, dtype=float)
    return np.asarray(list(values) if not isinstance(values, np.ndarray) else values, dtype=float)


# ---------------------------------------------------------------------------
# Location and dispersion
# ---------------------------------------------------------------------------


def mean(values: Optional[Sequence[float]]) -> float:
    """Arithmetic mean; ``0.0`` for empty input."""
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr))


def standard_deviation(values: Optional[Sequence[float]]) -> float:
    """Population standard deviation; ``0.0`` for empty input."""
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.std(arr))


def pearson_correlation(x: Optional[Sequence[float]], y: Optional[Sequence[float]]) -> float:
    """Pearson product-moment correlation between two equal-length series.

    Returns ``0.0`` when the series are empty, differ in length, or either
    one has zero variance (the coefficient is undefined there, and a
    constant instrument carries no co-movement information anyway).

    Examples::

        pearson_correlation([1, 2, 3], [2, 4, 6])   →  1.0
        pearson_correlation([1, 2, 3], [3, 2, 1])   → -1.0
        pearson_correlation([1, 1, 1], [1, 2, 3])   →  0.0
    """
    a = _as_array(x)
    b = _as_array(y)
    if a.size == 0 or a.size != b.size:
        return 0.0

    da = a - a.mean()
    db = b - b.mean()
    denominator = math.sqrt(float(np.dot(da, da)) * float(np.dot(db, db)))
    if denominator == 0.0:
        return 0.0
    r = float(np.dot(da, db)) / denominator
    # Rounding can push |r| a hair past 1 for perfectly collinear series.
    return max(-1.0, min(1.0, r))


def percentile(values: Optional[Sequence[float]], p: float) -> float:
    """Linear-interpolated percentile.

    Sorts ascending and interpolates between the two ranks bracketing
    ``index = p / 100 * (n - 1)``.  This is ``numpy``'s default
    ``method="linear"``.

    Examples::

        percentile([1, 2, 3, 4, 5], 50)  →  3.0
        percentile([1, 2, 3, 4], 50)     →  2.5
    """
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.percentile(arr, p))


# ---------------------------------------------------------------------------
# Tail risk and risk-adjusted return
# ---------------------------------------------------------------------------


def value_at_risk(returns: Optional[Sequence[float]], confidence: float = 0.95) -> float:
    """Historical Value-at-Risk.

    The negated lower-tail percentile at ``(1 - confidence) * 100``.  A
    positive result is a loss magnitude: ``value_at_risk(r, 0.95) == 7``
    reads "95% of outcomes lose less than 7".
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    return -percentile(arr, (1.0 - confidence) * 100.0)


def conditional_var(returns: Optional[Sequence[float]], confidence: float = 0.95) -> float:
    """Conditional VaR (expected shortfall).

    Mean loss magnitude across returns at least as bad as the VaR threshold.
    Falls back to the VaR itself when no return breaches it.
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    threshold = value_at_risk(arr, confidence)
    tail = arr[-arr >= threshold]
    if tail.size == 0:
        return threshold
    return -float(np.mean(tail))


def sharpe_ratio(returns: Optional[Sequence[float]], risk_free_rate: float = 0.0) -> float:
    """Per-period Sharpe ratio (not annualised); ``0.0`` when SD is zero."""
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    excess = arr - risk_free_rate
    sd = float(np.std(excess))
    if sd == 0.0:
        return 0.0
    return float(np.mean(excess)) / sd


# ---------------------------------------------------------------------------
# Series transforms
# ---------------------------------------------------------------------------


def ema(values: Optional[Sequence[float]], period: int) -> List[float]:
    """Exponential moving average seeded with the first observation.

    Smoothing constant ``k = 2 / (period + 1)``.  Output has the same length
    as the input.
    """
    arr = _as_array(values)
    if arr.size == 0:
        return []
    k = 2.0 / (period + 1.0)
    out = [float(arr[0])]
    for value in arr[1:]:
        out.append(float(value) * k + out[-1] * (1.0 - k))
    return out


def rolling(
    values: Optional[Sequence[float]],
    window: int,
    fn: Callable[[np.ndarray], float],
) -> List[float]:
    """Apply ``fn`` to each full trailing window; ``[]`` if too short."""
    arr = _as_array(values)
    if window <= 0 or arr.size < window:
        return []
    return [float(fn(arr[i - window + 1:i + 1])) for i in range(window - 1, arr.size)]


def normalize(values: Optional[Sequence[float]]) -> List[float]:
    """Min-max scale to ``[0, 1]``.  A constant series maps to all ``0.5``."""
    arr = _as_array(values)
    if arr.size == 0:
        return []
    lo, hi = float(arr.min()), float(arr.max())
    span = hi - lo
    if span == 0.0:
        return [0.5] * int(arr.size)
    return [float(v) for v in (arr - lo) / span]


def z_score(values: Optional[Sequence[float]]) -> List[float]:
    """Standardise with population SD.  A constant series maps to all ``0``."""
    arr = _as_array(values)
    if arr.size == 0:
        return []
    sd = float(np.std(arr))
    if sd == 0.0:
        return [0.0] * int(arr.size)
    return [float(v) for v in (arr - arr.mean()) / sd]


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine of the angle between two vectors; ``0.0`` when undefined."""
    va = _as_array(a)
    vb = _as_array(b)
    if va.size == 0 or va.size != vb.size:
        return 0.0
    mag = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if mag == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / mag


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum single-character inserts, deletes and substitutions turning ``a`` into ``b``."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        row = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            row.append(min(prev[j] + 1, row[j - 1] + 1, prev[j - 1] + cost))
        prev = row
    return prev[-1]


# ---------------------------------------------------------------------------
# Beta distribution
# ---------------------------------------------------------------------------


@dataclass
class BetaDistribution:
    """Conjugate belief about a Bernoulli success probability.

    ``alpha`` counts pseudo-successes and ``beta`` pseudo-failures.  The only
    mutation is :meth:`update`, which adds one observation.  The initial
    pseudo-counts are remembered so :attr:`observations` reports real data
    only (``alpha + beta - 2`` under the uniform prior).

    Attributes:
        alpha: Success pseudo-count, ``>= 1``.
        beta: Failure pseudo-count, ``>= 1``.

    Raises:
        InvalidInputError: If either parameter is below 1 or not finite.

    Examples::

        dist = BetaDistribution()
        dist.update(True); dist.update(True); dist.update(False)
        dist.mean()          →  0.6     # (1 + 2) / (2 + 3)
        dist.observations    →  3
    """

    alpha: float = 1.0
    beta: float = 1.0
    prior_alpha: float = field(init=False, repr=False)
    prior_beta: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        for name, value in (("alpha", self.alpha), ("beta", self.beta)):
            if not math.isfinite(value) or value < 1.0:
                raise InvalidInputError(
                    f"BetaDistribution.{name} must be a finite number >= 1, got {value!r}."
                )
        self.prior_alpha = self.alpha
        self.prior_beta = self.beta

    def update(self, success: bool) -> None:
        """Record one Bernoulli outcome."""
        if success:
            self.alpha += 1
        else:
            self.beta += 1

    @property
    def observations(self) -> int:
        """Number of real outcomes folded in since construction."""
        return int(round(self.alpha + self.beta - self.prior_alpha - self.prior_beta))

    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    def mode(self) -> float:
        """Posterior mode; only defined for ``alpha > 1`` and ``beta > 1``.

        Falls back to :meth:`mean` otherwise (the uniform prior has no mode).
        """
        if self.alpha > 1 and self.beta > 1:
            return (self.alpha - 1) / (self.alpha + self.beta - 2)
        return self.mean()

    def variance(self) -> float:
        total = self.alpha + self.beta
        return (self.alpha * self.beta) / (total * total * (total + 1))

    def std_dev(self) -> float:
        return math.sqrt(self.variance())

    def credible_interval(self, confidence: float = 0.95, exact: bool = False) -> Tuple[float, float]:
        """Central credible interval for the success probability.

        By default this is the **normal approximation** ``mean ± z·σ``,
        clipped to ``[0, 1]``.  It is cheap but too narrow for small samples
        and lopsided near 0 or 1.  Pass ``exact=True`` for the equal-tailed
        interval from the Beta quantile function instead.

        Args:
            confidence: Interval mass in ``(0, 1)``.
            exact: Use ``scipy.stats.beta.ppf`` rather than the normal
                approximation.

        Returns:
            ``(lower, upper)``.

        Raises:
            InvalidInputError: If ``confidence`` is not in ``(0, 1)``.
        """
        if not (0.0 < confidence < 1.0):
            raise InvalidInputError(f"confidence must be in (0, 1), got {confidence!r}.")

        if exact:
            tail = (1.0 - confidence) / 2.0
            lower = float(beta_dist.ppf(tail, self.alpha, self.beta))
            upper = float(beta_dist.ppf(1.0 - tail, self.alpha, self.beta))
            return lower, upper

        z = _Z_SCORES.get(round(confidence, 4))
        if z is None:
            z = float(norm.ppf(0.5 + confidence / 2.0))
        centre = self.mean()
        half_width = z * self.std_dev()
        return max(0.0, centre - half_width), min(1.0, centre + half_width)
