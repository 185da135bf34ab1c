"""
Beta-Binomial win-probability estimation.

Four independent evidence sources are tracked, each as a key space of
Beta distributions updated one Bernoulli outcome at a time:

    1. Asset: how often trades on this instrument win.
    2. Growth rate: how often trades at this accumulator growth rate
       survive to the exit target (keys quantized to 3 decimals).
    3. Pattern: success rate of an upstream pattern detector's id.
    4. Regime: how often trades placed in this market regime win.

:meth:`BayesianEstimator.estimate_win_probability` blends the four posterior
means with fixed weights.  Each key space is a bounded LRU cache so a
long-running session with many pattern ids or growth rates does not grow
without limit.
"""

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, Optional, Tuple

from edge_engine.core.engine_config import BayesianConfig
from edge_engine.core.errors import InvalidInputError
from edge_engine.core.regimes import Regime
from edge_engine.core.statistics import BetaDistribution

logger = logging.getLogger(__name__)

#: Observation count at which estimate confidence saturates at 1.0.
_CONFIDENCE_SATURATION = 100


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class WinProbabilityEstimate:
    """Blended win probability with its per-source breakdown."""

    combined: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "combined": round(self.combined, 6),
            "breakdown": {k: round(v, 6) for k, v in self.breakdown.items()},
            "confidence": round(self.confidence, 6),
        }


class PriorSpace:
    """Bounded LRU mapping of key → :class:`BetaDistribution`.

    Reads and writes both refresh a key's recency.  Inserting past
    ``capacity`` evicts the least recently used key.
    """

    def __init__(self, name: str, capacity: int, prior_alpha: float = 1.0, prior_beta: float = 1.0):
        self.name = name
        self.capacity = capacity
        self.prior_alpha = prior_alpha
        self.prior_beta = prior_beta
        self._dists: "OrderedDict[Hashable, BetaDistribution]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._dists)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._dists

    def __iter__(self) -> Iterator[Tuple[Hashable, BetaDistribution]]:
        return iter(list(self._dists.items()))

    def get(self, key: Hashable) -> Optional[BetaDistribution]:
        dist = self._dists.get(key)
        if dist is not None:
            self._dists.move_to_end(key)
        return dist

    def get_or_create(
        self,
        key: Hashable,
        alpha: Optional[float] = None,
        beta: Optional[float] = None,
    ) -> BetaDistribution:
        dist = self.get(key)
        if dist is not None:
            return dist

        dist = BetaDistribution(
            self.prior_alpha if alpha is None else alpha,
            self.prior_beta if beta is None else beta,
        )
        self._dists[key] = dist
        if len(self._dists) > self.capacity:
            evicted, _ = self._dists.popitem(last=False)
            logger.debug("Evicted %s prior %r (capacity %d)", self.name, evicted, self.capacity)
        return dist

    def mean(self, key: Hashable) -> float:
        """Posterior mean, or the default prior's mean for an unseen key."""
        dist = self.get(key)
        if dist is None:
            return self.prior_alpha / (self.prior_alpha + self.prior_beta)
        return dist.mean()

    def clear(self) -> None:
        self._dists.clear()


# ---------------------------------------------------------------------------
# Key normalisation
# ---------------------------------------------------------------------------

def growth_rate_key(rate: float) -> str:
    """Quantize a growth rate to its 3-decimal key, e.g. ``0.03 → "0.030"``."""
    try:
        value = float(rate)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"growth rate must be numeric, got {rate!r}") from exc
    if not math.isfinite(value):
        raise InvalidInputError(f"growth rate must be finite, got {rate!r}")
    return f"{value:.3f}"


def _regime_key(regime) -> str:
    if isinstance(regime, Regime):
        return regime.value
    return str(regime)


def _pattern_key(pattern_id) -> Hashable:
    if isinstance(pattern_id, float):
        if not math.isfinite(pattern_id):
            raise InvalidInputError(f"pattern id must be finite, got {pattern_id!r}")
        return f"{pattern_id:.3f}"
    return pattern_id


def _sample_size(dist: BetaDistribution) -> int:
    """Pseudo-counts above the uniform prior: ``alpha + beta - 2``, floored at 0."""
    return max(0, int(round(dist.alpha + dist.beta - 2)))


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------

class BayesianEstimator:
    """
    Maintains Beta posteriors per asset, growth rate, pattern and regime.

    Queries for unseen keys never raise: they return the default prior's
    mean (0.5 under the uniform prior) without creating an entry, so
    speculative lookups cannot evict learned keys.
    """

    def __init__(self, config: Optional[BayesianConfig] = None):
        self.config = config or BayesianConfig()
        cfg = self.config
        self.assets = PriorSpace("asset", cfg.max_prior_keys, cfg.prior_alpha, cfg.prior_beta)
        self.growth_rates = PriorSpace("growth_rate", cfg.max_prior_keys, cfg.prior_alpha, cfg.prior_beta)
        self.patterns = PriorSpace("pattern", cfg.max_prior_keys, cfg.prior_alpha, cfg.prior_beta)
        self.regimes = PriorSpace("regime", cfg.max_prior_keys, cfg.prior_alpha, cfg.prior_beta)

    # ------------------------------------------------------------------
    # Custom priors
    # ------------------------------------------------------------------

    def initialize_asset_prior(self, asset: str, alpha: float = 1.0, beta: float = 1.0) -> None:
        """Seed an asset's prior.  No-op if the asset already has one."""
        if asset not in self.assets:
            self.assets.get_or_create(asset, alpha, beta)

    def initialize_growth_rate_prior(self, rate: float, alpha: float = 1.0, beta: float = 1.0) -> None:
        key = growth_rate_key(rate)
        if key not in self.growth_rates:
            self.growth_rates.get_or_create(key, alpha, beta)

    def initialize_pattern_prior(self, pattern_id, alpha: float = 1.0, beta: float = 1.0) -> None:
        key = _pattern_key(pattern_id)
        if key not in self.patterns:
            self.patterns.get_or_create(key, alpha, beta)

    def initialize_regime_prior(self, regime, alpha: float = 1.0, beta: float = 1.0) -> None:
        key = _regime_key(regime)
        if key not in self.regimes:
            self.regimes.get_or_create(key, alpha, beta)

    # ------------------------------------------------------------------
    # Bernoulli updates
    # ------------------------------------------------------------------

    def update_asset(self, asset: str, won: bool) -> None:
        self.assets.get_or_create(asset).update(bool(won))

    def update_growth_rate(self, rate: float, success: bool) -> None:
        self.growth_rates.get_or_create(growth_rate_key(rate)).update(bool(success))

    def update_pattern(self, pattern_id, success: bool) -> None:
        self.patterns.get_or_create(_pattern_key(pattern_id)).update(bool(success))

    def update_regime(self, regime, won: bool) -> None:
        self.regimes.get_or_create(_regime_key(regime)).update(bool(won))

    # ------------------------------------------------------------------
    # Point estimates
    # ------------------------------------------------------------------

    def asset_prob(self, asset: str, use_mode: bool = False) -> float:
        dist = self.assets.get(asset)
        if dist is None:
            return self.assets.mean(asset)
        return dist.mode() if use_mode else dist.mean()

    def growth_rate_prob(self, rate: float) -> float:
        return self.growth_rates.mean(growth_rate_key(rate))

    def pattern_prob(self, pattern_id) -> float:
        return self.patterns.mean(_pattern_key(pattern_id))

    def regime_prob(self, regime) -> float:
        return self.regimes.mean(_regime_key(regime))

    def asset_interval(self, asset: str, confidence: float = 0.95) -> Tuple[float, float]:
        """Credible interval for an asset's win probability."""
        dist = self.assets.get(asset)
        if dist is None:
            dist = BetaDistribution(self.assets.prior_alpha, self.assets.prior_beta)
        return dist.credible_interval(confidence)

    # ------------------------------------------------------------------
    # Combined estimate
    # ------------------------------------------------------------------

    def estimate_win_probability(
        self,
        asset: str,
        growth_rate: float,
        pattern_id=None,
        regime="UNKNOWN",
    ) -> WinProbabilityEstimate:
        """
        Blend the four evidence sources into one win probability.

        ``combined = Σ weight_i × p_i`` with weights from
        :class:`~edge_engine.core.engine_config.BayesianConfig` (0.3 asset,
        0.2 growth rate, 0.2 pattern, 0.3 regime).  Without a pattern id the
        pattern term is the neutral 0.5.

        ``confidence`` grows logarithmically with the asset's sample size
        ``n = alpha + beta - 2``: ``min(1, log(n + 1) / log(100))``.  A custom
        prior's pseudo-counts count toward ``n``; an asset with no posterior
        has confidence 0.0.
        """
        weights = self.config.weights
        asset_p = self.asset_prob(asset)
        growth_p = self.growth_rate_prob(growth_rate)
        regime_p = self.regime_prob(regime)
        if pattern_id is None:
            pattern_p = self.config.default_pattern_prob
        else:
            pattern_p = self.pattern_prob(pattern_id)

        combined = (
            weights["asset"] * asset_p
            + weights["growth"] * growth_p
            + weights["pattern"] * pattern_p
            + weights["regime"] * regime_p
        )

        return WinProbabilityEstimate(
            combined=min(1.0, max(0.0, combined)),
            breakdown={
                "asset": asset_p,
                "growth_rate": growth_p,
                "pattern": pattern_p,
                "regime": regime_p,
            },
            confidence=self._confidence(asset),
        )

    def _confidence(self, asset: str) -> float:
        dist = self.assets.get(asset)
        if dist is None:
            return 0.0
        n = _sample_size(dist)
        if n <= 0:
            return 0.0
        return min(1.0, math.log(n + 1) / math.log(_CONFIDENCE_SATURATION))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def statistics(self) -> dict:
        """Per-key posterior means and sample counts for every key space."""
        assets = {}
        for key, dist in self.assets:
            lower, upper = dist.credible_interval()
            assets[key] = {
                "win_prob": dist.mean(),
                "samples": _sample_size(dist),
                "credible_interval": [lower, upper],
            }
        return {
            "assets": assets,
            "growth_rates": {
                key: {"success_prob": dist.mean(), "samples": _sample_size(dist)}
                for key, dist in self.growth_rates
            },
            "patterns": {
                key: {"success_prob": dist.mean(), "samples": _sample_size(dist)}
                for key, dist in self.patterns
            },
            "regimes": {
                key: {"win_prob": dist.mean(), "samples": _sample_size(dist)}
                for key, dist in self.regimes
            },
        }

    def reset(self) -> None:
        """Forget every posterior (new session)."""
        for space in (self.assets, self.growth_rates, self.patterns, self.regimes):
            space.clear()
        logger.info("Bayesian priors reset")
