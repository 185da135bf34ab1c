"""
Time-to-knockout survival analysis for accumulator trades.

Each settled trade contributes one observation: the number of ticks it was
held, and whether it ended in a knockout (``event=True``) or was closed
before one (censored, ``event=False``).  From these the analyzer estimates:

    - the Kaplan–Meier survival curve ``S(t) = P(T > t)`` with Greenwood
      standard errors,
    - empirical hazard and cumulative hazard at a tick count,
    - conditional survival ``S(t + n) / S(t)`` for a position already held
      ``t`` ticks,
    - a two-parameter Weibull fit to knockout times.

With no data the analyzer is deliberately optimistic: the curve is flat at
1.0 over ``[0, 100]`` ticks.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from scipy.stats import norm, weibull_min

from edge_engine.core.errors import InvalidInputError

logger = logging.getLogger(__name__)

#: Minimum knockout count before a Weibull fit is attempted.
_MIN_WEIBULL_EVENTS = 10

#: Floor on S(t) inside the cumulative-hazard log.
_MIN_SURVIVAL = 1e-4


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SurvivalObservation:
    time: float
    event: bool
    covariates: Dict = field(default_factory=dict)


@dataclass
class KaplanMeierCurve:
    """Step function of survival probability; index 0 is always ``t = 0``."""

    times: List[float]
    survival: List[float]
    stderr: List[float]
    at_risk: List[int]
    events: List[int]

    def to_dict(self) -> dict:
        return {
            "times": list(self.times),
            "survival": [round(s, 6) for s in self.survival],
            "stderr": [round(s, 6) for s in self.stderr],
            "at_risk": list(self.at_risk),
            "events": list(self.events),
        }


@dataclass(frozen=True)
class SurvivalEstimate:
    time: float
    survival: float
    lower: float
    upper: float
    stderr: float


@dataclass(frozen=True)
class SurvivalForecast:
    current_survival: float
    future_survival: float
    conditional_survival: float
    current_ticks: float
    target_ticks: float


@dataclass(frozen=True)
class WeibullFit:
    shape: float
    scale: float
    fitted: bool


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class SurvivalAnalyzer:
    """Accumulates knockout/censoring observations and answers survival queries."""

    def __init__(self):
        self.observations: List[SurvivalObservation] = []

    def add_observation(self, time: float, event: bool, covariates: Optional[Dict] = None) -> None:
        """
        Record one trade's holding time.

        Args:
            time: Ticks held before the knockout or the early close.
            event: ``True`` for a knockout, ``False`` for a censored close.
            covariates: Free-form context (asset, regime, volatility ...).

        Raises:
            InvalidInputError: If ``time`` is negative or not finite.
        """
        try:
            t = float(time)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"survival time must be numeric, got {time!r}") from exc
        if not math.isfinite(t) or t < 0:
            raise InvalidInputError(f"survival time must be a finite number >= 0, got {time!r}")
        self.observations.append(SurvivalObservation(t, bool(event), dict(covariates or {})))

    def prune(self, max_observations: int = 1000) -> None:
        """Keep only the most recent ``max_observations``."""
        if len(self.observations) > max_observations:
            dropped = len(self.observations) - max_observations
            self.observations = self.observations[-max_observations:]
            logger.debug("Pruned %d survival observations", dropped)

    # ------------------------------------------------------------------
    # Kaplan–Meier
    # ------------------------------------------------------------------

    def kaplan_meier(self) -> KaplanMeierCurve:
        """
        Product-limit estimate of ``S(t)``.

        At each distinct time ``t_i`` with ``d_i`` knockouts among ``n_i``
        positions still at risk::

            S(t_i)        = S(t_{i-1}) · (n_i − d_i) / n_i
            Var[S(t_i)]   = S(t_i)² · Σ_{j ≤ i} d_j / (n_j · (n_j − d_j))

        Only times with at least one knockout add a step; censored
        observations just leave the risk set.  Steps where every at-risk
        position is knocked out (``n = d``) contribute no Greenwood term.
        """
        if not self.observations:
            return KaplanMeierCurve(
                times=[0.0, 100.0],
                survival=[1.0, 1.0],
                stderr=[0.0, 0.0],
                at_risk=[0, 0],
                events=[0, 0],
            )

        times = np.array([o.time for o in self.observations])
        events = np.array([o.event for o in self.observations], dtype=bool)

        n_at_risk = int(times.size)
        survival = 1.0
        greenwood = 0.0
        curve = KaplanMeierCurve(
            times=[0.0], survival=[1.0], stderr=[0.0], at_risk=[n_at_risk], events=[0]
        )

        for t in np.unique(times):
            at_t = times == t
            d = int(np.count_nonzero(events & at_t))
            removed = int(np.count_nonzero(at_t))
            if d > 0:
                survival *= (n_at_risk - d) / n_at_risk
                if n_at_risk > d:
                    greenwood += d / (n_at_risk * (n_at_risk - d))
                curve.times.append(float(t))
                curve.survival.append(survival)
                curve.stderr.append(survival * math.sqrt(greenwood))
                curve.at_risk.append(n_at_risk)
                curve.events.append(d)
            n_at_risk -= removed

        return curve

    def survival_probability(self, time: float, confidence: float = 0.95) -> SurvivalEstimate:
        """Step-function lookup of ``S(time)`` with a normal-approximation CI."""
        curve = self.kaplan_meier()
        idx = 0
        for i, t in enumerate(curve.times):
            if t <= time:
                idx = i
            else:
                break

        s = curve.survival[idx]
        se = curve.stderr[idx]
        z = float(norm.ppf(0.5 + confidence / 2.0))
        return SurvivalEstimate(
            time=curve.times[idx],
            survival=s,
            lower=max(0.0, s - z * se),
            upper=min(1.0, s + z * se),
            stderr=se,
        )

    # ------------------------------------------------------------------
    # Hazard
    # ------------------------------------------------------------------

    def hazard_rate(self, time: float, window: float = 5) -> float:
        """Knockouts per observation per tick in ``[time − w/2, time + w/2)``."""
        lo, hi = time - window / 2.0, time + window / 2.0
        in_window = [o for o in self.observations if lo <= o.time < hi]
        if not in_window:
            return 0.0
        events = sum(1 for o in in_window if o.event)
        return events / len(in_window) / window

    def cumulative_hazard(self, time: float) -> float:
        """``H(t) = −log S(t)``, with ``S`` floored at 1e-4."""
        s = self.survival_probability(time).survival
        return -math.log(max(_MIN_SURVIVAL, s))

    def predict_survival(self, current_ticks: float, next_ticks: float = 10) -> SurvivalForecast:
        """Probability of surviving ``next_ticks`` more, given ``current_ticks`` survived."""
        now = self.survival_probability(current_ticks).survival
        later = self.survival_probability(current_ticks + next_ticks).survival
        conditional = later / now if now > 0 else 0.0
        return SurvivalForecast(
            current_survival=now,
            future_survival=later,
            conditional_survival=min(1.0, max(0.0, conditional)),
            current_ticks=current_ticks,
            target_ticks=current_ticks + next_ticks,
        )

    def median_survival_time(self) -> float:
        """First curve time with ``S(t) < 0.5``; the last curve time otherwise."""
        curve = self.kaplan_meier()
        for t, s in zip(curve.times, curve.survival):
            if s < 0.5:
                return t
        return curve.times[-1]

    # ------------------------------------------------------------------
    # Weibull
    # ------------------------------------------------------------------

    def fit_weibull(self) -> WeibullFit:
        """
        Maximum-likelihood Weibull fit to knockout times (location fixed at 0).

        Needs at least 10 knockouts; otherwise returns the unfitted
        ``WeibullFit(1, 1, False)``.  Times below one tick are treated as
        one tick.  The shape is clipped to ``[0.5, 5]`` and the scale
        floored at 1.
        """
        knockouts = np.array([o.time for o in self.observations if o.event], dtype=float)
        if knockouts.size < _MIN_WEIBULL_EVENTS:
            return WeibullFit(shape=1.0, scale=1.0, fitted=False)

        shape, _, scale = weibull_min.fit(np.maximum(knockouts, 1.0), floc=0)
        if not (math.isfinite(shape) and math.isfinite(scale)):
            logger.warning("Weibull fit did not converge on %d knockouts", knockouts.size)
            return WeibullFit(shape=1.0, scale=1.0, fitted=False)

        return WeibullFit(
            shape=float(min(5.0, max(0.5, shape))),
            scale=float(max(1.0, scale)),
            fitted=True,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def metrics(self) -> Optional[dict]:
        if not self.observations:
            return None

        curve = self.kaplan_meier()
        weibull = self.fit_weibull()
        events = sum(1 for o in self.observations if o.event)
        return {
            "total_observations": len(self.observations),
            "events": events,
            "censored": len(self.observations) - events,
            "median_survival_time": self.median_survival_time(),
            "weibull_shape": weibull.shape,
            "weibull_scale": weibull.scale,
            "weibull_fitted": weibull.fitted,
            "survival_curve": {"times": curve.times, "probabilities": curve.survival},
        }
