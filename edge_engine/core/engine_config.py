"""Engine configuration: every tunable constant in one place.

This module is the **registry** for thresholds, window sizes, and sizing
limits.  Services receive the relevant sub-config at construction; nowhere
else should a lookback period or a correlation threshold be hard-coded.

Architecture
------------
One frozen dataclass per component (:class:`BayesianConfig`,
:class:`RegimeConfig`, :class:`CorrelationConfig`, :class:`SimulationConfig`,
:class:`StakeConfig`), composed into :class:`EngineConfig`.  Defaults are the
values the engine was calibrated with.  :meth:`EngineConfig.from_env` layers
``EDGE_*`` environment variables (and a ``.env`` file) on top.

Typical usage::

    from edge_engine.core.engine_config import EngineConfig

    cfg = EngineConfig.from_env()
    engine = DecisionEngine(config=cfg)

    # Override a single constant for an experiment:
    from dataclasses import replace
    fast_cfg = replace(cfg, simulation=replace(cfg.simulation, num_simulations=1_000))
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Dict, Final, Optional

from dotenv import find_dotenv, load_dotenv

from edge_engine.core.errors import InvalidInputError

#: Prefix shared by every environment override.
ENV_PREFIX: Final[str] = "EDGE_"

#: Default evidence weights for the combined win probability.
DEFAULT_EVIDENCE_WEIGHTS: Final[Dict[str, float]] = {
    "asset": 0.3,
    "growth": 0.2,
    "pattern": 0.2,
    "regime": 0.3,
}


def _require_positive(name: str, value: float) -> None:
    if not (isinstance(value, (int, float)) and math.isfinite(value) and value > 0):
        raise InvalidInputError(f"{name} must be a positive finite number, got {value!r}.")


def _require_probability(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise InvalidInputError(f"{name} must be in [0, 1], got {value!r}.")


# ---------------------------------------------------------------------------
# Per-component configs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BayesianConfig:
    """Beta-Binomial estimator settings.

    Attributes:
        prior_alpha: Success pseudo-count for newly created keys.
        prior_beta: Failure pseudo-count for newly created keys.
        max_prior_keys: LRU capacity of each key space (asset, growth rate,
            pattern, regime).
        weights: Evidence weights for the combined win probability.  Must
            contain ``asset``, ``growth``, ``pattern`` and ``regime`` and sum
            to 1.
        default_pattern_prob: Pattern probability used when no pattern id
            is supplied.
    """

    prior_alpha: float = 1.0
    prior_beta: float = 1.0
    max_prior_keys: int = 1000
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_EVIDENCE_WEIGHTS))
    default_pattern_prob: float = 0.5

    def __post_init__(self) -> None:
        if self.prior_alpha < 1 or self.prior_beta < 1:
            raise InvalidInputError("prior_alpha and prior_beta must be >= 1.")
        _require_positive("max_prior_keys", self.max_prior_keys)
        if set(self.weights) != set(DEFAULT_EVIDENCE_WEIGHTS):
            raise InvalidInputError(
                f"weights must have exactly the keys {sorted(DEFAULT_EVIDENCE_WEIGHTS)}."
            )
        if not math.isclose(sum(self.weights.values()), 1.0, abs_tol=1e-9):
            raise InvalidInputError("weights must sum to 1.0.")
        _require_probability("default_pattern_prob", self.default_pattern_prob)


@dataclass(frozen=True)
class RegimeConfig:
    """Regime classifier thresholds.

    Attributes:
        lookback_period: Samples examined per classification; fewer samples
            than this yields ``UNKNOWN``.
        volatility_threshold: Change frequency above which the market is
            high-volatility.
        trend_threshold: Trend strength above which the market is trending.
        min_volatility_samples: Minimum window length for a volatility reading.
        min_trend_samples: Minimum window length for a trend reading.
        trend_moves: Number of trailing moves in the trend calculation.
        history_size: Ring-buffer capacity of the classification history.
        throttle_probability: Chance of trading while ``HIGH_VOL_RANGING``.
        seed: Seed for the throttle generator; ``None`` draws fresh entropy.
    """

    lookback_period: int = 50
    volatility_threshold: float = 0.6
    trend_threshold: float = 0.4
    min_volatility_samples: int = 10
    min_trend_samples: int = 20
    trend_moves: int = 14
    history_size: int = 1000
    throttle_probability: float = 0.2
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("lookback_period", "min_volatility_samples", "min_trend_samples",
                     "trend_moves", "history_size"):
            _require_positive(name, getattr(self, name))
        _require_probability("throttle_probability", self.throttle_probability)


@dataclass(frozen=True)
class CorrelationConfig:
    """Cross-instrument correlation settings.

    Attributes:
        correlation_window: Per-instrument tick window capacity.
        update_frequency: Matrix rebuild cadence, in ticks across all
            instruments.
        min_samples: Minimum common samples for a pair to get a coefficient.
        correlation_threshold: ``|corr|`` at or above which two instruments
            count as correlated.
        position_floor: Lowest fraction of the base stake a correlation
            adjustment may produce.
    """

    correlation_window: int = 500
    update_frequency: int = 100
    min_samples: int = 50
    correlation_threshold: float = 0.7
    position_floor: float = 0.5

    def __post_init__(self) -> None:
        for name in ("correlation_window", "update_frequency", "min_samples"):
            _require_positive(name, getattr(self, name))
        _require_probability("correlation_threshold", self.correlation_threshold)
        _require_probability("position_floor", self.position_floor)


@dataclass(frozen=True)
class SimulationConfig:
    """Monte Carlo settings.

    Attributes:
        num_simulations: Draws per simulation call.
        confidence_level: Confidence of the reported VaR/CVaR.
        seed: Seed for the simulator's generator; ``None`` draws fresh entropy.
        chunk_size: Draws generated per vectorised batch.  Timeout and
            cancellation are checked between batches.
        ruin_fraction: A single outcome below ``-ruin_fraction * stake``
            counts toward probability of ruin.
        max_ruin_probability: Ruin probability at or above which risk is
            unacceptable.
        max_var_multiple: VaR at or above ``max_var_multiple * stake`` is
            unacceptable.
    """

    num_simulations: int = 10_000
    confidence_level: float = 0.95
    seed: Optional[int] = None
    chunk_size: int = 2_000
    ruin_fraction: float = 0.5
    max_ruin_probability: float = 0.05
    max_var_multiple: float = 2.0

    def __post_init__(self) -> None:
        _require_positive("num_simulations", self.num_simulations)
        _require_positive("chunk_size", self.chunk_size)
        if not (0.0 < self.confidence_level < 1.0):
            raise InvalidInputError(
                f"confidence_level must be in (0, 1), got {self.confidence_level!r}."
            )


@dataclass(frozen=True)
class StakeConfig:
    """Kelly stake sizing limits.

    Attributes:
        kelly_fraction: Ceiling on the fraction of full Kelly staked; the
            regime's own fraction is used when it is lower.
        min_stake: Exchange minimum stake.
        max_stake: Hard per-trade ceiling.
        estimated_ticks: Default expected holding period, in ticks.
    """

    kelly_fraction: float = 0.35
    min_stake: float = 0.35
    max_stake: float = 20.0
    estimated_ticks: int = 10

    def __post_init__(self) -> None:
        _require_probability("kelly_fraction", self.kelly_fraction)
        _require_positive("min_stake", self.min_stake)
        _require_positive("estimated_ticks", self.estimated_ticks)
        if self.max_stake < self.min_stake:
            raise InvalidInputError(
                f"max_stake ({self.max_stake!r}) must be >= min_stake ({self.min_stake!r})."
            )


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration bundle for a :class:`~edge_engine.engine.DecisionEngine`."""

    bayesian: BayesianConfig = field(default_factory=BayesianConfig)
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    stake: StakeConfig = field(default_factory=StakeConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from ``EDGE_*`` environment variables.

        Loads the nearest ``.env`` file above the working directory first
        (existing variables win), then reads:

        ========================== =====================================
        ``EDGE_NUM_SIMULATIONS``   Monte Carlo draws per call
        ``EDGE_CONFIDENCE``        VaR/CVaR confidence level
        ``EDGE_SEED``              Seed for simulator and regime throttle
        ``EDGE_CORRELATION_WINDOW`` Per-instrument tick window
        ``EDGE_CORRELATION_THRESHOLD`` ``|corr|`` for "correlated"
        ``EDGE_UPDATE_FREQUENCY``  Ticks between matrix rebuilds
        ``EDGE_LOOKBACK_PERIOD``   Regime lookback samples
        ``EDGE_KELLY_FRACTION``    Default fractional Kelly
        ``EDGE_MIN_STAKE``         Minimum stake
        ``EDGE_MAX_STAKE``         Maximum stake
        ``EDGE_MAX_PRIOR_KEYS``    LRU capacity per prior key space
        ========================== =====================================

        Unset variables keep their dataclass defaults.

        Raises:
            InvalidInputError: If a variable does not parse as a number or
                produces an invalid config.
        """
        load_dotenv(find_dotenv(usecwd=True))

        base = cls()
        try:
            seed = _env_int("SEED", None)
            return cls(
                bayesian=BayesianConfig(
                    max_prior_keys=_env_int("MAX_PRIOR_KEYS", base.bayesian.max_prior_keys),
                ),
                regime=RegimeConfig(
                    lookback_period=_env_int("LOOKBACK_PERIOD", base.regime.lookback_period),
                    seed=seed,
                ),
                correlation=CorrelationConfig(
                    correlation_window=_env_int(
                        "CORRELATION_WINDOW", base.correlation.correlation_window
                    ),
                    update_frequency=_env_int(
                        "UPDATE_FREQUENCY", base.correlation.update_frequency
                    ),
                    correlation_threshold=_env_float(
                        "CORRELATION_THRESHOLD", base.correlation.correlation_threshold
                    ),
                ),
                simulation=SimulationConfig(
                    num_simulations=_env_int(
                        "NUM_SIMULATIONS", base.simulation.num_simulations
                    ),
                    confidence_level=_env_float(
                        "CONFIDENCE", base.simulation.confidence_level
                    ),
                    seed=seed,
                ),
                stake=StakeConfig(
                    kelly_fraction=_env_float("KELLY_FRACTION", base.stake.kelly_fraction),
                    min_stake=_env_float("MIN_STAKE", base.stake.min_stake),
                    max_stake=_env_float("MAX_STAKE", base.stake.max_stake),
                ),
            )
        except ValueError as exc:
            if isinstance(exc, InvalidInputError):
                raise
            raise InvalidInputError(f"Invalid EDGE_* environment override: {exc}") from exc


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)
