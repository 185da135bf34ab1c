"""Market-regime labels and the fixed trading parameters bound to each.

A regime is a coarse description of recent tick behaviour along two axes:
volatility (how often consecutive values change) and trend strength (how
one-sided the moves are).  Each regime carries the accumulator growth rate,
minimum survival probability, and fractional Kelly appropriate to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Final

from edge_engine.core.errors import InvalidInputError


class Regime(str, Enum):
    LOW_VOL_TRENDING = "LOW_VOL_TRENDING"
    HIGH_VOL_TRENDING = "HIGH_VOL_TRENDING"
    LOW_VOL_RANGING = "LOW_VOL_RANGING"
    HIGH_VOL_RANGING = "HIGH_VOL_RANGING"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def classify(cls, high_volatility: bool, trending: bool) -> Regime:
        if high_volatility:
            return cls.HIGH_VOL_TRENDING if trending else cls.HIGH_VOL_RANGING
        return cls.LOW_VOL_TRENDING if trending else cls.LOW_VOL_RANGING


@dataclass(frozen=True)
class RegimeParams:
    """Trading parameters for a single regime.

    Attributes:
        growth_rate: Accumulator growth rate per tick.
        survival_threshold: Minimum per-tick survival probability required
            before entering.
        kelly_fraction: Fraction of full Kelly to stake.
        description: Human-readable label for logs and reports.
    """

    growth_rate: float
    survival_threshold: float
    kelly_fraction: float
    description: str

    def __post_init__(self):
        if self.growth_rate < 0:
            raise InvalidInputError(f"growth_rate must be non-negative, got {self.growth_rate}")
        if not (0.0 <= self.survival_threshold <= 1.0):
            raise InvalidInputError(
                f"survival_threshold must be in [0, 1], got {self.survival_threshold}"
            )
        if not (0.0 <= self.kelly_fraction <= 1.0):
            raise InvalidInputError(f"kelly_fraction must be in [0, 1], got {self.kelly_fraction}")

    def to_dict(self) -> dict:
        return {
            "growth_rate": self.growth_rate,
            "survival_threshold": self.survival_threshold,
            "kelly_fraction": self.kelly_fraction,
            "description": self.description,
        }


REGIME_PARAMS: Final[Dict[Regime, RegimeParams]] = {
    Regime.LOW_VOL_TRENDING: RegimeParams(0.05, 0.97, 0.30, "Low volatility with clear trend"),
    Regime.HIGH_VOL_TRENDING: RegimeParams(0.02, 0.995, 0.15, "High volatility with trend"),
    Regime.LOW_VOL_RANGING: RegimeParams(0.04, 0.98, 0.25, "Low volatility ranging market"),
    Regime.HIGH_VOL_RANGING: RegimeParams(0.01, 0.998, 0.10, "High volatility ranging market"),
    Regime.UNKNOWN: RegimeParams(0.03, 0.985, 0.20, "Insufficient data"),
}


def params_for(regime) -> RegimeParams:
    """Look up parameters by :class:`Regime` or its string name.

    Unrecognised names map to ``UNKNOWN``.
    """
    try:
        return REGIME_PARAMS[Regime(regime)]
    except ValueError:
        return REGIME_PARAMS[Regime.UNKNOWN]
