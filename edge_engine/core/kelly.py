"""Kelly criterion sizing for accumulator payouts.

All functions here are **pure**: no I/O, no logging.
Import from this module; never reimplement Kelly locally in services.

An accumulator contract does not pay fixed odds.  It compounds the stake by
``(1 + growth_rate)`` per surviving tick and is knocked out (stake lost) when
the price leaves its barrier.  The payout ratio therefore depends on how many
ticks the position is held, which :func:`estimate_payout_ratio` estimates
from an expected exit tick count.

Design decisions
----------------
* **Fractional Kelly** is applied as a *multiplier* (default 0.35 of full
  Kelly) rather than a divisor.  Per-regime Kelly fractions in
  :mod:`edge_engine.core.regimes` are expressed the same way, so the engine
  can hand a regime's ``kelly_fraction`` straight to :func:`stake_size`.
* **Degenerate inputs return zero**, they do not raise.  A win probability of
  exactly 0 or 1, or a non-positive payout, simply has no Kelly bet.  This
  differs from the raising convention elsewhere because the Bayesian
  estimator legitimately produces probabilities at the boundary.
* **Stakes are clamped then rounded** to cents.  The minimum stake is applied
  even when Kelly is zero; callers that must not trade on zero Kelly check
  :func:`validate_trade` first.

Run tests with::

    pytest tests/test_kelly.py -v
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default fraction of full Kelly actually staked.
DEFAULT_KELLY_MULTIPLIER: Final[float] = 0.35

#: Exchange minimum stake for accumulator contracts.
DEFAULT_MIN_STAKE: Final[float] = 0.35

#: Hard ceiling on any single stake, irrespective of edge.
DEFAULT_MAX_STAKE: Final[float] = 20.0

#: Kelly band that :func:`optimal_growth_rate` steers into.  Below the band
#: the edge is too thin to bother; above it the growth rate is needlessly
#: conservative for the available edge.
TARGET_KELLY_LOW: Final[float] = 0.05
TARGET_KELLY_HIGH: Final[float] = 0.10

_BISECTION_STEPS: Final[int] = 20


# ---------------------------------------------------------------------------
# Standard Kelly
# ---------------------------------------------------------------------------


def kelly_fraction(win_prob: float, payout_ratio: float) -> float:
    """Full Kelly fraction for a binary bet.

    Solves ``max_f E[log(1 + f·X)]`` with ``X = b`` on a win and ``-1`` on a
    loss::

        f*  =  (b · p − q) / b                                   (1)

    Args:
        win_prob: Probability of winning, in ``(0, 1)``.
        payout_ratio: Profit per unit staked on a win (``b``).

    Returns:
        Full Kelly fraction in ``[0, 1)``.  Returns 0.0 when ``win_prob`` is
        outside ``(0, 1)``, ``payout_ratio <= 0``, or the edge is negative.

    Examples::

        kelly_fraction(0.6, 1.0)   →  0.2
        kelly_fraction(0.4, 1.0)   →  0.0   (negative edge)
        kelly_fraction(1.0, 1.0)   →  0.0   (degenerate probability)
    """
    if not (0.0 < win_prob < 1.0):
        return 0.0
    if payout_ratio <= 0.0:
        return 0.0

    loss_prob = 1.0 - win_prob
    full_kelly = (payout_ratio * win_prob - loss_prob) / payout_ratio
    return max(0.0, full_kelly)


def estimate_payout_ratio(growth_rate: float, estimated_ticks: float = 10) -> float:
    """Payout ratio of an accumulator held for ``estimated_ticks``.

    ``(1 + growth_rate) ** estimated_ticks − 1``.

    Examples::

        estimate_payout_ratio(0.03, 10)  →  0.3439...
        estimate_payout_ratio(0.0, 10)   →  0.0
    """
    return math.pow(1.0 + growth_rate, estimated_ticks) - 1.0


def expected_value(win_prob: float, payout_ratio: float, stake: float) -> float:
    """Expected profit of a single bet: ``p·stake·b − q·stake``."""
    loss_prob = 1.0 - win_prob
    return win_prob * stake * payout_ratio - loss_prob * stake


# ---------------------------------------------------------------------------
# Stake sizing
# ---------------------------------------------------------------------------


def stake_size(
    win_prob: float,
    payout_ratio: float,
    balance: float,
    *,
    kelly_multiplier: float = DEFAULT_KELLY_MULTIPLIER,
    min_stake: float = DEFAULT_MIN_STAKE,
    max_stake: float = DEFAULT_MAX_STAKE,
) -> float:
    """Fractional Kelly stake in currency units.

    ``balance × kelly_fraction × kelly_multiplier``, clamped to
    ``[min_stake, max_stake]`` and rounded to cents.

    Examples::

        stake_size(0.6, 1.0, 100.0)                         →  7.0
        stake_size(0.6, 1.0, 100.0, kelly_multiplier=1.0)   →  20.0
        stake_size(0.4, 1.0, 100.0)                         →  0.35  (floor)
    """
    fractional = kelly_fraction(win_prob, payout_ratio) * kelly_multiplier
    stake = balance * fractional
    stake = max(min_stake, stake)
    stake = min(max_stake, stake)
    return round(stake, 2)


def optimal_growth_rate(
    win_prob: float,
    target_ticks: float = 10,
    min_growth: float = 0.01,
    max_growth: float = 0.08,
) -> float:
    """Growth rate whose Kelly fraction lands in the target band.

    Bisects ``[min_growth, max_growth]`` for up to 20 steps.  A Kelly above
    :data:`TARGET_KELLY_HIGH` moves the upper bound down; a Kelly below
    :data:`TARGET_KELLY_LOW` moves the lower bound up; a Kelly inside the
    band stops the search.  Returns the midpoint that produced the largest
    Kelly fraction seen, or ``min_growth`` when no midpoint had positive
    Kelly.
    """
    low, high = min_growth, max_growth
    best_growth = min_growth
    best_kelly = 0.0

    for _ in range(_BISECTION_STEPS):
        mid = (low + high) / 2.0
        kelly = kelly_fraction(win_prob, estimate_payout_ratio(mid, target_ticks))

        if kelly > best_kelly:
            best_kelly = kelly
            best_growth = mid

        if kelly > TARGET_KELLY_HIGH:
            high = mid
        elif kelly < TARGET_KELLY_LOW:
            low = mid
        else:
            break

    return best_growth


# ---------------------------------------------------------------------------
# Trade validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KellyCheck:
    """Outcome of :func:`validate_trade`."""

    is_valid: bool
    kelly: float
    fractional_kelly: float
    expected_value: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "kelly": round(self.kelly, 6),
            "fractional_kelly": round(self.fractional_kelly, 6),
            "expected_value": round(self.expected_value, 6),
            "reason": self.reason,
        }


def validate_trade(
    win_prob: float,
    payout_ratio: float,
    kelly_multiplier: float = DEFAULT_KELLY_MULTIPLIER,
) -> KellyCheck:
    """Check that a bet has positive Kelly and positive per-unit EV."""
    kelly = kelly_fraction(win_prob, payout_ratio)
    ev = expected_value(win_prob, payout_ratio, 1.0)

    if kelly <= 0.0:
        reason = "Negative Kelly (negative expectation)"
    elif ev <= 0.0:
        reason = "Negative expected value"
    else:
        reason = "Valid trade"

    return KellyCheck(
        is_valid=kelly > 0.0 and ev > 0.0,
        kelly=kelly,
        fractional_kelly=kelly * kelly_multiplier,
        expected_value=ev,
        reason=reason,
    )
