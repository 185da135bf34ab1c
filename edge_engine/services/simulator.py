"""
Monte Carlo outcome simulation for accumulator trades.

A single trade is modelled in two stages:

    1. Win/loss: Bernoulli at ``win_probability``.  A loss forfeits the stake.
    2. Holding period on a win: log-normal around ``estimated_ticks``::

           ticks  = max(1, exp(log(estimated_ticks) + 0.5 · volatility · Z))
           profit = stake · ((1 + growth_rate) ** ticks − 1)

       with ``Z`` a standard normal from the Box–Muller transform.

Draws are vectorised with numpy and produced in fixed-size chunks from one
seeded :class:`numpy.random.Generator`.  Between chunks the simulator checks
an optional wall-clock ``timeout`` and a ``threading.Event`` cancel token,
raising :class:`~edge_engine.core.errors.SimulationCancelled` if either fires.

Usage::

    sim = OutcomeSimulator(SimulationConfig(seed=7))
    report = sim.simulate_trade_outcomes({"stake": 1.0, "win_probability": 0.6,
                                          "growth_rate": 0.03})
    print(report.expected_value, report.var95)
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from edge_engine.core import statistics as stats
from edge_engine.core.engine_config import SimulationConfig
from edge_engine.core.errors import InvalidInputError, SimulationCancelled
from edge_engine.schemas import TradeSimParams, validate_input

logger = logging.getLogger(__name__)

ParamsLike = Union[TradeSimParams, dict]

_PERCENTILES = (10, 25, 50, 75, 90)


def _percentile_table(values: np.ndarray) -> Dict[str, float]:
    return {f"p{p}": stats.percentile(values, p) for p in _PERCENTILES}


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass
class TradeRiskReport:
    """Distribution of a single trade's profit across simulated runs."""

    stake: float
    outcomes: np.ndarray = field(repr=False)
    expected_value: float = 0.0
    win_rate: float = 0.0
    wins: int = 0
    losses: int = 0
    var95: float = 0.0
    cvar95: float = 0.0
    probability_of_ruin: float = 0.0
    percentiles: Dict[str, float] = field(default_factory=dict)
    min: float = 0.0
    max: float = 0.0
    is_positive_ev: bool = False
    is_acceptable_risk: bool = False

    @property
    def n_sims(self) -> int:
        return int(self.outcomes.size)

    def to_dict(self) -> Dict:
        return {
            "n_sims": self.n_sims,
            "stake": self.stake,
            "expected_value": round(self.expected_value, 6),
            "win_rate": round(self.win_rate, 4),
            "wins": self.wins,
            "losses": self.losses,
            "var95": round(self.var95, 6),
            "cvar95": round(self.cvar95, 6),
            "probability_of_ruin": round(self.probability_of_ruin, 4),
            "percentiles": {k: round(v, 6) for k, v in self.percentiles.items()},
            "min": round(self.min, 6),
            "max": round(self.max, 6),
            "is_positive_ev": self.is_positive_ev,
            "is_acceptable_risk": self.is_acceptable_risk,
        }


@dataclass
class PortfolioRiskReport:
    """Distribution of session profit when a trade sequence is replayed."""

    initial_balance: float
    final_balances: np.ndarray = field(repr=False)
    max_drawdowns: np.ndarray = field(repr=False)
    expected_final_balance: float = 0.0
    expected_profit: float = 0.0
    probability_of_profit: float = 0.0
    var95: float = 0.0
    cvar95: float = 0.0
    avg_max_drawdown: float = 0.0
    worst_drawdown: float = 0.0
    percentiles: Dict[str, float] = field(default_factory=dict)

    @property
    def n_sims(self) -> int:
        return int(self.final_balances.size)

    def to_dict(self) -> Dict:
        return {
            "n_sims": self.n_sims,
            "initial_balance": self.initial_balance,
            "expected_final_balance": round(self.expected_final_balance, 6),
            "expected_profit": round(self.expected_profit, 6),
            "probability_of_profit": round(self.probability_of_profit, 4),
            "var95": round(self.var95, 6),
            "cvar95": round(self.cvar95, 6),
            "avg_max_drawdown": round(self.avg_max_drawdown, 6),
            "worst_drawdown": round(self.worst_drawdown, 6),
            "percentiles": {k: round(v, 6) for k, v in self.percentiles.items()},
        }


@dataclass(frozen=True)
class StakeTrial:
    stake: float
    expected_value: float
    win_rate: float
    var95: float
    score: float


@dataclass
class StakeOptimization:
    """Stakes ranked by ``expected_value / var95`` (best first)."""

    optimal_stake: float
    results: List[StakeTrial] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "optimal_stake": self.optimal_stake,
            "results": [
                {
                    "stake": round(r.stake, 6),
                    "expected_value": round(r.expected_value, 6),
                    "win_rate": round(r.win_rate, 4),
                    "var95": round(r.var95, 6),
                    "score": round(r.score, 6),
                }
                for r in self.results
            ],
        }


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------

class OutcomeSimulator:
    """
    Seeded Monte Carlo engine for single trades and trade sequences.

    One generator is shared across calls, so a seeded simulator produces a
    reproducible *sequence* of reports; construct a fresh simulator (or pass
    a fresh ``rng``) to reproduce a single report in isolation.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config or SimulationConfig()
        self._rng = rng if rng is not None else np.random.default_rng(self.config.seed)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _standard_normal(self, n: int) -> np.ndarray:
        """Box–Muller; ``1 − U`` keeps the log argument in ``(0, 1]``."""
        u1 = 1.0 - self._rng.random(n)
        u2 = self._rng.random(n)
        return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * math.pi * u2)

    def _draw(self, params: TradeSimParams, n: int) -> np.ndarray:
        wins = self._rng.random(n) < params.win_probability
        z = self._standard_normal(n)
        log_mean = math.log(params.estimated_ticks)
        ticks = np.maximum(1.0, np.exp(log_mean + params.volatility * 0.5 * z))
        profit = params.stake * (np.power(1.0 + params.growth_rate, ticks) - 1.0)
        return np.where(wins, profit, -params.stake)

    def _run_chunks(
        self,
        total: int,
        sample: Callable[[int], np.ndarray],
        timeout: Optional[float],
        cancel: Optional[threading.Event],
        label: str,
    ) -> np.ndarray:
        deadline = None if timeout is None else time.monotonic() + timeout
        chunk_size = self.config.chunk_size
        chunks: List[np.ndarray] = []
        done = 0

        while done < total:
            reason = None
            if cancel is not None and cancel.is_set():
                reason = "cancelled"
            elif deadline is not None and time.monotonic() >= deadline:
                reason = f"timed out after {timeout}s"
            if reason:
                logger.warning("%s simulation %s at %d/%d runs", label, reason, done, total)
                raise SimulationCancelled(
                    f"{label} simulation {reason} ({done}/{total} runs)",
                    completed=done,
                    requested=total,
                )

            n = min(chunk_size, total - done)
            chunks.append(sample(n))
            done += n

        return np.concatenate(chunks) if chunks else np.empty(0, dtype=float)

    # ------------------------------------------------------------------
    # Single trade
    # ------------------------------------------------------------------

    def simulate_trade(self, params: ParamsLike) -> float:
        """One simulated profit (``-stake`` on a loss)."""
        p = validate_input(TradeSimParams, params)
        return float(self._draw(p, 1)[0])

    def simulate_trade_outcomes(
        self,
        params: ParamsLike,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> TradeRiskReport:
        """Run ``num_simulations`` draws of one trade and summarise the risk."""
        p = validate_input(TradeSimParams, params)
        outcomes = self._run_chunks(
            self.config.num_simulations,
            lambda n: self._draw(p, n),
            timeout,
            cancel,
            "trade",
        )
        report = self._analyze_outcomes(outcomes, p.stake)
        logger.debug(
            "Simulated %d runs: stake=%.2f ev=%.4f var95=%.4f ruin=%.4f",
            report.n_sims, p.stake, report.expected_value, report.var95,
            report.probability_of_ruin,
        )
        return report

    def _analyze_outcomes(self, outcomes: np.ndarray, stake: float) -> TradeRiskReport:
        cfg = self.config
        n = outcomes.size
        wins = int(np.count_nonzero(outcomes > 0))
        ev = stats.mean(outcomes)
        var95 = stats.value_at_risk(outcomes, cfg.confidence_level)
        prob_ruin = float(np.count_nonzero(outcomes < -stake * cfg.ruin_fraction)) / n

        return TradeRiskReport(
            stake=stake,
            outcomes=outcomes,
            expected_value=ev,
            win_rate=wins / n,
            wins=wins,
            losses=n - wins,
            var95=var95,
            cvar95=stats.conditional_var(outcomes, cfg.confidence_level),
            probability_of_ruin=prob_ruin,
            percentiles=_percentile_table(outcomes),
            min=float(outcomes.min()),
            max=float(outcomes.max()),
            is_positive_ev=ev > 0,
            is_acceptable_risk=(
                var95 < stake * cfg.max_var_multiple
                and prob_ruin < cfg.max_ruin_probability
            ),
        )

    # ------------------------------------------------------------------
    # Trade sequences
    # ------------------------------------------------------------------

    def simulate_portfolio(
        self,
        trades: Sequence[ParamsLike],
        initial_balance: float,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PortfolioRiskReport:
        """
        Replay ``trades`` in order against a running balance, many times.

        A run stops before the first trade whose stake exceeds the balance at
        that point.  Drawdown is measured per run against the running peak,
        which starts at ``initial_balance``.

        Raises:
            InvalidInputError: If ``initial_balance`` is not a positive finite
                number or any trade fails validation.
        """
        if not (isinstance(initial_balance, (int, float)) and math.isfinite(initial_balance)
                and initial_balance > 0):
            raise InvalidInputError(
                f"initial_balance must be a positive finite number, got {initial_balance!r}"
            )
        validated = [validate_input(TradeSimParams, t) for t in trades]

        # Each sampled row is [final_balance, max_drawdown] for one run.
        def sample(n: int) -> np.ndarray:
            balance = np.full(n, float(initial_balance))
            peak = balance.copy()
            max_dd = np.zeros(n)
            active = np.ones(n, dtype=bool)
            for trade in validated:
                active &= balance >= trade.stake
                outcome = self._draw(trade, n)
                balance = np.where(active, balance + outcome, balance)
                peak = np.maximum(peak, balance)
                max_dd = np.maximum(max_dd, (peak - balance) / peak)
            return np.column_stack((balance, max_dd))

        runs = self._run_chunks(self.config.num_simulations, sample, timeout, cancel, "portfolio")
        final_balances = runs[:, 0]
        max_drawdowns = runs[:, 1]
        profits = final_balances - initial_balance
        conf = self.config.confidence_level

        return PortfolioRiskReport(
            initial_balance=float(initial_balance),
            final_balances=final_balances,
            max_drawdowns=max_drawdowns,
            expected_final_balance=stats.mean(final_balances),
            expected_profit=stats.mean(profits),
            probability_of_profit=float(np.count_nonzero(profits > 0)) / profits.size,
            var95=stats.value_at_risk(profits, conf),
            cvar95=stats.conditional_var(profits, conf),
            avg_max_drawdown=stats.mean(max_drawdowns),
            worst_drawdown=float(max_drawdowns.max()),
            percentiles=_percentile_table(profits),
        )

    # ------------------------------------------------------------------
    # Stake search
    # ------------------------------------------------------------------

    def optimize_stake_size(
        self,
        params: ParamsLike,
        min_stake: float,
        max_stake: float,
        steps: int = 10,
    ) -> StakeOptimization:
        """
        Grid-search ``steps + 1`` evenly spaced stakes in ``[min_stake, max_stake]``.

        Each stake is scored ``expected_value / var95`` (``var95`` replaced by
        1 when it is exactly zero).  Ties keep the smaller stake first.
        """
        if steps < 1:
            raise InvalidInputError(f"steps must be >= 1, got {steps!r}")
        if not (min_stake > 0 and math.isfinite(min_stake) and math.isfinite(max_stake)):
            raise InvalidInputError(
                f"stake bounds must be positive and finite, got [{min_stake!r}, {max_stake!r}]"
            )
        if min_stake > max_stake:
            raise InvalidInputError(f"min_stake ({min_stake!r}) exceeds max_stake ({max_stake!r})")

        base = validate_input(TradeSimParams, params)
        step = (max_stake - min_stake) / steps
        trials: List[StakeTrial] = []
        for i in range(steps + 1):
            stake = min_stake + i * step
            report = self.simulate_trade_outcomes(base.model_copy(update={"stake": stake}))
            trials.append(
                StakeTrial(
                    stake=stake,
                    expected_value=report.expected_value,
                    win_rate=report.win_rate,
                    var95=report.var95,
                    score=report.expected_value / (report.var95 or 1.0),
                )
            )

        ranked = sorted(trials, key=lambda t: t.score, reverse=True)
        return StakeOptimization(optimal_stake=ranked[0].stake, results=ranked)
