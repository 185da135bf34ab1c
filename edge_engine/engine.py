"""
Decision engine: regime → probability → stake → risk check → verdict.

Wires the core services into the per-trade flow a trading driver needs:

    on_tick()        feed ticks (correlation windows double as regime windows)
    evaluate_trade() decide TRADE or PASS for a candidate accumulator
    settle_trade()   feed the result back into the priors, ledger and
                     survival data

Designed to PASS by default.  A candidate only gets a TRADE verdict when the
regime allows trading, Kelly is positive, and the Monte Carlo check shows
positive expected value with acceptable tail risk at the correlation-adjusted
stake.

One engine per trading session.  The engine is single-threaded and holds no
locks; run concurrent sessions on separate instances.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from edge_engine.core import kelly
from edge_engine.core.engine_config import EngineConfig
from edge_engine.core.errors import InvalidInputError
from edge_engine.core.regimes import Regime
from edge_engine.schemas import TradeEvent, validate_input
from edge_engine.services.bayesian import BayesianEstimator
from edge_engine.services.correlation import CorrelationTracker
from edge_engine.services.performance import PerformanceLedger, TradeRecord
from edge_engine.services.regime_classifier import RegimeClassifier, RegimeDetection
from edge_engine.services.simulator import OutcomeSimulator, TradeRiskReport
from edge_engine.services.survival import SurvivalAnalyzer

logger = logging.getLogger(__name__)

TRADE = "TRADE"
PASS = "PASS"


@dataclass
class TradeDecision:
    """Complete evaluation of one candidate trade."""

    verdict: str
    pass_reason: Optional[str]
    asset: str
    regime: Regime
    growth_rate: float
    win_probability: float
    confidence: float
    payout_ratio: float = 0.0
    kelly_full: float = 0.0
    kelly_fractional: float = 0.0
    stake: float = 0.0
    adjusted_stake: float = 0.0
    risk: Optional[TradeRiskReport] = None
    breakdown: Dict[str, float] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    @property
    def should_trade(self) -> bool:
        return self.verdict == TRADE

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict,
            "pass_reason": self.pass_reason,
            "asset": self.asset,
            "regime": self.regime.value,
            "growth_rate": self.growth_rate,
            "win_probability": round(self.win_probability, 6),
            "confidence": round(self.confidence, 6),
            "payout_ratio": round(self.payout_ratio, 6),
            "kelly_full": round(self.kelly_full, 6),
            "kelly_fractional": round(self.kelly_fractional, 6),
            "stake": self.stake,
            "adjusted_stake": self.adjusted_stake,
            "risk": self.risk.to_dict() if self.risk else None,
            "breakdown": {k: round(v, 6) for k, v in self.breakdown.items()},
            "notes": list(self.notes),
        }


class DecisionEngine:
    """
    Owns one instance of each service for a single trading session.

    Services are built from ``config`` unless passed in explicitly, which is
    how tests substitute seeded or mocked collaborators.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        initial_balance: float = 0.0,
        bayesian: Optional[BayesianEstimator] = None,
        regime_classifier: Optional[RegimeClassifier] = None,
        correlation: Optional[CorrelationTracker] = None,
        simulator: Optional[OutcomeSimulator] = None,
        ledger: Optional[PerformanceLedger] = None,
        survival: Optional[SurvivalAnalyzer] = None,
    ):
        self.config = config or EngineConfig()
        self.bayesian = bayesian or BayesianEstimator(self.config.bayesian)
        self.regime_classifier = regime_classifier or RegimeClassifier(self.config.regime)
        self.correlation = correlation or CorrelationTracker(self.config.correlation)
        self.simulator = simulator or OutcomeSimulator(self.config.simulation)
        self.ledger = ledger or PerformanceLedger(initial_balance)
        self.survival = survival or SurvivalAnalyzer()

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def on_tick(self, asset: str, value: float) -> None:
        self.correlation.add_tick(asset, value)

    def detect_regime(self, asset: str) -> RegimeDetection:
        return self.regime_classifier.detect_regime(self.correlation.window(asset), asset)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_trade(
        self,
        asset: str,
        growth_rate: float,
        balance: float,
        pattern_id=None,
        active_assets: Iterable[str] = (),
        estimated_ticks: Optional[float] = None,
        volatility: float = 0.5,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> TradeDecision:
        """
        Decide whether to open an accumulator on ``asset`` at ``growth_rate``.

        Steps:
            1. Classify the asset's current regime.
            2. Blend a Bayesian win probability for asset, growth rate,
               pattern and regime.
            3. Honour the regime throttle.
            4. Size with fractional Kelly, using the regime's Kelly fraction
               capped at ``config.stake.kelly_fraction``.
            5. Shrink the stake for correlated ``active_assets``.
            6. PASS when the floored stake exceeds ``balance``.
            7. Monte Carlo the adjusted stake; require positive EV and
               acceptable tail risk.

        Raises:
            InvalidInputError: If ``balance`` is not a positive finite number
                or ``growth_rate`` is not finite.
            SimulationCancelled: If the risk simulation times out or is
                cancelled.
        """
        if not (isinstance(balance, (int, float)) and math.isfinite(balance) and balance > 0):
            raise InvalidInputError(f"balance must be a positive finite number, got {balance!r}")
        stake_cfg = self.config.stake
        ticks = stake_cfg.estimated_ticks if estimated_ticks is None else estimated_ticks
        active = [a for a in active_assets if a != asset]

        detection = self.detect_regime(asset)
        estimate = self.bayesian.estimate_win_probability(
            asset, growth_rate, pattern_id=pattern_id, regime=detection.regime
        )
        p = estimate.combined
        decision = TradeDecision(
            verdict=PASS,
            pass_reason=None,
            asset=asset,
            regime=detection.regime,
            growth_rate=growth_rate,
            win_probability=p,
            confidence=estimate.confidence,
            breakdown=dict(estimate.breakdown),
        )
        decision.notes.append(f"Regime {detection.regime.value}: {detection.params.description}")

        if not self.regime_classifier.should_trade_in_regime():
            return self._pass(decision, f"Regime throttle ({detection.regime.value})")

        payout = kelly.estimate_payout_ratio(growth_rate, ticks)
        multiplier = min(detection.params.kelly_fraction, stake_cfg.kelly_fraction)
        check = kelly.validate_trade(p, payout, multiplier)
        decision.payout_ratio = payout
        decision.kelly_full = check.kelly
        decision.kelly_fractional = check.fractional_kelly
        if not check.is_valid:
            return self._pass(decision, check.reason)

        stake = kelly.stake_size(
            p, payout, balance,
            kelly_multiplier=multiplier,
            min_stake=stake_cfg.min_stake,
            max_stake=stake_cfg.max_stake,
        )
        adjusted = self.correlation.adjust_position_for_correlation(stake, asset, active)
        adjusted = round(max(stake_cfg.min_stake, adjusted), 2)
        decision.stake = stake
        decision.adjusted_stake = adjusted
        if adjusted < stake:
            decision.notes.append(
                f"Stake cut {stake:.2f} -> {adjusted:.2f} for correlated exposure"
            )
        if adjusted > balance:
            return self._pass(decision, f"Stake {adjusted:.2f} exceeds balance {balance:.2f}")

        risk = self.simulator.simulate_trade_outcomes(
            {
                "stake": adjusted,
                "win_probability": p,
                "growth_rate": growth_rate,
                "estimated_ticks": ticks,
                "volatility": volatility,
            },
            timeout=timeout,
            cancel=cancel,
        )
        decision.risk = risk
        if not risk.is_positive_ev:
            return self._pass(decision, f"Negative simulated EV ({risk.expected_value:.4f})")
        if not risk.is_acceptable_risk:
            return self._pass(
                decision,
                f"Unacceptable risk (VaR {risk.var95:.2f}, ruin {risk.probability_of_ruin:.1%})",
            )

        decision.verdict = TRADE
        logger.info(
            "TRADE %s stake=%.2f p=%.3f regime=%s ev=%.4f",
            asset, adjusted, p, detection.regime.value, risk.expected_value,
        )
        return decision

    @staticmethod
    def _pass(decision: TradeDecision, reason: str) -> TradeDecision:
        decision.verdict = PASS
        decision.pass_reason = reason
        logger.info("PASS %s: %s", decision.asset, reason)
        return decision

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle_trade(self, event: Union[TradeEvent, dict]) -> TradeRecord:
        """
        Feed a resolved trade back into every learning component.

        Updates the asset and regime priors, and the growth-rate and pattern
        priors when the event carries them; records the trade in the ledger;
        adds a survival observation (a loss is a knockout, a win a censored
        close).
        """
        ev = validate_input(TradeEvent, event)
        won = ev.won

        self.bayesian.update_asset(ev.asset, won)
        self.bayesian.update_regime(ev.regime, won)
        if ev.growth_rate is not None:
            self.bayesian.update_growth_rate(ev.growth_rate, won)
        if ev.pattern is not None:
            self.bayesian.update_pattern(ev.pattern, won)

        record = self.ledger.record_trade(ev)

        self.survival.add_observation(
            ev.duration, event=not won, covariates={"asset": ev.asset, "regime": ev.regime}
        )
        self.survival.prune()
        return record

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def status_report(self) -> dict:
        return {
            "performance": self.ledger.summary(),
            "bayesian": self.bayesian.statistics(),
            "regime": self.regime_classifier.regime_statistics(),
            "correlation": self.correlation.correlation_statistics(),
            "survival": self.survival.metrics(),
        }
