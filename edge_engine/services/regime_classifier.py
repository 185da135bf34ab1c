"""
Market-regime classification from a tick window.

Two readings are taken over the trailing ``lookback_period`` samples:

    volatility      fraction of adjacent samples whose value changed
    trend strength  |avg up-move − avg down-move| / (avg up + avg down)
                    over the last 14 moves (a directional-index reading)

Volatility above 0.6 is "high"; trend strength above 0.4 is "trending".
The four combinations map onto :class:`~edge_engine.core.regimes.Regime`,
each carrying a fixed growth rate, survival threshold and Kelly fraction.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence

import numpy as np

from edge_engine.core.engine_config import RegimeConfig
from edge_engine.core.regimes import REGIME_PARAMS, Regime, RegimeParams, params_for
from edge_engine.core.statistics import mean

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegimeObservation:
    """One successful classification, as kept in the history buffer."""

    timestamp: datetime
    regime: Regime
    volatility: float
    trend_strength: float
    asset: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "regime": self.regime.value,
            "volatility": round(self.volatility, 6),
            "trend_strength": round(self.trend_strength, 6),
            "asset": self.asset,
        }


@dataclass
class RegimeDetection:
    """Result of classifying a single window."""

    regime: Regime
    volatility: float
    trend_strength: float
    params: RegimeParams

    @property
    def is_known(self) -> bool:
        return self.regime is not Regime.UNKNOWN

    def to_dict(self) -> dict:
        return {
            "regime": self.regime.value,
            "volatility": round(self.volatility, 6),
            "trend_strength": round(self.trend_strength, 6),
            "params": self.params.to_dict(),
        }


@dataclass
class MultiTimeframeAnalysis:
    """Consensus across several timeframes of the same instrument."""

    by_timeframe: Dict[str, RegimeDetection] = field(default_factory=dict)
    consensus: Regime = Regime.UNKNOWN
    alignment: float = 0.0
    params: RegimeParams = REGIME_PARAMS[Regime.UNKNOWN]
    should_trade: bool = False

    def to_dict(self) -> dict:
        return {
            "by_timeframe": {k: v.to_dict() for k, v in self.by_timeframe.items()},
            "consensus": self.consensus.value,
            "alignment": round(self.alignment, 4),
            "params": self.params.to_dict(),
            "should_trade": self.should_trade,
        }


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------

class RegimeClassifier:
    """
    Classifies tick windows and remembers the current regime.

    The ``HIGH_VOL_RANGING`` trade throttle draws from a
    :class:`numpy.random.Generator` seeded from ``config.seed``, so a seeded
    classifier makes the same throttle decisions on every run.
    """

    def __init__(
        self,
        config: Optional[RegimeConfig] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or RegimeConfig()
        self._rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self._clock = clock
        self.current_regime: Regime = Regime.UNKNOWN
        self._history: Deque[RegimeObservation] = deque(maxlen=self.config.history_size)

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def _recent(self, window: Optional[Sequence[float]]) -> np.ndarray:
        if window is None:
            return np.empty(0, dtype=float)
        arr = np.asarray(list(window), dtype=float)
        return arr[-self.config.lookback_period:]

    def calculate_volatility(self, window: Optional[Sequence[float]]) -> float:
        """Fraction of tick-to-tick changes in the lookback; 0 below 10 samples."""
        if window is None or len(window) < self.config.min_volatility_samples:
            return 0.0
        recent = self._recent(window)
        if recent.size < 2:
            return 0.0
        changes = int(np.count_nonzero(np.diff(recent)))
        return changes / (recent.size - 1)

    def calculate_trend_strength(self, window: Optional[Sequence[float]]) -> float:
        """Directional-index trend strength in ``[0, 1]``; 0 below 20 samples."""
        if window is None or len(window) < self.config.min_trend_samples:
            return 0.0
        moves = np.diff(self._recent(window))[-self.config.trend_moves:]
        avg_up = mean(np.where(moves > 0, moves, 0.0))
        avg_down = mean(np.where(moves < 0, -moves, 0.0))
        total = avg_up + avg_down
        if total == 0:
            return 0.0
        return abs(avg_up - avg_down) / total

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _classify(self, window: Optional[Sequence[float]]) -> RegimeDetection:
        if window is None or len(window) < self.config.lookback_period:
            return RegimeDetection(Regime.UNKNOWN, 0.0, 0.0, REGIME_PARAMS[Regime.UNKNOWN])

        volatility = self.calculate_volatility(window)
        trend_strength = self.calculate_trend_strength(window)
        regime = Regime.classify(
            high_volatility=volatility > self.config.volatility_threshold,
            trending=trend_strength > self.config.trend_threshold,
        )
        return RegimeDetection(regime, volatility, trend_strength, REGIME_PARAMS[regime])

    def detect_regime(self, window: Optional[Sequence[float]], asset: str = "UNKNOWN") -> RegimeDetection:
        """
        Classify ``window`` and make the result the current regime.

        Windows shorter than ``lookback_period`` yield ``UNKNOWN`` and are
        not recorded in the history.
        """
        detection = self._classify(window)
        previous = self.current_regime
        self.current_regime = detection.regime

        if detection.is_known:
            self._history.append(
                RegimeObservation(
                    timestamp=self._clock(),
                    regime=detection.regime,
                    volatility=detection.volatility,
                    trend_strength=detection.trend_strength,
                    asset=asset,
                )
            )

        if detection.regime is not previous:
            logger.info(
                "Regime change for %s: %s -> %s (vol=%.3f trend=%.3f)",
                asset, previous.value, detection.regime.value,
                detection.volatility, detection.trend_strength,
            )
        return detection

    def regime_params(self, regime=None) -> RegimeParams:
        """Parameters for ``regime``, or for the current regime if omitted."""
        return params_for(self.current_regime if regime is None else regime)

    def should_trade_in_regime(self) -> bool:
        """False-biased throttle: ``HIGH_VOL_RANGING`` trades only 20% of the time."""
        if self.current_regime is Regime.HIGH_VOL_RANGING:
            return bool(self._rng.random() < self.config.throttle_probability)
        return True

    def adjusted_thresholds(self) -> dict:
        params = self.regime_params()
        return {
            "growth_rate": params.growth_rate,
            "survival_threshold": params.survival_threshold,
            "kelly_fraction": params.kelly_fraction,
            "should_trade": self.should_trade_in_regime(),
        }

    def analyze_multi_timeframe(self, windows: Mapping[str, Sequence[float]]) -> MultiTimeframeAnalysis:
        """
        Plurality vote of the regime across several timeframes.

        Timeframes are classified independently without touching the current
        regime or the history.  Ties go to the regime seen first.  Trading is
        advised only when at least half the timeframes agree.
        """
        if not windows:
            return MultiTimeframeAnalysis()

        by_timeframe: Dict[str, RegimeDetection] = {}
        votes: Counter = Counter()
        for timeframe, window in windows.items():
            detection = self._classify(window)
            by_timeframe[str(timeframe)] = detection
            votes[detection.regime] += 1

        # Counter preserves insertion order, so max() keeps the first-seen regime on ties.
        consensus = max(votes, key=lambda r: votes[r])
        alignment = votes[consensus] / len(windows)
        return MultiTimeframeAnalysis(
            by_timeframe=by_timeframe,
            consensus=consensus,
            alignment=alignment,
            params=REGIME_PARAMS[consensus],
            should_trade=alignment >= 0.5,
        )

    # ------------------------------------------------------------------
    # History and reporting
    # ------------------------------------------------------------------

    @property
    def history(self) -> List[RegimeObservation]:
        return list(self._history)

    def regime_stability(self) -> int:
        """Trailing run length of the current regime in the history."""
        if len(self._history) < 2:
            return 0
        count = 1
        entries = list(self._history)
        for entry in reversed(entries[:-1]):
            if entry.regime is self.current_regime:
                count += 1
            else:
                break
        return count

    def regime_statistics(self) -> Optional[dict]:
        if not self._history:
            return None

        counts = Counter(entry.regime for entry in self._history)
        total = len(self._history)
        distribution = {
            regime.value: {
                "count": counts.get(regime, 0),
                "percentage": round(counts.get(regime, 0) / total * 100.0, 1),
            }
            for regime in Regime
        }
        return {
            "current_regime": self.current_regime.value,
            "stability": self.regime_stability(),
            "distribution": distribution,
            "total_observations": total,
            "params": self.regime_params().to_dict(),
        }
