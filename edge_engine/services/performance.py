"""
Session performance ledger.

Keeps an append-only list of settled trades and incrementally updated
aggregates (counts, totals, streaks, peak balance, drawdown).  Every public
accessor returns plain Python values or dicts so the ledger can be logged,
serialised, or rendered without importing anything else from the engine.
"""

import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

import pandas as pd

from edge_engine.core import statistics as stats
from edge_engine.schemas import TradeEvent, validate_input

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _win_rate(wins: int, total: int) -> float:
    return wins / total if total > 0 else 0.0


def _bucket() -> Dict[str, float]:
    return {"trades": 0, "wins": 0, "losses": 0, "profit": 0.0}


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TradeRecord:
    """One settled trade.  Immutable once recorded."""

    id: int
    timestamp: datetime
    asset: str
    stake: float
    outcome: str
    profit: float
    duration: float
    regime: str
    pattern: Optional[str]
    balance_after: float
    growth_rate: Optional[float] = None
    survival_prob_at_entry: Optional[float] = None

    @property
    def won(self) -> bool:
        return self.outcome == "win"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass
class PerformanceMetrics:
    """Running aggregates, updated on every recorded trade."""

    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    peak_balance: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0
    current_drawdown: float = 0.0
    longest_win_streak: int = 0
    longest_loss_streak: int = 0
    current_streak: int = 0
    streak_type: Optional[str] = None


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class PerformanceLedger:
    """
    Append-only trade ledger with incremental risk metrics.

    Drawdown is measured from the running peak balance.  A trade that sets a
    new peak resets the current drawdown to zero; otherwise the drawdown and
    its maximum (absolute and as a fraction of the peak) are updated.
    """

    def __init__(self, initial_balance: float = 0.0, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self.trades: List[TradeRecord] = []
        self.metrics = PerformanceMetrics()
        self.session_start = clock()
        self.initial_balance = 0.0
        self.current_balance = 0.0
        if initial_balance:
            self.initialize(initial_balance)

    def initialize(self, balance: float) -> None:
        """Set the starting, current and peak balance."""
        self.initial_balance = float(balance)
        self.current_balance = float(balance)
        self.metrics.peak_balance = float(balance)
        logger.info("Performance ledger initialised with balance %.2f", balance)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_trade(self, trade: Union[TradeEvent, dict]) -> TradeRecord:
        """
        Append a settled trade and update every aggregate.

        Raises:
            InvalidInputError: If ``trade`` fails :class:`TradeEvent` validation.
        """
        event = validate_input(TradeEvent, trade)
        record = TradeRecord(
            id=len(self.trades) + 1,
            timestamp=event.timestamp or self._clock(),
            asset=event.asset,
            stake=event.stake,
            outcome=event.outcome,
            profit=event.profit,
            duration=event.duration,
            regime=event.regime,
            pattern=event.pattern,
            balance_after=self.current_balance + event.profit,
            growth_rate=event.growth_rate,
            survival_prob_at_entry=event.survival_prob_at_entry,
        )
        self.trades.append(record)
        self.current_balance = record.balance_after
        self._update_metrics(record)
        logger.debug(
            "Recorded trade #%d %s %s profit=%.2f balance=%.2f",
            record.id, record.asset, record.outcome, record.profit, record.balance_after,
        )
        return record

    def _update_metrics(self, trade: TradeRecord) -> None:
        m = self.metrics
        m.total_trades += 1

        if trade.won:
            m.wins += 1
            m.total_profit += trade.profit
        else:
            m.losses += 1
            m.total_loss += abs(trade.profit)

        if m.streak_type == trade.outcome:
            m.current_streak += 1
        else:
            m.current_streak = 1
            m.streak_type = trade.outcome
        if trade.won:
            m.longest_win_streak = max(m.longest_win_streak, m.current_streak)
        else:
            m.longest_loss_streak = max(m.longest_loss_streak, m.current_streak)

        if trade.balance_after > m.peak_balance:
            m.peak_balance = trade.balance_after
            m.current_drawdown = 0.0
        else:
            dd = m.peak_balance - trade.balance_after
            dd_pct = dd / m.peak_balance if m.peak_balance > 0 else 0.0
            m.current_drawdown = dd
            m.max_drawdown = max(m.max_drawdown, dd)
            m.max_drawdown_pct = max(m.max_drawdown_pct, dd_pct)

    # ------------------------------------------------------------------
    # Ratios
    # ------------------------------------------------------------------

    def win_rate(self) -> float:
        return _win_rate(self.metrics.wins, self.metrics.total_trades)

    def profit_factor(self) -> float:
        """Gross profit / gross loss; ``inf`` with no losses, ``1.0`` with neither."""
        m = self.metrics
        if m.total_loss == 0:
            return float("inf") if m.total_profit > 0 else 1.0
        return m.total_profit / m.total_loss

    def sharpe_ratio(self) -> float:
        """Per-trade Sharpe of ``profit / stake``; 0 with fewer than two trades."""
        if len(self.trades) < 2:
            return 0.0
        return stats.sharpe_ratio([t.profit / t.stake for t in self.trades])

    def average_win_loss(self) -> Dict[str, float]:
        wins = [t.profit for t in self.trades if t.won]
        losses = [abs(t.profit) for t in self.trades if not t.won]
        return {"avg_win": stats.mean(wins), "avg_loss": stats.mean(losses)}

    # ------------------------------------------------------------------
    # Breakdowns
    # ------------------------------------------------------------------

    def _breakdown(self, key: Callable[[TradeRecord], str]) -> Dict[str, dict]:
        out: Dict[str, dict] = {}
        for trade in self.trades:
            bucket = out.setdefault(key(trade), _bucket())
            bucket["trades"] += 1
            bucket["wins" if trade.won else "losses"] += 1
            bucket["profit"] += trade.profit
        for bucket in out.values():
            bucket["win_rate"] = _win_rate(bucket["wins"], bucket["trades"])
        return out

    def performance_by_asset(self) -> Dict[str, dict]:
        return self._breakdown(lambda t: t.asset)

    def performance_by_regime(self) -> Dict[str, dict]:
        return self._breakdown(lambda t: t.regime or "UNKNOWN")

    def performance_by_hour(self) -> Dict[int, dict]:
        """Hour-of-day buckets 0..23, all present even when empty."""
        by_hour = {hour: {"trades": 0, "wins": 0, "profit": 0.0} for hour in range(24)}
        for trade in self.trades:
            bucket = by_hour[trade.timestamp.hour]
            bucket["trades"] += 1
            if trade.won:
                bucket["wins"] += 1
            bucket["profit"] += trade.profit
        for bucket in by_hour.values():
            bucket["win_rate"] = _win_rate(bucket["wins"], bucket["trades"])
        return by_hour

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self) -> dict:
        m = self.metrics
        win_rate = self.win_rate()
        avg = self.average_win_loss()
        total_profit = self.current_balance - self.initial_balance
        now = self._clock()

        return {
            "overview": {
                "total_trades": m.total_trades,
                "wins": m.wins,
                "losses": m.losses,
                "win_rate": win_rate,
                "profit_factor": self.profit_factor(),
                "sharpe_ratio": self.sharpe_ratio(),
            },
            "financial": {
                "initial_balance": self.initial_balance,
                "current_balance": self.current_balance,
                "total_profit": total_profit,
                "total_profit_percent": (
                    total_profit / self.initial_balance * 100.0 if self.initial_balance else 0.0
                ),
                "avg_win": avg["avg_win"],
                "avg_loss": avg["avg_loss"],
                "expectancy": win_rate * avg["avg_win"] - (1.0 - win_rate) * avg["avg_loss"],
            },
            "risk": {
                "max_drawdown": m.max_drawdown,
                "max_drawdown_percent": m.max_drawdown_pct * 100.0,
                "current_drawdown": m.current_drawdown,
                "longest_win_streak": m.longest_win_streak,
                "longest_loss_streak": m.longest_loss_streak,
                "current_streak": m.current_streak,
                "streak_type": m.streak_type,
            },
            "session": {
                "duration_seconds": (now - self.session_start).total_seconds(),
                "start_time": self.session_start.isoformat(),
            },
            "breakdown": {
                "by_asset": self.performance_by_asset(),
                "by_regime": self.performance_by_regime(),
                "by_hour": self.performance_by_hour(),
            },
        }

    def recent_trades(self, n: int = 10) -> List[TradeRecord]:
        if n <= 0:
            return []
        return self.trades[-n:]

    def export_trades(self) -> dict:
        """Everything needed to persist or audit the session, as plain values."""
        return {
            "session_start": self.session_start.isoformat(),
            "initial_balance": self.initial_balance,
            "trades": [t.to_dict() for t in self.trades],
            "summary": self.summary(),
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per trade, columns in :class:`TradeRecord` field order."""
        columns = [f.name for f in fields(TradeRecord)]
        if not self.trades:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame([asdict(t) for t in self.trades], columns=columns)
