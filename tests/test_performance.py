"""Tests for the session performance ledger."""

import json
import math
from datetime import datetime, timedelta

import pandas as pd
import pytest

from edge_engine.core.errors import InvalidInputError
from edge_engine.schemas import TradeEvent
from edge_engine.services.performance import PerformanceLedger, TradeRecord, _win_rate

T0 = datetime(2024, 6, 3, 9, 0)


def _clock():
    return T0


def _trade(profit, asset="R_10", regime="LOW_VOL_RANGING", stake=10.0, **extra):
    data = {
        "asset": asset,
        "stake": stake,
        "outcome": "win" if profit > 0 else "loss",
        "profit": profit,
        "regime": regime,
    }
    data.update(extra)
    return data


@pytest.fixture
def ledger():
    """Start 100; three +10 wins then two -5 losses."""
    led = PerformanceLedger(100.0, clock=_clock)
    for p in (10.0, 10.0, 10.0, -5.0, -5.0):
        led.record_trade(_trade(p))
    return led


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_win_rate_helper():
    assert _win_rate(0, 0) == 0.0
    assert _win_rate(3, 4) == pytest.approx(0.75)


# ---------------------------------------------------------------------------
# Recording and running metrics
# ---------------------------------------------------------------------------

def test_initial_state():
    led = PerformanceLedger(50.0, clock=_clock)
    assert led.current_balance == 50.0
    assert led.metrics.peak_balance == 50.0
    assert led.trades == []


def test_record_returns_record(ledger):
    rec = ledger.trades[0]
    assert isinstance(rec, TradeRecord)
    assert rec.id == 1
    assert rec.balance_after == pytest.approx(110.0)
    assert rec.timestamp == T0


def test_ids_sequential(ledger):
    assert [t.id for t in ledger.trades] == [1, 2, 3, 4, 5]


def test_streaks_and_drawdown(ledger):
    m = ledger.metrics
    assert ledger.current_balance == pytest.approx(120.0)
    assert m.longest_win_streak == 3
    assert m.longest_loss_streak == 2
    assert m.current_streak == 2
    assert m.streak_type == "loss"
    assert m.peak_balance == pytest.approx(130.0)
    assert m.max_drawdown == pytest.approx(10.0)
    assert m.max_drawdown_pct == pytest.approx(10.0 / 130.0)
    assert m.current_drawdown == pytest.approx(10.0)


def test_new_peak_resets_current_drawdown(ledger):
    ledger.record_trade(_trade(20.0))
    assert ledger.metrics.current_drawdown == 0.0
    assert ledger.metrics.max_drawdown == pytest.approx(10.0)


def test_zero_initial_balance_drawdown_pct():
    led = PerformanceLedger(clock=_clock)
    led.record_trade(_trade(-1.0))
    assert led.metrics.max_drawdown == pytest.approx(1.0)
    assert led.metrics.max_drawdown_pct == 0.0


def test_accepts_trade_event():
    led = PerformanceLedger(10.0, clock=_clock)
    rec = led.record_trade(TradeEvent(asset="R_25", stake=1.0, outcome="win", profit=0.4))
    assert rec.asset == "R_25"


def test_explicit_timestamp_kept():
    led = PerformanceLedger(10.0, clock=_clock)
    ts = datetime(2024, 1, 1, 23, 59)
    assert led.record_trade(_trade(1.0, timestamp=ts)).timestamp == ts


def test_invalid_trade_rejected():
    led = PerformanceLedger(10.0, clock=_clock)
    with pytest.raises(InvalidInputError):
        led.record_trade({"asset": "R_10", "stake": -1.0, "outcome": "win", "profit": 1.0})
    assert led.trades == []
    assert led.current_balance == 10.0


# ---------------------------------------------------------------------------
# Ratios
# ---------------------------------------------------------------------------

def test_win_rate(ledger):
    assert ledger.win_rate() == pytest.approx(0.6)


def test_profit_factor(ledger):
    assert ledger.profit_factor() == pytest.approx(30.0 / 10.0)


def test_profit_factor_no_losses():
    led = PerformanceLedger(10.0, clock=_clock)
    led.record_trade(_trade(1.0))
    assert math.isinf(led.profit_factor())


def test_profit_factor_empty():
    assert PerformanceLedger(clock=_clock).profit_factor() == 1.0


def test_sharpe_needs_two_trades():
    led = PerformanceLedger(10.0, clock=_clock)
    led.record_trade(_trade(1.0))
    assert led.sharpe_ratio() == 0.0


def test_sharpe_per_stake_returns(ledger):
    returns = [1.0, 1.0, 1.0, -0.5, -0.5]
    mean = sum(returns) / 5
    sd = math.sqrt(sum((r - mean) ** 2 for r in returns) / 5)
    assert ledger.sharpe_ratio() == pytest.approx(mean / sd)


def test_average_win_loss(ledger):
    assert ledger.average_win_loss() == {"avg_win": pytest.approx(10.0), "avg_loss": pytest.approx(5.0)}


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------

def test_by_asset():
    led = PerformanceLedger(100.0, clock=_clock)
    led.record_trade(_trade(2.0, asset="R_10"))
    led.record_trade(_trade(-1.0, asset="R_10"))
    led.record_trade(_trade(3.0, asset="R_50"))
    by_asset = led.performance_by_asset()
    assert by_asset["R_10"]["trades"] == 2
    assert by_asset["R_10"]["win_rate"] == pytest.approx(0.5)
    assert by_asset["R_10"]["profit"] == pytest.approx(1.0)
    assert by_asset["R_50"]["wins"] == 1


def test_by_regime(ledger):
    ledger.record_trade(_trade(1.0, regime="HIGH_VOL_TRENDING"))
    by_regime = ledger.performance_by_regime()
    assert set(by_regime) == {"LOW_VOL_RANGING", "HIGH_VOL_TRENDING"}
    assert by_regime["LOW_VOL_RANGING"]["losses"] == 2


def test_by_hour_has_all_hours():
    led = PerformanceLedger(100.0, clock=_clock)
    led.record_trade(_trade(1.0, timestamp=T0))
    led.record_trade(_trade(-1.0, timestamp=T0 + timedelta(hours=14)))
    by_hour = led.performance_by_hour()
    assert sorted(by_hour) == list(range(24))
    assert by_hour[9]["wins"] == 1
    assert by_hour[23]["trades"] == 1
    assert by_hour[0]["win_rate"] == 0.0


# ---------------------------------------------------------------------------
# Reporting and export
# ---------------------------------------------------------------------------

def test_summary(ledger):
    s = ledger.summary()
    assert s["overview"]["total_trades"] == 5
    assert s["financial"]["total_profit"] == pytest.approx(20.0)
    assert s["financial"]["total_profit_percent"] == pytest.approx(20.0)
    assert s["financial"]["expectancy"] == pytest.approx(0.6 * 10.0 - 0.4 * 5.0)
    assert s["risk"]["max_drawdown_percent"] == pytest.approx(100.0 * 10.0 / 130.0)
    assert s["session"]["duration_seconds"] == 0.0
    assert s["session"]["start_time"] == T0.isoformat()


def test_summary_zero_initial_balance():
    led = PerformanceLedger(clock=_clock)
    led.record_trade(_trade(1.0))
    assert led.summary()["financial"]["total_profit_percent"] == 0.0


def test_recent_trades(ledger):
    assert [t.id for t in ledger.recent_trades(2)] == [4, 5]
    assert len(ledger.recent_trades()) == 5
    assert ledger.recent_trades(0) == []


def test_export_is_json_serialisable(ledger):
    exported = ledger.export_trades()
    text = json.dumps(exported)
    restored = json.loads(text)
    assert len(restored["trades"]) == 5
    assert restored["trades"][0]["timestamp"] == T0.isoformat()
    assert restored["initial_balance"] == 100.0


def test_dataframe(ledger):
    df = ledger.to_dataframe()
    assert isinstance(df, pd.DataFrame)
    assert len(df) == 5
    assert list(df.columns)[:3] == ["id", "timestamp", "asset"]
    assert df["profit"].sum() == pytest.approx(20.0)


def test_dataframe_empty_keeps_columns():
    df = PerformanceLedger(clock=_clock).to_dataframe()
    assert df.empty
    assert "balance_after" in df.columns
