import math

import pytest

from backtest.metrics import daily_stats, max_drawdown, profit_factor, summarize, to_row_dict
from conftest import DAY1_MS
from trade_state import ClosedTrade, ExitReason, Side, SignalDetail

DAY_MS = 86_400_000


def _trade(pnl, exit_time=DAY1_MS):
    return ClosedTrade(
        side=Side.LONG,
        entry_price=100.0,
        exit_price=100.0,
        entry_time=exit_time - 60_000,
        exit_time=exit_time,
        size=1000.0,
        margin=20.0,
        leverage=50.0,
        gross_pnl=pnl,
        fees=0.0,
        pnl=pnl,
        pnl_pct=pnl / 20.0 * 100.0,
        reason=ExitReason.TAKE_PROFIT if pnl > 0 else ExitReason.STOP_LOSS,
        detail=SignalDetail(setup="test"),
    )


def test_profit_factor_edges():
    assert profit_factor([10.0, -5.0]) == pytest.approx(2.0)
    assert math.isinf(profit_factor([1.0, 2.0]))
    assert profit_factor([]) == 0.0
    assert profit_factor([0.0, 0.0]) == 0.0
    assert profit_factor([-1.0]) == 0.0


def test_max_drawdown_percent_from_peak():
    assert max_drawdown([100.0, 120.0, 90.0, 130.0, 117.0]) == pytest.approx(25.0)
    assert max_drawdown([100.0, 101.0, 102.0]) == 0.0
    assert max_drawdown([]) == 0.0


def test_summarize():
    trades = [_trade(30.0), _trade(-10.0), _trade(-10.0), _trade(0.0)]
    s = summarize("x", trades, [1000.0, 1030.0, 1020.0, 1010.0, 1010.0], 1000.0)
    assert s.trades == 4
    assert s.wins == 1
    assert s.losses == 2
    assert s.winrate == pytest.approx(0.25)
    assert s.winrate_pct == pytest.approx(25.0)
    assert s.net_pnl == pytest.approx(10.0)
    assert s.final_balance == pytest.approx(1010.0)
    assert s.profit_factor == pytest.approx(1.5)
    assert s.expectancy == pytest.approx(2.5)
    assert s.max_drawdown_pct == pytest.approx(20.0 / 1030.0 * 100.0)


def test_summarize_empty():
    s = summarize("x", [], [1000.0], 1000.0)
    assert s.trades == 0
    assert s.winrate == 0.0
    assert s.expectancy == 0.0
    assert s.profit_factor == 0.0


def test_daily_stats_grouped_by_exit_day():
    trades = [
        _trade(5.0, DAY1_MS + 1000),
        _trade(-2.0, DAY1_MS + DAY_MS + 5),
        _trade(3.0, DAY1_MS + 2000),
    ]
    days = daily_stats(trades)
    assert [d.day for d in days] == ["2024-01-01", "2024-01-02"]
    assert days[0].trades == 2 and days[0].wins == 2
    assert days[0].pnl == pytest.approx(8.0)
    assert days[0].winrate == 1.0
    assert days[1].winrate == 0.0


def test_row_dict_renders_infinite_pf():
    s = summarize("x", [_trade(5.0)], [1000.0, 1005.0], 1000.0)
    row = to_row_dict(s)
    assert row["profit_factor"] == "inf"
    assert row["trades"] == 1
