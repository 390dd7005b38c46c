#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from risk_manager import utc_day_key
from trade_state import ClosedTrade


@dataclass
class Summary:
    strategy: str
    initial_balance: float
    final_balance: float
    net_pnl: float
    trades: int
    wins: int
    losses: int
    winrate: float
    profit_factor: float
    expectancy: float
    max_drawdown: float

    @property
    def max_drawdown_pct(self) -> float:
        # stored as a percentage (0..100)
        return float(self.max_drawdown)

    @property
    def winrate_pct(self) -> float:
        return float(self.winrate) * 100.0


@dataclass
class DayStat:
    day: str
    trades: int
    wins: int
    pnl: float

    @property
    def winrate(self) -> float:
        return (self.wins / self.trades) if self.trades else 0.0


def max_drawdown(equity_curve: Sequence[float]) -> float:
    """Largest fall from a running equity peak, in percent of that peak."""
    peak = 0.0
    worst = 0.0
    for eq in equity_curve:
        peak = max(peak, eq)
        if peak > 0:
            worst = max(worst, (peak - eq) / peak * 100.0)
    return worst


def profit_factor(pnls: Sequence[float]) -> float:
    gross_win = sum(p for p in pnls if p > 0)
    gross_loss = -sum(p for p in pnls if p < 0)
    if gross_loss <= 0:
        return float("inf") if gross_win > 0 else 0.0
    return gross_win / gross_loss


def summarize(
    strategy: str,
    trades: Sequence[ClosedTrade],
    equity_curve: Sequence[float],
    initial_balance: float,
    final_balance: Optional[float] = None,
) -> Summary:
    pnls = [t.pnl for t in trades]
    net = sum(pnls)
    n = len(pnls)
    wins = sum(1 for p in pnls if p > 0)
    losses = sum(1 for p in pnls if p < 0)

    return Summary(
        strategy=strategy,
        initial_balance=float(initial_balance),
        final_balance=float(initial_balance + net if final_balance is None else final_balance),
        net_pnl=net,
        trades=n,
        wins=wins,
        losses=losses,
        winrate=(wins / n) if n else 0.0,
        profit_factor=profit_factor(pnls),
        expectancy=(net / n) if n else 0.0,
        max_drawdown=max_drawdown(equity_curve),
    )


def daily_stats(trades: Sequence[ClosedTrade]) -> List[DayStat]:
    """Closed trades grouped by UTC exit date, oldest first."""
    by_day: Dict[str, DayStat] = {}
    for t in trades:
        key = utc_day_key(t.exit_time)
        d = by_day.get(key)
        if d is None:
            d = DayStat(day=key, trades=0, wins=0, pnl=0.0)
            by_day[key] = d
        d.trades += 1
        d.pnl += t.pnl
        if t.pnl > 0:
            d.wins += 1
    return [by_day[k] for k in sorted(by_day)]


def to_row_dict(s: Summary) -> Dict[str, object]:
    return {
        'strategy': s.strategy,
        'initial_balance': round(s.initial_balance, 4),
        'final_balance': round(s.final_balance, 4),
        'net_pnl': round(s.net_pnl, 4),
        'trades': s.trades,
        'wins': s.wins,
        'losses': s.losses,
        'winrate': round(s.winrate, 4),
        'profit_factor': (round(s.profit_factor, 4) if math.isfinite(s.profit_factor) else 'inf'),
        'expectancy': round(s.expectancy, 6),
        'max_drawdown': round(s.max_drawdown, 4),
    }
