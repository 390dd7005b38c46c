#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import csv
import math
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from backtest.metrics import profit_factor
from trade_state import ClosedTrade

TRADE_FIELDS = [
    "side",
    "setup",
    "entry_time",
    "exit_time",
    "entry_price",
    "exit_price",
    "size",
    "margin",
    "gross_pnl",
    "fees",
    "pnl",
    "pnl_pct",
    "reason",
]


@dataclass
class ReportResult:
    text: str
    csv_path: Optional[str]
    png_path: Optional[str]


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def write_trades_csv(trades: Sequence[ClosedTrade], out_path: str) -> Optional[str]:
    if not trades:
        return None
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=TRADE_FIELDS)
        w.writeheader()
        for t in trades:
            w.writerow({
                "side": t.side,
                "setup": t.detail.setup,
                "entry_time": t.entry_time,
                "exit_time": t.exit_time,
                "entry_price": f"{t.entry_price:.10g}",
                "exit_price": f"{t.exit_price:.10g}",
                "size": f"{t.size:.10g}",
                "margin": f"{t.margin:.10g}",
                "gross_pnl": f"{t.gross_pnl:.10g}",
                "fees": f"{t.fees:.10g}",
                "pnl": f"{t.pnl:.10g}",
                "pnl_pct": f"{t.pnl_pct:.6g}",
                "reason": t.reason,
            })
    return out_path


def plot_equity(curve: Sequence[float], out_path: str, title: str = "Equity") -> Optional[str]:
    if len(curve) < 2:
        return None
    try:
        plt.figure(figsize=(8, 3.6))
        plt.plot(range(len(curve)), list(curve), linewidth=1.6)
        plt.title(title)
        plt.xlabel("bar")
        plt.ylabel("USDT")
        plt.tight_layout()
        plt.savefig(out_path, dpi=140)
        return out_path
    except (OSError, ValueError):
        return None
    finally:
        plt.close()


def generate_report(
    trades: Sequence[ClosedTrade],
    curve: Sequence[float],
    out_dir: str,
    tag: str,
) -> ReportResult:
    if not trades:
        return ReportResult(text=f"{tag}: no trades in period.", csv_path=None, png_path=None)

    pnls = [t.pnl for t in trades]
    wins = sum(1 for p in pnls if p > 0)
    total = len(pnls)
    winrate = wins / total * 100.0
    pf = profit_factor(pnls)
    net = sum(pnls)

    os.makedirs(out_dir, exist_ok=True)
    csv_out = write_trades_csv(trades, os.path.join(out_dir, f"smc_{tag}.csv"))
    png_out = plot_equity(curve, os.path.join(out_dir, f"smc_{tag}.png"), title=f"{tag} equity")

    pf_txt = f"{pf:.2f}" if math.isfinite(pf) else "inf"
    txt = (
        f"{tag} report {_iso(trades[0].entry_time)} -> {_iso(trades[-1].exit_time)}\n"
        f"trades={total} winrate={winrate:.1f}% pf={pf_txt}\n"
        f"net_pnl={net:+.2f} USDT"
    )
    return ReportResult(text=txt, csv_path=csv_out, png_path=png_out)


def read_trades_csv(path: str) -> List[dict]:
    with open(path, "r", newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))
