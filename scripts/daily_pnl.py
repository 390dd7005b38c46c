#!/usr/bin/env python3
from __future__ import annotations

import csv
import math
import os
import sys
from collections import defaultdict

_THIS_DIR = os.path.abspath(os.path.dirname(__file__))
ROOT_DIR = os.path.abspath(os.path.join(_THIS_DIR, '..'))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from backtest.metrics import max_drawdown, profit_factor
from risk_manager import utc_day_key


def _safe_float(v: str) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


def _safe_int(v: str) -> int:
    try:
        return int(float(v))
    except (TypeError, ValueError):
        return 0


def main() -> int:
    if len(sys.argv) < 2:
        print("Usage: python3 scripts/daily_pnl.py /ABS/PATH/to/smc_<SYMBOL>.csv [initial_balance]")
        return 1

    path = sys.argv[1]
    initial = _safe_float(sys.argv[2]) if len(sys.argv) > 2 else 10000.0
    rows = []
    with open(path, "r", newline="", encoding="utf-8") as f:
        for r in csv.DictReader(f):
            ts = _safe_int(r.get("exit_time", "0"))
            if ts <= 0:
                continue
            rows.append((ts, _safe_float(r.get("pnl", "0"))))

    if not rows:
        print("No rows")
        return 0

    rows.sort(key=lambda x: x[0])
    by_day = defaultdict(list)
    for ts, pnl in rows:
        by_day[utc_day_key(ts)].append(pnl)

    print("day,trades,winrate%,net_pnl,profit_factor")
    for day in sorted(by_day.keys()):
        vals = by_day[day]
        wins = sum(1 for x in vals if x > 0)
        wr = 100.0 * wins / len(vals)
        pf = profit_factor(vals)
        pf_txt = "inf" if math.isinf(pf) else f"{pf:.3f}"
        print(f"{day},{len(vals)},{wr:.2f},{sum(vals):.4f},{pf_txt}")

    curve = [initial]
    for _ts, pnl in rows:
        curve.append(curve[-1] + pnl)
    print(
        f"\noverall_trades={len(rows)} overall_net={curve[-1] - initial:+.4f} "
        f"max_dd={max_drawdown(curve):.2f}% (from {initial:.0f})"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
