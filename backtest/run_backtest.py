#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Backtest runner for the sweep / order-block strategy.

Example:
  python3 backtest/run_backtest.py --symbol BTCUSDT --days 30 --interval 5m

Outputs (unless --no_save):
  - ./backtest_runs/<timestamp>/summary.csv
  - ./backtest_runs/<timestamp>/smc_<symbol>.csv   (trades)
  - ./backtest_runs/<timestamp>/smc_<symbol>.png   (equity curve)

This script uses public Binance endpoints (no API keys required).
"""

import os
import sys

# Ensure repo root is on sys.path when executed as a script
_THIS_DIR = os.path.abspath(os.path.dirname(__file__))
ROOT_DIR = os.path.abspath(os.path.join(_THIS_DIR, '..'))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import argparse
import csv
import json
from dataclasses import asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Tuple

from backtest.binance_data import fetch_klines_range
from backtest.engine import BacktestParams, run_backtest
from backtest.metrics import Summary, daily_stats, to_row_dict
from trade_reporting import generate_report


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _parse_end(s: str) -> datetime:
    s = (s or "").strip()
    if not s:
        return datetime.now(timezone.utc).replace(second=0, microsecond=0)
    for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise SystemExit(f"Bad --end value: {s!r} (expected YYYY-MM-DD or YYYY-MM-DDTHH:MM)")


def _parse_hours(s: str) -> Tuple[int, int]:
    a, _, b = (s or "0-24").partition("-")
    try:
        return int(a), int(b or 24)
    except ValueError:
        raise SystemExit(f"Bad --hours value: {s!r} (expected START-END, e.g. 7-20)")


def _fmt_summary(s: Summary) -> str:
    return (
        f"trades={s.trades}  winrate={s.winrate_pct:.1f}%  "
        f"netPnL={s.net_pnl:.2f}  PF={s.profit_factor:.2f}  "
        f"expectancy={s.expectancy:.2f}  maxDD={s.max_drawdown_pct:.1f}%"
    )


def main() -> int:
    base = BacktestParams.from_env()

    ap = argparse.ArgumentParser()
    ap.add_argument("--symbol", type=str, default=base.symbol)
    ap.add_argument("--days", type=int, default=30)
    ap.add_argument(
        "--end",
        type=str,
        default="",
        help="End time (UTC) in YYYY-MM-DD or YYYY-MM-DDTHH:MM format. Default: now.",
    )
    ap.add_argument("--source_interval", type=str, default=base.source_interval,
                    help="Interval downloaded from the exchange (aggregated into --interval).")
    ap.add_argument("--interval", type=str, default=base.interval, help="Working timeframe.")
    ap.add_argument("--initial_balance", type=float, default=base.initial_balance)
    ap.add_argument("--risk_pct", type=float, default=base.risk_pct)
    ap.add_argument("--leverage", type=float, default=base.leverage)
    ap.add_argument("--fee_rate", type=float, default=base.fee_rate, help="Fee per side as a fraction (0.0004 = 4 bps).")
    ap.add_argument("--expiry_bars", type=int, default=base.pending_expiry_bars)
    ap.add_argument("--daily_loss_pct", type=float, default=base.daily_loss_limit_pct)
    ap.add_argument("--hours", type=str, default=f"{base.trade_hours_utc[0]}-{base.trade_hours_utc[1]}",
                    help="UTC trading window START-END for arming orders.")
    ap.add_argument("--no_cache", action="store_true", help="Always download klines.")
    ap.add_argument(
        "--no_save",
        action="store_true",
        help="If set, do not write output files; print summaries to terminal only.",
    )
    ap.add_argument("--out_dir", type=str, default="", help="Default: ./backtest_runs/<timestamp>/")
    args = ap.parse_args()

    params = replace(
        base,
        symbol=args.symbol.strip().upper(),
        source_interval=args.source_interval,
        interval=args.interval,
        initial_balance=args.initial_balance,
        risk_pct=args.risk_pct,
        leverage=args.leverage,
        fee_rate=args.fee_rate,
        pending_expiry_bars=args.expiry_bars,
        daily_loss_limit_pct=args.daily_loss_pct,
        trade_hours_utc=_parse_hours(args.hours),
    )

    end_dt = _parse_end(args.end)
    start_dt = end_dt - timedelta(days=int(args.days))
    print(f"[backtest] window (UTC): {start_dt.isoformat()}  ->  {end_dt.isoformat()}")
    print(f"[backtest] {params.symbol} {params.source_interval} -> {params.interval}")

    source = fetch_klines_range(
        params.symbol,
        params.source_interval,
        _ms(start_dt),
        _ms(end_dt),
        cache=not args.no_cache,
    )
    print(f"[backtest] {len(source)} x {params.source_interval} candles")

    res = run_backtest(source, params)
    s = res.summary
    print(f"[backtest] {res.candles} x {params.interval} bars  balance {s.initial_balance:.2f} -> {s.final_balance:.2f}")
    print(f"[backtest] {_fmt_summary(s)}")
    for d in daily_stats(res.trades):
        print(f"  {d.day}  trades={d.trades:3d}  winrate={d.winrate * 100:5.1f}%  pnl={d.pnl:+.2f}")

    if args.no_save:
        return 0

    run_ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    out_dir = (args.out_dir or "").strip() or os.path.join("backtest_runs", run_ts)
    os.makedirs(out_dir, exist_ok=True)

    with open(os.path.join(out_dir, "params.json"), "w", encoding="utf-8") as f:
        json.dump(
            {**asdict(params), "days": args.days, "start": start_dt.isoformat(), "end": end_dt.isoformat()},
            f,
            indent=2,
        )

    row = {"symbol": params.symbol, **to_row_dict(s)}
    with open(os.path.join(out_dir, "summary.csv"), "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=list(row.keys()))
        w.writeheader()
        w.writerow(row)

    rep = generate_report(res.trades, res.equity_curve, out_dir, params.symbol)
    print(rep.text)
    print(f"[backtest] saved to {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
