#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Live paper-trading runner for the SMC confluence engine.

Polls Binance public klines, feeds them to SmcLiveEngine every tick, prints
engine events and forwards them to Telegram when TG_TOKEN/TG_CHAT are set.
Fills are simulated; nothing is sent to an exchange.
"""

from __future__ import annotations

import asyncio
import os
import time
import traceback
from datetime import datetime, timedelta, timezone

import requests
from dotenv import load_dotenv

from backtest.binance_data import fetch_recent_klines
from bot_config import StrategyConfig
from kline_stream import KlineBook, KlineFeed, run_stream
from smc_live import SmcLiveEngine
from trade_state import (
    BreakevenTriggered,
    EnginePaused,
    PositionClosed,
    PositionOpened,
    TickFailed,
)

# =========================== .env ===========================
load_dotenv()
TG_TOKEN = os.getenv("TG_TOKEN")
TG_CHAT = os.getenv("TG_CHAT")
ERRORS_LOG = os.getenv("ERRORS_LOG", "errors.log")
AUTO_RESUME = os.getenv("SMC_AUTO_RESUME", "1").strip().lower() in ("1", "true", "yes", "y")
USE_WS = os.getenv("SMC_USE_WS", "1").strip().lower() in ("1", "true", "yes", "y")
WS_MAX_AGE_SEC = float(os.getenv("SMC_WS_MAX_AGE_SEC", "90"))

CFG = StrategyConfig.from_env()


# =========================== UTILS ===========================
def log_error(msg: str):
    try:
        with open(ERRORS_LOG, "a") as f:
            f.write(f"[{time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime())}] {msg}\n")
    except OSError:
        pass


def tg_send(t: str):
    if not (TG_TOKEN and TG_CHAT):
        return
    try:
        requests.post(
            f"https://api.telegram.org/bot{TG_TOKEN}/sendMessage",
            json={"chat_id": TG_CHAT, "text": t, "parse_mode": "HTML"},
            timeout=10,
        )
    except requests.RequestException as e:
        log_error(f"tg_send fail: {e}")


def _px(x: float) -> str:
    return f"{x:.2f}"


def format_event(ev) -> str:
    if isinstance(ev, PositionOpened):
        d = ev.detail
        return (
            f"🚀 <b>OPEN {ev.side}</b> {ev.symbol}\n"
            f"• Score: {d.score}/5  setup: {d.setup}\n"
            f"• Entry: {_px(ev.entry_price)}\n"
            f"• TP: {_px(ev.tp_price)}  SL: {_px(ev.sl_price)}  Liq: {_px(ev.liquidation_price)}\n"
            f"• Margin: {ev.margin:.2f} USDT  fee: {ev.open_fee:.2f}"
        )
    if isinstance(ev, PositionClosed):
        t = ev.trade
        icon = "✅" if t.pnl >= 0 else "❌"
        be = " (breakeven)" if t.detail.is_breakeven else ""
        return (
            f"{icon} <b>CLOSE {t.side}</b> {ev.symbol}{be}\n"
            f"• Reason: {t.reason}\n"
            f"• {_px(t.entry_price)} -> {_px(t.exit_price)}\n"
            f"• PnL: {t.pnl:+.2f} USDT ({t.pnl_pct:+.1f}%)\n"
            f"• Balance: {ev.balance:.2f} USDT  today: {ev.pnl_today:+.2f} / {ev.trades_today} trades"
        )
    if isinstance(ev, BreakevenTriggered):
        return (
            f"🛡 <b>BREAKEVEN</b> {ev.symbol} {ev.side}\n"
            f"• SL {_px(ev.old_sl)} -> {_px(ev.entry_price)} at price {_px(ev.price)}"
        )
    if isinstance(ev, EnginePaused):
        return (
            f"⏸ <b>ENGINE PAUSED</b> {ev.symbol}\n"
            f"• Reason: {ev.reason}\n"
            f"• Today: {ev.pnl_today:+.2f} USDT / {ev.trades_today} trades  errors: {ev.consecutive_errors}"
        )
    if isinstance(ev, TickFailed):
        return f"⚠️ <b>ENGINE ERROR</b> {ev.symbol}\n• {ev.error}\n• Consecutive: {ev.consecutive_errors}"
    raise TypeError(f"unknown engine event {type(ev).__name__}")


async def on_event(ev):
    msg = format_event(ev)
    print(f"[event] {msg}")
    if isinstance(ev, TickFailed):
        log_error(f"tick failed: {ev.error}")
    await asyncio.to_thread(tg_send, msg)


def fetch_klines(symbol: str, interval: str, limit: int):
    return asyncio.to_thread(fetch_recent_klines, symbol, interval, limit)


def status_line(engine: SmcLiveEngine, started: float) -> str:
    s = engine.session
    acc = s.account
    up_min = (time.time() - started) / 60.0
    pos = s.position
    if pos is not None:
        px = engine.last_price or pos.entry_price
        pos_txt = f"{pos.side} @ {_px(pos.entry_price)} roe={pos.roe_pct(px):+.1f}%"
    else:
        pos_txt = "flat"
    sent = " ".join(f"{tf}:{v[:4]}" for tf, v in engine.sentiment.items())
    return (
        f"[pulse] {s.symbol} running={s.is_running} paused={acc.paused_reason or '-'} {pos_txt}  "
        f"balance={acc.balance:.2f} today={acc.pnl_today:+.2f}/{acc.trades_today}  "
        f"[{sent}]  uptime={up_min:.0f}m"
    )


# =========================== LOOPS ===========================
async def pulse(engine: SmcLiveEngine, started: float):
    while True:
        await asyncio.sleep(max(1.0, CFG.heartbeat_sec))
        print(status_line(engine, started))


def _seconds_to_next_utc_day() -> float:
    now = datetime.now(timezone.utc)
    nxt = (now + timedelta(days=1)).replace(hour=0, minute=0, second=5, microsecond=0)
    return max(1.0, (nxt - now).total_seconds())


async def trading_loop(engine: SmcLiveEngine):
    while True:
        await engine.run()
        reason = engine.session.account.paused_reason
        if not reason:
            return
        if not AUTO_RESUME:
            print(f"[tick] paused ({reason}); auto-resume is off")
            return
        wait = _seconds_to_next_utc_day()
        print(f"[tick] paused ({reason}); resuming in {wait / 3600.0:.1f}h")
        await asyncio.sleep(wait)


# =========================== RUNNER ===========================
async def runner(coro, title):
    while True:
        try:
            await coro()
            return
        except Exception as e:
            msg = f"{title} crash: {repr(e)}\n{traceback.format_exc()}"
            print(msg)
            log_error(msg)
            await asyncio.to_thread(tg_send, f"🧯 {title} crashed. See errors.log")
            await asyncio.sleep(3)


async def main_async():
    tasks = []
    if USE_WS:
        book = KlineBook(CFG.symbol)
        feed = KlineFeed(book, fetch_recent_klines, max_age_sec=WS_MAX_AGE_SEC)
        engine = SmcLiveEngine(feed.fetch_klines, CFG, on_event=on_event)
        tasks.append(asyncio.create_task(
            runner(lambda: run_stream(book, CFG.sentiment_timeframes, on_error=log_error), "KLINE_WS")
        ))
    else:
        engine = SmcLiveEngine(fetch_klines, CFG, on_event=on_event)
    started = time.time()
    tasks.append(asyncio.create_task(pulse(engine, started)))
    try:
        await runner(lambda: trading_loop(engine), "SMC_ENGINE")
    finally:
        for t in tasks:
            t.cancel()


def main():
    print("Starting SMC confluence paper trader…")
    print(
        f"Symbol: {CFG.symbol} {CFG.interval} | leverage={CFG.leverage} | margin={CFG.margin_per_trade} | "
        f"tp={CFG.tp_percent * 100:.2f}% sl={CFG.sl_percent * 100:.2f}% | threshold={CFG.confluence_threshold}"
    )
    print(
        f"Guards: max_daily_loss={CFG.max_daily_loss} max_trades={CFG.max_trades_per_day} "
        f"max_errors={CFG.max_consecutive_errors} | tick={CFG.tick_interval_sec}s"
    )
    tg_send(f"🟢 SMC engine started: {CFG.symbol} {CFG.interval}")
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        print("Stopped.")


if __name__ == "__main__":
    main()
