#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Callable, List, Optional

from bot_config import StrategyConfig
from market_data import Candle, normalize_klines
from mtf_sentiment import new_sentiment, update_sentiment
from risk_manager import RiskManager
from strategies.smc_scalp import Analysis, analyze, decide_entry
from trade_state import ExitReason, TradingSession


async def maybe_await(x: Any) -> Any:
    if inspect.isawaitable(x):
        return await x
    return x


def _now_ms() -> int:
    return int(time.time() * 1000)


class SmcLiveEngine:
    """
    Tick-driven live engine for one symbol.

    fetch_klines(symbol, interval, limit) may be sync or async and returns raw
    kline rows (oldest-first). on_event(event) receives every engine event and
    may also be sync or async. Fills are simulated at the last close.
    """

    def __init__(
        self,
        fetch_klines: Callable[..., Any],
        cfg: Optional[StrategyConfig] = None,
        *,
        session: Optional[TradingSession] = None,
        clock: Callable[[], int] = _now_ms,
        on_event: Optional[Callable[[Any], Any]] = None,
    ):
        self.cfg = cfg or StrategyConfig()
        self.fetch_klines = fetch_klines
        self.clock = clock
        self.on_event = on_event
        self.rm = RiskManager(self.cfg, session)
        self.sentiment = new_sentiment(self.cfg.sentiment_timeframes)
        self.last_analysis: Optional[Analysis] = None
        self.last_price: Optional[float] = None
        self.auto_trade = bool(self.cfg.auto_trade)
        self._in_tick = False
        self._stop: Optional[asyncio.Event] = None

    @property
    def session(self) -> TradingSession:
        return self.rm.session

    async def _candles(self, interval: str, limit: int) -> List[Candle]:
        raw = await maybe_await(self.fetch_klines(self.cfg.symbol, interval, int(limit)))
        candles = normalize_klines(raw)
        if not candles:
            raise RuntimeError(f"no candles for {self.cfg.symbol} {interval}")
        return candles

    async def _emit(self, events: List[Any]) -> None:
        if self.on_event is None:
            return
        for ev in events:
            await maybe_await(self.on_event(ev))

    async def tick(self) -> List[Any]:
        """Run one evaluation. A tick never starts while another is in flight."""
        if self._in_tick:
            return []
        self._in_tick = True
        try:
            events = await self._tick()
        finally:
            self._in_tick = False
        await self._emit(events)
        return events

    async def close_now(self, price: Optional[float] = None) -> Optional[Any]:
        """Close the open position at `price` (default: last seen close) with reason MANUAL."""
        rm = self.rm
        if rm.position is None:
            return None
        px = self.last_price if price is None else float(price)
        if px is None:
            raise RuntimeError("no price seen yet; pass one explicitly")
        ev = rm.close_position(px, ExitReason.MANUAL, self.clock())
        await self._emit([ev])
        return ev

    async def _tick(self) -> List[Any]:
        cfg = self.cfg
        rm = self.rm
        events: List[Any] = []

        if not rm.is_running:
            return events
        paused = rm.check_guards(self.clock())
        if paused is not None:
            events.append(paused)
            return events

        try:
            primary: Optional[List[Candle]] = None
            for tf in cfg.sentiment_timeframes:
                limit = cfg.limit_candles if tf == cfg.interval else cfg.ema_period + 1
                candles = await self._candles(tf, limit)
                update_sentiment(self.sentiment, tf, candles, cfg.ema_period, zero_lag=cfg.use_zlema)
                if tf == cfg.interval:
                    primary = candles
            if primary is None:
                primary = await self._candles(cfg.interval, cfg.limit_candles)

            if len(primary) < cfg.ema_period:
                return events

            now = self.clock()
            price = primary[-1].c
            self.last_price = price

            if rm.position is not None:
                be = rm.apply_breakeven(price)
                if be is not None:
                    events.append(be)
                reason = rm.check_exit(price)
                if reason is not None:
                    events.append(rm.close_position(price, reason, now))
            elif self.auto_trade and rm.cooldown_elapsed(now) and rm.can_open():
                a = analyze(primary, cfg)
                self.last_analysis = a
                sig = decide_entry(a, self.sentiment, cfg)
                if sig is not None:
                    events.append(rm.open_position(sig, now))

            rm.record_success()
        except Exception as e:
            events.extend(rm.record_failure(e))
        return events

    async def run(self) -> None:
        """Tick every cfg.tick_interval_sec until stop() or a pause.

        stop() is honoured between ticks; an in-flight tick completes first.
        """
        self._stop = asyncio.Event()
        if not self.rm.start(self.clock()):
            return
        loop = asyncio.get_running_loop()
        interval = max(0.0, float(self.cfg.tick_interval_sec))
        while self.rm.is_running and not self._stop.is_set():
            started = loop.time()
            await self.tick()
            if not self.rm.is_running or self._stop.is_set():
                break
            delay = max(0.0, interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        if self._stop.is_set():
            self.rm.stop()

    def start(self) -> "asyncio.Task[None]":
        return asyncio.ensure_future(self.run())

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
        else:
            self.rm.stop()
