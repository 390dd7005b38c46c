#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Live candle book fed by the Binance combined kline websocket.

The book is seeded from REST and then kept current by stream updates
(same open time replaces the forming bar, a newer one appends). The live
engine reads it through KlineFeed.fetch_klines, which falls back to REST
whenever the book for an interval is cold, stale or too short.
"""

from __future__ import annotations

import asyncio
import json
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import websockets
from websockets.exceptions import WebSocketException

from market_data import Candle, normalize_klines, upsert_candle

BINANCE_WS_BASE = "wss://stream.binance.com:9443"


def stream_url(symbol: str, intervals: Sequence[str], base: str = BINANCE_WS_BASE) -> str:
    streams = "/".join(f"{symbol.lower()}@kline_{tf}" for tf in intervals)
    return f"{base.rstrip('/')}/stream?streams={streams}"


def candle_from_ws(k: Dict[str, Any]) -> Optional[Candle]:
    try:
        cd = Candle(
            ts=int(k["t"]),
            o=float(k["o"]),
            h=float(k["h"]),
            l=float(k["l"]),
            c=float(k["c"]),
            v=float(k.get("v") or 0.0),
        )
    except (KeyError, TypeError, ValueError):
        return None
    if cd.h < max(cd.o, cd.c) or cd.l > min(cd.o, cd.c):
        return None
    return cd


class KlineBook:
    def __init__(self, symbol: str, max_len: int = 1000):
        self.symbol = symbol.upper()
        self.max_len = int(max_len)
        self.candles: Dict[str, List[Candle]] = {}
        self.updated_at: Dict[str, float] = {}
        self.msg_count = 0

    def seed(self, interval: str, rows: Any, now: Optional[float] = None) -> List[Candle]:
        seq = normalize_klines(rows)[-self.max_len:]
        self.candles[interval] = seq
        self.updated_at[interval] = time.time() if now is None else now
        return seq

    def apply_message(self, msg: Dict[str, Any], now: Optional[float] = None) -> Optional[Tuple[str, Candle]]:
        """Apply one stream message. Returns (interval, candle) or None if it was ignored."""
        data = msg.get("data", msg)
        if not isinstance(data, dict) or data.get("e") != "kline":
            return None
        k = data.get("k") or {}
        if str(k.get("s", data.get("s", ""))).upper() != self.symbol:
            return None
        interval = k.get("i")
        cd = candle_from_ws(k)
        if not interval or cd is None:
            return None
        self.msg_count += 1

        seq = self.candles.get(interval)
        if seq is None:
            # no REST seed yet: nothing to extend
            return None
        upsert_candle(seq, cd)
        if len(seq) > self.max_len:
            del seq[: len(seq) - self.max_len]
        self.updated_at[interval] = time.time() if now is None else now
        return interval, cd

    def is_fresh(self, interval: str, max_age_sec: float, now: Optional[float] = None) -> bool:
        ts = self.updated_at.get(interval)
        if ts is None:
            return False
        now = time.time() if now is None else now
        return (now - ts) <= max_age_sec

    def rows(self, interval: str, limit: int) -> List[List[float]]:
        seq = self.candles.get(interval, [])
        return [[c.ts, c.o, c.h, c.l, c.c, c.v] for c in seq[-int(limit):]]


class KlineFeed:
    """fetch_klines(symbol, interval, limit) backed by a KlineBook with REST fallback."""

    def __init__(
        self,
        book: KlineBook,
        rest_fetch: Callable[[str, str, int], Any],
        max_age_sec: float = 90.0,
        clock: Callable[[], float] = time.time,
    ):
        self.book = book
        self.rest_fetch = rest_fetch
        self.max_age_sec = float(max_age_sec)
        self.clock = clock
        self.rest_calls = 0

    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> List[List[float]]:
        now = self.clock()
        seq = self.book.candles.get(interval)
        if seq is not None and len(seq) >= limit and self.book.is_fresh(interval, self.max_age_sec, now):
            return self.book.rows(interval, limit)
        self.rest_calls += 1
        raw = await asyncio.to_thread(self.rest_fetch, symbol, interval, max(int(limit), len(seq or [])))
        self.book.seed(interval, raw, now)
        return self.book.rows(interval, limit)


async def run_stream(
    book: KlineBook,
    intervals: Sequence[str],
    *,
    base: str = BINANCE_WS_BASE,
    on_error: Optional[Callable[[str], Any]] = None,
) -> None:
    """Keep `book` current from the websocket forever, reconnecting with backoff."""
    url = stream_url(book.symbol, intervals, base)
    backoff = 5
    while True:
        try:
            print(f"[ws] connecting {url}")
            async with websockets.connect(
                url,
                ping_interval=20,
                ping_timeout=45,
                open_timeout=30,
                close_timeout=10,
                max_queue=None,
            ) as ws:
                print(f"[ws] connected ({len(intervals)} streams)")
                backoff = 5
                while True:
                    raw = await ws.recv()
                    try:
                        msg = json.loads(raw)
                    except ValueError:
                        continue
                    if isinstance(msg, dict):
                        book.apply_message(msg)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            msg = f"kline stream {book.symbol} dropped: {repr(e)}; retry in ~{backoff}s"
            print(f"[ws] {msg}")
            if on_error is not None:
                on_error(msg)
            await asyncio.sleep(backoff + random.uniform(0, 2.0))
            backoff = min(backoff * 2, 120)
