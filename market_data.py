#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class Candle:
    ts: int  # ms, bucket open time
    o: float
    h: float
    l: float
    c: float
    v: float = 0.0

    @property
    def is_green(self) -> bool:
        return self.c >= self.o

    @property
    def body(self) -> float:
        return abs(self.c - self.o)


_UNIT_MS = {
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}


def interval_to_ms(interval: str) -> int:
    """'1m' -> 60000, '4h' -> 14400000. Bare digits are minutes ('15' -> 15m)."""
    s = str(interval).strip().lower()
    if not s:
        raise ValueError("empty interval")
    if s.isdigit():
        return int(s) * _UNIT_MS["m"]
    unit = s[-1]
    if unit not in _UNIT_MS or not s[:-1].isdigit():
        raise ValueError(f"Unsupported interval {interval!r}")
    n = int(s[:-1])
    if n <= 0:
        raise ValueError(f"Unsupported interval {interval!r}")
    return n * _UNIT_MS[unit]


def candle_from_kline(row: Any) -> Optional[Candle]:
    """Build a Candle from an exchange kline row.

    Accepts list rows ``[openTime, open, high, low, close, volume, ...]`` (Binance
    and Bybit both use this order) or dicts with ts/o/h/l/c/v or long names.
    Returns None for malformed rows.
    """
    try:
        if isinstance(row, dict):
            ts = row.get("ts", row.get("time", row.get("openTime")))
            o = row.get("o", row.get("open"))
            h = row.get("h", row.get("high"))
            l = row.get("l", row.get("low"))
            c = row.get("c", row.get("close"))
            v = row.get("v", row.get("volume", 0.0))
        else:
            ts, o, h, l, c, v = row[0], row[1], row[2], row[3], row[4], row[5]
        cd = Candle(ts=int(ts), o=float(o), h=float(h), l=float(l), c=float(c), v=float(v or 0.0))
    except (TypeError, ValueError, IndexError, KeyError):
        return None
    if cd.h < max(cd.o, cd.c) or cd.l > min(cd.o, cd.c):
        return None
    return cd


def normalize_klines(rows: Iterable[Any]) -> List[Candle]:
    """Parse raw rows, drop malformed ones, return oldest-first without duplicate ts."""
    by_ts: Dict[int, Candle] = {}
    for r in rows or []:
        cd = candle_from_kline(r)
        if cd is not None:
            by_ts[cd.ts] = cd
    return [by_ts[k] for k in sorted(by_ts)]


def bucket_start(ts: int, interval_ms: int) -> int:
    return (int(ts) // int(interval_ms)) * int(interval_ms)


def aggregate_candles(base: Sequence[Candle], interval_ms: int) -> List[Candle]:
    """Aggregate candles into time buckets of ``interval_ms``.

    bucket = floor(ts / interval) * interval; open is the first candle's open,
    close the last one's close, high/low the extremes and volume the sum.
    Input must be oldest-first. Incomplete trailing buckets are kept.
    """
    out: List[Candle] = []
    if interval_ms <= 0:
        return list(base)
    cur_ts: Optional[int] = None
    o = h = l = c = v = 0.0
    for cd in base:
        b = bucket_start(cd.ts, interval_ms)
        if cur_ts is None or b != cur_ts:
            if cur_ts is not None:
                out.append(Candle(ts=cur_ts, o=o, h=h, l=l, c=c, v=v))
            cur_ts = b
            o, h, l, c, v = cd.o, cd.h, cd.l, cd.c, cd.v
            continue
        h = max(h, cd.h)
        l = min(l, cd.l)
        c = cd.c
        v += cd.v
    if cur_ts is not None:
        out.append(Candle(ts=cur_ts, o=o, h=h, l=l, c=c, v=v))
    return out


def upsert_candle(candles: List[Candle], cd: Candle) -> List[Candle]:
    """Apply a live feed update in place.

    Same ts as the last candle replaces it (the bar is still forming), a newer
    ts appends, an older one is ignored.
    """
    if candles and cd.ts == candles[-1].ts:
        candles[-1] = cd
    elif not candles or cd.ts > candles[-1].ts:
        candles.append(cd)
    return candles


def closes(candles: Sequence[Candle]) -> List[float]:
    return [float(x.c) for x in candles]


def volumes(candles: Sequence[Candle]) -> List[float]:
    return [float(x.v) for x in candles]
