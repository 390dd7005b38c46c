#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Binance public kline helpers with local caching.

Only public endpoints are used, so no API keys are required.

A month of 1-minute klines is ~43k rows, so ranged downloads are cached
under ./data_cache and reused by later backtests.
"""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import requests

from market_data import Candle, interval_to_ms, normalize_klines

DEFAULT_BINANCE_BASE = os.getenv("BINANCE_BASE", "https://api.binance.com")
CACHE_DIR = os.getenv("BINANCE_DATA_CACHE_DIR", "data_cache")
DEFAULT_POLITE_SLEEP_SEC = float(os.getenv("BINANCE_DATA_POLITE_SLEEP_SEC", "0.25"))
MAX_LIMIT = 1000


def _dt_utc(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y%m%d%H%M")


def _cache_path(symbol: str, interval: str, start_ms: int, end_ms: int) -> str:
    os.makedirs(CACHE_DIR, exist_ok=True)
    return os.path.join(CACHE_DIR, f"{symbol}_{interval}_{_dt_utc(start_ms)}_{_dt_utc(end_ms)}.json")


def _req_json(url: str, params: Dict[str, Any], timeout: int = 20) -> Any:
    r = requests.get(url, params=params, timeout=timeout)
    if r.status_code != 200:
        raise RuntimeError(f"Binance HTTP {r.status_code}: {r.text[:200]}")
    return r.json()


def fetch_recent_klines(
    symbol: str,
    interval: str,
    limit: int,
    *,
    base: str = DEFAULT_BINANCE_BASE,
    timeout: int = 10,
) -> List[List[Any]]:
    """Last `limit` raw klines (oldest-first, the newest one still forming)."""
    url = f"{base.rstrip('/')}/api/v3/klines"
    params = {"symbol": symbol, "interval": interval, "limit": max(1, min(MAX_LIMIT, int(limit)))}
    js = _req_json(url, params, timeout=timeout)
    if not isinstance(js, list):
        raise RuntimeError(f"Binance unexpected payload: {str(js)[:200]}")
    return js


def fetch_klines_range(
    symbol: str,
    interval: str,
    start_ms: int,
    end_ms: int,
    *,
    base: str = DEFAULT_BINANCE_BASE,
    cache: bool = True,
    polite_sleep_sec: float = DEFAULT_POLITE_SLEEP_SEC,
) -> List[Candle]:
    """Fetch [start_ms, end_ms) klines and return an oldest-first list of Candle.

    Binance returns oldest-first pages, so we walk forward with startTime.
    HTTP 429/418 (rate limit / ban warning) backs off and retries.
    """
    if end_ms <= start_ms:
        return []

    cache_path = _cache_path(symbol, interval, start_ms, end_ms)
    if cache and os.path.exists(cache_path):
        with open(cache_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return [Candle(**x) for x in raw]

    url = f"{base.rstrip('/')}/api/v3/klines"
    step_ms = interval_to_ms(interval)
    rows: List[Any] = []
    cursor = int(start_ms)

    while cursor < end_ms:
        params = {
            "symbol": symbol,
            "interval": interval,
            "startTime": cursor,
            "endTime": int(end_ms) - 1,
            "limit": MAX_LIMIT,
        }
        backoff = max(0.5, float(polite_sleep_sec))
        page = None
        for _attempt in range(8):
            r = requests.get(url, params=params, timeout=20)
            if r.status_code in (418, 429):
                time.sleep(min(30.0, backoff))
                backoff = min(30.0, backoff * 2.0)
                continue
            if r.status_code != 200:
                raise RuntimeError(f"Binance HTTP {r.status_code}: {r.text[:200]}")
            page = r.json()
            break
        else:
            raise RuntimeError("Binance rate limit: retries exhausted")

        if not page:
            break
        rows.extend(page)

        last_open = int(page[-1][0])
        nxt = last_open + step_ms
        if nxt <= cursor:
            break
        cursor = nxt

        if polite_sleep_sec > 0:
            time.sleep(polite_sleep_sec)

    out = [c for c in normalize_klines(rows) if start_ms <= c.ts < end_ms]

    if cache:
        with open(cache_path, "w", encoding="utf-8") as f:
            json.dump([x.__dict__ for x in out], f, ensure_ascii=False)

    return out
