import os
import sys

# Ensure repo root is on sys.path (flat layout, no installed package needed)
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import pytest

from market_data import Candle

# 2024-01-01T00:00:00Z
DAY1_MS = 1704067200000
MIN_MS = 60_000


def bar(ts, o, c, *, h=None, l=None, v=10.0):
    """Candle with a 0.5 wick on both sides unless high/low are given."""
    hi = max(o, c) + 0.5 if h is None else h
    lo = min(o, c) - 0.5 if l is None else l
    return Candle(ts=int(ts), o=float(o), h=float(hi), l=float(lo), c=float(c), v=float(v))


def breakout_candles(start_ms=DAY1_MS, step_ms=MIN_MS):
    """
    50 flat candles at 100, then a 10-candle accelerating rally with one red
    candle (bullish order block), a bullish gap between offsets -4 and -2 and a
    volume spike on the last candle.
    """
    out = [bar(start_ms + i * step_ms, 100.0, 100.0) for i in range(50)]
    closes = [101.0, 102.5, 104.5, 107.0, 110.0, 113.5, 117.5, 122.0, 127.0, 132.5]
    prev = 100.0
    for j, c in enumerate(closes):
        i = 50 + j
        o = 114.5 if c == 113.5 else prev
        v = 50.0 if j == len(closes) - 1 else 10.0
        out.append(bar(start_ms + i * step_ms, o, c, v=v))
        prev = c
    return out


@pytest.fixture
def rally():
    return breakout_candles()
