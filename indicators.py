from __future__ import annotations

import math
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from market_data import Candle


def sma(series: Iterable[float], period: int) -> float:
    """
    Simple mean of the last `period` values.
    Insufficient data (or period <= 0) -> 0.0.
    """
    vals = np.asarray(list(series), dtype=float)
    if period <= 0 or vals.size < period:
        return 0.0
    return float(np.mean(vals[-period:]))


def ema_series(series: Iterable[float], period: int) -> List[float]:
    """
    Full recursive EMA, seeded with the first value:
        ema[i] = x[i] * k + ema[i-1] * (1 - k),  k = 2 / (period + 1)
    A constant input yields the same constant at every index.
    """
    vals = [float(x) for x in series]
    if not vals:
        return []
    if period <= 1:
        return vals
    k = 2.0 / (period + 1.0)
    out = [vals[0]]
    for x in vals[1:]:
        # same as x*k + prev*(1-k); exact when x == prev
        prev = out[-1]
        out.append(prev + k * (x - prev))
    return out


def ema(series: Iterable[float], period: int) -> float:
    """
    Last EMA value. Fewer than `period` values -> 0.0 (same sentinel as sma).
    """
    vals = list(series)
    if not vals or period <= 0 or len(vals) < period:
        return 0.0
    return float(ema_series(vals, period)[-1])


def zlema_series(series: Iterable[float], period: int) -> List[float]:
    """
    Zero-lag EMA: EMA over x[i] + (x[i] - x[i - lag]), lag = (period - 1) // 2.
    The first `lag` points are passed through unadjusted.
    """
    vals = [float(x) for x in series]
    if not vals:
        return []
    lag = max(0, (int(period) - 1) // 2)
    adj = [p if i < lag else p + (p - vals[i - lag]) for i, p in enumerate(vals)]
    return ema_series(adj, period)


def rsi(closes: Sequence[float], period: int = 14) -> float:
    """
    Wilder-style RSI: average gain/loss over the trailing `period` deltas,
    then one incremental Wilder step with the most recent delta.
    Not enough history -> 50.0; zero average loss -> 100.0.
    """
    if period <= 0 or len(closes) < period + 1:
        return 50.0
    arr = np.asarray(closes, dtype=float)
    d = np.diff(arr[-(period + 1):])
    avg_gain = float(np.sum(d[d > 0])) / period
    avg_loss = float(-np.sum(d[d < 0])) / period

    cur = float(d[-1])
    if cur >= 0:
        avg_gain = (avg_gain * (period - 1) + cur) / period
        avg_loss = (avg_loss * (period - 1)) / period
    else:
        avg_gain = (avg_gain * (period - 1)) / period
        avg_loss = (avg_loss * (period - 1) - cur) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd(
    closes: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
    *,
    zero_lag: bool = False,
) -> Tuple[float, float, float]:
    """Return (line, signal, hist). History shorter than `slow` -> (0, 0, 0)."""
    if len(closes) < slow:
        return (0.0, 0.0, 0.0)
    avg = zlema_series if zero_lag else ema_series
    f = avg(closes, fast)
    s = avg(closes, slow)
    line_arr = [a - b for a, b in zip(f, s)]
    sig_arr = avg(line_arr, signal)
    line = float(line_arr[-1])
    sig = float(sig_arr[-1])
    return (line, sig, line - sig)


def true_ranges(candles: Sequence[Candle]) -> List[float]:
    trs: List[float] = []
    for i in range(1, len(candles)):
        h = candles[i].h
        l = candles[i].l
        pc = candles[i - 1].c
        trs.append(max(h - l, abs(h - pc), abs(l - pc)))
    return trs


def atr_series(candles: Sequence[Candle], period: int = 14) -> List[float]:
    """Wilder ATR aligned with `candles` indices.

    The first value (index `period`) is the simple mean of the first `period`
    true ranges; earlier indices are NaN.
    """
    n = len(candles)
    out = [float("nan")] * n
    if period <= 0 or n < period + 1:
        return out
    trs = true_ranges(candles)
    val = sum(trs[:period]) / float(period)
    out[period] = val
    for i in range(period + 1, n):
        val = (val * (period - 1) + trs[i - 1]) / period
        out[i] = val
    return out


def atr(candles: Sequence[Candle], period: int = 14) -> float:
    """Last ATR value, 0.0 when history is too short."""
    s = atr_series(candles, period)
    if not s or math.isnan(s[-1]):
        return 0.0
    return float(s[-1])
