#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Smart-money market structure on a candle window:
fair value gaps, impulse order blocks, equal-level liquidity sweeps,
swing structure bias and break-of-structure order blocks.

All functions take oldest-first candles and never mutate them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from indicators import ema
from market_data import Candle
from trade_state import Side


class Bias:
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class LiquiditySweep:
    side: str       # trade direction the sweep suggests
    level: float    # swept pool level
    extreme: float  # wick beyond the pool
    ts: int


@dataclass(frozen=True)
class OrderBlockZone:
    side: str
    low: float
    high: float
    ts: int
    break_level: float

    @property
    def mid(self) -> float:
        return (self.low + self.high) / 2.0


def detect_fvg(candles: Sequence[Candle], min_gap_pct: float = 0.0) -> Optional[str]:
    """Three-candle gap between the candles at offsets -4 and -2.

    BULLISH when the newer low is above the older high, BEARISH when the newer
    high is below the older low. With ``min_gap_pct`` > 0 the gap must also
    exceed that fraction of the older close.
    """
    if len(candles) < 5:
        return None
    c1 = candles[-4]
    c3 = candles[-2]
    thr = c1.c * max(0.0, min_gap_pct)
    if c3.l - c1.h > thr:
        return Bias.BULLISH
    if c1.l - c3.h > thr:
        return Bias.BEARISH
    return None


def scan_order_blocks(candles: Sequence[Candle], body_mult: float = 0.0) -> Dict[str, int]:
    """Most recent impulse-reversal block per polarity, as index into `candles`.

    Looks at the five closed candles before the last one. A red candle followed
    by two greens is a BULLISH block, a green followed by two reds is BEARISH.
    ``body_mult`` > 0 additionally requires the third candle's body to exceed
    the block body by that factor.
    """
    found: Dict[str, int] = {}
    n = len(candles)
    if n < 5:
        return found
    start = max(0, n - 6)
    recent = candles[start:n - 1]
    for i in range(len(recent) - 2):
        a, b, c = recent[i], recent[i + 1], recent[i + 2]
        if body_mult > 0 and not (c.body > a.body * body_mult):
            continue
        if not a.is_green and b.is_green and c.is_green:
            found[Bias.BULLISH] = start + i
        if a.is_green and not b.is_green and not c.is_green:
            found[Bias.BEARISH] = start + i
    return found


def detect_order_block(candles: Sequence[Candle], body_mult: float = 0.0) -> Optional[str]:
    found = scan_order_blocks(candles, body_mult)
    if not found:
        return None
    return max(found, key=lambda k: found[k])


def swing_structure_bias(
    candles: Sequence[Candle],
    ema_period: int = 200,
    long_ema: Optional[float] = None,
) -> str:
    """
    Higher highs and higher lows over the last three candles -> BULLISH,
    lower highs and lower lows -> BEARISH. Otherwise the last close against
    EMA(ema_period); pass ``long_ema`` to reuse a precomputed value.
    """
    if len(candles) < 3:
        return Bias.NEUTRAL
    a, b, c = candles[-3], candles[-2], candles[-1]
    if c.h > b.h > a.h and c.l > b.l > a.l:
        return Bias.BULLISH
    if c.h < b.h < a.h and c.l < b.l < a.l:
        return Bias.BEARISH

    e = long_ema
    if e is None:
        e = ema([x.c for x in candles], ema_period)
    if not e:
        return Bias.NEUTRAL
    if c.c > e:
        return Bias.BULLISH
    if c.c < e:
        return Bias.BEARISH
    return Bias.NEUTRAL


def equal_level_pools(values: Sequence[float], tol: float, min_touches: int = 2, *, highs: bool = True) -> List[float]:
    """
    Cluster approximately equal prices (within `tol` of the cluster's first
    price after sorting). Clusters with at least `min_touches` members become
    pools; a high pool sits at its highest member, a low pool at its lowest.
    """
    return [level for level, _ in _pool_clusters(values, tol, min_touches, highs)]


def _pool_clusters(values: Sequence[float], tol: float, min_touches: int, highs: bool) -> List[Tuple[float, int]]:
    """(level, index of the pool's first touch in `values`) per pool."""
    pools: List[Tuple[float, int]] = []
    group: List[Tuple[float, int]] = []

    def _flush() -> None:
        if len(group) >= min_touches:
            prices = [x for x, _ in group]
            pools.append((max(prices) if highs else min(prices), min(i for _, i in group)))

    for x, i in sorted((float(v), i) for i, v in enumerate(values)):
        if group and x - group[0][0] > tol:
            _flush()
            group = []
        group.append((x, i))
    _flush()
    return pools


def sweep_tolerance(atr_value: float, price: float, atr_mult: float = 0.2, price_frac: float = 0.0008) -> float:
    return max(atr_mult * max(0.0, atr_value), price_frac * abs(price))


def detect_liquidity_sweep(
    window: Sequence[Candle],
    atr_value: float,
    *,
    min_touches: int = 2,
    atr_mult: float = 0.2,
    price_frac: float = 0.0008,
) -> Optional[LiquiditySweep]:
    """
    The last candle of `window` against equal-level pools in the candles before
    it. A wick above a high pool by more than the tolerance that closes back
    below it is a SHORT sweep; the mirror on low pools is LONG. A pool that a
    later candle already ran through is spent and ignored. If both sides
    sweep in one candle the result is ambiguous and None.
    """
    if len(window) < min_touches + 1:
        return None
    cur = window[-1]
    ref = window[:-1]
    tol = sweep_tolerance(atr_value, cur.c, atr_mult, price_frac)

    short_level: Optional[float] = None
    for level, first in _pool_clusters([x.h for x in ref], tol, min_touches, True):
        # spent: run through after it formed
        if any(x.h > level + tol for x in ref[first + 1:]):
            continue
        if cur.h > level + tol and cur.c < level:
            short_level = level if short_level is None else max(short_level, level)

    long_level: Optional[float] = None
    for level, first in _pool_clusters([x.l for x in ref], tol, min_touches, False):
        if any(x.l < level - tol for x in ref[first + 1:]):
            continue
        if cur.l < level - tol and cur.c > level:
            long_level = level if long_level is None else min(long_level, level)

    if short_level is not None and long_level is not None:
        return None
    if short_level is not None:
        return LiquiditySweep(side=Side.SHORT, level=short_level, extreme=cur.h, ts=cur.ts)
    if long_level is not None:
        return LiquiditySweep(side=Side.LONG, level=long_level, extreme=cur.l, ts=cur.ts)
    return None


def find_bos_order_block(candles: Sequence[Candle], side: str, swing_lookback: int = 10) -> Optional[OrderBlockZone]:
    """
    Break of structure on the last candle plus the block that launched it.

    LONG: the last close breaks above the highest high of the previous
    `swing_lookback` candles, and the candle before did not close above the
    swing high as it stood one bar earlier. The block is the nearest red
    candle before the break; its [low, high] range is the entry zone.
    SHORT mirrors this with lows and a green block.
    """
    if len(candles) < 3 or swing_lookback < 2:
        return None
    cur = candles[-1]
    prev = candles[-2]
    ref = candles[-(swing_lookback + 1):-1]
    prev_ref = candles[-(swing_lookback + 2):-2]

    if side == Side.LONG:
        swing = max(x.h for x in ref)
        if not (cur.c > swing and prev.c <= max(x.h for x in prev_ref)):
            return None
        want_green = False
    elif side == Side.SHORT:
        swing = min(x.l for x in ref)
        if not (cur.c < swing and prev.c >= min(x.l for x in prev_ref)):
            return None
        want_green = True
    else:
        raise ValueError(f"unknown side {side!r}")

    for cd in reversed(ref):
        if cd.is_green == want_green and cd.c != cd.o:
            return OrderBlockZone(side=side, low=cd.l, high=cd.h, ts=cd.ts, break_level=swing)
    return None
