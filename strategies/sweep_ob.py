#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from bot_config import env_override
from indicators import atr_series, ema_series, rsi
from market_data import Candle, aggregate_candles, interval_to_ms
from mtf_sentiment import classify_trend, is_aligned
from smc_structure import (
    Bias,
    LiquiditySweep,
    detect_liquidity_sweep,
    find_bos_order_block,
    swing_structure_bias,
)
from strategies.signals import TradeSignal
from trade_state import Side


@dataclass(frozen=True)
class SweepObConfig:
    symbol: str = "BTCUSDT"
    interval: str = "5m"

    # liquidity sweep
    atr_period: int = 14
    sweep_lookback: int = 20
    min_touches: int = 2
    sweep_tol_atr: float = 0.2
    sweep_tol_pct: float = 0.0008
    sweep_valid_bars: int = 12

    # break of structure / order block
    swing_lookback: int = 10
    sl_atr_buffer: float = 0.1
    min_rr: float = 1.5

    # momentum / structure filters
    rsi_period: int = 14
    rsi_oversold: float = 35.0
    rsi_overbought: float = 65.0
    long_ema_period: int = 200

    # higher timeframes, built from the working candles (closed buckets only)
    htf_intervals: Tuple[str, ...] = ("15m", "1h")
    htf_required: Tuple[str, ...] = ("15m",)
    htf_veto: Tuple[str, ...] = ("1h",)
    htf_ema_period: int = 50

    allow_longs: bool = True
    allow_shorts: bool = True

    @classmethod
    def from_env(cls, prefix: str = "SWEEP_", **defaults) -> "SweepObConfig":
        return env_override(cls(**defaults), prefix)


class SweepObStrategy:
    """
    Liquidity sweep -> break of structure -> limit order at the order block.

    Called once per working bar as ``strategy(candles, i)`` and only looks at
    ``candles[:i + 1]``. A sweep stays armed for ``sweep_valid_bars`` bars;
    the first BOS in its direction inside that window yields a TradeSignal
    with entry at the block midpoint, stop beyond the block and the sweep wick,
    and target at the impulse extreme.
    """

    name = "sweep_ob"

    def __init__(self, cfg: Optional[SweepObConfig] = None):
        self.cfg = cfg or SweepObConfig()
        self._src: Optional[Sequence[Candle]] = None
        self._sweep: Optional[Tuple[LiquiditySweep, int]] = None

    def _prepare(self, candles: Sequence[Candle]) -> None:
        cfg = self.cfg
        self._src = candles
        self._sweep = None
        self._closes = [c.c for c in candles]
        self._atr = atr_series(candles, cfg.atr_period)
        self._long_ema = ema_series(self._closes, cfg.long_ema_period)
        self._work_ms = interval_to_ms(cfg.interval)
        self._htf: Dict[str, Tuple[int, List[int], List[float]]] = {}
        for tf in cfg.htf_intervals:
            ms = interval_to_ms(tf)
            agg = aggregate_candles(candles, ms)
            self._htf[tf] = (ms, [c.ts for c in agg], [c.c for c in agg])

    def htf_sentiment(self, ts: int) -> Dict[str, str]:
        """Trend of each higher timeframe using only buckets closed by the end of bar `ts`."""
        period = self.cfg.htf_ema_period
        out: Dict[str, str] = {}
        for tf, (ms, ts_list, closes) in self._htf.items():
            n = bisect_right(ts_list, ts + self._work_ms - ms)
            window = closes[max(0, n - 3 * period):n]
            out[tf] = classify_trend(window, period)
        return out

    def __call__(self, candles: Sequence[Candle], i: int) -> Optional[TradeSignal]:
        if candles is not self._src:
            self._prepare(candles)
        cfg = self.cfg
        a = self._atr[i]
        if math.isnan(a):
            return None
        cur = candles[i]

        sw = detect_liquidity_sweep(
            candles[max(0, i - cfg.sweep_lookback):i + 1],
            a,
            min_touches=cfg.min_touches,
            atr_mult=cfg.sweep_tol_atr,
            price_frac=cfg.sweep_tol_pct,
        )
        if sw is not None and self._side_allowed(sw.side):
            self._sweep = (sw, i)
            return None

        if self._sweep is None:
            return None
        sw, si = self._sweep
        if i - si > cfg.sweep_valid_bars:
            self._sweep = None
            return None
        # price ran through the sweep wick again: setup failed
        if (sw.side == Side.LONG and cur.l < sw.extreme) or (sw.side == Side.SHORT and cur.h > sw.extreme):
            self._sweep = None
            return None

        ob = find_bos_order_block(candles[max(0, i - cfg.swing_lookback):i + 1], sw.side, cfg.swing_lookback)
        if ob is None:
            return None

        impulse = candles[si:i + 1]
        buf = cfg.sl_atr_buffer * a
        entry = ob.mid
        if sw.side == Side.LONG:
            sl = min(ob.low, sw.extreme) - buf
            tp = max(x.h for x in impulse)
            if not (sl < entry < cur.c and tp > entry):
                return None
        else:
            sl = max(ob.high, sw.extreme) + buf
            tp = min(x.l for x in impulse)
            if not (sl > entry > cur.c and tp < entry):
                return None

        sig = TradeSignal(
            self.name,
            cfg.symbol,
            sw.side,
            entry,
            sl,
            tp,
            reason=f"sweep {sw.level:.2f} bos {ob.break_level:.2f}",
        )
        if sig.rr < cfg.min_rr:
            return None

        r = rsi(self._closes[max(0, i - 3 * cfg.rsi_period):i + 1], cfg.rsi_period)
        if sw.side == Side.LONG and r >= cfg.rsi_overbought:
            return None
        if sw.side == Side.SHORT and r <= cfg.rsi_oversold:
            return None

        long_ema = self._long_ema[i] if i + 1 >= cfg.long_ema_period else None
        bias = swing_structure_bias(candles[max(0, i - 2):i + 1], cfg.long_ema_period, long_ema=long_ema)
        if (sw.side == Side.LONG and bias == Bias.BEARISH) or (sw.side == Side.SHORT and bias == Bias.BULLISH):
            return None

        if not is_aligned(self.htf_sentiment(cur.ts), sw.side, cfg.htf_required, cfg.htf_veto, len(cfg.htf_required)):
            return None

        self._sweep = None
        return sig if sig.validate() else None

    def _side_allowed(self, side: str) -> bool:
        if side == Side.LONG:
            return self.cfg.allow_longs
        return self.cfg.allow_shorts
