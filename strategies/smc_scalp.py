#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Live 1m confluence scalper.

analyze() builds a fresh Analysis from the trailing candle window,
confluence_score() turns it into an integer in [-5, 5], and decide_entry()
applies the volume, RSI and multi-timeframe filters to produce a TradeSignal
with percentage TP/SL around the last close.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from bot_config import StrategyConfig
from indicators import atr, ema, macd, rsi, sma, zlema_series
from market_data import Candle, closes, volumes
from mtf_sentiment import is_aligned
from smc_structure import Bias, detect_fvg, detect_order_block
from strategies.signals import TradeSignal
from trade_state import Side

STRATEGY_NAME = "smc_confluence"


class Trend:
    UP = "UP"
    DOWN = "DOWN"


@dataclass(frozen=True)
class Macd:
    line: float
    signal: float
    hist: float


@dataclass(frozen=True)
class Analysis:
    rsi: float
    ema: float
    macd: Macd
    atr: float
    vol_sma: float
    trend: str
    fvg: Optional[str]
    order_block: Optional[str]
    score: int
    close: float
    volume: float
    ts: int


def confluence_score(
    trend: str,
    macd_hist: float,
    rsi_value: float,
    fvg: Optional[str],
    order_block: Optional[str],
    *,
    rsi_oversold: float,
    rsi_overbought: float,
) -> int:
    score = 0
    score += 1 if trend == Trend.UP else -1

    if macd_hist > 0:
        score += 1
    elif macd_hist < 0:
        score -= 1

    if rsi_value < rsi_oversold:
        score += 1
    elif rsi_value > rsi_overbought:
        score -= 1

    if fvg == Bias.BULLISH:
        score += 1
    elif fvg == Bias.BEARISH:
        score -= 1

    if order_block == Bias.BULLISH:
        score += 1
    elif order_block == Bias.BEARISH:
        score -= 1
    return score


def analyze(candles: Sequence[Candle], cfg: StrategyConfig) -> Analysis:
    """Indicators and structure of the trailing window. Expects len(candles) >= cfg.ema_period."""
    cl = closes(candles)
    last = candles[-1]

    rsi_v = rsi(cl, cfg.rsi_period)
    if cfg.use_zlema:
        ema_v = zlema_series(cl, cfg.ema_period)[-1] if cl else 0.0
    else:
        ema_v = ema(cl, cfg.ema_period)
    line, sig, hist = macd(cl, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal, zero_lag=cfg.use_zlema)
    fvg = detect_fvg(candles, cfg.fvg_min_gap_pct)
    ob = detect_order_block(candles, cfg.ob_impulse_body_mult)
    trend = Trend.UP if last.c > ema_v else Trend.DOWN

    return Analysis(
        rsi=rsi_v,
        ema=ema_v,
        macd=Macd(line=line, signal=sig, hist=hist),
        atr=atr(candles, cfg.atr_period),
        vol_sma=sma(volumes(candles), cfg.vol_sma_period),
        trend=trend,
        fvg=fvg,
        order_block=ob,
        score=confluence_score(
            trend,
            hist,
            rsi_v,
            fvg,
            ob,
            rsi_oversold=cfg.rsi_oversold,
            rsi_overbought=cfg.rsi_overbought,
        ),
        close=last.c,
        volume=last.v,
        ts=last.ts,
    )


def volume_ok(a: Analysis, multiplier: float) -> bool:
    if a.vol_sma <= 0:
        return True
    return a.volume >= a.vol_sma * multiplier


def decide_entry(
    a: Analysis,
    sentiment: Mapping[str, str],
    cfg: StrategyConfig,
) -> Optional[TradeSignal]:
    """
    LONG: score >= threshold, trend UP, RSI below overbought, MTF aligned bullish.
    SHORT: score <= -threshold, trend DOWN, RSI above oversold, MTF aligned bearish.
    Position, pause and cooldown checks belong to the caller.
    """
    if not volume_ok(a, cfg.vol_multiplier):
        return None

    side: Optional[str] = None
    if a.score >= cfg.confluence_threshold and a.trend == Trend.UP and a.rsi < cfg.rsi_overbought:
        side = Side.LONG
    elif a.score <= -cfg.confluence_threshold and a.trend == Trend.DOWN and a.rsi > cfg.rsi_oversold:
        side = Side.SHORT
    if side is None:
        return None

    if not is_aligned(sentiment, side, cfg.mtf_required, cfg.mtf_veto, cfg.mtf_min_agree):
        return None

    price = a.close
    if side == Side.LONG:
        tp = price * (1 + cfg.tp_percent)
        sl = price * (1 - cfg.sl_percent)
        tag = "MTF bullish"
    else:
        tp = price * (1 - cfg.tp_percent)
        sl = price * (1 + cfg.sl_percent)
        tag = "MTF bearish"

    sig = TradeSignal(
        STRATEGY_NAME,
        cfg.symbol,
        side,
        price,
        sl,
        tp,
        score=a.score,
        reason=f"SMC score {a.score}/5 ({tag})",
    )
    return sig if sig.validate() else None
