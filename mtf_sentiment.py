#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Sequence

from indicators import ema, zlema_series
from market_data import Candle
from smc_structure import Bias
from trade_state import Side

Sentiment = Dict[str, str]


def classify_trend(closes: Sequence[float], period: int, *, zero_lag: bool = False) -> str:
    """Last close vs EMA(period) of the same window. Short history or equality -> NEUTRAL."""
    if period <= 0 or len(closes) < period:
        return Bias.NEUTRAL
    if zero_lag:
        e = zlema_series(closes, period)[-1]
    else:
        e = ema(closes, period)
    last = float(closes[-1])
    if last > e:
        return Bias.BULLISH
    if last < e:
        return Bias.BEARISH
    return Bias.NEUTRAL


def new_sentiment(timeframes: Iterable[str]) -> Sentiment:
    return {tf: Bias.NEUTRAL for tf in timeframes}


def update_sentiment(
    sentiment: Sentiment,
    timeframe: str,
    candles: Sequence[Candle],
    period: int,
    *,
    zero_lag: bool = False,
) -> str:
    """Recompute one timeframe from its own window and store it. Returns the new value."""
    val = classify_trend([c.c for c in candles], period, zero_lag=zero_lag)
    sentiment[timeframe] = val
    return val


def is_aligned(
    sentiment: Mapping[str, str],
    side: str,
    required: Sequence[str] = ("5m", "15m"),
    veto: Sequence[str] = ("1h",),
    min_agree: int = 2,
) -> bool:
    """
    Entry gate: at least `min_agree` of the `required` timeframes agree with
    `side` and none of the `veto` timeframes points the other way.
    A missing timeframe counts as NEUTRAL.
    """
    if side == Side.LONG:
        want, against = Bias.BULLISH, Bias.BEARISH
    elif side == Side.SHORT:
        want, against = Bias.BEARISH, Bias.BULLISH
    else:
        raise ValueError(f"unknown side {side!r}")

    need = min(int(min_agree), len(required)) if required else 0
    agree = sum(1 for tf in required if sentiment.get(tf, Bias.NEUTRAL) == want)
    if agree < need:
        return False
    return not any(sentiment.get(tf, Bias.NEUTRAL) == against for tf in veto)
