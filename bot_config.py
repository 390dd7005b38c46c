#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Tuple


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _env_csv(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return tuple(x.strip() for x in v.split(",") if x.strip())


def env_override(obj, prefix: str):
    """Return a copy of a dataclass with fields overridden from PREFIX_FIELD env vars.

    The field's default type decides how the variable is parsed; malformed values
    keep the current value.
    """
    changes = {}
    for f in fields(obj):
        name = f"{prefix}{f.name.upper()}"
        cur = getattr(obj, f.name)
        if isinstance(cur, bool):
            val = _env_bool(name, cur)
        elif isinstance(cur, int):
            val = _env_int(name, cur)
        elif isinstance(cur, float):
            val = _env_float(name, cur)
        elif isinstance(cur, tuple):
            val = _env_csv(name, cur)
        elif isinstance(cur, str):
            val = _env_str(name, cur)
        else:
            continue
        if val != cur:
            changes[f.name] = val
    return replace(obj, **changes) if changes else obj


@dataclass(frozen=True)
class StrategyConfig:
    # market
    symbol: str = "BTCUSDT"
    interval: str = "1m"
    limit_candles: int = 100

    # indicators
    rsi_period: int = 14
    ema_period: int = 50
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    atr_period: int = 14
    vol_sma_period: int = 20
    use_zlema: bool = False

    # signal thresholds
    rsi_oversold: float = 35.0
    rsi_overbought: float = 65.0
    vol_multiplier: float = 1.2
    confluence_threshold: int = 4

    # structure strictness (0 disables)
    fvg_min_gap_pct: float = 0.0
    ob_impulse_body_mult: float = 0.0

    # multi-timeframe gate
    sentiment_timeframes: Tuple[str, ...] = ("1m", "5m", "15m", "1h", "4h", "1d")
    mtf_required: Tuple[str, ...] = ("5m", "15m")
    mtf_veto: Tuple[str, ...] = ("1h",)
    mtf_min_agree: int = 2

    # position
    leverage: int = 50
    initial_balance: float = 10000.0
    margin_per_trade: float = 50.0
    tp_percent: float = 0.008
    sl_percent: float = 0.004
    fee_rate: float = 0.0004
    breakeven_r: float = 1.5
    cooldown_sec: int = 60
    # off: no new entries, open positions are still managed
    auto_trade: bool = True

    # risk guards
    max_daily_loss: float = 100.0
    max_trades_per_day: int = 25
    max_consecutive_errors: int = 5

    # scheduling
    tick_interval_sec: float = 15.0
    heartbeat_sec: float = 600.0

    @classmethod
    def from_env(cls, prefix: str = "SMC_") -> "StrategyConfig":
        return env_override(cls(), prefix)
