#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from bot_config import env_override
from market_data import Candle, aggregate_candles, interval_to_ms
from risk_manager import liquidation_price, utc_day_key
from strategies.signals import TradeSignal
from trade_state import ClosedTrade, ExitReason, PendingOrder, Position, Side, SignalDetail, TradingSession

from .metrics import Summary, summarize


@dataclass(frozen=True)
class BacktestParams:
    symbol: str = "BTCUSDT"
    source_interval: str = "1m"
    interval: str = "5m"

    initial_balance: float = 10000.0
    risk_pct: float = 0.01
    # Notional is capped at balance * leverage (fee included).
    leverage: float = 50.0
    fee_rate: float = 0.0004

    pending_expiry_bars: int = 12
    # Fraction of the day's opening equity; 0 disables the lock.
    daily_loss_limit_pct: float = 0.03
    # UTC hours [start, end) when new orders may be armed; start > end wraps midnight.
    trade_hours_utc: Tuple[int, int] = (0, 24)

    @classmethod
    def from_env(cls, prefix: str = "BT_", **defaults) -> "BacktestParams":
        return env_override(cls(**defaults), prefix)


@dataclass
class BacktestResult:
    trades: List[ClosedTrade]
    equity_curve: List[float]
    summary: Summary
    candles: int = 0
    session: Optional[TradingSession] = field(default=None, repr=False)


SetupFn = Callable[[Sequence[Candle], int], Optional[TradeSignal]]
BarHook = Callable[[int, TradingSession], None]


def prepare_candles(source: Sequence[Candle], params: BacktestParams) -> List[Candle]:
    """Bucket source candles into the working interval (no-op when they match)."""
    src_ms = interval_to_ms(params.source_interval)
    work_ms = interval_to_ms(params.interval)
    if work_ms == src_ms:
        return list(source)
    if work_ms < src_ms:
        raise ValueError(f"cannot build {params.interval} bars from {params.source_interval} data")
    return aggregate_candles(source, work_ms)


def in_trade_hours(ts_ms: int, hours: Tuple[int, int]) -> bool:
    start, end = int(hours[0]), int(hours[1])
    h = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).hour
    if start <= end:
        return start <= h < end
    return h >= start or h < end


def _calc_size(balance: float, entry: float, sl: float, params: BacktestParams) -> float:
    # risk sizing by stop distance
    risk_usd = max(0.0, balance * params.risk_pct)
    stop_dist = abs(entry - sl)
    if risk_usd <= 0 or stop_dist <= 0 or entry <= 0:
        return 0.0
    size = risk_usd / stop_dist * entry
    lev = max(1e-12, float(params.leverage))
    cap = balance / (1.0 / lev + params.fee_rate)
    return max(0.0, min(size, cap))


def _stop_hit(pos: Position, bar: Candle) -> bool:
    if pos.side == Side.LONG:
        return bar.l <= pos.sl_price
    return bar.h >= pos.sl_price


def _tp_hit(pos: Position, bar: Candle) -> bool:
    if pos.side == Side.LONG:
        return bar.h >= pos.tp_price
    return bar.l <= pos.tp_price


def run_backtest(
    source: Sequence[Candle],
    params: Optional[BacktestParams] = None,
    setup_fn: Optional[SetupFn] = None,
    *,
    on_bar: Optional[BarHook] = None,
) -> BacktestResult:
    """Replay candles bar by bar with limit-order fills on the bar range.

    Per bar: manage the open trade (SL first when both levels are inside the
    bar), track equity, apply the daily loss lock, manage the pending order
    (expiry, stop invalidation, fill on touch) and finally arm a new order if
    the book is flat. Any open trade is closed at the last close ("EOP").
    """
    params = params or BacktestParams()
    if setup_fn is None:
        from strategies.sweep_ob import SweepObConfig, SweepObStrategy

        setup_fn = SweepObStrategy(SweepObConfig.from_env(symbol=params.symbol, interval=params.interval))
    strategy_name = getattr(setup_fn, "name", getattr(setup_fn, "__name__", "custom"))

    bars = prepare_candles(source, params)
    session = TradingSession.new(params.symbol, params.initial_balance)
    acc = session.account
    curve: List[float] = [acc.balance]
    day_open_equity = acc.balance
    locked = False
    entry_i = -1

    def _equity() -> float:
        pos = session.position
        return acc.balance + (pos.margin if pos is not None else 0.0)

    def _close(exit_price: float, reason: str, ts: int) -> None:
        pos = session.position
        gross = pos.gross_pnl(exit_price)
        close_fee = pos.size * params.fee_rate
        net = gross - close_fee - pos.open_fee
        acc.balance += pos.margin + gross - close_fee
        acc.realized_pnl_total += net
        acc.pnl_today += net
        acc.trades_today += 1
        session.history.append(
            ClosedTrade(
                side=pos.side,
                entry_price=pos.entry_price,
                exit_price=float(exit_price),
                entry_time=pos.open_time,
                exit_time=int(ts),
                size=pos.size,
                margin=pos.margin,
                leverage=float(params.leverage),
                gross_pnl=gross,
                fees=pos.open_fee + close_fee,
                pnl=net,
                pnl_pct=(net / pos.margin * 100.0) if pos.margin else 0.0,
                reason=reason,
                detail=pos.detail,
            )
        )
        session.position = None

    def _fill(order: PendingOrder, bar: Candle) -> bool:
        size = _calc_size(acc.balance, order.entry_price, order.sl_price, params)
        if size <= 0:
            return False
        margin = size / float(params.leverage)
        fee = size * params.fee_rate
        session.position = Position(
            side=order.side,
            entry_price=order.entry_price,
            margin=margin,
            size=size,
            tp_price=order.tp_price,
            sl_price=order.sl_price,
            liquidation_price=liquidation_price(order.side, order.entry_price, params.leverage),
            open_fee=fee,
            open_time=int(bar.ts),
            initial_sl=order.sl_price,
            detail=SignalDetail(setup=order.setup),
        )
        acc.balance -= margin + fee
        return True

    for i, bar in enumerate(bars):
        day = utc_day_key(bar.ts)
        if day != acc.day_key:
            acc.day_key = day
            acc.pnl_today = 0.0
            acc.trades_today = 0
            day_open_equity = _equity()
            locked = False

        # (1) active trade, from the bar after the fill
        pos = session.position
        if pos is not None and i > entry_i:
            if _stop_hit(pos, bar):
                # SL assumed first when both levels sit inside the bar
                _close(pos.sl_price, ExitReason.STOP_LOSS, bar.ts)
            elif _tp_hit(pos, bar):
                _close(pos.tp_price, ExitReason.TAKE_PROFIT, bar.ts)

        # (2) equity / drawdown
        eq = _equity()
        curve.append(eq)

        # (3) daily loss lock
        if not locked and params.daily_loss_limit_pct > 0 and day_open_equity > 0:
            if (day_open_equity - eq) / day_open_equity >= params.daily_loss_limit_pct:
                locked = True
        if locked:
            session.pending = None

        # (4) pending order
        order = session.pending
        if order is not None:
            if i - order.setup_index > params.pending_expiry_bars:
                session.pending = None
            elif (order.side == Side.LONG and bar.l <= order.sl_price) or (
                order.side == Side.SHORT and bar.h >= order.sl_price
            ):
                session.pending = None
            elif (order.side == Side.LONG and bar.l <= order.entry_price) or (
                order.side == Side.SHORT and bar.h >= order.entry_price
            ):
                session.pending = None
                if _fill(order, bar):
                    entry_i = i

        # (5) arm a new order
        if (
            not locked
            and session.position is None
            and session.pending is None
            and in_trade_hours(bar.ts, params.trade_hours_utc)
        ):
            sig = setup_fn(bars, i)
            if sig is not None and sig.validate():
                session.pending = PendingOrder(
                    side=sig.side,
                    entry_price=float(sig.entry),
                    sl_price=float(sig.sl),
                    tp_price=float(sig.tp),
                    setup_index=i,
                    setup=sig.strategy,
                )

        if session.position is not None and session.pending is not None:
            raise RuntimeError("pending order alongside an open trade")
        if on_bar is not None:
            on_bar(i, session)

    if session.position is not None and bars:
        _close(bars[-1].c, ExitReason.END_OF_DATA, bars[-1].ts)
        curve.append(_equity())
    session.pending = None

    summary = summarize(strategy_name, session.history, curve, params.initial_balance, acc.balance)
    return BacktestResult(
        trades=list(session.history),
        equity_curve=curve,
        summary=summary,
        candles=len(bars),
        session=session,
    )