#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Position lifecycle and risk guards for the live engine.

RiskManager is the only writer of a TradingSession: it opens and closes
positions (balance bookkeeping in one step), trails the stop to breakeven,
rolls daily counters on the UTC date and pauses the engine on daily loss,
trade count or repeated tick failures.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Union

from bot_config import StrategyConfig
from strategies.signals import TradeSignal
from trade_state import (
    BreakevenTriggered,
    ClosedTrade,
    EnginePaused,
    ExitReason,
    PauseReason,
    Position,
    PositionClosed,
    PositionOpened,
    Side,
    TickFailed,
    TradingSession,
)


def utc_day_key(ts_ms: int) -> str:
    return datetime.fromtimestamp(int(ts_ms) / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d")


def liquidation_price(side: str, entry: float, leverage: float) -> float:
    if leverage <= 0:
        return 0.0
    return entry * (1.0 - Side.sign(side) / float(leverage))


class RiskManager:
    def __init__(self, cfg: StrategyConfig, session: Optional[TradingSession] = None):
        self.cfg = cfg
        self.session = session or TradingSession.new(cfg.symbol, cfg.initial_balance)

    # -------------------- state shortcuts --------------------

    @property
    def account(self):
        return self.session.account

    @property
    def position(self) -> Optional[Position]:
        return self.session.position

    @property
    def is_running(self) -> bool:
        return self.session.is_running

    # -------------------- lifecycle --------------------

    def start(self, now_ms: int) -> bool:
        """Mark running unless still paused for today. Returns the running flag."""
        self.refresh_day(now_ms)
        if self.account.paused_reason:
            return False
        self.session.is_running = True
        return True

    def stop(self) -> None:
        self.session.is_running = False

    def pause(self, reason: str) -> EnginePaused:
        acc = self.account
        acc.paused_reason = reason
        self.session.is_running = False
        self.session.pending = None
        return EnginePaused(
            symbol=self.session.symbol,
            reason=reason,
            pnl_today=acc.pnl_today,
            trades_today=acc.trades_today,
            consecutive_errors=acc.consecutive_errors,
        )

    # -------------------- daily guards --------------------

    def refresh_day(self, now_ms: int) -> bool:
        """Reset daily counters and pause reason on a new UTC date. True if it rolled."""
        key = utc_day_key(now_ms)
        acc = self.account
        if key == acc.day_key:
            return False
        acc.day_key = key
        acc.pnl_today = 0.0
        acc.trades_today = 0
        acc.paused_reason = ""
        return True

    def check_guards(self, now_ms: int) -> Optional[EnginePaused]:
        self.refresh_day(now_ms)
        acc = self.account
        if acc.pnl_today <= -abs(self.cfg.max_daily_loss):
            return self.pause(PauseReason.DAILY_LOSS)
        if acc.trades_today >= self.cfg.max_trades_per_day:
            return self.pause(PauseReason.MAX_TRADES)
        return None

    def record_success(self) -> None:
        self.account.consecutive_errors = 0

    def record_failure(self, error: Union[BaseException, str]) -> List[object]:
        acc = self.account
        acc.consecutive_errors += 1
        events: List[object] = [
            TickFailed(symbol=self.session.symbol, error=str(error), consecutive_errors=acc.consecutive_errors)
        ]
        if acc.consecutive_errors >= self.cfg.max_consecutive_errors:
            events.append(self.pause(PauseReason.ERRORS))
        return events

    def cooldown_elapsed(self, now_ms: int) -> bool:
        last = self.account.last_signal_at
        if last is None:
            return True
        return (int(now_ms) - int(last)) >= int(self.cfg.cooldown_sec * 1000)

    def can_open(self) -> bool:
        acc = self.account
        return (
            self.session.is_running
            and not acc.paused_reason
            and self.session.position is None
            and self.session.pending is None
            and acc.balance >= self.entry_cost()
        )

    def entry_cost(self) -> float:
        """Margin plus the opening fee on the leveraged notional."""
        margin = float(self.cfg.margin_per_trade)
        return margin + margin * float(self.cfg.leverage) * float(self.cfg.fee_rate)

    # -------------------- position lifecycle --------------------

    def open_position(self, sig: TradeSignal, now_ms: int) -> PositionOpened:
        if self.session.position is not None:
            raise RuntimeError("position already open")
        if not sig.validate():
            raise ValueError(f"invalid signal: {sig}")

        cfg = self.cfg
        margin = float(cfg.margin_per_trade)
        size = margin * float(cfg.leverage)
        fee = size * float(cfg.fee_rate)

        pos = Position(
            side=sig.side,
            entry_price=float(sig.entry),
            margin=margin,
            size=size,
            tp_price=float(sig.tp),
            sl_price=float(sig.sl),
            liquidation_price=liquidation_price(sig.side, sig.entry, cfg.leverage),
            open_fee=fee,
            open_time=int(now_ms),
            initial_sl=float(sig.sl),
            detail=sig.detail(),
        )
        acc = self.account
        acc.balance -= margin + fee
        acc.last_signal_at = int(now_ms)
        self.session.position = pos

        return PositionOpened(
            symbol=self.session.symbol,
            side=pos.side,
            entry_price=pos.entry_price,
            tp_price=pos.tp_price,
            sl_price=pos.sl_price,
            liquidation_price=pos.liquidation_price,
            margin=pos.margin,
            size=pos.size,
            open_fee=pos.open_fee,
            time=pos.open_time,
            detail=pos.detail,
            balance=acc.balance,
        )

    def apply_breakeven(self, price: float) -> Optional[BreakevenTriggered]:
        """One-shot: once price runs breakeven_r times the initial risk, stop goes to entry."""
        pos = self.session.position
        if pos is None or pos.is_breakeven:
            return None
        risk = abs(pos.entry_price - pos.initial_sl)
        if risk <= 0:
            return None
        sign = Side.sign(pos.side)
        if sign * (price - pos.entry_price) < self.cfg.breakeven_r * risk:
            return None

        old_sl = pos.sl_price
        pos.detail = replace(pos.detail, is_breakeven=True)
        # never loosen
        if sign * (pos.entry_price - old_sl) <= 0:
            return None
        pos.sl_price = pos.entry_price
        return BreakevenTriggered(
            symbol=self.session.symbol,
            side=pos.side,
            entry_price=pos.entry_price,
            old_sl=old_sl,
            price=float(price),
        )

    def check_exit(self, price: float) -> Optional[str]:
        """First breached level wins: liquidation, take profit, stop loss."""
        pos = self.session.position
        if pos is None:
            return None
        if pos.side == Side.LONG:
            if price <= pos.liquidation_price:
                return ExitReason.LIQUIDATION
            if price >= pos.tp_price:
                return ExitReason.TAKE_PROFIT
            if price <= pos.sl_price:
                return ExitReason.STOP_LOSS
        else:
            if price >= pos.liquidation_price:
                return ExitReason.LIQUIDATION
            if price <= pos.tp_price:
                return ExitReason.TAKE_PROFIT
            if price >= pos.sl_price:
                return ExitReason.STOP_LOSS
        return None

    def close_position(self, price: float, reason: str, now_ms: int) -> PositionClosed:
        pos = self.session.position
        if pos is None:
            raise RuntimeError("no open position")

        gross = pos.gross_pnl(price)
        close_fee = pos.size * float(self.cfg.fee_rate)
        net = gross - close_fee - pos.open_fee

        acc = self.account
        acc.balance += pos.margin + gross - close_fee
        acc.realized_pnl_total += net
        acc.pnl_today += net
        acc.trades_today += 1

        trade = ClosedTrade(
            side=pos.side,
            entry_price=pos.entry_price,
            exit_price=float(price),
            entry_time=pos.open_time,
            exit_time=int(now_ms),
            size=pos.size,
            margin=pos.margin,
            leverage=float(self.cfg.leverage),
            gross_pnl=gross,
            fees=pos.open_fee + close_fee,
            pnl=net,
            pnl_pct=(net / pos.margin * 100.0) if pos.margin else 0.0,
            reason=reason,
            detail=pos.detail,
        )
        self.session.history.append(trade)
        self.session.position = None

        return PositionClosed(
            symbol=self.session.symbol,
            trade=trade,
            balance=acc.balance,
            pnl_today=acc.pnl_today,
            trades_today=acc.trades_today,
        )

    def equity(self, price: Optional[float] = None) -> float:
        """Balance plus locked margin and unrealized PnL at `price`."""
        pos = self.session.position
        bal = self.account.balance
        if pos is None:
            return bal
        if price is None:
            return bal + pos.margin
        return bal + pos.margin + pos.gross_pnl(price)
