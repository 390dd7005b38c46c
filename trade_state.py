# trade_state.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class Side:
    LONG = "LONG"
    SHORT = "SHORT"

    ALL = (LONG, SHORT)

    @staticmethod
    def sign(side: str) -> int:
        if side == Side.LONG:
            return 1
        if side == Side.SHORT:
            return -1
        raise ValueError(f"unknown side {side!r}")


class ExitReason:
    LIQUIDATION = "LIQUIDATION"
    TAKE_PROFIT = "TAKE PROFIT"
    STOP_LOSS = "STOP LOSS"
    MANUAL = "MANUAL"
    # backtest only
    END_OF_DATA = "EOP"


class PauseReason:
    DAILY_LOSS = "DAILY_LOSS_LIMIT"
    MAX_TRADES = "MAX_TRADES_PER_DAY"
    ERRORS = "CONSECUTIVE_ERRORS"


@dataclass(frozen=True)
class SignalDetail:
    """What produced a position: setup name, confluence score, breakeven flag."""
    setup: str
    score: int = 0
    is_breakeven: bool = False


@dataclass
class Position:
    side: str
    entry_price: float
    margin: float
    size: float          # notional = margin * leverage
    tp_price: float
    sl_price: float
    liquidation_price: float
    open_fee: float
    open_time: int       # ms
    initial_sl: float = 0.0
    detail: SignalDetail = field(default_factory=lambda: SignalDetail(setup=""))

    @property
    def is_breakeven(self) -> bool:
        return self.detail.is_breakeven

    @property
    def qty(self) -> float:
        return self.size / self.entry_price if self.entry_price else 0.0

    def gross_pnl(self, price: float) -> float:
        return Side.sign(self.side) * (price - self.entry_price) * self.qty

    def roe_pct(self, price: float) -> float:
        if self.margin <= 0:
            return 0.0
        return self.gross_pnl(price) / self.margin * 100.0


@dataclass(frozen=True)
class PendingOrder:
    side: str
    entry_price: float
    sl_price: float
    tp_price: float
    setup_index: int
    setup: str = ""


@dataclass
class AccountState:
    balance: float
    realized_pnl_total: float = 0.0
    day_key: str = ""
    pnl_today: float = 0.0
    trades_today: int = 0
    consecutive_errors: int = 0
    paused_reason: str = ""
    last_signal_at: Optional[int] = None  # ms


@dataclass(frozen=True)
class ClosedTrade:
    side: str
    entry_price: float
    exit_price: float
    entry_time: int
    exit_time: int
    size: float
    margin: float
    leverage: float
    gross_pnl: float
    fees: float
    pnl: float           # net of both fees
    pnl_pct: float       # of margin
    reason: str
    detail: SignalDetail


@dataclass
class TradingSession:
    """All mutable engine state for one instrument. Owned by a RiskManager."""
    symbol: str
    account: AccountState
    is_running: bool = False
    position: Optional[Position] = None
    pending: Optional[PendingOrder] = None
    history: List[ClosedTrade] = field(default_factory=list)

    @classmethod
    def new(cls, symbol: str, initial_balance: float) -> "TradingSession":
        return cls(symbol=symbol, account=AccountState(balance=float(initial_balance)))

    def reset(self, initial_balance: float) -> None:
        self.account = AccountState(balance=float(initial_balance))
        self.is_running = False
        self.position = None
        self.pending = None
        self.history = []


# ---------------------------------------------------------------------------
# Engine events (consumed by notifier / persistence in the runner)


@dataclass(frozen=True)
class PositionOpened:
    symbol: str
    side: str
    entry_price: float
    tp_price: float
    sl_price: float
    liquidation_price: float
    margin: float
    size: float
    open_fee: float
    time: int
    detail: SignalDetail
    balance: float


@dataclass(frozen=True)
class PositionClosed:
    symbol: str
    trade: ClosedTrade
    balance: float
    pnl_today: float
    trades_today: int


@dataclass(frozen=True)
class BreakevenTriggered:
    symbol: str
    side: str
    entry_price: float
    old_sl: float
    price: float


@dataclass(frozen=True)
class EnginePaused:
    symbol: str
    reason: str
    pnl_today: float
    trades_today: int
    consecutive_errors: int


@dataclass(frozen=True)
class TickFailed:
    symbol: str
    error: str
    consecutive_errors: int
