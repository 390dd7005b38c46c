#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import dataclass

from trade_state import Side, SignalDetail


@dataclass
class TradeSignal:
    strategy: str
    symbol: str
    side: str  # Side.LONG | Side.SHORT
    entry: float
    sl: float
    tp: float

    # Confluence score for scorer-driven setups (0 for pattern setups).
    score: int = 0

    # Free-form text tag for debugging/reporting.
    reason: str = ""

    @property
    def risk(self) -> float:
        return abs(self.entry - self.sl)

    @property
    def reward(self) -> float:
        return abs(self.tp - self.entry)

    @property
    def rr(self) -> float:
        return self.reward / self.risk if self.risk > 0 else 0.0

    def detail(self) -> SignalDetail:
        return SignalDetail(setup=self.strategy, score=int(self.score), is_breakeven=False)

    def validate(self) -> bool:
        if self.side not in Side.ALL:
            return False
        if not (self.entry > 0 and self.sl > 0 and self.tp > 0):
            return False
        # Must have meaningful stop and target on the right sides of entry
        if self.side == Side.LONG:
            return self.sl < self.entry < self.tp
        return self.tp < self.entry < self.sl
