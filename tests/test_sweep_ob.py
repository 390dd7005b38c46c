import math

import pytest

from backtest.engine import BacktestParams, run_backtest
from conftest import DAY1_MS, MIN_MS, bar
from indicators import atr_series
from market_data import Candle
from smc_structure import Bias
from strategies.sweep_ob import SweepObConfig, SweepObStrategy
from trade_state import ExitReason, Side

FIVE_MIN = 5 * MIN_MS


def _sweep_then_bos():
    """Equal lows at 99 swept by bar 6, red block on bar 7, break above 101 on bar 8."""
    specs = [(100.0, 100.2, 101.0, 99.0)] * 6
    specs += [
        (100.0, 99.5, 100.5, 98.0),   # sweep
        (100.0, 99.6, 100.3, 99.2),   # block
        (99.6, 103.0, 103.5, 99.5),   # break of structure
    ]
    return [bar(DAY1_MS + i * FIVE_MIN, o, c, h=h, l=l) for i, (o, c, h, l) in enumerate(specs)]


def _cfg(**kw):
    base = dict(
        interval="5m",
        atr_period=3,
        sweep_lookback=6,
        swing_lookback=4,
        htf_intervals=(),
        htf_required=(),
        htf_veto=(),
    )
    base.update(kw)
    return SweepObConfig(**base)


def test_sweep_then_bos_yields_limit_at_block_mid():
    candles = _sweep_then_bos()
    strat = SweepObStrategy(_cfg())
    out = [strat(candles, i) for i in range(len(candles))]
    assert out[:8] == [None] * 8

    sig = out[8]
    assert sig is not None
    assert sig.strategy == "sweep_ob"
    assert sig.side == Side.LONG
    assert sig.entry == pytest.approx(99.75)
    assert sig.tp == pytest.approx(103.5)
    a8 = atr_series(candles, 3)[8]
    assert sig.sl == pytest.approx(98.0 - 0.1 * a8)
    assert sig.rr >= 1.5


def test_longs_can_be_disabled():
    candles = _sweep_then_bos()
    strat = SweepObStrategy(_cfg(allow_longs=False))
    assert all(strat(candles, i) is None for i in range(len(candles)))


def test_min_rr_filter():
    candles = _sweep_then_bos()
    strat = SweepObStrategy(_cfg(min_rr=3.0))
    # reward 3.75 over risk about 2.0
    assert [strat(candles, i) for i in range(len(candles))] == [None] * len(candles)


def test_sweep_expires():
    candles = _sweep_then_bos()
    strat = SweepObStrategy(_cfg(sweep_valid_bars=1))
    assert [strat(candles, i) for i in range(len(candles))] == [None] * len(candles)


def test_backtest_fills_sweep_setup_and_takes_profit():
    candles = _sweep_then_bos()
    candles += [
        bar(DAY1_MS + 9 * FIVE_MIN, 103.0, 100.0, h=103.2, l=99.7),    # pullback fills 99.75
        bar(DAY1_MS + 10 * FIVE_MIN, 100.0, 103.8, h=104.0, l=99.9),   # target 103.5
    ]
    params = BacktestParams(source_interval="5m", interval="5m")
    res = run_backtest(candles, params, SweepObStrategy(_cfg()))
    assert len(res.trades) == 1
    t = res.trades[0]
    assert t.side == Side.LONG
    assert t.entry_price == pytest.approx(99.75)
    assert t.exit_price == pytest.approx(103.5)
    assert t.reason == ExitReason.TAKE_PROFIT
    assert t.entry_time == candles[9].ts
    assert t.detail.setup == "sweep_ob"
    assert res.summary.strategy == "sweep_ob"
    assert res.summary.wins == 1


def test_htf_trend_uses_closed_buckets_only():
    # 12 flat 5m bars, then 3 bars at 110 forming the fifth 15m bucket
    candles = [bar(DAY1_MS + i * FIVE_MIN, 100.0, 100.0) for i in range(12)]
    candles += [bar(DAY1_MS + i * FIVE_MIN, 110.0, 110.0) for i in range(12, 15)]
    strat = SweepObStrategy(_cfg(htf_intervals=("15m",), htf_required=("15m",), htf_ema_period=3))
    strat(candles, 0)

    assert strat.htf_sentiment(candles[12].ts) == {"15m": Bias.NEUTRAL}
    assert strat.htf_sentiment(candles[13].ts) == {"15m": Bias.NEUTRAL}
    assert strat.htf_sentiment(candles[14].ts) == {"15m": Bias.BULLISH}


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("SWEEP_MIN_RR", "2.5")
    monkeypatch.setenv("SWEEP_HTF_INTERVALS", "15m, 4h")
    monkeypatch.setenv("SWEEP_ALLOW_SHORTS", "0")
    monkeypatch.setenv("SWEEP_SWING_LOOKBACK", "not-a-number")
    cfg = SweepObConfig.from_env(symbol="ETHUSDT")
    assert cfg.symbol == "ETHUSDT"
    assert cfg.min_rr == 2.5
    assert cfg.htf_intervals == ("15m", "4h")
    assert cfg.allow_shorts is False
    assert cfg.swing_lookback == 10


def _wave(n):
    out = []
    prev = 100.0
    for i in range(n):
        c = 100.0 + 5.0 * math.sin(i / 40.0) + 1.5 * math.sin(i / 7.0) + 0.4 * math.sin(i / 2.3)
        hi = max(prev, c) + 0.3 + 0.2 * abs(math.sin(i / 3.1))
        lo = min(prev, c) - 0.3 - 0.2 * abs(math.cos(i / 2.7))
        out.append(Candle(ts=DAY1_MS + i * MIN_MS, o=prev, h=hi, l=lo, c=c, v=10.0))
        prev = c
    return out


def test_default_backtest_smoke():
    source = _wave(3000)
    seen = []

    def on_bar(i, session):
        seen.append((session.position is not None, session.pending is not None))

    params = BacktestParams(source_interval="1m", interval="5m")
    res = run_backtest(source, params, on_bar=on_bar)
    assert res.candles == 600
    assert len(seen) == 600
    assert not any(p and q for p, q in seen)
    assert len(res.equity_curve) in (601, 602)
    assert res.summary.trades == len(res.trades)
    assert res.summary.final_balance == pytest.approx(params.initial_balance + sum(t.pnl for t in res.trades))
    assert res.session.position is None and res.session.pending is None
