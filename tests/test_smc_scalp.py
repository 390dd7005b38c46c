from dataclasses import replace

import pytest

from bot_config import StrategyConfig
from market_data import Candle
from smc_structure import Bias
from strategies.smc_scalp import STRATEGY_NAME, Trend, analyze, confluence_score, decide_entry, volume_ok
from trade_state import Side

BULL_MTF = {"5m": Bias.BULLISH, "15m": Bias.BULLISH, "1h": Bias.NEUTRAL}
BEAR_MTF = {"5m": Bias.BEARISH, "15m": Bias.BEARISH, "1h": Bias.NEUTRAL}


def _mirror(candles, pivot=200.0):
    return [Candle(ts=c.ts, o=pivot - c.o, h=pivot - c.l, l=pivot - c.h, c=pivot - c.c, v=c.v) for c in candles]


@pytest.mark.parametrize(
    "args, expected",
    [
        ((Trend.UP, 0.5, 30.0, Bias.BULLISH, Bias.BULLISH), 5),
        ((Trend.DOWN, -0.5, 70.0, Bias.BEARISH, Bias.BEARISH), -5),
        ((Trend.UP, 0.0, 50.0, None, None), 1),
        ((Trend.DOWN, 0.2, 50.0, Bias.BULLISH, None), 1),
    ],
)
def test_confluence_score(args, expected):
    assert confluence_score(*args, rsi_oversold=35.0, rsi_overbought=65.0) == expected


def test_analyze_rally(rally):
    cfg = StrategyConfig(rsi_overbought=101.0)
    a = analyze(rally, cfg)
    assert a.trend == Trend.UP
    assert a.macd.hist > 0
    assert a.rsi == 100.0
    assert a.fvg == Bias.BULLISH
    assert a.order_block == Bias.BULLISH
    assert a.score == 4
    assert a.close == 132.5
    assert a.vol_sma == pytest.approx(12.0)
    assert volume_ok(a, cfg.vol_multiplier)


def test_long_entry_with_percent_targets(rally):
    cfg = StrategyConfig(rsi_overbought=101.0)
    sig = decide_entry(analyze(rally, cfg), BULL_MTF, cfg)
    assert sig is not None
    assert sig.strategy == STRATEGY_NAME
    assert sig.side == Side.LONG
    assert sig.entry == 132.5
    assert sig.tp == pytest.approx(132.5 * 1.008)
    assert sig.sl == pytest.approx(132.5 * 0.996)
    assert sig.score == 4
    assert "MTF bullish" in sig.reason


def test_long_blocked_by_overbought_rsi(rally):
    cfg = StrategyConfig()
    a = analyze(rally, cfg)
    # RSI above 65 costs a point and also fails the entry filter
    assert a.score == 3
    assert decide_entry(a, BULL_MTF, cfg) is None


def test_long_blocked_by_mtf(rally):
    cfg = StrategyConfig(rsi_overbought=101.0)
    a = analyze(rally, cfg)
    assert decide_entry(a, {"5m": Bias.BULLISH, "15m": Bias.NEUTRAL}, cfg) is None
    vetoed = dict(BULL_MTF, **{"1h": Bias.BEARISH})
    assert decide_entry(a, vetoed, cfg) is None


def test_long_blocked_by_low_volume(rally):
    cfg = StrategyConfig(rsi_overbought=101.0)
    quiet = rally[:-1] + [replace(rally[-1], v=12.0)]
    a = analyze(quiet, cfg)
    assert not volume_ok(a, cfg.vol_multiplier)
    assert decide_entry(a, BULL_MTF, cfg) is None


def test_threshold_is_respected(rally):
    cfg = StrategyConfig(rsi_overbought=101.0, confluence_threshold=5)
    assert decide_entry(analyze(rally, cfg), BULL_MTF, cfg) is None


def test_short_entry_on_mirrored_selloff(rally):
    cfg = StrategyConfig(rsi_oversold=-1.0)
    dump = _mirror(rally)
    a = analyze(dump, cfg)
    assert a.trend == Trend.DOWN
    assert a.fvg == Bias.BEARISH
    assert a.order_block == Bias.BEARISH
    assert a.score == -4

    sig = decide_entry(a, BEAR_MTF, cfg)
    assert sig is not None
    assert sig.side == Side.SHORT
    assert sig.entry == pytest.approx(67.5)
    assert sig.tp == pytest.approx(67.5 * 0.992)
    assert sig.sl == pytest.approx(67.5 * 1.004)
    assert decide_entry(a, BULL_MTF, cfg) is None
