import pytest

from conftest import DAY1_MS, MIN_MS, bar
from mtf_sentiment import classify_trend, is_aligned, new_sentiment, update_sentiment
from smc_structure import Bias
from trade_state import Side


def test_classify_trend():
    rising = [100.0 + i for i in range(60)]
    falling = [100.0 - i * 0.5 for i in range(60)]
    assert classify_trend(rising, 50) == Bias.BULLISH
    assert classify_trend(falling, 50) == Bias.BEARISH
    assert classify_trend([100.0] * 60, 50) == Bias.NEUTRAL
    # not enough history
    assert classify_trend(rising[:49], 50) == Bias.NEUTRAL
    assert classify_trend(rising, 50, zero_lag=True) == Bias.BULLISH


def test_update_sentiment_stores_value():
    s = new_sentiment(("1m", "5m"))
    assert s == {"1m": Bias.NEUTRAL, "5m": Bias.NEUTRAL}
    candles = [bar(DAY1_MS + i * MIN_MS, 100.0 + i, 101.0 + i) for i in range(55)]
    assert update_sentiment(s, "5m", candles, 50) == Bias.BULLISH
    assert s["5m"] == Bias.BULLISH
    assert s["1m"] == Bias.NEUTRAL


def test_aligned_long_needs_required_and_no_veto():
    s = {"5m": Bias.BULLISH, "15m": Bias.BULLISH, "1h": Bias.NEUTRAL}
    assert is_aligned(s, Side.LONG)
    assert not is_aligned(s, Side.SHORT)

    s["1h"] = Bias.BEARISH
    assert not is_aligned(s, Side.LONG)

    s = {"5m": Bias.BULLISH, "15m": Bias.NEUTRAL, "1h": Bias.BULLISH}
    assert not is_aligned(s, Side.LONG)
    assert is_aligned(s, Side.LONG, min_agree=1)


def test_aligned_short_mirror():
    s = {"5m": Bias.BEARISH, "15m": Bias.BEARISH, "1h": Bias.NEUTRAL}
    assert is_aligned(s, Side.SHORT)
    s["1h"] = Bias.BULLISH
    assert not is_aligned(s, Side.SHORT)


def test_missing_timeframes_are_neutral():
    assert not is_aligned({}, Side.LONG)
    # a missing veto timeframe never blocks
    assert is_aligned({"5m": Bias.BULLISH, "15m": Bias.BULLISH}, Side.LONG)
    # nothing required and nothing vetoing
    assert is_aligned({}, Side.LONG, required=(), veto=())


def test_unknown_side_rejected():
    with pytest.raises(ValueError):
        is_aligned({}, "FLAT")
