import pytest

from conftest import DAY1_MS, MIN_MS, bar
from market_data import (
    Candle,
    aggregate_candles,
    candle_from_kline,
    interval_to_ms,
    normalize_klines,
    upsert_candle,
)


def test_interval_to_ms():
    assert interval_to_ms("1m") == 60_000
    assert interval_to_ms("15m") == 900_000
    assert interval_to_ms("4h") == 14_400_000
    assert interval_to_ms("1d") == 86_400_000
    assert interval_to_ms("5") == 300_000
    with pytest.raises(ValueError):
        interval_to_ms("1x")
    with pytest.raises(ValueError):
        interval_to_ms("")


def test_is_green_includes_doji():
    assert Candle(ts=0, o=1.0, h=1.0, l=1.0, c=1.0).is_green
    assert not Candle(ts=0, o=2.0, h=2.0, l=1.0, c=1.0).is_green


def test_aggregate_time_buckets():
    src = [bar(DAY1_MS + i * MIN_MS, 100 + i, 101 + i, v=1.0) for i in range(10)]
    out = aggregate_candles(src, 5 * MIN_MS)
    assert len(out) == 2
    first = out[0]
    assert first.ts == DAY1_MS
    assert first.o == 100
    assert first.c == 105
    assert first.h == 105.5
    assert first.l == 99.5
    assert first.v == 5.0
    assert out[1].ts == DAY1_MS + 5 * MIN_MS
    assert out[1].o == 105


def test_aggregate_unaligned_start_and_gap():
    ts = [3, 4, 5, 9, 20]
    src = [bar(DAY1_MS + t * MIN_MS, 100.0, 100.0, v=2.0) for t in ts]
    out = aggregate_candles(src, 5 * MIN_MS)
    assert [c.ts for c in out] == [DAY1_MS, DAY1_MS + 5 * MIN_MS, DAY1_MS + 20 * MIN_MS]
    assert [c.v for c in out] == [4.0, 4.0, 2.0]


def test_aggregate_empty():
    assert aggregate_candles([], 5 * MIN_MS) == []


def test_upsert_replace_append_ignore():
    seq = [bar(DAY1_MS, 100.0, 101.0)]
    upsert_candle(seq, bar(DAY1_MS, 100.0, 102.0))
    assert len(seq) == 1 and seq[-1].c == 102.0

    upsert_candle(seq, bar(DAY1_MS + MIN_MS, 102.0, 103.0))
    assert len(seq) == 2

    upsert_candle(seq, bar(DAY1_MS - MIN_MS, 1.0, 1.0))
    assert len(seq) == 2
    assert seq[0].ts == DAY1_MS


def test_candle_from_binance_row():
    row = [1704067200000, "100.0", "101.5", "99.0", "101.0", "12.5", 1704067259999, "0", 10]
    c = candle_from_kline(row)
    assert c == Candle(ts=1704067200000, o=100.0, h=101.5, l=99.0, c=101.0, v=12.5)


def test_candle_from_dict_and_malformed_rows():
    c = candle_from_kline({"time": 1, "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 3})
    assert c is not None and c.h == 2.0
    assert candle_from_kline(["x", 1, 2, 0, 1, 1]) is None
    assert candle_from_kline([1, 2]) is None
    # high below close
    assert candle_from_kline([1, 1.0, 1.2, 0.9, 1.5, 1.0]) is None


def test_normalize_klines_sorts_and_dedupes():
    rows = [
        [3, 1, 2, 0.5, 1, 1],
        [1, 1, 2, 0.5, 1, 1],
        ["bad"],
        [3, 1, 3, 0.5, 2, 1],
    ]
    out = normalize_klines(rows)
    assert [c.ts for c in out] == [1, 3]
    assert out[-1].c == 2.0
    assert normalize_klines(None) == []
