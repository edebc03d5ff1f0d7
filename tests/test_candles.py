"""Testes de normalizacao e ordem dos candles."""
import pandas as pd
import pytest

from tradecore.candles import (
    Candle,
    OHLCV_COLUMNS,
    from_newest_first,
    load_candles_csv,
    normalize_candles,
    to_candles,
)
from tradecore.error_handling import CandleOrderError, StrategyError


def _newest_first_rows():
    return [
        {'candle_date_time_kst': '2024-01-03T00:00:00', 'opening_price': 3, 'high_price': 3,
         'low_price': 3, 'trade_price': 3, 'candle_acc_trade_volume': 30},
        {'candle_date_time_kst': '2024-01-02T00:00:00', 'opening_price': 2, 'high_price': 2,
         'low_price': 2, 'trade_price': 2, 'candle_acc_trade_volume': 20},
        {'candle_date_time_kst': '2024-01-01T00:00:00', 'opening_price': 1, 'high_price': 1,
         'low_price': 1, 'trade_price': 1, 'candle_acc_trade_volume': 10},
    ]


def _full_upbit_rows():
    """Linhas completas de /v1/candles/minutes, mais recente primeiro."""
    rows = []
    for minute, price in ((30, 103.0), (15, 102.0), (0, 101.0)):
        rows.append({
            'market': 'KRW-BTC',
            'candle_date_time_utc': f'2024-01-01T00:{minute:02d}:00',
            'candle_date_time_kst': f'2024-01-01T09:{minute:02d}:00',
            'opening_price': price - 1,
            'high_price': price + 1,
            'low_price': price - 2,
            'trade_price': price,
            'timestamp': 1704067200000 + minute * 60_000,
            'candle_acc_trade_price': price * 10,
            'candle_acc_trade_volume': 10.0,
            'unit': 15,
        })
    return rows


def test_newest_first_feed_is_rejected():
    with pytest.raises(CandleOrderError):
        normalize_candles(_newest_first_rows())


def test_from_newest_first_reverses_upbit_feed():
    df = from_newest_first(_newest_first_rows())
    assert list(df.columns) == OHLCV_COLUMNS
    assert df['close'].tolist() == [1.0, 2.0, 3.0]
    assert df['timestamp'].is_monotonic_increasing
    assert df['close'].iloc[-1] == 3.0


def test_missing_columns_are_filled():
    df = normalize_candles(pd.DataFrame({'close': [1, 2], 'volume': [5, 6]}))
    assert df['open'].tolist() == [1.0, 2.0]
    assert df['timestamp'].tolist() == [0, 1]


def test_missing_close_raises():
    with pytest.raises(StrategyError):
        normalize_candles(pd.DataFrame({'volume': [1, 2]}))


def test_empty_input():
    df = normalize_candles([])
    assert df.empty
    assert list(df.columns) == OHLCV_COLUMNS


def test_candle_objects_round_trip():
    candles = [Candle(i, 1.0, 2.0, 0.5, 1.5, 10.0) for i in range(3)]
    df = normalize_candles(candles)
    assert len(df) == 3
    back = to_candles(df)
    assert back[0].close == 1.5
    assert back[2].timestamp == 2


def test_load_csv_newest_first(tmp_path):
    path = tmp_path / 'candles.csv'
    pd.DataFrame(_newest_first_rows()).to_csv(path, index=False)
    df = load_candles_csv(str(path), newest_first=True)
    assert df['close'].tolist() == [1.0, 2.0, 3.0]


def test_full_upbit_rows_keep_kst_timestamp():
    df = from_newest_first(_full_upbit_rows())
    assert list(df.columns) == OHLCV_COLUMNS
    assert df['close'].tolist() == [101.0, 102.0, 103.0]
    assert df['timestamp'].iloc[0] == pd.Timestamp('2024-01-01T09:00:00')
    assert df['timestamp'].is_monotonic_increasing
