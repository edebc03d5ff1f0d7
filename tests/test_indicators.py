"""Testes do modulo de indicadores."""
import numpy as np
import pytest

from tradecore.error_handling import InsufficientDataError
from tradecore.indicators import (
    CROSSOVER_DEAD,
    CROSSOVER_GOLDEN,
    CROSSOVER_NONE,
    IndicatorParams,
    analyze_volume,
    calculate_bollinger_bands,
    calculate_ema_series,
    calculate_macd,
    calculate_rsi,
    check_crossover,
    comprehensive_analysis,
)

from conftest import make_candles


def test_rsi_flat_then_spike(flat_then_spike):
    before = calculate_rsi(flat_then_spike.iloc[:200], 14)
    after = calculate_rsi(flat_then_spike, 14)
    assert 40 < before < 60
    assert after > 70


def test_rsi_bounds(random_walk):
    for end in range(20, len(random_walk), 25):
        rsi = calculate_rsi(random_walk.iloc[:end], 14)
        assert 0 <= rsi <= 100


def test_rsi_without_losses_is_100():
    candles = make_candles(np.arange(1, 30, dtype=float))
    assert calculate_rsi(candles, 14) == 100.0


def test_rsi_requires_period_plus_one():
    candles = make_candles(np.arange(1, 15, dtype=float))
    with pytest.raises(InsufficientDataError) as exc:
        calculate_rsi(candles, 14)
    assert exc.value.required == 15
    assert exc.value.available == 14


def test_ema_seeded_with_first_price():
    ema = calculate_ema_series(np.array([10.0, 20.0, 30.0]), 3)
    assert ema[0] == 10.0
    assert ema[1] == pytest.approx(15.0)
    assert ema[2] == pytest.approx(22.5)


def test_macd_constant_prices_is_zero():
    macd = calculate_macd(make_candles(np.full(40, 50.0)))
    assert macd.macd == pytest.approx(0.0)
    assert macd.signal == pytest.approx(0.0)
    assert macd.histogram == pytest.approx(0.0)


def test_macd_requires_slow_plus_signal():
    with pytest.raises(InsufficientDataError):
        calculate_macd(make_candles(np.full(34, 50.0)), 12, 26, 9)


def test_macd_histogram_positive_in_uptrend():
    macd = calculate_macd(make_candles(np.linspace(100, 150, 60)))
    assert macd.macd > 0
    assert macd.histogram == pytest.approx(macd.macd - macd.signal)


def test_bollinger_ordering(random_walk):
    for end in range(20, len(random_walk), 30):
        bb = calculate_bollinger_bands(random_walk.iloc[:end], 20, 2.0)
        assert bb.lower <= bb.middle <= bb.upper
        assert bb.current_price == random_walk['close'].iloc[end - 1]


def test_bollinger_uses_population_std():
    bb = calculate_bollinger_bands(make_candles([1.0, 2.0, 3.0, 4.0]), 4, 1.0)
    assert bb.middle == pytest.approx(2.5)
    assert bb.upper - bb.middle == pytest.approx(np.std([1, 2, 3, 4]))


def test_bollinger_rejects_negative_multiplier():
    with pytest.raises(ValueError):
        calculate_bollinger_bands(make_candles(np.full(30, 10.0)), 20, -1.0)


def test_crossover_golden_and_dead():
    golden = make_candles([100.0] * 20 + [200.0])
    dead = make_candles([100.0] * 20 + [50.0])
    assert check_crossover(golden, 5, 20) == CROSSOVER_GOLDEN
    assert check_crossover(dead, 5, 20) == CROSSOVER_DEAD
    assert check_crossover(make_candles([100.0] * 21), 5, 20) == CROSSOVER_NONE


def test_crossover_with_short_data_is_none():
    assert check_crossover(make_candles([100.0] * 20 + [200.0]).iloc[1:], 5, 20) == CROSSOVER_NONE


def test_volume_analysis():
    candles = make_candles(np.full(21, 10.0), [100.0] * 20 + [300.0])
    volume = analyze_volume(candles, 20)
    assert volume.is_high_volume
    assert volume.ratio == pytest.approx(3.0)
    assert volume.average_volume == pytest.approx(100.0)

    short = analyze_volume(candles.iloc[:10], 20)
    assert not short.is_high_volume
    assert short.ratio == 0


def test_comprehensive_analysis_returns_none_on_short_data():
    assert comprehensive_analysis(make_candles(np.full(20, 10.0))) is None


def test_comprehensive_analysis_snapshot(random_walk):
    snapshot = comprehensive_analysis(random_walk.iloc[:200], {'rsi_period': 10, 'unknown': 1})
    assert snapshot is not None
    assert 0 <= snapshot.rsi <= 100
    assert snapshot.bollinger.lower <= snapshot.bollinger.middle <= snapshot.bollinger.upper
    assert snapshot.recommendation in ('BUY', 'SELL', 'HOLD')
    assert snapshot.buy_signals >= 0 and snapshot.sell_signals >= 0


def test_comprehensive_analysis_counts_golden_cross():
    closes = [100.0 if i % 2 == 0 else 100.5 for i in range(61)] + [130.0]
    snapshot = comprehensive_analysis(make_candles(closes), IndicatorParams())
    assert snapshot.crossover == CROSSOVER_GOLDEN
    assert snapshot.buy_signals >= 2
    assert snapshot.recommendation == 'BUY'


def _reference_ema(prices, period):
    k = 2 / (period + 1)
    ema = [prices[0]]
    for price in prices[1:]:
        ema.append((price - ema[-1]) * k + ema[-1])
    return np.array(ema)


def _reference_rsi(prices, period):
    deltas = np.diff(prices)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)
    avg_gain, avg_loss = gains[:period].mean(), losses[:period].mean()
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
    return 100 - 100 / (1 + avg_gain / avg_loss)


@pytest.mark.parametrize('period', [3, 12, 26])
def test_ema_matches_recurrence(random_walk, period):
    prices = random_walk['close'].to_numpy()
    assert np.allclose(calculate_ema_series(prices, period), _reference_ema(prices, period))


@pytest.mark.parametrize('period', [5, 14, 21])
def test_rsi_matches_wilder_recurrence(random_walk, period):
    prices = random_walk['close'].to_numpy()
    assert calculate_rsi(random_walk, period) == pytest.approx(_reference_rsi(prices, period))
