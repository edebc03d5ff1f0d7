"""Fixtures compartilhadas: candles sinteticos em ordem cronologica."""
import numpy as np
import pandas as pd
import pytest


def make_candles(closes, volumes=None, start='2024-01-01', freq='15min'):
    """DataFrame OHLCV mais antigo primeiro a partir de uma serie de fechamentos."""
    closes = np.asarray(closes, dtype=float)
    if volumes is None:
        volumes = np.full(len(closes), 100.0)
    return pd.DataFrame({
        'timestamp': pd.date_range(start, periods=len(closes), freq=freq),
        'open': closes,
        'high': closes * 1.001,
        'low': closes * 0.999,
        'close': closes,
        'volume': np.asarray(volumes, dtype=float),
    })


@pytest.fixture
def flat_then_spike():
    """200 candles oscilando +-0.5 em torno de 100, depois 20 candles subindo 20%."""
    flat = [100.0 if i % 2 == 0 else 100.5 for i in range(200)]
    spike = [flat[-1] + (i + 1) * 1.0 for i in range(20)]
    return make_candles(flat + spike)


@pytest.fixture
def sine_candles():
    """Serie ciclica (periodo 40, amplitude 10%) com 400 candles."""
    t = np.arange(400)
    closes = 100 * (1 + 0.1 * np.sin(2 * np.pi * t / 40))
    rng = np.random.default_rng(7)
    volumes = 100 + rng.integers(0, 80, size=len(t))
    return make_candles(closes, volumes)


@pytest.fixture
def flat_candles():
    """Precos constantes: nenhum sinal de compra possivel."""
    return make_candles(np.full(210, 100.0))


@pytest.fixture
def random_walk():
    rng = np.random.default_rng(42)
    closes = 100 * np.exp(np.cumsum(rng.normal(0, 0.01, 300)))
    return make_candles(closes, rng.uniform(50, 150, 300))
