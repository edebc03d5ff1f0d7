"""
Indicators Module - Analise Tecnica
================================================================================
Funcoes puras sobre uma janela de candles (mais antigo primeiro).
Sem estado global: o unico cache e a serie de EMA calculada uma vez por
chamada e reaproveitada localmente pelo MACD.

INDICADORES:
- RSI (Wilder)
- MACD (EMA semeada com o primeiro preco)
- Bollinger Bands (desvio padrao populacional)
- Cruzamento de medias simples (golden/dead)
- Analise de volume
- comprehensive_analysis: agrega tudo em contadores de sinais
================================================================================
"""
import logging
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .error_handling import InsufficientDataError

log = logging.getLogger(__name__)

CROSSOVER_GOLDEN = 'golden'
CROSSOVER_DEAD = 'dead'
CROSSOVER_NONE = 'none'


# =============================================================================
# RESULTADOS
# =============================================================================
@dataclass
class MACDResult:
    macd: float
    signal: float
    histogram: float


@dataclass
class BollingerBands:
    upper: float
    middle: float
    lower: float
    current_price: float


@dataclass
class VolumeAnalysis:
    is_high_volume: bool
    ratio: float
    current_volume: float = 0.0
    average_volume: float = 0.0


@dataclass
class IndicatorParams:
    """Parametros dos indicadores usados por comprehensive_analysis."""
    rsi_period: int = 14
    rsi_oversold: float = 30
    rsi_overbought: float = 70
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_std: float = 2.0
    ema_short: int = 5
    ema_mid: int = 20
    volume_period: int = 20
    volume_multiplier: float = 1.5

    @classmethod
    def from_dict(cls, params: Optional[Dict[str, Any]]) -> 'IndicatorParams':
        """Criar a partir de um dict plano; chaves desconhecidas sao ignoradas."""
        params = params or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in known and v is not None})


@dataclass
class IndicatorSnapshot:
    """Resultado consolidado da analise tecnica de um passo."""
    rsi: float
    macd: MACDResult
    bollinger: BollingerBands
    crossover: str
    volume: VolumeAnalysis
    buy_signals: float
    sell_signals: float
    recommendation: str

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# HELPERS
# =============================================================================
def _closes(candles: pd.DataFrame) -> np.ndarray:
    return candles['close'].to_numpy(dtype=float)


def _require(indicator: str, required: int, available: int):
    if available < required:
        raise InsufficientDataError(indicator, required, available)


def _wilder_average(values: np.ndarray, period: int) -> float:
    """
    Media de Wilder: semente = media simples dos primeiros `period` valores,
    depois avg = (avg * (period - 1) + atual) / period.
    """
    seeded = np.concatenate(([values[:period].mean()], values[period:]))
    return float(pd.Series(seeded).ewm(alpha=1 / period, adjust=False).mean().iloc[-1])


# =============================================================================
# INDICADORES
# =============================================================================
def calculate_rsi(candles: pd.DataFrame, period: int = 14) -> float:
    """
    Calcular RSI usando Wilder's smoothing.
    Media simples dos primeiros `period` deltas, depois
    avg = (avg * (period - 1) + atual) / period.

    Raises:
        InsufficientDataError: menos de period + 1 candles
    """
    prices = _closes(candles)
    _require('RSI', period + 1, len(prices))

    deltas = np.diff(prices)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = _wilder_average(gains, period)
    avg_loss = _wilder_average(losses, period)

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return float(100 - (100 / (1 + rs)))


def calculate_ema_series(prices: np.ndarray, period: int) -> np.ndarray:
    """EMA em todos os indices, multiplicador 2/(n+1), semeada com o primeiro preco."""
    series = pd.Series(np.asarray(prices, dtype=float))
    return series.ewm(span=period, adjust=False).mean().to_numpy()


def calculate_macd(
    candles: pd.DataFrame,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9
) -> MACDResult:
    """
    Calcular MACD.

    A serie MACD comeca no indice slow - 1; a linha de sinal e a EMA(signal)
    dessa serie.

    Raises:
        InsufficientDataError: menos de slow + signal candles
    """
    prices = _closes(candles)
    _require('MACD', slow + signal, len(prices))

    ema_fast = calculate_ema_series(prices, fast)
    ema_slow = calculate_ema_series(prices, slow)
    macd_series = (ema_fast - ema_slow)[slow - 1:]

    macd_line = float(macd_series[-1])
    signal_line = float(calculate_ema_series(macd_series, signal)[-1])

    return MACDResult(
        macd=macd_line,
        signal=signal_line,
        histogram=macd_line - signal_line,
    )


def calculate_bollinger_bands(
    candles: pd.DataFrame,
    period: int = 20,
    std_mult: float = 2.0
) -> BollingerBands:
    """
    Calcular Bollinger Bands sobre os ultimos `period` fechamentos.
    Usa ddof=0 (population std).
    """
    if std_mult < 0:
        raise ValueError(f"Multiplicador de desvio padrao negativo: {std_mult}")

    prices = _closes(candles)
    _require('Bollinger', period, len(prices))

    window = prices[-period:]
    middle = float(window.mean())
    std_dev = float(window.std(ddof=0))

    return BollingerBands(
        upper=middle + std_dev * std_mult,
        middle=middle,
        lower=middle - std_dev * std_mult,
        current_price=float(prices[-1]),
    )


def calculate_ma(candles: pd.DataFrame, period: int) -> float:
    """Media simples dos ultimos `period` fechamentos."""
    prices = _closes(candles)
    _require('MA', period, len(prices))
    return float(prices[-period:].mean())


def check_crossover(candles: pd.DataFrame, short_period: int = 5, long_period: int = 20) -> str:
    """
    Verificar golden/dead cross entre o candle atual e o anterior.

    Returns:
        'golden', 'dead' ou 'none' (tambem 'none' com dados insuficientes)
    """
    if len(candles) < long_period + 1:
        return CROSSOVER_NONE

    previous = candles.iloc[:-1]
    short_now = calculate_ma(candles, short_period)
    long_now = calculate_ma(candles, long_period)
    short_prev = calculate_ma(previous, short_period)
    long_prev = calculate_ma(previous, long_period)

    if short_prev <= long_prev and short_now > long_now:
        return CROSSOVER_GOLDEN
    if short_prev >= long_prev and short_now < long_now:
        return CROSSOVER_DEAD
    return CROSSOVER_NONE


def analyze_volume(candles: pd.DataFrame, period: int = 20, threshold: float = 1.5) -> VolumeAnalysis:
    """
    Razao entre o volume do candle atual e a media dos `period` anteriores.
    Alto volume quando a razao passa de `threshold`.
    """
    volumes = candles['volume'].to_numpy(dtype=float)
    if len(volumes) < period + 1:
        return VolumeAnalysis(is_high_volume=False, ratio=0.0)

    current = float(volumes[-1])
    average = float(volumes[-(period + 1):-1].mean())
    ratio = current / average if average > 0 else 0.0

    return VolumeAnalysis(
        is_high_volume=ratio > threshold,
        ratio=ratio,
        current_volume=current,
        average_volume=average,
    )


# =============================================================================
# ANALISE COMPLETA
# =============================================================================
def comprehensive_analysis(
    candles: pd.DataFrame,
    params: Optional[Any] = None
) -> Optional[IndicatorSnapshot]:
    """
    Roda todos os indicadores e conta sinais de compra/venda.

    Pesos:
        RSI extremo +1, MACD concordante +1, rompimento de banda +1,
        cruzamento +2, alto volume multiplica ambos por 1.2

    Args:
        candles: DataFrame mais antigo primeiro
        params: IndicatorParams ou dict plano

    Returns:
        IndicatorSnapshot, ou None se faltarem dados (passo deve ser ignorado)
    """
    if not isinstance(params, IndicatorParams):
        params = IndicatorParams.from_dict(params)

    try:
        rsi = calculate_rsi(candles, params.rsi_period)
        macd = calculate_macd(candles, params.macd_fast, params.macd_slow, params.macd_signal)
        bb = calculate_bollinger_bands(candles, params.bb_period, params.bb_std)
        crossover = check_crossover(candles, params.ema_short, params.ema_mid)
        volume = analyze_volume(candles, params.volume_period, params.volume_multiplier)
    except (InsufficientDataError, ValueError) as e:
        log.debug(f"Analise tecnica indisponivel: {e}")
        return None

    buy_signals = 0.0
    sell_signals = 0.0

    # RSI
    if rsi < params.rsi_oversold:
        buy_signals += 1
    if rsi > params.rsi_overbought:
        sell_signals += 1

    # MACD
    if macd.histogram > 0 and macd.macd > macd.signal:
        buy_signals += 1
    if macd.histogram < 0 and macd.macd < macd.signal:
        sell_signals += 1

    # Bollinger
    if bb.current_price < bb.lower:
        buy_signals += 1
    if bb.current_price > bb.upper:
        sell_signals += 1

    # Cruzamento
    if crossover == CROSSOVER_GOLDEN:
        buy_signals += 2
    elif crossover == CROSSOVER_DEAD:
        sell_signals += 2

    if volume.is_high_volume:
        buy_signals *= 1.2
        sell_signals *= 1.2

    if buy_signals > sell_signals:
        recommendation = 'BUY'
    elif sell_signals > buy_signals:
        recommendation = 'SELL'
    else:
        recommendation = 'HOLD'

    return IndicatorSnapshot(
        rsi=rsi,
        macd=macd,
        bollinger=bb,
        crossover=crossover,
        volume=volume,
        buy_signals=buy_signals,
        sell_signals=sell_signals,
        recommendation=recommendation,
    )
