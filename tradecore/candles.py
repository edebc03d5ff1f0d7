"""
Candles Module - Normalizacao de dados OHLCV
================================================================================
CONVENCAO UNICA: candles em ordem cronologica (mais antigo primeiro).
A ultima linha do DataFrame e o candle atual.

Feeds que entregam o mais recente primeiro (ex: API de candles da Upbit)
devem passar por from_newest_first() na fronteira. Nenhuma outra funcao do
projeto inverte a ordem.
================================================================================
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .error_handling import CandleOrderError, StrategyError

log = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('close', 'volume')
OHLCV_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']

# Nomes de colunas da API de candles da Upbit -> nomes internos
UPBIT_COLUMN_MAP = {
    'candle_date_time_kst': 'timestamp',
    'opening_price': 'open',
    'high_price': 'high',
    'low_price': 'low',
    'trade_price': 'close',
    'candle_acc_trade_volume': 'volume',
}

# Campo epoch-ms da Upbit; preservado com outro nome quando a data KST vira o timestamp
UPBIT_EPOCH_COLUMN = 'timestamp_ms'


@dataclass
class Candle:
    """Um candle OHLCV."""
    timestamp: Any
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict:
        return asdict(self)


CandleInput = Union[pd.DataFrame, Iterable[Candle], Iterable[Dict[str, Any]]]


def _to_frame(candles: CandleInput) -> pd.DataFrame:
    if isinstance(candles, pd.DataFrame):
        return candles.copy()
    rows = [c.to_dict() if isinstance(c, Candle) else dict(c) for c in candles]
    return pd.DataFrame(rows)


def normalize_candles(candles: CandleInput) -> pd.DataFrame:
    """
    Valida e padroniza uma sequencia de candles mais-antigo-primeiro.

    - Renomeia colunas no formato Upbit (o campo epoch-ms vira timestamp_ms)
    - Exige 'close' e 'volume'; 'open', 'high' e 'low' assumem o close
    - Sem timestamp, usa a posicao inteira
    - Timestamps decrescentes levantam CandleOrderError

    Returns:
        DataFrame com colunas OHLCV e indice 0..n-1
    """
    df = _to_frame(candles)
    if 'candle_date_time_kst' in df.columns and 'timestamp' in df.columns:
        df = df.rename(columns={'timestamp': UPBIT_EPOCH_COLUMN})
    df = df.rename(columns=UPBIT_COLUMN_MAP)

    if df.empty:
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise StrategyError(f"Colunas obrigatorias ausentes: {missing}")

    for col in ('open', 'high', 'low'):
        if col not in df.columns:
            df[col] = df['close']

    if 'timestamp' not in df.columns:
        df['timestamp'] = np.arange(len(df))

    for col in ('open', 'high', 'low', 'close', 'volume'):
        df[col] = pd.to_numeric(df[col], errors='raise').astype(float)

    ts = df['timestamp']
    if not pd.api.types.is_numeric_dtype(ts):
        ts = pd.to_datetime(ts)
        df['timestamp'] = ts
    if len(df) > 1 and not ts.is_monotonic_increasing:
        raise CandleOrderError(
            "Candles devem estar em ordem cronologica (mais antigo primeiro); "
            "use from_newest_first() para feeds invertidos"
        )

    return df[OHLCV_COLUMNS].reset_index(drop=True)


def from_newest_first(candles: CandleInput) -> pd.DataFrame:
    """Adaptador de fronteira: inverte um feed mais-recente-primeiro e normaliza."""
    df = _to_frame(candles)
    log.debug(f"Invertendo {len(df)} candles (mais recente primeiro -> cronologico)")
    return normalize_candles(df.iloc[::-1].reset_index(drop=True))


def load_candles_csv(path: str, newest_first: bool = False) -> pd.DataFrame:
    """
    Carregar candles de um CSV.

    Args:
        path: Caminho do arquivo
        newest_first: True se o arquivo foi salvo com o mais recente primeiro

    Returns:
        DataFrame normalizado, mais antigo primeiro
    """
    df = pd.read_csv(path)
    log.info(f"{len(df)} candles carregados de {path}")
    if newest_first:
        return from_newest_first(df)
    return normalize_candles(df)


def to_candles(df: pd.DataFrame) -> List[Candle]:
    """Converte um DataFrame normalizado em lista de Candle."""
    return [
        Candle(
            timestamp=row.timestamp,
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
        )
        for row in df[OHLCV_COLUMNS].itertuples(index=False)
    ]


def candle_timestamp(df: pd.DataFrame, index: int) -> Optional[Any]:
    """Timestamp do candle na posicao index (None se ausente)."""
    if 'timestamp' not in df.columns:
        return None
    value = df['timestamp'].iat[index]
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    return value
