"""
Trade Core
==========
Modulos base do avaliador de estrategias.

Modulos:
- config: Configuracoes centralizadas (Config)
- candles: Normalizacao de candles (mais antigo primeiro)
- indicators: RSI, MACD, Bollinger, cruzamento, volume, analise completa
- strategy: Motor de decisao e ciclo de vida da posicao
- error_handling: Hierarquia de excecoes
- utils: JSON atomico e logging rotativo
"""

from .config import Config
from .candles import Candle, from_newest_first, load_candles_csv, normalize_candles
from .error_handling import (
    CandleOrderError,
    ConfigValidationError,
    InsufficientDataError,
    StrategyError,
)
from .indicators import IndicatorParams, IndicatorSnapshot, comprehensive_analysis
from .strategy import (
    Action,
    Decision,
    SentimentSummary,
    SignalLevel,
    StrategyConfig,
    TradeAction,
    TradeRecord,
    TradingStrategy,
)

__all__ = [
    # Config
    'Config',
    # Candles
    'Candle', 'normalize_candles', 'from_newest_first', 'load_candles_csv',
    # Errors
    'StrategyError', 'InsufficientDataError', 'ConfigValidationError', 'CandleOrderError',
    # Indicators
    'IndicatorParams', 'IndicatorSnapshot', 'comprehensive_analysis',
    # Strategy
    'Action', 'Decision', 'SentimentSummary', 'SignalLevel', 'StrategyConfig',
    'TradeAction', 'TradeRecord', 'TradingStrategy',
]
