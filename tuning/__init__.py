"""
Tuning - Backtest e Otimizacao
==============================
Avaliacao historica e busca de parametros da estrategia.

Componentes:
- backtester: Simulador com taxa e slippage
- metrics: Drawdown, Sharpe, profit factor
- optimizers: Otimizador genetico com o backtest como fitness

Uso:
    from tuning import Backtester, GeneticOptimizer, BacktestFitness

    fitness = BacktestFitness(candles)
    result = GeneticOptimizer().optimize(fitness)
"""

from .backtester import Backtester, BacktestConfig, BacktestResult, compare_strategies, format_report
from .metrics import calculate_max_drawdown, calculate_profit_factor, calculate_sharpe_ratio
from .optimizers import (
    PARAM_SPACE,
    BacktestFitness,
    GeneticOptimizer,
    OptimizationResult,
    OptimizerConfig,
    calculate_fitness,
)

__all__ = [
    'Backtester',
    'BacktestConfig',
    'BacktestResult',
    'compare_strategies',
    'format_report',
    'calculate_max_drawdown',
    'calculate_profit_factor',
    'calculate_sharpe_ratio',
    'PARAM_SPACE',
    'BacktestFitness',
    'GeneticOptimizer',
    'OptimizationResult',
    'OptimizerConfig',
    'calculate_fitness',
]

__version__ = '1.0.0'
