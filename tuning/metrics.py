"""
Backtest Metrics
================
Metricas de performance calculadas sobre a curva de equity e o log de trades.
"""

from typing import Dict, Sequence

import numpy as np

# Candles diarios
ANNUALIZATION_FACTOR = 365


def calculate_returns(equity_curve: Sequence[float]) -> np.ndarray:
    """Retornos simples passo a passo."""
    equity = np.asarray(equity_curve, dtype=float)
    if len(equity) < 2:
        return np.array([], dtype=float)
    previous = equity[:-1]
    with np.errstate(divide='ignore', invalid='ignore'):
        returns = np.where(previous != 0, np.diff(equity) / previous, 0.0)
    return returns


def calculate_max_drawdown(equity_curve: Sequence[float]) -> float:
    """
    Maior queda pico-vale em percentual, em [0, 100].
    Zero para curvas nao decrescentes.
    """
    equity = np.asarray(equity_curve, dtype=float)
    if len(equity) == 0:
        return 0.0

    running_max = np.maximum.accumulate(equity)
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdowns = np.where(running_max > 0, (running_max - equity) / running_max, 0.0)
    return float(min(100.0, max(0.0, drawdowns.max() * 100)))


def calculate_sharpe_ratio(
    equity_curve: Sequence[float],
    periods_per_year: int = ANNUALIZATION_FACTOR
) -> float:
    """
    Sharpe anualizado: media / desvio padrao (ddof=0) dos retornos * sqrt(periodos).
    Taxa livre de risco = 0. Retorna 0 com menos de 2 retornos ou variancia zero.
    """
    returns = calculate_returns(equity_curve)
    if len(returns) < 2:
        return 0.0

    std = returns.std()
    if std == 0 or not np.isfinite(std):
        return 0.0
    return float(returns.mean() / std * np.sqrt(periods_per_year))


def calculate_profit_factor(profits: Sequence[float]) -> float:
    """
    Lucro bruto / prejuizo bruto.
    inf se nao houver perdas e houver ganhos; 0 se nao houver nenhum dos dois.
    """
    profits = np.asarray(profits, dtype=float)
    gross_win = profits[profits > 0].sum()
    gross_loss = -profits[profits < 0].sum()

    if gross_loss > 0:
        return float(gross_win / gross_loss)
    if gross_win > 0:
        return float('inf')
    return 0.0


def summarize_trades(profits: Sequence[float]) -> Dict[str, float]:
    """Contagens e medias do log de trades (lucro liquido por trade)."""
    profits = np.asarray(profits, dtype=float)
    if len(profits) == 0:
        return {
            'total_trades': 0,
            'winning_trades': 0,
            'losing_trades': 0,
            'win_rate': 0.0,
            'avg_profit': 0.0,
            'avg_win': 0.0,
            'avg_loss': 0.0,
        }

    wins = profits[profits > 0]
    losses = profits[profits <= 0]

    return {
        'total_trades': int(len(profits)),
        'winning_trades': int(len(wins)),
        'losing_trades': int(len(losses)),
        'win_rate': len(wins) / len(profits) * 100,
        'avg_profit': float(profits.mean()),
        'avg_win': float(wins.mean()) if len(wins) else 0.0,
        # Prejuizo medio em valor absoluto
        'avg_loss': float(-losses.mean()) if len(losses) else 0.0,
    }
