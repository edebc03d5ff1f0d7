#!/usr/bin/env python3
"""
Backtest Runner
===============
Roda a estrategia sobre candles historicos de um CSV e salva o relatorio.

Uso:
    python run_backtest.py --data data/KRW-BTC_15m.csv

    # Usando o otimo salvo pelo otimizador
    python run_backtest.py --data data/KRW-BTC_15m.csv --params config/optimal_config.json

    # Comparar com configuracoes padrao
    python run_backtest.py --data data/KRW-BTC_15m.csv --compare

O CSV deve estar em ordem cronologica (mais antigo primeiro); use
--newest-first para arquivos salvos direto da API (mais recente primeiro).
"""

import argparse
import logging
import sys

from tradecore.candles import load_candles_csv
from tradecore.strategy import StrategyConfig
from tradecore.utils import save_json_atomic, setup_logging
from tuning.backtester import SIZING_FIXED, SIZING_RATIO, Backtester, BacktestConfig, compare_strategies, format_report
from tuning.optimizers import load_saved_parameters

log = logging.getLogger(__name__)


def parse_args():
    """Parse argumentos da linha de comando."""
    parser = argparse.ArgumentParser(
        description="Backtest da estrategia de trading",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--data', required=True, help='CSV com candles OHLCV')
    parser.add_argument('--newest-first', action='store_true',
                        help='CSV ordenado do mais recente para o mais antigo')
    parser.add_argument('--params', default=None,
                        help='JSON com parametros (ex: config/optimal_config.json)')
    parser.add_argument('--initial-balance', type=float, default=None,
                        help='Saldo inicial (default: config backtest.initial_balance)')
    parser.add_argument('--investment-amount', type=float, default=100_000,
                        help='Valor fixo por trade (default: 100000)')
    parser.add_argument('--ratio-sizing', action='store_true',
                        help='Investir investment_ratio do saldo em vez de valor fixo')
    parser.add_argument('--compare', action='store_true',
                        help='Comparar com configuracoes conservadora/agressiva')
    parser.add_argument('--output', default='results/backtest_results.json',
                        help='Arquivo de saida (default: results/backtest_results.json)')
    parser.add_argument('--log-level', default=None, help='Nivel de log (INFO, DEBUG, ...)')
    return parser.parse_args()


def build_strategy_config(params_file: str = None) -> StrategyConfig:
    """Config padrao para backtest: sem noticias, peso tecnico alto."""
    overrides = {
        'technical_weight': 0.9,
        'sentiment_weight': 0.1,
    }
    if params_file:
        saved = load_saved_parameters(params_file)
        if saved:
            overrides.update(saved)
            overrides['technical_weight'] = 0.9
            overrides['sentiment_weight'] = 0.1
        else:
            log.warning(f"Nenhum parametro valido em {params_file}; usando defaults")
    return StrategyConfig.from_config(overrides)


def main():
    args = parse_args()
    setup_logging(args.log_level)

    candles = load_candles_csv(args.data, newest_first=args.newest_first)
    strategy_config = build_strategy_config(args.params)

    overrides = {}
    if args.initial_balance:
        overrides['initial_balance'] = args.initial_balance
    if args.ratio_sizing:
        overrides['sizing_policy'] = SIZING_RATIO
    else:
        overrides['sizing_policy'] = SIZING_FIXED
        overrides['investment_amount'] = args.investment_amount
    backtest_config = BacktestConfig.from_config(overrides)

    log.info(f"Backtest com {len(candles)} candles, saldo inicial {backtest_config.initial_balance:,.0f}")
    result = Backtester(backtest_config).run(candles, strategy_config)

    print(format_report(result))
    save_json_atomic(args.output, result.to_dict())
    log.info(f"Resultado salvo em {args.output}")

    if args.compare:
        variants = {
            'atual': strategy_config.to_dict(),
            'conservadora': {**strategy_config.to_dict(), 'buy_threshold': 65, 'sell_threshold': 65,
                             'stop_loss_pct': 3.0, 'take_profit_pct': 6.0},
            'agressiva': {**strategy_config.to_dict(), 'buy_threshold': 50, 'sell_threshold': 50,
                          'stop_loss_pct': 8.0, 'take_profit_pct': 15.0},
        }
        ranking = compare_strategies(candles, list(variants.values()), backtest_config, list(variants))
        print("\nCOMPARACAO DE ESTRATEGIAS:")
        print(ranking.to_string(index=False))

    return 0


if __name__ == '__main__':
    sys.exit(main())
