#!/usr/bin/env python3
"""
Optimization Runner
===================
Otimizacao genetica dos parametros da estrategia sobre candles historicos.

Uso:
    python run_optimization.py --data data/KRW-BTC_15m.csv

Exemplo completo:
    python run_optimization.py \\
        --data data/KRW-BTC_15m.csv \\
        --population 30 \\
        --generations 15 \\
        --seed 42 \\
        --n-jobs 4

O melhor resultado e salvo em optimizer.optimal_config_file e acrescentado
ao historico (optimizer.history_file).
"""

import argparse
import logging
import sys

from tradecore.candles import load_candles_csv
from tradecore.config import Config
from tradecore.utils import save_json_atomic, setup_logging
from tuning.backtester import SIZING_FIXED, SIZING_RATIO, format_report
from tuning.optimizers import (
    BacktestFitness,
    GeneticOptimizer,
    OptimizerConfig,
    append_optimization_history,
    load_saved_parameters,
    save_optimal_parameters,
)

log = logging.getLogger(__name__)


def parse_args():
    """Parse argumentos da linha de comando."""
    parser = argparse.ArgumentParser(
        description="Otimizacao genetica de parametros",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--data', required=True, help='CSV com candles OHLCV')
    parser.add_argument('--newest-first', action='store_true',
                        help='CSV ordenado do mais recente para o mais antigo')
    parser.add_argument('--population', type=int, default=None, help='Tamanho da populacao')
    parser.add_argument('--generations', type=int, default=None, help='Numero de geracoes')
    parser.add_argument('--mutation-rate', type=float, default=None, help='Taxa de mutacao')
    parser.add_argument('--crossover-rate', type=float, default=None, help='Taxa de crossover')
    parser.add_argument('--elite', type=int, default=None, help='Numero de elites')
    parser.add_argument('--seed', type=int, default=None, help='Semente do gerador aleatorio')
    parser.add_argument('--n-jobs', type=int, default=None, help='Processos para avaliar individuos')
    parser.add_argument('--ratio-sizing', action='store_true',
                        help='Usar o investment_ratio de cada individuo em vez de valor fixo')
    parser.add_argument('--no-seed-params', action='store_true',
                        help='Nao semear a populacao com o otimo salvo')
    parser.add_argument('--no-save', action='store_true', help='Nao salvar o resultado')
    parser.add_argument('--log-level', default=None, help='Nivel de log (INFO, DEBUG, ...)')
    return parser.parse_args()


def save_results(result, optimal_file: str):
    """Salvar otimo, historico e resumo por geracao nos caminhos da secao 'optimizer'."""
    save_optimal_parameters(result, optimal_file)
    append_optimization_history(
        Config.get('optimizer.history_file', 'results/optimization_history.json'),
        result,
        keep=Config.get('optimizer.history_keep', 100),
    )
    generations_file = Config.get('optimizer.generations_file', 'results/optimization_generations.json')
    save_json_atomic(generations_file, [record.to_dict() for record in result.history])
    log.info(f"Geracoes salvas em {generations_file}")


def main():
    args = parse_args()
    setup_logging(args.log_level)

    candles = load_candles_csv(args.data, newest_first=args.newest_first)

    config = OptimizerConfig.from_config({
        'population_size': args.population,
        'generations': args.generations,
        'mutation_rate': args.mutation_rate,
        'crossover_rate': args.crossover_rate,
        'elite_size': args.elite,
        'seed': args.seed,
        'n_jobs': args.n_jobs,
    })

    optimal_file = Config.get('optimizer.optimal_config_file', 'config/optimal_config.json')
    seed_params = None if args.no_seed_params else load_saved_parameters(optimal_file)

    fitness = BacktestFitness(
        candles,
        sizing_policy=SIZING_RATIO if args.ratio_sizing else SIZING_FIXED,
    )
    result = GeneticOptimizer(config).optimize(fitness, seed_params=seed_params)

    print("\n" + "=" * 60)
    print(f" MELHOR INDIVIDUO (geracao {result.generation})")
    print("=" * 60)
    print(f"  Fitness: {result.fitness:.4f}")
    for name, value in result.parameters.items():
        print(f"  {name:<20} {value}")

    if result.fitness > float('-inf'):
        print(format_report(fitness.run_backtest(result.parameters)))

    if not args.no_save and result.fitness > float('-inf'):
        save_results(result, optimal_file)
    elif result.fitness == float('-inf'):
        log.warning("Nenhum individuo valido; otimo salvo mantido")

    return 0


if __name__ == '__main__':
    sys.exit(main())
