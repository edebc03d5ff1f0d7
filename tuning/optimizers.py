"""
Optimizers - Otimizacao Genetica
================================
Busca de parametros da estrategia com algoritmo genetico, usando o
backtester como funcao de fitness.

- Populacao inicial semeada com o otimo salvo (se existir)
- Selecao por torneio (tamanho 3, com reposicao)
- Crossover de ponto unico sobre a lista ordenada de parametros
- Mutacao de um unico parametro, reamostrado no grid
- Elitismo
- Fonte de aleatoriedade injetavel (random.Random) para reprodutibilidade
"""

import logging
import math
import random
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from tradecore.config import Config
from tradecore.error_handling import ConfigValidationError
from tradecore.utils import load_json_safe, save_json_atomic

from .backtester import SIZING_FIXED, Backtester, BacktestConfig, BacktestResult

log = logging.getLogger(__name__)

FAILED_FITNESS = float('-inf')


# =============================================================================
# PARAMETROS DE OTIMIZACAO
# =============================================================================
PARAM_SPACE = {
    # RSI
    'rsi_period': {'type': 'int', 'min': 5, 'max': 30, 'step': 1},
    'rsi_oversold': {'type': 'int', 'min': 15, 'max': 45, 'step': 1},
    'rsi_overbought': {'type': 'int', 'min': 55, 'max': 85, 'step': 1},

    # MACD
    'macd_fast': {'type': 'int', 'min': 5, 'max': 20, 'step': 1},
    'macd_slow': {'type': 'int', 'min': 15, 'max': 45, 'step': 1},
    'macd_signal': {'type': 'int', 'min': 5, 'max': 15, 'step': 1},

    # Bollinger Bands
    'bb_period': {'type': 'int', 'min': 10, 'max': 30, 'step': 1},
    'bb_std': {'type': 'float', 'min': 1.5, 'max': 3.0, 'step': 0.1},

    # EMA
    'ema_short': {'type': 'int', 'min': 3, 'max': 20, 'step': 1},
    'ema_mid': {'type': 'int', 'min': 15, 'max': 50, 'step': 1},
    'ema_long': {'type': 'int', 'min': 30, 'max': 200, 'step': 5},

    # Risco (%)
    'stop_loss_pct': {'type': 'float', 'min': 1.0, 'max': 15.0, 'step': 0.5},
    'take_profit_pct': {'type': 'float', 'min': 2.0, 'max': 30.0, 'step': 0.5},
    'trailing_stop_pct': {'type': 'float', 'min': 0.5, 'max': 10.0, 'step': 0.5},

    # Limiares de pontuacao
    'buy_threshold': {'type': 'int', 'min': 40, 'max': 80, 'step': 1},
    'sell_threshold': {'type': 'int', 'min': 40, 'max': 80, 'step': 1},

    # Volume
    'volume_multiplier': {'type': 'float', 'min': 1.0, 'max': 3.0, 'step': 0.1},
    'volume_period': {'type': 'int', 'min': 5, 'max': 30, 'step': 1},

    # Pesos / sizing
    'technical_weight': {'type': 'float', 'min': 0.4, 'max': 0.9, 'step': 0.05},
    'investment_ratio': {'type': 'float', 'min': 0.02, 'max': 0.15, 'step': 0.01},
}


def grid_values(spec: Dict[str, Any]) -> List:
    """Todos os valores do grid [min, max] com passo `step` (max incluido)."""
    step = spec.get('step', 1)
    if spec['type'] == 'int':
        return list(range(spec['min'], spec['max'] + 1, step))
    count = int(round((spec['max'] - spec['min']) / step)) + 1
    return [round(spec['min'] + i * step, 4) for i in range(count)]


def _snap(value: float, spec: Dict[str, Any]):
    """Limita ao intervalo e alinha ao grid."""
    step = spec.get('step', 1)
    value = max(spec['min'], min(spec['max'], value))
    value = spec['min'] + round((value - spec['min']) / step) * step
    value = max(spec['min'], min(spec['max'], value))
    if spec['type'] == 'int':
        return int(round(value))
    return round(value, 4)


def random_params(rng: random.Random, param_space: dict = None) -> dict:
    """Gera parametros aleatorios alinhados ao grid."""
    param_space = param_space or PARAM_SPACE
    return {name: rng.choice(grid_values(spec)) for name, spec in param_space.items()}


def normalize_params(params: dict, rng: random.Random, param_space: dict = None) -> dict:
    """
    Ajusta um conjunto salvo ao espaco atual: limita, alinha ao grid e
    sorteia os parametros ausentes. Chaves fora do espaco sao descartadas.
    """
    param_space = param_space or PARAM_SPACE
    normalized = {}

    for name, spec in param_space.items():
        value = params.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            normalized[name] = _snap(value, spec)
        else:
            normalized[name] = rng.choice(grid_values(spec))

    return normalized


def mutate_params(params: dict, rng: random.Random, param_space: dict = None) -> dict:
    """Reamostra um unico parametro escolhido ao acaso."""
    param_space = param_space or PARAM_SPACE
    mutated = params.copy()
    name = rng.choice(list(param_space))
    mutated[name] = rng.choice(grid_values(param_space[name]))
    return mutated


def crossover_params(parent1: dict, parent2: dict, rng: random.Random, param_space: dict = None) -> dict:
    """Crossover de ponto unico: prefixo do parent1, sufixo do parent2."""
    names = list(param_space or PARAM_SPACE)
    point = rng.randrange(len(names))
    return {name: parent1[name] if i < point else parent2[name] for i, name in enumerate(names)}


# =============================================================================
# FITNESS
# =============================================================================
def calculate_fitness(result: BacktestResult) -> float:
    """
    Fitness = retorno total (%) com penalidades e bonus:
    DD > 30% x0.5 (ou DD > 20% x0.7), Sharpe > 1 x1.2,
    win rate > 60% x1.1, menos de 5 trades x0.5.
    """
    fitness = result.total_return_pct

    if result.max_drawdown > 30:
        fitness *= 0.5
    elif result.max_drawdown > 20:
        fitness *= 0.7

    if result.sharpe_ratio > 1:
        fitness *= 1.2

    if result.win_rate > 60:
        fitness *= 1.1

    if result.total_trades < 5:
        fitness *= 0.5

    return fitness


class BacktestFitness:
    """
    Funcao de fitness baseada no backtester.

    Sem historico de sentimento, o peso tecnico e forcado alto (0.9) e o de
    sentimento baixo (0.1). Sizing explicito:
    - 'fixed': valor fixo por trade (padrao 100000)
    - 'ratio': usa o investment_ratio do individuo

    Picklable, para uso com ProcessPoolExecutor.
    """

    def __init__(
        self,
        candles: pd.DataFrame,
        backtest_config: Optional[BacktestConfig] = None,
        sizing_policy: str = SIZING_FIXED,
        investment_amount: float = None,
        technical_weight: float = None,
        sentiment_weight: float = None
    ):
        opt_config = Config.get_section('optimizer')
        self.candles = candles
        self.backtest_config = backtest_config or BacktestConfig.from_config()
        self.sizing_policy = sizing_policy
        self.investment_amount = investment_amount or opt_config.get('fitness_investment_amount', 100_000)
        self.technical_weight = technical_weight if technical_weight is not None else \
            opt_config.get('fitness_technical_weight', 0.9)
        self.sentiment_weight = sentiment_weight if sentiment_weight is not None else \
            opt_config.get('fitness_sentiment_weight', 0.1)

    def _backtest_config(self, params: dict) -> BacktestConfig:
        if self.sizing_policy == SIZING_FIXED:
            return replace(self.backtest_config, sizing_policy=SIZING_FIXED,
                           investment_amount=self.investment_amount)
        return replace(self.backtest_config, sizing_policy=self.sizing_policy,
                       investment_ratio=params.get('investment_ratio', self.backtest_config.investment_ratio))

    def run_backtest(self, params: dict) -> BacktestResult:
        strategy_params = dict(params)
        strategy_params['technical_weight'] = self.technical_weight
        strategy_params['sentiment_weight'] = self.sentiment_weight
        return Backtester(self._backtest_config(params)).run(self.candles, strategy_params)

    def __call__(self, params: dict) -> float:
        return calculate_fitness(self.run_backtest(params))


def _safe_evaluate(fitness_func: Callable[[dict], float], params: dict) -> float:
    """Avalia um individuo; erro ou NaN viram -inf."""
    try:
        score = float(fitness_func(params))
    except Exception as e:
        log.warning(f"Erro avaliando individuo: {e}")
        return FAILED_FITNESS
    if np.isnan(score):
        return FAILED_FITNESS
    return score


# =============================================================================
# RESULTADOS
# =============================================================================
@dataclass
class GenerationRecord:
    """Resumo de uma geracao."""
    generation: int
    ranked: List[Tuple[dict, float]]
    elites: List[Tuple[dict, float]]
    best_params: dict
    best_fitness: float
    avg_fitness: float
    median_fitness: float

    def to_dict(self) -> Dict:
        return {
            'generation': self.generation,
            'best_fitness': self.best_fitness,
            'avg_fitness': self.avg_fitness,
            'median_fitness': self.median_fitness,
            'best_params': self.best_params,
        }


@dataclass
class OptimizationResult:
    """Resultado de uma otimizacao."""
    parameters: Dict[str, Any]
    fitness: float
    generation: int
    history: List[GenerationRecord] = field(default_factory=list)
    convergence_history: List[float] = field(default_factory=list)
    trials: int = 0
    optimization_time: float = 0

    def to_dict(self) -> Dict:
        return {
            'parameters': self.parameters,
            'fitness': self.fitness,
            'generation': self.generation,
        }


@dataclass
class OptimizerConfig:
    """Configuracao do algoritmo genetico."""
    population_size: int = 20
    generations: int = 10
    mutation_rate: float = 0.2
    crossover_rate: float = 0.7
    elite_size: int = 2
    tournament_size: int = 3
    n_jobs: int = 1
    seed: Optional[int] = None

    def __post_init__(self):
        if self.population_size < 2:
            raise ConfigValidationError('population_size', self.population_size, "deve ser >= 2")
        if self.generations < 1:
            raise ConfigValidationError('generations', self.generations, "deve ser >= 1")
        for name in ('mutation_rate', 'crossover_rate'):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigValidationError(name, getattr(self, name), "deve estar em [0, 1]")
        if not 0 <= self.elite_size <= self.population_size // 2:
            raise ConfigValidationError('elite_size', self.elite_size,
                                        "deve estar entre 0 e metade da populacao")
        if self.tournament_size < 1:
            raise ConfigValidationError('tournament_size', self.tournament_size, "deve ser >= 1")
        if self.n_jobs < 1:
            raise ConfigValidationError('n_jobs', self.n_jobs, "deve ser >= 1")

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, Any]] = None) -> 'OptimizerConfig':
        """Secao 'optimizer' do Config, com overrides opcionais."""
        params = Config.get_section('optimizer')
        params.update({k: v for k, v in (overrides or {}).items() if v is not None})
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in known})


# =============================================================================
# GENETIC OPTIMIZER
# =============================================================================
class GeneticOptimizer:
    """
    Otimizador usando Algoritmo Genetico.

    Features:
    - Selecao por torneio
    - Crossover de ponto unico e mutacao de um gene
    - Elitismo
    - Avaliacao opcional em paralelo (n_jobs > 1)

    Individuos com fitness -inf nunca sao selecionados nem preservados.
    """

    def __init__(
        self,
        config: Optional[OptimizerConfig] = None,
        rng: Optional[random.Random] = None,
        param_space: dict = None
    ):
        self.config = config or OptimizerConfig.from_config()
        self.rng = rng or random.Random(self.config.seed)
        self.param_space = param_space or PARAM_SPACE

        self.population: List[dict] = []
        self.history: List[GenerationRecord] = []
        self._fitness_cache: Dict[tuple, float] = {}

    def _key(self, individual: dict) -> tuple:
        return tuple(individual[name] for name in self.param_space)

    def _initialize_population(self, seed_params: Optional[dict] = None):
        """Populacao inicial: otimo salvo (se houver) + individuos aleatorios."""
        self.population = []
        if seed_params:
            self.population.append(normalize_params(seed_params, self.rng, self.param_space))
            log.info("Populacao semeada com parametros salvos")
        while len(self.population) < self.config.population_size:
            self.population.append(random_params(self.rng, self.param_space))

    def _evaluate_population(self, fitness_func: Callable[[dict], float]) -> List[float]:
        """Avalia a populacao; resultados em cache por conjunto de parametros."""
        pending = []
        seen = set()
        for individual in self.population:
            key = self._key(individual)
            if key not in self._fitness_cache and key not in seen:
                seen.add(key)
                pending.append(individual)

        if pending:
            if self.config.n_jobs > 1 and len(pending) > 1:
                with ProcessPoolExecutor(max_workers=self.config.n_jobs) as executor:
                    scores = list(executor.map(_safe_evaluate, [fitness_func] * len(pending), pending))
            else:
                scores = [_safe_evaluate(fitness_func, individual) for individual in pending]

            for individual, score in zip(pending, scores):
                self._fitness_cache[self._key(individual)] = score

        return [self._fitness_cache[self._key(individual)] for individual in self.population]

    def _tournament_selection(self, ranked: List[Tuple[dict, float]]) -> dict:
        """Seleciona individuo por torneio (amostragem com reposicao)."""
        contenders = [ranked[self.rng.randrange(len(ranked))] for _ in range(self.config.tournament_size)]
        winner = contenders[0]
        for contender in contenders[1:]:
            if contender[1] > winner[1]:
                winner = contender
        return winner[0]

    def _create_next_generation(self, ranked: List[Tuple[dict, float]]) -> List[Tuple[dict, float]]:
        """
        Cria a proxima geracao a partir da populacao ordenada.

        Returns:
            Elites preservadas (parametros, fitness)
        """
        viable = [(ind, score) for ind, score in ranked if score > FAILED_FITNESS]

        if not viable:
            log.warning("Nenhum individuo valido na geracao; reiniciando populacao")
            self.population = [random_params(self.rng, self.param_space)
                               for _ in range(self.config.population_size)]
            return []

        elites = viable[:self.config.elite_size]
        new_population = [ind.copy() for ind, _ in elites]

        while len(new_population) < self.config.population_size:
            parent1 = self._tournament_selection(viable)
            parent2 = self._tournament_selection(viable)

            if self.rng.random() < self.config.crossover_rate:
                child = crossover_params(parent1, parent2, self.rng, self.param_space)
            else:
                child = parent1.copy()

            if self.rng.random() < self.config.mutation_rate:
                child = mutate_params(child, self.rng, self.param_space)

            new_population.append(child)

        self.population = new_population
        return elites

    def optimize(
        self,
        fitness_func: Callable[[dict], float],
        seed_params: Optional[dict] = None
    ) -> OptimizationResult:
        """
        Executa otimizacao genetica.

        Args:
            fitness_func: Funcao que avalia parametros e retorna score
            seed_params: Otimo salvo para semear a populacao

        Returns:
            OptimizationResult com o melhor individuo de todas as geracoes
        """
        start_time = time.time()
        cfg = self.config

        log.info(
            f"Otimizacao genetica: populacao={cfg.population_size} geracoes={cfg.generations} "
            f"mutacao={cfg.mutation_rate:.0%} crossover={cfg.crossover_rate:.0%}"
        )

        self.history = []
        self._fitness_cache = {}
        self._initialize_population(seed_params)

        best_params: dict = {}
        best_fitness = FAILED_FITNESS
        best_generation = 0
        convergence_history = []

        for gen in range(1, cfg.generations + 1):
            scores = self._evaluate_population(fitness_func)

            # sorted() e estavel: empates mantem a ordem da populacao
            ranked = sorted(zip(self.population, scores), key=lambda x: x[1], reverse=True)
            gen_best_params, gen_best = ranked[0]

            if not best_params or gen_best > best_fitness:
                best_params = gen_best_params.copy()
                best_fitness = gen_best
                best_generation = gen
            convergence_history.append(best_fitness)

            finite = [s for s in scores if s > FAILED_FITNESS]
            avg_fitness = float(np.mean(finite)) if finite else FAILED_FITNESS
            median_fitness = float(np.median(scores))

            log.info(f"Gen {gen}/{cfg.generations} | Best: {gen_best:.4f} | Avg: {avg_fitness:.4f}")

            elites = []
            if gen < cfg.generations:
                elites = self._create_next_generation(ranked)

            self.history.append(GenerationRecord(
                generation=gen,
                ranked=[(ind.copy(), score) for ind, score in ranked],
                elites=[(ind.copy(), score) for ind, score in elites],
                best_params=gen_best_params.copy(),
                best_fitness=gen_best,
                avg_fitness=avg_fitness,
                median_fitness=median_fitness,
            ))

        optimization_time = time.time() - start_time
        log.info(
            f"Otimizacao concluida em {optimization_time:.1f}s | melhor fitness "
            f"{best_fitness:.4f} (geracao {best_generation})"
        )

        return OptimizationResult(
            parameters=best_params,
            fitness=best_fitness,
            generation=best_generation,
            history=self.history,
            convergence_history=convergence_history,
            trials=len(self._fitness_cache),
            optimization_time=optimization_time,
        )


# =============================================================================
# PERSISTENCIA DO OTIMO
# =============================================================================
def load_saved_parameters(path: str) -> Optional[dict]:
    """
    Carregar o otimo salvo. Aceita {'parameters': {...}} ou um dict plano.

    Returns:
        Dict de parametros, ou None se nao houver arquivo valido
    """
    data = load_json_safe(path, default={})
    if not isinstance(data, dict) or not data:
        return None
    params = data.get('parameters', data)
    if not isinstance(params, dict) or not params:
        return None
    log.info(f"Parametros salvos carregados de {path}")
    return params


def save_optimal_parameters(result: OptimizationResult, path: str, note: str = None) -> dict:
    """Salvar o melhor individuo como nova configuracao otima."""
    payload = {
        'updated_at': datetime.now().isoformat(),
        'parameters': result.parameters,
        'fitness': result.fitness,
        'generation': result.generation,
        'note': note or f"fitness {result.fitness:.2f} (geracao {result.generation})",
    }
    save_json_atomic(path, payload)
    log.info(f"Configuracao otima salva em {path}")
    return payload


def append_optimization_history(path: str, result: OptimizationResult, keep: int = 100) -> List[dict]:
    """Acrescentar resultado ao historico, mantendo apenas os ultimos `keep`."""
    history = load_json_safe(path, default=[])
    if not isinstance(history, list):
        history = []
    entry = result.to_dict()
    entry['timestamp'] = datetime.now().isoformat()
    entry['trials'] = result.trials
    entry['optimization_time'] = round(result.optimization_time, 2)
    history.append(entry)
    history = history[-keep:]
    save_json_atomic(path, history)
    return history
