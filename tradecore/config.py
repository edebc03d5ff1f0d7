"""
Configuration Module - Sistema Centralizado
================================================================================
FONTE UNICA DE VERDADE - TODAS AS CONFIGURACOES PASSAM POR AQUI
================================================================================

COMO USAR:
    from tradecore.config import Config

    # Obter parametro
    value = Config.get('backtest.slippage', default=0.001)

    # Obter secao inteira
    strategy_params = Config.get_section('strategy')

    # Recarregar configs
    Config.reload()

ARQUIVO:
    config/settings.json (opcional). Pode ser trocado pela variavel de
    ambiente TUNER_CONFIG_FILE. Valores do arquivo sao mesclados sobre
    DEFAULT_CONFIG. O arquivo nunca e criado automaticamente.

AMBIENTE (.env carregado via python-dotenv):
    TUNER_<SECAO>__<CHAVE>=valor sobrescreve uma chave, ex:
    TUNER_OPTIMIZER__N_JOBS=4. Valores sao lidos como JSON quando possivel.

As dataclasses de configuracao (StrategyConfig, BacktestConfig,
OptimizerConfig) leem suas secoes via from_config() e validam no construtor.
================================================================================
"""
import copy
import os
import json
import threading
import logging
from typing import Any, Dict, Optional
from datetime import datetime
from dotenv import load_dotenv

load_dotenv(override=True)

log = logging.getLogger(__name__)

# =============================================================================
# ARQUIVO DE CONFIGURACAO CENTRALIZADO
# =============================================================================
DEFAULT_CONFIG_FILE = 'config/settings.json'


def get_config_file() -> str:
    """Caminho do arquivo de settings (env TUNER_CONFIG_FILE tem prioridade)."""
    return os.getenv('TUNER_CONFIG_FILE', DEFAULT_CONFIG_FILE)


# =============================================================================
# CONFIGURACAO PADRAO (usada se settings.json nao existir)
# =============================================================================
DEFAULT_CONFIG = {
    # === METADATA ===
    "version": "1.0",
    "last_updated": "",

    # === MOTOR DE DECISAO ===
    "strategy": {
        "technical_weight": 0.6,
        "sentiment_weight": 0.4,
        "buy_threshold": 55,
        "sell_threshold": 55,
        "buy_only": False,
        "stop_loss_pct": 5.0,
        "take_profit_pct": 10.0,
        "max_position_size": 0.3,
        "fee_rate": 0.0005,
    },

    # === INDICADORES ===
    "indicators": {
        "rsi_period": 14,
        "rsi_oversold": 30,
        "rsi_overbought": 70,
        "macd_fast": 12,
        "macd_slow": 26,
        "macd_signal": 9,
        "bb_period": 20,
        "bb_std": 2.0,
        "ema_short": 5,
        "ema_mid": 20,
        "volume_period": 20,
        "volume_multiplier": 1.5,
    },

    # === BACKTEST ===
    "backtest": {
        "initial_balance": 1_000_000,
        "trading_fee": 0.0005,
        "slippage": 0.001,
        "lookback": 200,
        "min_order_amount": 5000,
        "max_balance_usage": 0.95,
        "sizing_policy": "ratio",
        "investment_amount": None,
        "investment_ratio": 0.1,
    },

    # === OTIMIZADOR GENETICO ===
    "optimizer": {
        "population_size": 20,
        "generations": 10,
        "mutation_rate": 0.2,
        "crossover_rate": 0.7,
        "elite_size": 2,
        "tournament_size": 3,
        "n_jobs": 1,
        "seed": None,
        "fitness_investment_amount": 100_000,
        "fitness_technical_weight": 0.9,
        "fitness_sentiment_weight": 0.1,
        "optimal_config_file": "config/optimal_config.json",
        "history_file": "results/optimization_history.json",
        "history_keep": 100,
        "generations_file": "results/optimization_generations.json",
    },

    # === LOGGING ===
    "logging": {
        "level": "INFO",
        "log_file": "logs/strategy_tuner.log",
        "max_bytes": 5 * 1024 * 1024,
        "backup_count": 5,
    },
}


# Sobrescrita por variavel de ambiente: TUNER_<SECAO>__<CHAVE>=valor
# ex: TUNER_OPTIMIZER__N_JOBS=4, TUNER_BACKTEST__SIZING_POLICY=fixed
ENV_PREFIX = 'TUNER_'
ENV_SEPARATOR = '__'


def _parse_env_value(raw: str) -> Any:
    """Valores de ambiente sao lidos como JSON quando possivel (numeros, bool, null)."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _merge_sections(target: Dict, source: Dict, origin: str):
    """Mescla `source` sobre `target` secao por secao; secoes desconhecidas sao avisadas."""
    for section, values in source.items():
        current = target.get(section)
        if isinstance(current, dict) and isinstance(values, dict):
            unknown = set(values) - set(current)
            if unknown:
                log.warning(f"{origin}: chaves desconhecidas em '{section}': {sorted(unknown)}")
            current.update(values)
        elif section in target:
            target[section] = values
        else:
            log.warning(f"{origin}: secao desconhecida '{section}' ignorada")


class SettingsStore:
    """
    Configuracao efetiva do processo: DEFAULT_CONFIG + settings.json + ambiente.
    Instancia unica por processo; reload() le de novo arquivo e ambiente.
    """
    _instance: Optional['SettingsStore'] = None
    _instance_lock = threading.Lock()

    @classmethod
    def instance(cls) -> 'SettingsStore':
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def __init__(self):
        self._lock = threading.RLock()
        self._data: Dict = {}
        self.source: Optional[str] = None
        self.reload()

    def reload(self):
        """Reconstroi a configuracao a partir dos defaults."""
        data = copy.deepcopy(DEFAULT_CONFIG)
        path = get_config_file()
        source = None

        if os.path.exists(path):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    _merge_sections(data, json.load(f), path)
                source = path
            except (OSError, json.JSONDecodeError) as e:
                log.warning(f"Falha lendo {path}: {e}. Mantendo defaults.")

        for name, raw in os.environ.items():
            if not name.startswith(ENV_PREFIX) or ENV_SEPARATOR not in name:
                continue
            section, key = name[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR, 1)
            if isinstance(data.get(section), dict) and key in data[section]:
                data[section][key] = _parse_env_value(raw)
                log.debug(f"{name} aplicado em {section}.{key}")

        with self._lock:
            self._data = data
            self.source = source
        log.debug(f"Configuracao carregada ({source or 'defaults'})")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            node: Any = self._data
            for part in key.split('.'):
                if not isinstance(node, dict) or part not in node:
                    return default
                node = node[part]
            return copy.deepcopy(node)

    def section(self, name: str) -> Dict:
        value = self.get(name, {})
        return value if isinstance(value, dict) else {}

    def set(self, key: str, value: Any):
        section, _, leaf = key.rpartition('.')
        with self._lock:
            node = self._data
            for part in filter(None, section.split('.')):
                node = node.setdefault(part, {})
            node[leaf] = value

    def snapshot(self) -> Dict:
        with self._lock:
            return copy.deepcopy(self._data)

    def save(self, path: Optional[str] = None) -> str:
        """Grava a configuracao efetiva (inclusive sobrescritas de ambiente)."""
        from .utils import save_json_atomic

        path = path or get_config_file()
        data = self.snapshot()
        data['last_updated'] = datetime.now().isoformat()
        save_json_atomic(path, data)
        log.info(f"Configuracao salva em {path}")
        return path


# =============================================================================
# API PUBLICA
# =============================================================================
class Config:
    """Acesso estatico a configuracao do processo."""

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        """Valor por chave com notacao de ponto ('backtest.slippage')."""
        return SettingsStore.instance().get(key, default)

    @staticmethod
    def get_section(section: str) -> Dict:
        """Copia de uma secao inteira."""
        return SettingsStore.instance().section(section)

    @staticmethod
    def set(key: str, value: Any, save: bool = False):
        store = SettingsStore.instance()
        store.set(key, value)
        if save:
            store.save()

    @staticmethod
    def reload():
        SettingsStore.instance().reload()

    @staticmethod
    def get_all() -> Dict:
        return SettingsStore.instance().snapshot()
