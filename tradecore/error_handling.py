"""
Error Handling Module - Excecoes do nucleo de avaliacao de estrategias
================================================================================
Hierarquia unica de excecoes usada por indicadores, motor de decisao,
backtester e otimizador.

COMPONENTES:
- StrategyError: Base de todas as excecoes do projeto
- InsufficientDataError: Candles insuficientes para um indicador
- ConfigValidationError: Configuracao fora do dominio valido
- CandleOrderError: Sequencia de candles fora da ordem cronologica

REGRAS:
- Indicadores levantam InsufficientDataError; comprehensive_analysis captura
  e devolve None (passo ignorado).
- Uso incorreto do motor de decisao NAO levanta excecao: retorna None e loga.
- Falha ao avaliar um individuo do otimizador vira fitness -inf.
- Nada e retentado.
================================================================================
"""
from typing import Optional


# =============================================================================
# EXCECOES CUSTOMIZADAS
# =============================================================================

class StrategyError(Exception):
    """Excecao base para erros do avaliador de estrategias."""
    pass


class InsufficientDataError(StrategyError, ValueError):
    """Numero de candles menor que o minimo exigido pelo indicador."""

    def __init__(self, indicator: str, required: int, available: int):
        self.indicator = indicator
        self.required = required
        self.available = available
        super().__init__(
            f"{indicator}: necessarios {required} candles, disponiveis {available}"
        )


class ConfigValidationError(StrategyError, ValueError):
    """Parametro de configuracao invalido."""

    def __init__(self, field_name: str, value, reason: Optional[str] = None):
        self.field_name = field_name
        self.value = value
        message = f"Parametro invalido '{field_name}'={value!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class CandleOrderError(StrategyError, ValueError):
    """Candles nao estao em ordem cronologica (mais antigo primeiro)."""
    pass
