"""
Strategy Module - Motor de Decisao
================================================================================
Combina a analise tecnica (IndicatorSnapshot) com um resumo de sentimento
externo para decidir BUY/SELL/HOLD, e controla o ciclo de vida de no maximo
uma posicao aberta por instancia.

PONTUACAO:
- technical_score e sentiment_score em [0, 100], partindo de 50
- total = technical * technical_weight + sentiment * sentiment_weight
- BUY se total >= buy_threshold
- SELL se total <= 100 - sell_threshold (suprimido em buy_only)
- Stop-loss / take-profit forcam SELL com confianca 1.0, mesmo em buy_only

TAXAS:
- fee_rate por lado (padrao 0.05%)
- net_profit = gross_profit - (taxa de entrada + taxa de saida)
- Venda parcial usa apenas a parte proporcional da taxa de entrada
================================================================================
"""
import logging
import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import Config
from .error_handling import ConfigValidationError
from .indicators import (
    CROSSOVER_DEAD,
    CROSSOVER_GOLDEN,
    IndicatorParams,
    IndicatorSnapshot,
)

log = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================
class Action(Enum):
    """Acao de uma decisao."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class TradeAction(Enum):
    """Tipo de registro no historico de trades."""
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    PARTIAL_CLOSE = "PARTIAL_CLOSE"


class SignalLevel(Enum):
    """Forca do sinal e multiplicador de investimento associado."""
    NONE = ("NONE", 0.0)
    WEAK = ("WEAK", 1.0)
    MEDIUM = ("MEDIUM", 1.5)
    STRONG = ("STRONG", 2.2)
    VERY_STRONG = ("VERY_STRONG", 3.0)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def multiplier(self) -> float:
        return self.value[1]


# Faixas (distancia minima alem do limiar -> nivel), da mais forte para a mais fraca
SIGNAL_TIERS: Tuple[Tuple[float, SignalLevel], ...] = (
    (15, SignalLevel.VERY_STRONG),
    (8, SignalLevel.STRONG),
    (3, SignalLevel.MEDIUM),
    (0, SignalLevel.WEAK),
)

SENTIMENT_LABEL_BONUS = {
    'very positive': 15,
    'positive': 8,
    'negative': -8,
    'very negative': -15,
}

REASON_BUY_ONLY = "modo somente compra - sinal de venda ignorado"
REASON_NO_SIGNAL = "sem sinal claro - aguardando"
REASON_NO_DATA = "dados de analise insuficientes"


# =============================================================================
# DATACLASSES
# =============================================================================
@dataclass
class SentimentSummary:
    """Resumo de sentimento de noticias (entrada externa)."""
    overall: str = 'neutral'
    score: float = 0.0
    positive_ratio: float = 1 / 3
    negative_ratio: float = 1 / 3
    recommendation: str = 'HOLD'

    @classmethod
    def neutral(cls) -> 'SentimentSummary':
        """Sentimento neutro usado no backtest (sem historico de noticias)."""
        return cls()

    @classmethod
    def from_dict(cls, data: Dict) -> 'SentimentSummary':
        return cls(
            overall=data.get('overall', 'neutral'),
            score=float(data.get('score', 0) or 0),
            positive_ratio=float(data.get('positive_ratio', 0) or 0),
            negative_ratio=float(data.get('negative_ratio', 0) or 0),
            recommendation=data.get('recommendation', 'HOLD'),
        )


@dataclass
class SignalStrength:
    level: SignalLevel = SignalLevel.NONE
    score: float = 0.0

    @property
    def multiplier(self) -> float:
        return self.level.multiplier

    def to_dict(self) -> Dict:
        return {'level': self.level.label, 'multiplier': self.multiplier, 'score': round(self.score, 4)}


@dataclass
class Decision:
    """Decisao de trading com pontuacoes."""
    action: Action
    reason: str
    confidence: float
    signal_strength: SignalStrength = field(default_factory=SignalStrength)
    technical_score: float = 0.0
    sentiment_score: float = 0.0
    total_score: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'action': self.action.value,
            'reason': self.reason,
            'confidence': round(self.confidence, 4),
            'signal_strength': self.signal_strength.to_dict(),
            'scores': {
                'technical': round(self.technical_score, 2),
                'sentiment': round(self.sentiment_score, 2),
                'total': round(self.total_score, 2),
            },
        }


@dataclass
class Position:
    """Posicao aberta (long)."""
    id: str
    type: str
    entry_price: float
    amount: float
    entry_time: Any


@dataclass(frozen=True)
class TradeRecord:
    """Registro imutavel do historico de trades."""
    action: TradeAction
    position_id: str
    entry_price: float
    amount: float
    entry_time: Any = None
    exit_price: Optional[float] = None
    exit_time: Any = None
    gross_profit: float = 0.0
    total_fee: float = 0.0
    net_profit: float = 0.0
    net_profit_pct: float = 0.0
    reason: str = ''
    remaining_amount: float = 0.0
    balance_after: Optional[float] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['action'] = self.action.value
        for key in ('entry_time', 'exit_time'):
            if isinstance(data[key], datetime):
                data[key] = data[key].isoformat()
        return data


@dataclass
class StrategyConfig:
    """
    Configuracao do motor de decisao.
    Validada uma unica vez na construcao.
    """
    technical_weight: float = 0.6
    sentiment_weight: float = 0.4
    buy_threshold: float = 55
    sell_threshold: float = 55
    buy_only: bool = False
    stop_loss_pct: float = 5.0
    take_profit_pct: float = 10.0
    max_position_size: float = 0.3
    fee_rate: float = 0.0005
    trailing_stop_pct: Optional[float] = None

    # Indicadores
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
    ema_long: Optional[int] = None
    volume_period: int = 20
    volume_multiplier: float = 1.5

    def __post_init__(self):
        for name in ('technical_weight', 'sentiment_weight', 'fee_rate'):
            if getattr(self, name) < 0:
                raise ConfigValidationError(name, getattr(self, name), "deve ser >= 0")
        for name in ('buy_threshold', 'sell_threshold'):
            value = getattr(self, name)
            if not 0 < value < 100:
                raise ConfigValidationError(name, value, "deve estar entre 0 e 100")
        for name in ('stop_loss_pct', 'take_profit_pct'):
            if getattr(self, name) <= 0:
                raise ConfigValidationError(name, getattr(self, name), "deve ser > 0")
        if not 0 < self.max_position_size <= 1:
            raise ConfigValidationError('max_position_size', self.max_position_size, "deve estar em (0, 1]")
        for name in ('rsi_period', 'macd_fast', 'macd_slow', 'macd_signal', 'bb_period',
                     'ema_short', 'ema_mid', 'volume_period'):
            if int(getattr(self, name)) < 1:
                raise ConfigValidationError(name, getattr(self, name), "periodo deve ser >= 1")
        if self.bb_std < 0:
            raise ConfigValidationError('bb_std', self.bb_std, "deve ser >= 0")

    @property
    def indicator_params(self) -> IndicatorParams:
        return IndicatorParams.from_dict(asdict(self))

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, params: Optional[Dict[str, Any]]) -> 'StrategyConfig':
        """Chaves desconhecidas sao ignoradas; ausentes usam o default."""
        params = params or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in known and v is not None})

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, Any]] = None) -> 'StrategyConfig':
        """Secoes 'strategy' + 'indicators' do Config, com overrides opcionais."""
        params = Config.get_section('indicators')
        params.update(Config.get_section('strategy'))
        params.update(overrides or {})
        return cls.from_dict(params)


# =============================================================================
# MOTOR DE DECISAO
# =============================================================================
class TradingStrategy:
    """
    Motor de decisao com gestao de uma unica posicao.

    Uso:
        strategy = TradingStrategy(StrategyConfig(buy_threshold=60))
        decision = strategy.make_decision(snapshot, sentiment, price)
        if decision.action is Action.BUY:
            strategy.open_position(price, amount)
    """

    def __init__(self, config: Optional[StrategyConfig] = None):
        self.config = config or StrategyConfig()
        self.current_position: Optional[Position] = None
        self._trade_history: List[TradeRecord] = []

    # -------------------------------------------------------------------------
    # Pontuacao
    # -------------------------------------------------------------------------
    def calculate_technical_score(self, snapshot: IndicatorSnapshot) -> float:
        """Pontuacao tecnica em [0, 100]."""
        score = 50.0

        # RSI
        if snapshot.rsi < 30:
            score += 15
        elif snapshot.rsi > 70:
            score -= 15
        else:
            score += (50 - snapshot.rsi) / 4

        # MACD, limitado a +-10
        histogram = snapshot.macd.histogram
        if histogram > 0:
            score += min(histogram * 2, 10)
        else:
            score += max(histogram * 2, -10)

        # Bollinger
        bb = snapshot.bollinger
        if bb.current_price < bb.lower:
            score += 10
        elif bb.current_price > bb.upper:
            score -= 10

        # Cruzamento
        if snapshot.crossover == CROSSOVER_GOLDEN:
            score += 15
        elif snapshot.crossover == CROSSOVER_DEAD:
            score -= 15

        # Alto volume reforca a direcao
        if snapshot.volume.is_high_volume:
            if score > 50:
                score += 5
            elif score < 50:
                score -= 5

        score += (snapshot.buy_signals - snapshot.sell_signals) * 2

        return max(0.0, min(100.0, score))

    def calculate_sentiment_score(self, sentiment: SentimentSummary) -> float:
        """Pontuacao de sentimento em [0, 100]."""
        score = 50.0
        score += (sentiment.score or 0) * 5
        score += ((sentiment.positive_ratio or 0) - (sentiment.negative_ratio or 0)) * 20
        score += SENTIMENT_LABEL_BONUS.get(sentiment.overall, 0)
        return max(0.0, min(100.0, score))

    def calculate_signal_strength(self, total_score: float, action: Action) -> SignalStrength:
        """Nivel de forca pela distancia da pontuacao alem do limiar."""
        if action is Action.BUY:
            distance = total_score - self.config.buy_threshold
        elif action is Action.SELL:
            distance = (100 - self.config.sell_threshold) - total_score
        else:
            return SignalStrength()

        for minimum, level in SIGNAL_TIERS:
            if distance >= minimum:
                return SignalStrength(level=level, score=distance)
        return SignalStrength(level=SignalLevel.NONE, score=distance)

    # -------------------------------------------------------------------------
    # Decisao
    # -------------------------------------------------------------------------
    def make_decision(
        self,
        snapshot: Optional[IndicatorSnapshot],
        sentiment: Optional[SentimentSummary],
        current_price: float
    ) -> Decision:
        """
        Decidir BUY/SELL/HOLD.

        Confianca: BUY (total - buy) / (100 - buy); SELL mede a distancia abaixo
        do nivel de venda, ((100 - sell) - total) / (100 - sell); HOLD 0.5.

        Args:
            snapshot: Resultado de comprehensive_analysis
            sentiment: Resumo de sentimento
            current_price: Preco atual (para stop-loss/take-profit)

        Returns:
            Decision
        """
        if snapshot is None or sentiment is None:
            return Decision(action=Action.HOLD, reason=REASON_NO_DATA, confidence=0.0)

        cfg = self.config
        technical_score = self.calculate_technical_score(snapshot)
        sentiment_score = self.calculate_sentiment_score(sentiment)
        total_score = technical_score * cfg.technical_weight + sentiment_score * cfg.sentiment_weight

        sell_level = 100 - cfg.sell_threshold

        if total_score >= cfg.buy_threshold:
            action = Action.BUY
            reason = self._buy_reason(snapshot, sentiment)
            confidence = (total_score - cfg.buy_threshold) / (100 - cfg.buy_threshold)
        elif total_score <= sell_level:
            if cfg.buy_only:
                action = Action.HOLD
                reason = REASON_BUY_ONLY
                confidence = 0.5
            else:
                action = Action.SELL
                reason = self._sell_reason(snapshot, sentiment)
                confidence = (sell_level - total_score) / sell_level
        else:
            action = Action.HOLD
            reason = REASON_NO_SIGNAL
            confidence = 0.5

        # Stop-loss / take-profit valem mesmo em buy_only
        if self.current_position is not None:
            should_close, exit_reason = self.check_position(current_price)
            if should_close:
                action = Action.SELL
                reason = exit_reason
                confidence = 1.0

        log.debug(
            f"Decisao {action.value} | tecnico={technical_score:.2f} "
            f"sentimento={sentiment_score:.2f} total={total_score:.2f}"
        )

        return Decision(
            action=action,
            reason=reason,
            confidence=max(0.0, min(1.0, confidence)),
            signal_strength=self.calculate_signal_strength(total_score, action),
            technical_score=technical_score,
            sentiment_score=sentiment_score,
            total_score=total_score,
        )

    def _buy_reason(self, snapshot: IndicatorSnapshot, sentiment: SentimentSummary) -> str:
        reasons = []
        if snapshot.buy_signals > snapshot.sell_signals:
            if snapshot.rsi < 30:
                reasons.append("RSI sobrevendido")
            if snapshot.crossover == CROSSOVER_GOLDEN:
                reasons.append("golden cross")
            if snapshot.bollinger.current_price < snapshot.bollinger.lower:
                reasons.append("rompimento da banda inferior")
            if snapshot.macd.histogram > 0:
                reasons.append("MACD em alta")
        if sentiment.overall in ('positive', 'very positive'):
            reasons.append(f"sentimento positivo ({sentiment.positive_ratio:.0%})")
        return ", ".join(reasons) or "sinal de compra combinado"

    def _sell_reason(self, snapshot: IndicatorSnapshot, sentiment: SentimentSummary) -> str:
        reasons = []
        if snapshot.sell_signals > snapshot.buy_signals:
            if snapshot.rsi > 70:
                reasons.append("RSI sobrecomprado")
            if snapshot.crossover == CROSSOVER_DEAD:
                reasons.append("dead cross")
            if snapshot.bollinger.current_price > snapshot.bollinger.upper:
                reasons.append("rompimento da banda superior")
            if snapshot.macd.histogram < 0:
                reasons.append("MACD em queda")
        if sentiment.overall in ('negative', 'very negative'):
            reasons.append(f"sentimento negativo ({sentiment.negative_ratio:.0%})")
        return ", ".join(reasons) or "sinal de venda combinado"

    # -------------------------------------------------------------------------
    # Ciclo de vida da posicao
    # -------------------------------------------------------------------------
    def check_position(self, current_price: float) -> Tuple[bool, str]:
        """
        Verificar stop-loss / take-profit da posicao aberta.

        Returns:
            (deve_fechar, motivo)
        """
        if self.current_position is None:
            return False, ''

        entry = self.current_position.entry_price
        change_pct = (current_price - entry) / entry * 100

        if change_pct <= -self.config.stop_loss_pct:
            return True, f"stop-loss ({change_pct:.2f}%)"
        if change_pct >= self.config.take_profit_pct:
            return True, f"take-profit ({change_pct:.2f}%)"
        return False, ''

    def open_position(
        self,
        price: float,
        amount: float,
        position_type: str = 'BUY',
        timestamp: Any = None
    ) -> Optional[Position]:
        """Abrir posicao e registrar OPEN. Retorna None se ja houver posicao."""
        if self.current_position is not None:
            log.warning(f"Posicao {self.current_position.id} ja aberta; ignorando nova abertura")
            return None

        position = Position(
            id=uuid.uuid4().hex[:12],
            type=position_type,
            entry_price=price,
            amount=amount,
            entry_time=timestamp if timestamp is not None else datetime.now(),
        )
        self.current_position = position
        self._trade_history.append(TradeRecord(
            action=TradeAction.OPEN,
            position_id=position.id,
            entry_price=price,
            amount=amount,
            entry_time=position.entry_time,
            remaining_amount=amount,
        ))
        log.debug(f"Posicao aberta: {position_type} @ {price} (qtd {amount})")
        return position

    def close_position(
        self,
        price: float,
        reason: str,
        timestamp: Any = None,
        net_profit: Optional[float] = None
    ) -> Optional[TradeRecord]:
        """
        Fechar a posicao inteira.

        Args:
            price: Preco de saida
            reason: Motivo
            timestamp: Momento da saida (padrao: agora)
            net_profit: Lucro liquido apurado pelo chamador, se diferente do
                calculado com fee_rate

        Returns:
            TradeRecord CLOSE, ou None se nao houver posicao
        """
        position = self.current_position
        if position is None:
            log.warning("Nenhuma posicao aberta para fechar")
            return None

        fee_rate = self.config.fee_rate
        entry_fee = position.entry_price * position.amount * fee_rate
        exit_fee = price * position.amount * fee_rate
        total_fee = entry_fee + exit_fee
        gross_profit = (price - position.entry_price) * position.amount
        if net_profit is None:
            net_profit = gross_profit - total_fee
        cost = position.entry_price * position.amount

        record = TradeRecord(
            action=TradeAction.CLOSE,
            position_id=position.id,
            entry_price=position.entry_price,
            amount=position.amount,
            entry_time=position.entry_time,
            exit_price=price,
            exit_time=timestamp if timestamp is not None else datetime.now(),
            gross_profit=gross_profit,
            total_fee=total_fee,
            net_profit=net_profit,
            net_profit_pct=net_profit / cost * 100 if cost else 0.0,
            reason=reason,
            remaining_amount=0.0,
        )
        self._trade_history.append(record)
        self.current_position = None

        log.debug(
            f"Posicao fechada: {'lucro' if net_profit > 0 else 'prejuizo'} "
            f"{record.net_profit_pct:.2f}% ({net_profit:.0f}) | taxas {total_fee:.2f} | {reason}"
        )
        return record

    def record_partial_sell(
        self,
        price: float,
        sold_amount: float,
        reason: str = "venda parcial",
        timestamp: Any = None
    ) -> Optional[TradeRecord]:
        """
        Registrar venda parcial mantendo a posicao.
        Se sold_amount >= quantidade atual, fecha a posicao inteira.

        Returns:
            TradeRecord PARTIAL_CLOSE (ou CLOSE), ou None em uso incorreto
        """
        position = self.current_position
        if position is None:
            log.warning("Nenhuma posicao aberta para venda parcial")
            return None
        if sold_amount <= 0:
            log.warning(f"Quantidade de venda parcial invalida: {sold_amount}")
            return None
        if sold_amount >= position.amount:
            return self.close_position(price, reason, timestamp)

        fee_rate = self.config.fee_rate
        entry_fee_share = position.entry_price * sold_amount * fee_rate
        exit_fee = price * sold_amount * fee_rate
        total_fee = entry_fee_share + exit_fee
        gross_profit = (price - position.entry_price) * sold_amount
        net_profit = gross_profit - total_fee
        remaining = position.amount - sold_amount

        record = TradeRecord(
            action=TradeAction.PARTIAL_CLOSE,
            position_id=position.id,
            entry_price=position.entry_price,
            amount=sold_amount,
            entry_time=position.entry_time,
            exit_price=price,
            exit_time=timestamp if timestamp is not None else datetime.now(),
            gross_profit=gross_profit,
            total_fee=total_fee,
            net_profit=net_profit,
            net_profit_pct=net_profit / (position.entry_price * sold_amount) * 100,
            reason=reason,
            remaining_amount=remaining,
        )
        self._trade_history.append(record)
        position.amount = remaining

        log.debug(f"Venda parcial: {sold_amount:.8f} | liquido {net_profit:.2f} | restante {remaining:.8f}")
        return record

    # -------------------------------------------------------------------------
    # Historico / estatisticas
    # -------------------------------------------------------------------------
    @property
    def trade_history(self) -> Tuple[TradeRecord, ...]:
        return tuple(self._trade_history)

    def get_trade_history(self, limit: int = 10) -> List[TradeRecord]:
        """Ultimos `limit` registros."""
        return self._trade_history[-limit:]

    def get_statistics(self) -> Dict:
        """Estatisticas sobre CLOSE + PARTIAL_CLOSE (OPEN excluido)."""
        closes = [t for t in self._trade_history
                  if t.action in (TradeAction.CLOSE, TradeAction.PARTIAL_CLOSE)]

        if not closes:
            return {'total_trades': 0, 'win_rate': 0.0, 'total_profit': 0.0}

        winners = [t for t in closes if t.net_profit > 0]
        total_profit = sum(t.net_profit for t in closes)

        return {
            'total_trades': len(closes),
            'full_closes': sum(1 for t in closes if t.action is TradeAction.CLOSE),
            'partial_closes': sum(1 for t in closes if t.action is TradeAction.PARTIAL_CLOSE),
            'winning_trades': len(winners),
            'losing_trades': len(closes) - len(winners),
            'win_rate': len(winners) / len(closes),
            'total_profit': total_profit,
            'avg_profit': total_profit / len(closes),
        }

    def reset(self):
        """Limpar posicao e historico."""
        self.current_position = None
        self._trade_history = []
