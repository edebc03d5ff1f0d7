"""
Backtester - Simulador historico com taxa e slippage
=====================================================
Reproduz candles historicos (mais antigo primeiro) atraves do motor de
decisao e mede a performance.

REGRAS:
- Janela de analise: os `lookback` candles anteriores ao candle atual
- Sentimento fixo neutro (nao ha historico de noticias)
- Stop-loss / take-profit sao executados antes do sinal do passo
- Compra: min(valor da politica de sizing, 95% do saldo), minimo 5000
- Entrada a preco * (1 + slippage), saida a preco * (1 - slippage)
- Taxa sobre o valor investido na entrada e sobre o bruto na saida
- Posicao aberta no fim e fechada no ultimo preco, sem slippage
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from tradecore.candles import candle_timestamp, normalize_candles
from tradecore.config import Config
from tradecore.error_handling import ConfigValidationError
from tradecore.indicators import comprehensive_analysis
from tradecore.strategy import (
    Action,
    SentimentSummary,
    StrategyConfig,
    TradeAction,
    TradeRecord,
    TradingStrategy,
)

from .metrics import (
    calculate_max_drawdown,
    calculate_profit_factor,
    calculate_sharpe_ratio,
    summarize_trades,
)

log = logging.getLogger(__name__)

REASON_END_OF_BACKTEST = "fim do backtest"

SIZING_FIXED = 'fixed'
SIZING_RATIO = 'ratio'


@dataclass
class BacktestConfig:
    """
    Parametros do simulador.

    lookback: candles de historico antes do primeiro passo (padrao 200).
    Valores menores sao aceitos para series curtas; passos cuja janela nao
    cobre o minimo dos indicadores (ex: macd_slow + macd_signal) sao ignorados.
    """
    initial_balance: float = 1_000_000
    trading_fee: float = 0.0005
    slippage: float = 0.001
    lookback: int = 200
    min_order_amount: float = 5000
    max_balance_usage: float = 0.95
    sizing_policy: str = SIZING_RATIO
    investment_amount: Optional[float] = None
    investment_ratio: float = 0.1

    def __post_init__(self):
        if self.initial_balance <= 0:
            raise ConfigValidationError('initial_balance', self.initial_balance, "deve ser > 0")
        for name in ('trading_fee', 'slippage'):
            if not 0 <= getattr(self, name) < 1:
                raise ConfigValidationError(name, getattr(self, name), "deve estar em [0, 1)")
        if self.lookback < 1:
            raise ConfigValidationError('lookback', self.lookback, "deve ser >= 1")
        if not 0 < self.max_balance_usage <= 1:
            raise ConfigValidationError('max_balance_usage', self.max_balance_usage, "deve estar em (0, 1]")
        if self.sizing_policy not in (SIZING_FIXED, SIZING_RATIO):
            raise ConfigValidationError('sizing_policy', self.sizing_policy, "use 'fixed' ou 'ratio'")
        if self.sizing_policy == SIZING_FIXED and not self.investment_amount:
            raise ConfigValidationError('investment_amount', self.investment_amount,
                                        "obrigatorio com sizing_policy='fixed'")
        if self.sizing_policy == SIZING_RATIO and not 0 < self.investment_ratio <= 1:
            raise ConfigValidationError('investment_ratio', self.investment_ratio, "deve estar em (0, 1]")

    def order_size(self, balance: float) -> float:
        """Valor a investir dado o saldo atual."""
        if self.sizing_policy == SIZING_FIXED:
            target = self.investment_amount
        else:
            target = balance * self.investment_ratio
        return min(target, balance * self.max_balance_usage)

    @classmethod
    def from_dict(cls, params: Optional[Dict[str, Any]]) -> 'BacktestConfig':
        params = params or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in known and v is not None})

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, Any]] = None) -> 'BacktestConfig':
        """Secao 'backtest' do Config, com overrides opcionais."""
        params = Config.get_section('backtest')
        params.update(overrides or {})
        return cls.from_dict(params)


@dataclass
class EquityPoint:
    """Amostra da curva de equity (saldo + valor da posicao)."""
    timestamp: Any
    equity: float
    price: float


@dataclass
class BacktestResult:
    """Resultado completo do backtest."""
    initial_balance: float
    final_balance: float
    total_return: float
    total_return_pct: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    avg_profit: float
    avg_win: float
    avg_loss: float
    max_drawdown: float
    sharpe_ratio: float
    profit_factor: float
    total_fees: float = 0.0
    best_trade: Optional[TradeRecord] = None
    worst_trade: Optional[TradeRecord] = None
    trades: List[TradeRecord] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_curve: bool = True) -> Dict:
        data = {
            'initial_balance': round(self.initial_balance, 2),
            'final_balance': round(self.final_balance, 2),
            'total_return': round(self.total_return, 2),
            'total_return_pct': round(self.total_return_pct, 4),
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': round(self.win_rate, 2),
            'avg_profit': round(self.avg_profit, 2),
            'avg_win': round(self.avg_win, 2),
            'avg_loss': round(self.avg_loss, 2),
            'max_drawdown': round(self.max_drawdown, 4),
            'sharpe_ratio': round(self.sharpe_ratio, 4),
            'profit_factor': self.profit_factor if self.profit_factor == float('inf')
            else round(self.profit_factor, 4),
            'total_fees': round(self.total_fees, 2),
            'best_trade': self.best_trade.to_dict() if self.best_trade else None,
            'worst_trade': self.worst_trade.to_dict() if self.worst_trade else None,
            'trades': [t.to_dict() for t in self.trades],
            'config': self.config,
        }
        if include_curve:
            data['equity_curve'] = [
                {'timestamp': str(p.timestamp), 'equity': round(p.equity, 2), 'price': p.price}
                for p in self.equity_curve
            ]
        return data


class Backtester:
    """
    Simulador de uma estrategia em um unico ativo.

    Sem estado entre execucoes: cada run() cria seu proprio TradingStrategy.

    Uso:
        bt = Backtester(BacktestConfig(initial_balance=1_000_000))
        result = bt.run(candles, StrategyConfig(buy_threshold=60))
    """

    def __init__(self, config: Optional[BacktestConfig] = None):
        self.config = config or BacktestConfig()

    def _buy_price(self, price: float) -> float:
        return price * (1 + self.config.slippage)

    def _sell_price(self, price: float) -> float:
        return price * (1 - self.config.slippage)

    def run(
        self,
        candles: pd.DataFrame,
        strategy_config: Union[StrategyConfig, Dict[str, Any], None] = None
    ) -> BacktestResult:
        """
        Executa o backtest.

        Args:
            candles: DataFrame OHLCV mais antigo primeiro
            strategy_config: StrategyConfig ou dict plano

        Returns:
            BacktestResult
        """
        if not isinstance(strategy_config, StrategyConfig):
            strategy_config = StrategyConfig.from_dict(strategy_config)

        df = normalize_candles(candles)
        cfg = self.config
        strategy = TradingStrategy(strategy_config)
        indicator_params = strategy_config.indicator_params
        sentiment = SentimentSummary.neutral()

        balance = cfg.initial_balance
        invested = 0.0
        entry_fee = 0.0
        trades: List[TradeRecord] = []
        equity_curve: List[EquityPoint] = []

        def close(price: float, reason: str, timestamp: Any) -> None:
            nonlocal balance
            position = strategy.current_position
            proceeds = position.amount * price
            exit_fee = proceeds * cfg.trading_fee
            balance += proceeds - exit_fee

            gross = (price - position.entry_price) * position.amount
            net = gross - (entry_fee + exit_fee)
            strategy.close_position(price, reason, timestamp=timestamp, net_profit=net)

            trades.append(TradeRecord(
                action=TradeAction.CLOSE,
                position_id=position.id,
                entry_price=position.entry_price,
                amount=position.amount,
                entry_time=position.entry_time,
                exit_price=price,
                exit_time=timestamp,
                gross_profit=gross,
                total_fee=entry_fee + exit_fee,
                net_profit=net,
                net_profit_pct=net / invested * 100 if invested else 0.0,
                reason=reason,
                remaining_amount=0.0,
                balance_after=balance,
            ))

        log.debug(f"Backtest: {len(df)} candles, saldo inicial {cfg.initial_balance:,.0f}")

        closes = df['close'].to_numpy(dtype=float)

        for i in range(cfg.lookback, len(df)):
            window = df.iloc[i - cfg.lookback:i]
            price = float(closes[i])
            timestamp = candle_timestamp(df, i)

            snapshot = comprehensive_analysis(window, indicator_params)
            if snapshot is None:
                continue

            # Decisao com a posicao atual (inclui stop-loss/take-profit)
            decision = strategy.make_decision(snapshot, sentiment, price)

            if strategy.current_position is not None:
                should_close, reason = strategy.check_position(price)
                if should_close:
                    close(self._sell_price(price), reason, timestamp)

            if decision.action is Action.BUY and strategy.current_position is None and balance > 0:
                invest = cfg.order_size(balance)
                if invest >= cfg.min_order_amount:
                    fill = self._buy_price(price)
                    entry_fee = invest * cfg.trading_fee
                    amount = (invest - entry_fee) / fill
                    balance -= invest
                    invested = invest
                    strategy.open_position(fill, amount, timestamp=timestamp)
                    log.debug(f"[{timestamp}] BUY {amount:.8f} @ {fill:.2f} ({decision.reason})")

            elif decision.action is Action.SELL and strategy.current_position is not None:
                close(self._sell_price(price), decision.reason, timestamp)

            position = strategy.current_position
            equity = balance + (position.amount * price if position else 0.0)
            equity_curve.append(EquityPoint(timestamp=timestamp, equity=equity, price=price))

        if strategy.current_position is not None:
            last = len(df) - 1
            close(float(closes[last]), REASON_END_OF_BACKTEST, candle_timestamp(df, last))

        return self._calculate_results(balance, trades, equity_curve, strategy_config)

    def _calculate_results(
        self,
        final_balance: float,
        trades: List[TradeRecord],
        equity_curve: List[EquityPoint],
        strategy_config: StrategyConfig
    ) -> BacktestResult:
        """Calcula metricas finais do backtest."""
        if not trades:
            return self._empty_result(final_balance, equity_curve, strategy_config)

        initial = self.config.initial_balance
        profits = [t.net_profit for t in trades]
        equities = [p.equity for p in equity_curve]
        summary = summarize_trades(profits)

        return BacktestResult(
            initial_balance=initial,
            final_balance=final_balance,
            total_return=final_balance - initial,
            total_return_pct=(final_balance - initial) / initial * 100,
            max_drawdown=calculate_max_drawdown(equities),
            sharpe_ratio=calculate_sharpe_ratio(equities),
            profit_factor=calculate_profit_factor(profits),
            total_fees=sum(t.total_fee for t in trades),
            best_trade=max(trades, key=lambda t: t.net_profit),
            worst_trade=min(trades, key=lambda t: t.net_profit),
            trades=trades,
            equity_curve=equity_curve,
            config=strategy_config.to_dict(),
            **summary,
        )

    def _empty_result(
        self,
        final_balance: float,
        equity_curve: List[EquityPoint],
        strategy_config: StrategyConfig
    ) -> BacktestResult:
        """Retorna resultado zerado (nenhum trade fechado)."""
        return BacktestResult(
            initial_balance=self.config.initial_balance,
            final_balance=final_balance,
            total_return=0.0,
            total_return_pct=0.0,
            total_trades=0,
            winning_trades=0,
            losing_trades=0,
            win_rate=0.0,
            avg_profit=0.0,
            avg_win=0.0,
            avg_loss=0.0,
            max_drawdown=0.0,
            sharpe_ratio=0.0,
            profit_factor=0.0,
            equity_curve=equity_curve,
            config=strategy_config.to_dict(),
        )


# =============================================================================
# RELATORIOS
# =============================================================================
def compare_strategies(
    candles: pd.DataFrame,
    strategies: Iterable[Union[StrategyConfig, Dict[str, Any]]],
    config: Optional[BacktestConfig] = None,
    names: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Roda o backtest para cada configuracao e ordena pelo retorno.

    Returns:
        DataFrame com uma linha por estrategia, maior retorno primeiro
    """
    backtester = Backtester(config)
    rows = []

    for idx, strategy in enumerate(strategies):
        result = backtester.run(candles, strategy)
        rows.append({
            'strategy': names[idx] if names and idx < len(names) else f"strategy_{idx + 1}",
            'total_return_pct': result.total_return_pct,
            'total_trades': result.total_trades,
            'win_rate': result.win_rate,
            'max_drawdown': result.max_drawdown,
            'sharpe_ratio': result.sharpe_ratio,
            'profit_factor': result.profit_factor,
        })

    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values('total_return_pct', ascending=False).reset_index(drop=True)


def format_report(result: BacktestResult) -> str:
    """Relatorio textual de um backtest."""
    pf = "inf" if result.profit_factor == float('inf') else f"{result.profit_factor:.2f}"
    lines = [
        "=" * 60,
        " RESULTADO DO BACKTEST",
        "=" * 60,
        f"  Saldo inicial:    {result.initial_balance:,.0f}",
        f"  Saldo final:      {result.final_balance:,.0f}",
        f"  Retorno:          {result.total_return:,.0f} ({result.total_return_pct:.2f}%)",
        f"  Trades:           {result.total_trades} "
        f"(ganhos {result.winning_trades} / perdas {result.losing_trades})",
        f"  Win rate:         {result.win_rate:.2f}%",
        f"  Lucro medio:      {result.avg_profit:,.0f}",
        f"  Ganho medio:      {result.avg_win:,.0f}",
        f"  Perda media:      {result.avg_loss:,.0f}",
        f"  Max drawdown:     {result.max_drawdown:.2f}%",
        f"  Sharpe:           {result.sharpe_ratio:.4f}",
        f"  Profit factor:    {pf}",
        f"  Taxas:            {result.total_fees:,.0f}",
    ]
    if result.best_trade:
        lines.append(f"  Melhor trade:     {result.best_trade.net_profit:,.0f} ({result.best_trade.reason})")
    if result.worst_trade:
        lines.append(f"  Pior trade:       {result.worst_trade.net_profit:,.0f} ({result.worst_trade.reason})")
    lines.append("=" * 60)
    return "\n".join(lines)
