"""Testes do motor de decisao e do ciclo de vida da posicao."""
import dataclasses

import pytest

from tradecore.error_handling import ConfigValidationError
from tradecore.indicators import (
    BollingerBands,
    IndicatorSnapshot,
    MACDResult,
    VolumeAnalysis,
)
from tradecore.strategy import (
    REASON_BUY_ONLY,
    REASON_NO_DATA,
    Action,
    SentimentSummary,
    SignalLevel,
    StrategyConfig,
    TradeAction,
    TradingStrategy,
)


def make_snapshot(rsi=50.0, histogram=0.0, price=100.0, crossover='none',
                  high_volume=False, buy_signals=0.0, sell_signals=0.0):
    return IndicatorSnapshot(
        rsi=rsi,
        macd=MACDResult(macd=histogram, signal=0.0, histogram=histogram),
        bollinger=BollingerBands(upper=110.0, middle=100.0, lower=90.0, current_price=price),
        crossover=crossover,
        volume=VolumeAnalysis(is_high_volume=high_volume, ratio=2.0 if high_volume else 1.0),
        buy_signals=buy_signals,
        sell_signals=sell_signals,
        recommendation='HOLD',
    )


@pytest.fixture
def technical_only():
    return TradingStrategy(StrategyConfig(technical_weight=1.0, sentiment_weight=0.0, buy_threshold=55))


# =============================================================================
# PONTUACAO
# =============================================================================
def test_neutral_snapshot_scores_50(technical_only):
    assert technical_only.calculate_technical_score(make_snapshot()) == 50.0


def test_technical_score_is_clamped(technical_only):
    bullish = make_snapshot(rsi=10, histogram=50, price=80, crossover='golden',
                            high_volume=True, buy_signals=20)
    bearish = make_snapshot(rsi=95, histogram=-50, price=120, crossover='dead',
                            high_volume=True, sell_signals=20)
    assert technical_only.calculate_technical_score(bullish) == 100.0
    assert technical_only.calculate_technical_score(bearish) == 0.0


def test_sentiment_score():
    strategy = TradingStrategy()
    sentiment = SentimentSummary(overall='very positive', score=2, positive_ratio=0.6, negative_ratio=0.2)
    assert strategy.calculate_sentiment_score(sentiment) == pytest.approx(83.0)
    assert strategy.calculate_sentiment_score(SentimentSummary.neutral()) == pytest.approx(50.0)


def test_sentiment_from_dict():
    strategy = TradingStrategy()
    sentiment = SentimentSummary.from_dict(
        {'overall': 'positive', 'score': 1, 'positive_ratio': 0.5, 'negative_ratio': 0.1}
    )
    assert sentiment.overall == 'positive'
    assert strategy.calculate_sentiment_score(sentiment) == pytest.approx(71.0)

    empty = SentimentSummary.from_dict({})
    assert empty.overall == 'neutral'
    assert empty.recommendation == 'HOLD'
    assert strategy.calculate_sentiment_score(empty) == pytest.approx(50.0)


def test_signal_tiers_are_monotonic(technical_only):
    levels = [
        technical_only.calculate_signal_strength(55 + distance, Action.BUY).level
        for distance in (0, 2.9, 3, 7.9, 8, 14.9, 15, 40)
    ]
    multipliers = [level.multiplier for level in levels]
    assert multipliers == sorted(multipliers)
    assert levels[0] is SignalLevel.WEAK
    assert levels[-1] is SignalLevel.VERY_STRONG


def test_hold_has_no_signal_strength(technical_only):
    strength = technical_only.calculate_signal_strength(50, Action.HOLD)
    assert strength.level is SignalLevel.NONE
    assert strength.multiplier == 0.0


# =============================================================================
# DECISAO
# =============================================================================
def test_technical_score_70_buys_with_medium_or_better(technical_only):
    snapshot = make_snapshot(rsi=30, crossover='golden')
    decision = technical_only.make_decision(snapshot, SentimentSummary.neutral(), 100.0)

    assert decision.technical_score == pytest.approx(70.0)
    assert decision.action is Action.BUY
    assert decision.signal_strength.multiplier >= SignalLevel.MEDIUM.multiplier
    assert decision.confidence == pytest.approx(15 / 45)


def test_missing_inputs_hold(technical_only):
    decision = technical_only.make_decision(None, SentimentSummary.neutral(), 100.0)
    assert decision.action is Action.HOLD
    assert decision.confidence == 0.0
    assert decision.reason == REASON_NO_DATA

    decision = technical_only.make_decision(make_snapshot(), None, 100.0)
    assert decision.action is Action.HOLD


def test_bearish_snapshot_sells():
    strategy = TradingStrategy(StrategyConfig(technical_weight=1.0, sentiment_weight=0.0))
    snapshot = make_snapshot(rsi=80, crossover='dead', sell_signals=3)
    decision = strategy.make_decision(snapshot, SentimentSummary.neutral(), 100.0)
    assert decision.action is Action.SELL
    assert decision.total_score == pytest.approx(14.0)
    assert decision.confidence == pytest.approx((45 - 14) / 45)


def test_buy_only_suppresses_sell():
    strategy = TradingStrategy(StrategyConfig(technical_weight=1.0, sentiment_weight=0.0, buy_only=True))
    snapshot = make_snapshot(rsi=80, crossover='dead', sell_signals=3)
    decision = strategy.make_decision(snapshot, SentimentSummary.neutral(), 100.0)
    assert decision.action is Action.HOLD
    assert decision.reason == REASON_BUY_ONLY
    assert decision.confidence == 0.5


def test_stop_loss_applies_in_buy_only_mode():
    strategy = TradingStrategy(StrategyConfig(buy_only=True, stop_loss_pct=5))
    strategy.open_position(100.0, 1.0)
    decision = strategy.make_decision(make_snapshot(), SentimentSummary.neutral(), 90.0)
    assert decision.action is Action.SELL
    assert decision.confidence == 1.0
    assert 'stop-loss' in decision.reason


def test_take_profit():
    strategy = TradingStrategy(StrategyConfig(take_profit_pct=10))
    strategy.open_position(100.0, 1.0)
    should_close, reason = strategy.check_position(111.0)
    assert should_close
    assert 'take-profit' in reason
    assert strategy.check_position(104.0) == (False, '')


def test_decision_to_dict():
    decision = TradingStrategy().make_decision(make_snapshot(), SentimentSummary.neutral(), 100.0)
    data = decision.to_dict()
    assert data['action'] == 'HOLD'
    assert set(data['scores']) == {'technical', 'sentiment', 'total'}


# =============================================================================
# POSICAO
# =============================================================================
def test_round_trip_fees():
    strategy = TradingStrategy(StrategyConfig(fee_rate=0.0005))
    strategy.open_position(100.0, 1.0)
    record = strategy.close_position(110.0, 'teste')

    assert record.action is TradeAction.CLOSE
    assert record.gross_profit == pytest.approx(10.0)
    assert record.total_fee == pytest.approx(0.105)
    assert record.net_profit == pytest.approx(9.895)
    assert record.net_profit_pct == pytest.approx(9.895)
    assert strategy.current_position is None


def test_close_uses_caller_net_profit():
    strategy = TradingStrategy()
    strategy.open_position(100.0, 1.0)
    record = strategy.close_position(110.0, 'teste', net_profit=7.5)
    assert record.net_profit == 7.5
    assert record.gross_profit == pytest.approx(10.0)


def test_partial_sell_prorates_entry_fee():
    strategy = TradingStrategy(StrategyConfig(fee_rate=0.0005))
    position = strategy.open_position(100.0, 2.0)
    record = strategy.record_partial_sell(110.0, 1.0)

    assert record.action is TradeAction.PARTIAL_CLOSE
    assert record.total_fee == pytest.approx(0.105)
    assert record.net_profit == pytest.approx(9.895)
    assert record.remaining_amount == pytest.approx(1.0)
    assert strategy.current_position is position
    assert position.amount == pytest.approx(1.0)

    final = strategy.close_position(120.0, 'fim')
    assert final.amount == pytest.approx(1.0)

    stats = strategy.get_statistics()
    assert stats['total_trades'] == 2
    assert stats['partial_closes'] == 1
    assert stats['full_closes'] == 1
    assert stats['win_rate'] == 1.0


def test_partial_sell_of_everything_closes():
    strategy = TradingStrategy()
    strategy.open_position(100.0, 1.0)
    record = strategy.record_partial_sell(105.0, 5.0)
    assert record.action is TradeAction.CLOSE
    assert strategy.current_position is None


def test_misuse_returns_none():
    strategy = TradingStrategy()
    assert strategy.close_position(100.0, 'nada') is None
    assert strategy.record_partial_sell(100.0, 1.0) is None

    strategy.open_position(100.0, 1.0)
    assert strategy.record_partial_sell(100.0, 0) is None
    assert strategy.open_position(101.0, 1.0) is None
    assert len(strategy.trade_history) == 1


def test_trade_records_are_immutable():
    strategy = TradingStrategy()
    strategy.open_position(100.0, 1.0)
    record = strategy.trade_history[0]
    with pytest.raises(dataclasses.FrozenInstanceError):
        record.amount = 5


def test_history_and_reset():
    strategy = TradingStrategy()
    for price in (100.0, 101.0, 102.0):
        strategy.open_position(price, 1.0)
        strategy.close_position(price * 0.99, 'queda')

    assert len(strategy.get_trade_history(limit=2)) == 2
    stats = strategy.get_statistics()
    assert stats['total_trades'] == 3
    assert stats['losing_trades'] == 3
    assert stats['win_rate'] == 0.0

    strategy.reset()
    assert strategy.trade_history == ()
    assert strategy.get_statistics()['total_trades'] == 0


# =============================================================================
# CONFIG
# =============================================================================
@pytest.mark.parametrize('field_name, value', [
    ('buy_threshold', 0),
    ('sell_threshold', 100),
    ('stop_loss_pct', 0),
    ('max_position_size', 1.5),
    ('rsi_period', 0),
    ('bb_std', -1),
])
def test_invalid_config_rejected(field_name, value):
    with pytest.raises(ConfigValidationError) as exc:
        StrategyConfig(**{field_name: value})
    assert exc.value.field_name == field_name


def test_config_from_dict_ignores_unknown_keys():
    config = StrategyConfig.from_dict({'rsi_period': 21, 'buy_threshold': 60, 'investment_ratio': 0.2})
    assert config.rsi_period == 21
    assert config.buy_threshold == 60
    assert config.indicator_params.rsi_period == 21


def test_config_from_defaults():
    config = StrategyConfig.from_config({'buy_only': True})
    assert config.buy_only
    assert config.rsi_period == 14
    assert config.buy_threshold == 55
