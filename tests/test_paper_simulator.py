import dataclasses
import sys

sys.path.insert(0, '.')

import pytest

from ingest.models import CandleBatch, TickerUpdate
from ingest.stream_adapter import parse_candle
from ingest.symbol_store import SymbolStateStore
from strategy.execution_types import Order
from strategy.signal_engine import Signal, SignalEngine
from strategy.simulators.paper import PaperOrderSimulator
from tests.fakes import FixedRandom, candle_rows


def _simulator(value=0.5, cap=400.0, **kwargs):
    store = SymbolStateStore()
    sim = PaperOrderSimulator(
        store,
        SignalEngine(),
        max_spend_usd=cap,
        rng=FixedRandom(value),
        clock=lambda: 1234,
        **kwargs,
    )
    return store, sim


def _load(store, symbol, closes, ticker=True):
    if ticker:
        store.apply_ticker(TickerUpdate(symbol, closes[-1] - 0.5, closes[-1] + 0.5))
    candles = [parse_candle(row) for row in candle_rows(closes)]
    store.apply_candles(CandleBatch(symbol, candles))


def test_empty_ledger_marks_to_zero():
    _, sim = _simulator()
    assert sim.ledger == []
    assert sim.mark_to_market() == 0.0


def test_order_amount_is_random_share_of_cap():
    _, sim = _simulator(value=0.5, cap=400.0)
    order = sim.place_order('BTCUSD', Signal.BUY, 100.0, 400.0)

    assert order.amount == 2.0
    assert order.price == 100.0
    assert order.timestamp == 1234
    assert order.notional == pytest.approx(200.0)
    assert sim.ledger == [order]


def test_amount_is_rounded_to_eight_decimals():
    _, sim = _simulator(value=1 / 3, cap=1000.0)
    order = sim.place_order('ETHUSD', Signal.SELL, 7.0, 1000.0)
    assert order.amount == round((1 / 3) * 1000.0 / 7.0, 8)


def test_buy_and_sell_mark_against_last_close():
    store, sim = _simulator(value=0.5, cap=400.0)
    sim.place_order('BTCUSD', Signal.BUY, 100.0, 400.0)
    _load(store, 'BTCUSD', [110.0], ticker=False)
    assert sim.mark_to_market() == pytest.approx(20.0)

    store, sim = _simulator(value=0.5, cap=400.0)
    sim.place_order('BTCUSD', Signal.SELL, 100.0, 400.0)
    _load(store, 'BTCUSD', [110.0], ticker=False)
    assert sim.mark_to_market() == pytest.approx(-20.0)


def test_orders_without_candles_are_skipped():
    store, sim = _simulator(value=0.5, cap=400.0)
    sim.place_order('BTCUSD', Signal.BUY, 100.0, 400.0)
    sim.place_order('ETHUSD', Signal.BUY, 100.0, 400.0)
    _load(store, 'BTCUSD', [105.0], ticker=False)

    assert sim.mark_to_market() == pytest.approx(10.0)


def test_non_positive_price_is_refused():
    _, sim = _simulator()
    assert sim.place_order('BTCUSD', Signal.BUY, 0.0, 400.0) is None
    assert sim.place_order('BTCUSD', Signal.BUY, -1.0, 400.0) is None
    assert sim.ledger == []


def test_evaluate_waits_for_ticker_and_candles():
    store, sim = _simulator()
    assert sim.evaluate('BTCUSD') is None

    _load(store, 'BTCUSD', [100.0 + i for i in range(25)], ticker=False)
    assert sim.evaluate('BTCUSD') is None
    assert sim.ledger == []


def test_evaluate_places_order_at_last_close():
    store, sim = _simulator(value=0.5, cap=1000.0)
    _load(store, 'BTCUSD', [100.0 + i for i in range(25)])

    order = sim.evaluate('BTCUSD')

    assert order.signal is Signal.BUY
    assert order.price == 124.0
    assert order.amount == round(500.0 / 124.0, 8)
    assert sim.mark_to_market() == 0.0


def test_neutral_evaluation_places_nothing():
    store, sim = _simulator()
    _load(store, 'BTCUSD', [50.0] * 25)
    assert sim.evaluate('BTCUSD') is None
    assert sim.ledger == []


def test_orders_are_immutable():
    _, sim = _simulator()
    order = sim.place_order('BTCUSD', Signal.BUY, 100.0, 400.0)
    with pytest.raises(dataclasses.FrozenInstanceError):
        order.price = 1.0

    sim.ledger.clear()
    assert len(sim.ledger) == 1


def test_order_requires_actionable_signal():
    with pytest.raises(ValueError):
        Order('BTCUSD', Signal.NEUTRAL, 100.0, 1.0, 0)
    assert Order('BTCUSD', Signal.SELL, 100.0, 1.0, 0).as_dict()['signal'] == 'sell'
