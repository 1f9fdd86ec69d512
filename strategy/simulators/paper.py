import logging
import random
import time
from typing import Callable, List, Optional

from api.metrics import metrics
from ingest.symbol_store import SymbolStateStore
from strategy.execution_types import Order
from strategy.signal_engine import Signal, SignalEngine, closing_prices


AMOUNT_DECIMALS = 8


def _now_ms() -> int:
    return int(time.time() * 1000)


class PaperOrderSimulator:
    """Paper-trading simulator: acts on consensus signals and keeps the order ledger."""

    def __init__(
        self,
        store: SymbolStateStore,
        engine: SignalEngine,
        max_spend_usd: float = 1000.0,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.max_spend_usd = float(max_spend_usd)
        self.rng = rng or random.Random()
        self.clock = clock or _now_ms
        self.logger = logger or logging.getLogger(__name__)
        self._ledger: List[Order] = []

    @property
    def ledger(self) -> List[Order]:
        return list(self._ledger)

    def evaluate(self, symbol: str) -> Optional[Order]:
        if not self.store.is_ready(symbol):
            return None

        started = time.perf_counter()
        closes = closing_prices(self.store.get_candles(symbol))
        signal = self.engine.combined_signal(closes)
        metrics.record_signal(signal.value)
        self.logger.debug("New signal for %s: %s", symbol, signal.value)

        order = None
        if signal.actionable:
            order = self.place_order(symbol, signal, closes[-1], self.max_spend_usd)

        pnl = self.mark_to_market()
        metrics.update_pnl(pnl)
        metrics.record_evaluation_latency(time.perf_counter() - started)
        self.logger.debug("Current PoL: %s", pnl)
        return order

    def place_order(self, symbol: str, signal: Signal, price: float, amount_cap_usd: float) -> Optional[Order]:
        if price is None or price <= 0:
            self.logger.warning("Refusing %s order for %s at non-positive price %s", signal.value, symbol, price)
            return None

        amount_usd = self.rng.random() * amount_cap_usd
        amount = round(amount_usd / price, AMOUNT_DECIMALS)
        order = Order(
            symbol=symbol,
            signal=signal,
            price=float(price),
            amount=amount,
            timestamp=self.clock(),
        )
        self._ledger.append(order)
        metrics.record_order_placed(signal.value, len(self._ledger))
        self.logger.info(
            "Place order: %s %s amount=%.8f @ %.8f",
            signal.value.upper(),
            symbol,
            amount,
            order.price,
        )
        return order

    def mark_to_market(self) -> float:
        value = 0.0
        for order in self._ledger:
            last_close = self.store.last_close(order.symbol)
            if last_close is None:
                continue
            value += order.direction * (last_close - order.price) * order.amount
        return value
