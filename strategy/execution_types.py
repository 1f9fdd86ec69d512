from dataclasses import dataclass
from typing import Any, Dict

from strategy.signal_engine import Signal


@dataclass(frozen=True)
class Order:
    """Simulated order record; never mutated once appended to the ledger."""

    symbol: str
    signal: Signal
    price: float
    amount: float
    timestamp: int

    def __post_init__(self):
        if not self.signal.actionable:
            raise ValueError(f"Orders are only created for buy/sell signals, got {self.signal.value}")

    @property
    def direction(self) -> int:
        return self.signal.direction

    @property
    def notional(self) -> float:
        return self.price * self.amount

    def as_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "signal": self.signal.value,
            "price": self.price,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }
