from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConnectionState(Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


@dataclass(frozen=True)
class Candle:
    """One 1-minute OHLCV bar; ``timestamp`` is the bar start in epoch ms."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class Ticker:
    bid: Optional[float]
    ask: Optional[float]

    def as_dict(self) -> Dict[str, Any]:
        return {"bid": self.bid, "ask": self.ask}


@dataclass(frozen=True)
class TickerUpdate:
    symbol: str
    bid: Optional[float]
    ask: Optional[float]

    @property
    def ticker(self) -> Ticker:
        return Ticker(bid=self.bid, ask=self.ask)


@dataclass(frozen=True)
class CandleBatch:
    """Validated candles for one symbol, oldest first."""

    symbol: str
    candles: List[Candle] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.candles)
