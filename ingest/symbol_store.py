import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from api.metrics import metrics
from ingest.models import Candle, CandleBatch, Ticker, TickerUpdate
from strategy.signal_engine import DEFAULT_PERIODS


class SymbolStateStore:
    """Latest ticker and ordered candle history per canonical symbol."""

    def __init__(
        self,
        max_candles: Optional[int] = None,
        min_window: int = max(DEFAULT_PERIODS),
        logger: Optional[logging.Logger] = None,
    ):
        if max_candles is not None and max_candles < min_window:
            raise ValueError(
                f"max_candles={max_candles} is shorter than the longest moving-average period ({min_window})"
            )
        self.max_candles = max_candles
        self.logger = logger or logging.getLogger(__name__)
        self._candles: Dict[str, Deque[Candle]] = {}
        self._tickers: Dict[str, Ticker] = {}

    def apply_ticker(self, update: TickerUpdate) -> None:
        self._tickers[update.symbol] = update.ticker
        metrics.record_ticker(update.symbol)

    def apply_candles(self, *batches: CandleBatch) -> Set[str]:
        """Append every batch in order; return the symbols that received candles."""
        touched: Set[str] = set()
        for batch in batches:
            if not batch.candles:
                continue
            series = self._candles.get(batch.symbol)
            if series is None:
                series = deque(maxlen=self.max_candles)
                self._candles[batch.symbol] = series

            stale = 0
            for candle in batch.candles:
                if series and candle.timestamp < series[-1].timestamp:
                    stale += 1
                    continue
                series.append(candle)
                touched.add(batch.symbol)
                metrics.record_candle(batch.symbol)

            if stale:
                # Replayed snapshots after a reconnect land here
                self.logger.warning(
                    "Dropped %d stale candle(s) for %s older than last stored %s",
                    stale,
                    batch.symbol,
                    series[-1].timestamp,
                )
                metrics.record_dropped_candle('stale', stale)
        return touched

    def get_candles(self, symbol: str) -> List[Candle]:
        return list(self._candles.get(symbol, ()))

    def get_ticker(self, symbol: str) -> Optional[Ticker]:
        return self._tickers.get(symbol)

    def last_close(self, symbol: str) -> Optional[float]:
        series = self._candles.get(symbol)
        if not series:
            return None
        return series[-1].close

    def is_ready(self, symbol: str) -> bool:
        return symbol in self._tickers and bool(self._candles.get(symbol))

    def candles(self) -> Dict[str, List[Candle]]:
        return {symbol: list(series) for symbol, series in self._candles.items()}

    def tickers(self) -> Dict[str, Ticker]:
        return dict(self._tickers)

    def symbols(self) -> List[str]:
        return sorted(set(self._candles) | set(self._tickers))
