import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from analytics.indicators import MIN_PERIOD, MovingAverageKind, latest_value, moving_average
from ingest.models import Candle


DEFAULT_PERIODS: Tuple[int, ...] = (5, 10, 20)

MovingAverageFn = Callable[[MovingAverageKind, int, Sequence[float]], Sequence[float]]


class Signal(Enum):
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"
    UNKNOWN = "unknown"

    @property
    def actionable(self) -> bool:
        return self in (Signal.BUY, Signal.SELL)

    @property
    def direction(self) -> int:
        if self is Signal.BUY:
            return 1
        if self is Signal.SELL:
            return -1
        return 0


def closing_prices(candles: Iterable[Candle]) -> List[float]:
    return [candle.close for candle in candles]


class SignalEngine:
    """Turn a closing-price series into a trade signal.

    Each moving-average family votes per period: an average above the last
    price votes sell, below votes buy, equal or unavailable abstains. A family
    only reports buy or sell when every period agrees, and the combined signal
    requires both families to report the same side.
    """

    def __init__(
        self,
        periods: Sequence[int] = DEFAULT_PERIODS,
        moving_average_fn: Optional[MovingAverageFn] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not periods:
            raise ValueError("At least one moving-average period is required")
        self.periods = tuple(int(p) for p in periods)
        short = [p for p in self.periods if p < MIN_PERIOD]
        if short:
            raise ValueError(f"Moving-average periods must be >= {MIN_PERIOD}, got {short}")
        self.moving_average_fn = moving_average_fn or moving_average
        self.logger = logger or logging.getLogger(__name__)

    @property
    def longest_period(self) -> int:
        return max(self.periods)

    def moving_average_vote(
        self,
        series: Sequence[float],
        kind: MovingAverageKind,
        periods: Optional[Sequence[int]] = None,
    ) -> Signal:
        if len(series) == 0:
            return Signal.UNKNOWN

        periods = tuple(periods) if periods is not None else self.periods
        last_price = float(series[-1])
        buy = 0
        sell = 0

        for period in periods:
            average = latest_value(np.asarray(self.moving_average_fn(kind, period, series), dtype=float))
            if average is None:
                continue
            if average > last_price:
                sell += 1
            elif average < last_price:
                buy += 1

        if buy == len(periods):
            return Signal.BUY
        if sell == len(periods):
            return Signal.SELL
        return Signal.NEUTRAL

    def combined_signal(self, series: Sequence[float]) -> Signal:
        if len(series) == 0:
            return Signal.UNKNOWN

        ema_result = self.moving_average_vote(series, MovingAverageKind.EMA)
        sma_result = self.moving_average_vote(series, MovingAverageKind.SMA)
        self.logger.debug("EMA vote: %s, SMA vote: %s", ema_result.value, sma_result.value)

        if ema_result is Signal.BUY and sma_result is Signal.BUY:
            return Signal.BUY
        if ema_result is Signal.SELL and sma_result is Signal.SELL:
            return Signal.SELL
        return Signal.NEUTRAL
