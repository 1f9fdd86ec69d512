from enum import Enum
from typing import Sequence, Union

import numpy as np
import talib


MIN_PERIOD = 2


class MovingAverageKind(Enum):
    SMA = "sma"
    EMA = "ema"


_FUNCTIONS = {
    MovingAverageKind.SMA: talib.SMA,
    MovingAverageKind.EMA: talib.EMA,
}


def moving_average(
    kind: Union[MovingAverageKind, str],
    period: int,
    series: Union[Sequence[float], np.ndarray],
) -> np.ndarray:
    """Trailing moving average of ``series``.

    The result is aligned with the input and starts with ``period - 1`` NaN
    warm-up values. When the series is shorter than ``period`` there is no
    average at all and an empty array is returned.
    """
    kind = MovingAverageKind(kind)
    if period < MIN_PERIOD:
        raise ValueError(f"Moving average period must be >= {MIN_PERIOD}, got {period}")
    values = np.asarray(series, dtype=float)
    if values.size < period:
        return np.empty(0, dtype=float)
    return _FUNCTIONS[kind](values, timeperiod=period)


def latest_value(values: np.ndarray):
    """Last finite element of a moving-average output, else None."""
    if values is None or len(values) == 0:
        return None
    last = float(values[-1])
    if np.isnan(last):
        return None
    return last
