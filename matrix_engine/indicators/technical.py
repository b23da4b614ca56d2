"""
Technical indicator calculations.

All functions take closing prices in chronological order (oldest first) and
return lists aligned index-for-index with the input. Positions without enough
history hold None.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

Series = list[Optional[float]]


def calculate_rsi(prices: Sequence[float], period: int = 14) -> Series:
    """
    Calculate Wilder's smoothed RSI.

    Args:
        prices: Closing prices, oldest to newest
        period: Look-back period

    Returns:
        RSI values in [0, 100]; the first value appears at index ``period``
    """
    n = len(prices)
    rsi_values: Series = [None] * n
    if n < period + 1:
        logger.debug(f"Not enough data for RSI{period}: need {period + 1}, got {n}")
        return rsi_values

    gains = []
    losses = []
    for i in range(1, n):
        change = prices[i] - prices[i - 1]
        gains.append(change if change > 0 else 0.0)
        losses.append(-change if change < 0 else 0.0)

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi_values[period] = _rsi(avg_gain, avg_loss)

    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # gains[i] is the change into prices[i + 1]
        rsi_values[i + 1] = _rsi(avg_gain, avg_loss)

    return rsi_values


def _rsi(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def calculate_multiple_rsi(
    prices: Sequence[float], periods: Sequence[int] = (9, 14, 21)
) -> dict[int, Series]:
    """Calculate RSI for several periods at once."""
    return {period: calculate_rsi(prices, period) for period in periods}


def calculate_ema(prices: Sequence[float], period: int) -> Series:
    """
    Calculate the exponential moving average.

    The first value is the simple average of the first ``period`` prices and
    sits at index ``period - 1``.
    """
    n = len(prices)
    ema_values: Series = [None] * n
    if n < period:
        logger.debug(f"Not enough data for EMA{period}: need {period}, got {n}")
        return ema_values

    k = 2 / (period + 1)
    ema_values[period - 1] = sum(prices[:period]) / period
    for i in range(period, n):
        ema_values[i] = prices[i] * k + ema_values[i - 1] * (1 - k)
    return ema_values


@dataclass
class MACDResult:
    """MACD line, signal line and histogram."""

    macd: Series
    signal: Series
    histogram: Series


def calculate_macd(
    prices: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """
    Calculate MACD (fast EMA - slow EMA), its signal line and histogram.

    The signal line is the EMA of the defined part of the MACD line only;
    undefined MACD positions are skipped, not treated as zero.
    """
    n = len(prices)
    fast_ema = calculate_ema(prices, fast_period)
    slow_ema = calculate_ema(prices, slow_period)

    macd_line: Series = [None] * n
    for i in range(n):
        if fast_ema[i] is not None and slow_ema[i] is not None:
            macd_line[i] = fast_ema[i] - slow_ema[i]

    defined_indices = [i for i, value in enumerate(macd_line) if value is not None]
    defined_values = [macd_line[i] for i in defined_indices]
    signal_values = calculate_ema(defined_values, signal_period)

    signal_line: Series = [None] * n
    for index, value in zip(defined_indices, signal_values):
        signal_line[index] = value

    histogram: Series = [None] * n
    for i in range(n):
        if macd_line[i] is not None and signal_line[i] is not None:
            histogram[i] = macd_line[i] - signal_line[i]

    return MACDResult(macd=macd_line, signal=signal_line, histogram=histogram)


def latest(series: Sequence[Optional[float]]) -> Optional[float]:
    """Value at the last index, or None for an empty or undefined tail."""
    if not series:
        return None
    return series[-1]


def histogram_delta(histogram: Sequence[Optional[float]]) -> Optional[float]:
    """Slope of the MACD histogram at the latest index."""
    if len(histogram) < 2:
        return None
    current, previous = histogram[-1], histogram[-2]
    if current is None or previous is None:
        return None
    return current - previous


def detect_crossover(
    previous: Optional[float], current: Optional[float]
) -> Optional[int]:
    """
    Detect a sign change of a spread between two consecutive points.

    Returns:
        1 when the spread moves from <= 0 to > 0, -1 when it moves from
        >= 0 to < 0, 0 when there is no crossover, None if either is undefined
    """
    if previous is None or current is None:
        return None
    if previous <= 0 < current:
        return 1
    if previous >= 0 > current:
        return -1
    return 0
