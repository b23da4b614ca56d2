"""
Simple moving averages and golden/death cross detection.
"""

from typing import Optional, Sequence

from .technical import Series, detect_crossover


def calculate_sma(prices: Sequence[float], window: int) -> Series:
    """Trailing simple moving average; None until ``window`` values exist."""
    if window <= 0:
        raise ValueError(f"Window must be positive: {window}")

    values: Series = [None] * len(prices)
    for i in range(window - 1, len(prices)):
        values[i] = sum(prices[i - window + 1 : i + 1]) / window
    return values


def calculate_multiple_sma(
    prices: Sequence[float], windows: Sequence[int] = (50, 200)
) -> dict[int, Series]:
    return {window: calculate_sma(prices, window) for window in windows}


def ma_cross_direction(
    short_ma: Sequence[Optional[float]], long_ma: Sequence[Optional[float]]
) -> Optional[int]:
    """
    Golden (+1) or death (-1) cross at the latest point.

    Compares the spread ``short - long`` of the two most recent points, so a
    cross is reported only on the bar where the ordering flips.
    """
    if len(short_ma) < 2 or len(long_ma) < 2:
        return None
    return detect_crossover(
        _spread(short_ma[-2], long_ma[-2]),
        _spread(short_ma[-1], long_ma[-1]),
    )


def _spread(short: Optional[float], long: Optional[float]) -> Optional[float]:
    if short is None or long is None:
        return None
    return short - long
