"""
Per-symbol signal bundle built from price history, quotes and earnings.
"""

from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Optional, Sequence

from matrix_engine.database.models import EarningsRecord, Holding, PriceBar, Quote
from .moving_average import calculate_multiple_sma, ma_cross_direction
from .technical import (
    Series,
    calculate_ema,
    calculate_macd,
    calculate_multiple_rsi,
    calculate_rsi,
    histogram_delta,
    latest,
)

PERFORMANCE_WINDOW_DAYS = 90
YEAR_WINDOW_DAYS = 365

# Quarter point grading
EARNINGS_SCORE_POINTS = {
    "great": 2,
    "good": 1,
    "okay": 0,
    "not so ugly": 0,
    "bad": -2,
}


@dataclass
class IndicatorSeries:
    """Indicator values aligned with a price series."""

    rsi9: Series
    rsi14: Series
    rsi21: Series
    ema12: Series
    ema26: Series
    macd: Series
    signal: Series
    histogram: Series
    ma50: Series
    ma200: Series

    @classmethod
    def from_prices(cls, closes: Sequence[float]) -> "IndicatorSeries":
        rsi = calculate_multiple_rsi(closes, (9, 14, 21))
        macd = calculate_macd(closes)
        sma = calculate_multiple_sma(closes, (50, 200))
        return cls(
            rsi9=rsi[9],
            rsi14=rsi[14],
            rsi21=rsi[21],
            ema12=calculate_ema(closes, 12),
            ema26=calculate_ema(closes, 26),
            macd=macd.macd,
            signal=macd.signal,
            histogram=macd.histogram,
            ma50=sma[50],
            ma200=sma[200],
        )


@dataclass(frozen=True)
class SignalBundle:
    """
    Latest signal values for one holding.

    Every field is None when it cannot be computed (not enough history,
    missing quote, zero portfolio value, ...); rules reading a None signal
    are not applicable.
    """

    price: Optional[float] = None
    rsi14: Optional[float] = None
    macd: Optional[float] = None
    macd_histogram_delta: Optional[float] = None
    ma_cross: Optional[int] = None
    pct_from_52wk_high: Optional[float] = None
    price_change_90d: Optional[float] = None
    pct_from_200ma: Optional[float] = None
    sector_perf_diff: Optional[float] = None
    position_weight: Optional[float] = None
    active_risk: Optional[float] = None
    earnings_quality_points: Optional[float] = None
    earnings_surprise_streak: Optional[float] = None
    ebitda_margin_up_streak: Optional[float] = None
    ebitda_margin_down_streak: Optional[float] = None
    roic_up_streak: Optional[float] = None
    roic_down_streak: Optional[float] = None
    net_debt_down_streak: Optional[float] = None
    net_debt_up_streak: Optional[float] = None

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}


def closes_of(bars: Sequence[PriceBar]) -> list[float]:
    return [bar.effective_close for bar in bars]


def build_signal_bundle(
    bars: Sequence[PriceBar],
    quote: Optional[Quote] = None,
    earnings: Sequence[EarningsRecord] = (),
    position_weight: Optional[float] = None,
    benchmark_weight: Optional[float] = None,
    benchmark_bars: Sequence[PriceBar] = (),
    rsi_period: int = 14,
) -> SignalBundle:
    """
    Compute every signal the matrix rules read.

    Args:
        bars: Price history, oldest to newest
        quote: Current quote; the last close is used when missing
        earnings: Quarterly records in any order
        position_weight: Holding weight in % of its portfolio
        benchmark_weight: Holding weight in % of the region's benchmark
        benchmark_bars: Benchmark price history for relative performance
        rsi_period: Period of the RSI the rules read

    Returns:
        SignalBundle with None for every signal lacking data
    """
    closes = closes_of(bars)
    price = quote.price if quote is not None else latest(closes)

    indicators = IndicatorSeries.from_prices(closes)
    ma200 = latest(indicators.ma200)
    rsi = indicators.rsi14 if rsi_period == 14 else calculate_rsi(closes, rsi_period)

    change_90d = price_change(bars, PERFORMANCE_WINDOW_DAYS, price)
    benchmark_change = price_change(benchmark_bars, PERFORMANCE_WINDOW_DAYS)

    active_risk = None
    if position_weight is not None and benchmark_weight is not None:
        active_risk = position_weight - benchmark_weight

    earnings_signals = earnings_signals_for(earnings)

    return SignalBundle(
        price=price,
        rsi14=latest(rsi),
        macd=latest(indicators.macd),
        macd_histogram_delta=histogram_delta(indicators.histogram),
        ma_cross=ma_cross_direction(indicators.ma50, indicators.ma200),
        pct_from_52wk_high=pct_from_high(bars, YEAR_WINDOW_DAYS, price),
        price_change_90d=change_90d,
        pct_from_200ma=pct_change(ma200, price),
        sector_perf_diff=(
            change_90d - benchmark_change
            if change_90d is not None and benchmark_change is not None
            else None
        ),
        position_weight=position_weight,
        active_risk=active_risk,
        **earnings_signals,
    )


def pct_change(base: Optional[float], value: Optional[float]) -> Optional[float]:
    """Percentage change from base to value."""
    if base is None or value is None or base == 0:
        return None
    return (value - base) / base * 100


def price_change(
    bars: Sequence[PriceBar], days: int, current: Optional[float] = None
) -> Optional[float]:
    """
    Percentage change over the last ``days`` calendar days.

    The base is the last bar on or before ``latest date - days``; None when
    the history does not reach back that far.
    """
    if not bars:
        return None
    cutoff = bars[-1].date - timedelta(days=days)
    base = None
    for bar in bars:
        if bar.date > cutoff:
            break
        base = bar
    if base is None:
        return None
    if current is None:
        current = bars[-1].effective_close
    return pct_change(base.effective_close, current)


def pct_from_high(
    bars: Sequence[PriceBar], days: int, current: Optional[float] = None
) -> Optional[float]:
    """Signed percentage distance of the current price from the trailing high."""
    if not bars:
        return None
    cutoff = bars[-1].date - timedelta(days=days)
    window = [bar for bar in bars if bar.date > cutoff]
    highs = [bar.high if bar.high is not None else bar.close for bar in window]
    if current is None:
        current = bars[-1].effective_close
    return pct_change(max(highs), current)


def _streak(flags: list[Optional[bool]]) -> int:
    """Length of the run of True values at the start of ``flags``."""
    count = 0
    for flag in flags:
        if not flag:
            break
        count += 1
    return count


def _yoy_changes(
    records: list[EarningsRecord], attribute: str
) -> list[Optional[float]]:
    """Year-over-year change per quarter, most recent first."""
    changes = []
    for i, record in enumerate(records):
        if i + 4 >= len(records):
            break
        current = getattr(record, attribute)
        year_ago = getattr(records[i + 4], attribute)
        if current is None or year_ago is None:
            changes.append(None)
        else:
            changes.append(current - year_ago)
    return changes


def earnings_signals_for(earnings: Sequence[EarningsRecord]) -> dict[str, Optional[float]]:
    """Derive the fundamental signals used by rating rules."""
    records = sorted(earnings, key=lambda r: r.report_date, reverse=True)
    signals: dict[str, Optional[float]] = {
        "earnings_quality_points": None,
        "earnings_surprise_streak": None,
        "ebitda_margin_up_streak": None,
        "ebitda_margin_down_streak": None,
        "roic_up_streak": None,
        "roic_down_streak": None,
        "net_debt_down_streak": None,
        "net_debt_up_streak": None,
    }
    if not records:
        return signals

    scores = [
        EARNINGS_SCORE_POINTS.get(r.earnings_score.strip().lower())
        for r in records[:4]
        if r.earnings_score
    ]
    scores = [s for s in scores if s is not None]
    if scores:
        signals["earnings_quality_points"] = float(sum(scores))

    surprises = [
        None if r.eps_actual is None or r.eps_estimate is None
        else r.eps_actual - r.eps_estimate
        for r in records
    ]
    # Positive for consecutive beats, negative for consecutive misses
    last_surprise = surprises[0]
    if last_surprise is not None:
        if last_surprise > 0:
            streak = _streak([s is not None and s > 0 for s in surprises])
        elif last_surprise < 0:
            streak = -_streak([s is not None and s < 0 for s in surprises])
        else:
            streak = 0
        signals["earnings_surprise_streak"] = float(streak)

    for attribute, up_key, down_key in (
        ("ebitda_margin", "ebitda_margin_up_streak", "ebitda_margin_down_streak"),
        ("roic", "roic_up_streak", "roic_down_streak"),
        # Lower net debt is the improvement
        ("net_debt", "net_debt_up_streak", "net_debt_down_streak"),
    ):
        changes = _yoy_changes(records, attribute)
        if not changes or changes[0] is None:
            continue
        signals[up_key] = float(_streak([c is not None and c > 0 for c in changes]))
        signals[down_key] = float(_streak([c is not None and c < 0 for c in changes]))

    return signals


def compute_weights(
    holdings: Sequence[Holding], prices: dict[str, Optional[float]]
) -> dict[str, Optional[float]]:
    """
    Portfolio weight in % per symbol.

    Stored weights win; the rest are derived from market value. A symbol
    without a price, or a portfolio with zero total value, gets None.
    """
    market_values: dict[str, Optional[float]] = {}
    for holding in holdings:
        price = prices.get(holding.symbol)
        if price is None:
            market_values[holding.symbol] = None
        else:
            market_values[holding.symbol] = (holding.quantity or 0.0) * price
    total = sum(v for v in market_values.values() if v is not None)

    weights: dict[str, Optional[float]] = {}
    for holding in holdings:
        if holding.weight is not None:
            weights[holding.symbol] = holding.weight
            continue
        value = market_values[holding.symbol]
        if value is None or total <= 0:
            weights[holding.symbol] = None
        else:
            weights[holding.symbol] = value / total * 100
    return weights
