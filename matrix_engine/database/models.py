"""
Data models for the matrix engine stores.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass
class Holding:
    """A position in one regional portfolio."""

    symbol: str
    region: str  # "USD", "CAD", "INTL"
    classification: Optional[str] = None  # "Compounder", "Catalyst", "Cyclical"
    rating: Optional[int] = None  # 1 (highest conviction) to 4
    quantity: float = 0.0
    weight: Optional[float] = None  # % of portfolio, computed when None
    benchmark_weight: Optional[float] = None  # % weight in the region's benchmark
    company: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class PriceBar:
    """One daily bar."""

    date: date
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    close: float
    adjusted_close: Optional[float] = None
    volume: Optional[int] = None

    @property
    def effective_close(self) -> float:
        """Adjusted close when available, otherwise close."""
        if self.adjusted_close is not None:
            return self.adjusted_close
        return self.close


@dataclass
class Quote:
    """Current quote."""

    symbol: str
    region: str
    price: float
    change_percent: Optional[float] = None


@dataclass
class EarningsRecord:
    """Quarterly earnings and fundamentals."""

    symbol: str
    quarter: str  # e.g. "Q1 2025"
    report_date: date
    eps_actual: Optional[float] = None
    eps_estimate: Optional[float] = None
    earnings_score: Optional[str] = None  # "Great", "Good", "Okay", "Not so ugly", "Bad"
    ebitda_margin: Optional[float] = None
    roic: Optional[float] = None
    net_debt: Optional[float] = None
    id: Optional[int] = None
