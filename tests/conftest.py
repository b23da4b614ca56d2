"""
Pytest configuration and shared fixtures.
"""

from datetime import date, timedelta

import pytest

from matrix_engine.database.connection import Database
from matrix_engine.database.models import PriceBar


@pytest.fixture
def db():
    """Create in-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def wilder_closes():
    """Closing prices from Wilder's RSI worked example."""
    return [
        44.34, 44.09, 44.15, 43.61, 44.33, 44.83, 45.10, 45.42,
        45.84, 46.08, 45.89, 46.03, 45.61, 46.28, 46.28,
    ]


@pytest.fixture
def make_bars():
    """Build daily bars from closes, one calendar day apart, ending at ``end``."""

    def _make(closes, end=date(2025, 6, 30), highs=None):
        start = end - timedelta(days=len(closes) - 1)
        bars = []
        for i, close in enumerate(closes):
            high = highs[i] if highs is not None else close
            bars.append(
                PriceBar(
                    date=start + timedelta(days=i),
                    open=close,
                    high=high,
                    low=close,
                    close=close,
                    adjusted_close=close,
                    volume=1_000_000,
                )
            )
        return bars

    return _make


@pytest.fixture
def sample_stock_info():
    """Sample Yahoo Finance stock info response."""
    return {
        "regularMarketPrice": 175.50,
        "regularMarketChangePercent": 1.3,
        "previousClose": 173.25,
        "open": 174.00,
        "dayHigh": 176.00,
        "dayLow": 173.50,
        "volume": 50_000_000,
        "shortName": "Apple Inc.",
    }
