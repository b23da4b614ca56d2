"""
Market data sources: the local database and Yahoo Finance.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import pandas as pd
import yfinance as yf

from matrix_engine.database.connection import Database
from matrix_engine.database.models import EarningsRecord, PriceBar, Quote
from matrix_engine.database.repository import (
    EarningsRepository,
    HoldingRepository,
    PriceHistoryRepository,
    QuoteRepository,
)
from matrix_engine.errors import DataUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_BENCHMARKS = {
    "USD": "SPY",
    "CAD": "XIC",
    "INTL": "ACWX",
}


def yahoo_symbol(symbol: str, region: str) -> str:
    """Yahoo ticker for a portfolio symbol (TSX listings carry '.TO')."""
    symbol = symbol.strip().upper()
    if region.upper() == "CAD" and "." not in symbol:
        return f"{symbol}.TO"
    return symbol


class MarketDataSource(ABC):
    """Read access to prices, quotes and earnings for the engine."""

    def __init__(self, benchmarks: Optional[dict[str, str]] = None):
        self.benchmarks = {
            k.upper(): v for k, v in (benchmarks or DEFAULT_BENCHMARKS).items()
        }

    @abstractmethod
    def get_price_history(self, symbol: str, region: str) -> list[PriceBar]:
        """Daily bars, oldest first."""
        pass

    @abstractmethod
    def get_current_quote(self, symbol: str, region: str) -> Optional[Quote]:
        pass

    @abstractmethod
    def get_earnings_history(self, symbol: str, region: str) -> list[EarningsRecord]:
        """Quarterly records, most recent first."""
        pass

    def get_benchmark_history(self, region: str) -> list[PriceBar]:
        """Price history of the region's benchmark; empty when none is configured."""
        benchmark = self.benchmarks.get(region.upper())
        if not benchmark:
            return []
        return self.get_price_history(benchmark, region)


class DatabaseMarketData(MarketDataSource):
    """Reads market data previously synced into the database."""

    def __init__(self, db: Database, benchmarks: Optional[dict[str, str]] = None):
        super().__init__(benchmarks)
        self.price_repo = PriceHistoryRepository(db)
        self.quote_repo = QuoteRepository(db)
        self.earnings_repo = EarningsRepository(db)

    def get_price_history(self, symbol: str, region: str) -> list[PriceBar]:
        return self.price_repo.get_history(symbol, region)

    def get_current_quote(self, symbol: str, region: str) -> Optional[Quote]:
        return self.quote_repo.get(symbol, region)

    def get_earnings_history(self, symbol: str, region: str) -> list[EarningsRecord]:
        return self.earnings_repo.get_history(symbol)


class YahooMarketData(MarketDataSource):
    """Fetches market data from Yahoo Finance."""

    def __init__(
        self,
        history_period: str = "2y",
        benchmarks: Optional[dict[str, str]] = None,
    ):
        super().__init__(benchmarks)
        self.history_period = history_period

    def get_price_history(self, symbol: str, region: str) -> list[PriceBar]:
        """
        Fetch daily history.

        Raises:
            DataUnavailableError: If Yahoo returns no rows
        """
        ticker = yahoo_symbol(symbol, region)
        hist = yf.Ticker(ticker).history(
            period=self.history_period, auto_adjust=False
        )
        if hist is None or hist.empty:
            raise DataUnavailableError(f"No historical data available: {ticker}")
        return _frame_to_bars(hist)

    def get_current_quote(self, symbol: str, region: str) -> Optional[Quote]:
        ticker = yahoo_symbol(symbol, region)
        info = yf.Ticker(ticker).info or {}

        price = info.get("regularMarketPrice")
        if price is None:
            price = info.get("previousClose")
        if price is None:
            logger.warning(f"No quote available for {ticker}")
            return None

        return Quote(
            symbol=symbol.upper(),
            region=region.upper(),
            price=float(price),
            change_percent=info.get("regularMarketChangePercent"),
        )

    def get_earnings_history(self, symbol: str, region: str) -> list[EarningsRecord]:
        """EPS actual and estimate per reported quarter, most recent first."""
        ticker = yahoo_symbol(symbol, region)
        dates = yf.Ticker(ticker).get_earnings_dates(limit=12)
        if dates is None or dates.empty:
            return []

        records = []
        for timestamp, row in dates.iterrows():
            actual = row.get("Reported EPS")
            if pd.isna(actual):
                # Upcoming report
                continue
            estimate = row.get("EPS Estimate")
            report_date = pd.Timestamp(timestamp).date()
            quarter = (report_date.month - 1) // 3 + 1
            records.append(
                EarningsRecord(
                    symbol=symbol.upper(),
                    quarter=f"Q{quarter} {report_date.year}",
                    report_date=report_date,
                    eps_actual=float(actual),
                    eps_estimate=None if pd.isna(estimate) else float(estimate),
                )
            )
        records.sort(key=lambda r: r.report_date, reverse=True)
        return records


def _frame_to_bars(hist: pd.DataFrame) -> list[PriceBar]:
    """Convert a yfinance history frame to bars, oldest first."""
    bars = []
    for timestamp, row in hist.sort_index().iterrows():
        close = row.get("Close")
        if pd.isna(close):
            continue
        adjusted = row.get("Adj Close")
        volume = row.get("Volume")
        bars.append(
            PriceBar(
                date=pd.Timestamp(timestamp).date(),
                open=_optional_float(row.get("Open")),
                high=_optional_float(row.get("High")),
                low=_optional_float(row.get("Low")),
                close=float(close),
                adjusted_close=_optional_float(adjusted),
                volume=None if volume is None or pd.isna(volume) else int(volume),
            )
        )
    return bars


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def sync_prices(
    db: Database,
    region: str,
    source: Optional[YahooMarketData] = None,
) -> dict:
    """
    Store history, quotes and earnings for a region's holdings and benchmark.

    Symbols that fail to fetch are reported, not raised.

    Returns:
        Dictionary with synced and failed symbols
    """
    source = source or YahooMarketData()
    region = region.upper()
    price_repo = PriceHistoryRepository(db)
    quote_repo = QuoteRepository(db)
    earnings_repo = EarningsRepository(db)

    symbols = [h.symbol for h in HoldingRepository(db).list_by_region(region)]
    benchmark = source.benchmarks.get(region)
    if benchmark and benchmark.upper() not in symbols:
        symbols.append(benchmark.upper())

    synced = []
    failed = []
    for symbol in symbols:
        try:
            bars = source.get_price_history(symbol, region)
            price_repo.bulk_upsert(symbol, region, bars)

            quote = source.get_current_quote(symbol, region)
            if quote is not None:
                quote_repo.upsert(quote)

            if symbol != (benchmark or "").upper():
                for record in source.get_earnings_history(symbol, region):
                    earnings_repo.upsert(record)

            synced.append(symbol)
            logger.info(f"Synced {len(bars)} bars for {symbol} ({region})")
        except Exception as e:
            logger.error(f"Error syncing {symbol} ({region}): {e}")
            failed.append(symbol)

    return {"synced": synced, "failed": failed}
