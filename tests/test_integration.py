"""
Integration tests.
End-to-end tests for holdings -> signals -> rules -> persisted alerts.
"""

import sqlite3
import threading
from unittest.mock import patch

import pytest

from matrix_engine.app import MatrixEngineService
from matrix_engine.data.fetcher import MarketDataSource
from matrix_engine.database.models import Holding, Quote
from matrix_engine.database.repository import AlertRepository, HoldingRepository
from matrix_engine.rules.types import AlertSeverity


class StubMarketData(MarketDataSource):
    """In-memory market data keyed by symbol."""

    def __init__(self, bars=None, quotes=None, earnings=None, failing_regions=()):
        super().__init__()
        self.bars = bars or {}
        self.quotes = quotes or {}
        self.earnings = earnings or {}
        self.failing_regions = set(failing_regions)

    def _check(self, region):
        if region in self.failing_regions:
            raise ConnectionError(f"price store down for {region}")

    def get_price_history(self, symbol, region):
        self._check(region)
        return self.bars.get(symbol, [])

    def get_current_quote(self, symbol, region):
        self._check(region)
        return self.quotes.get(symbol)

    def get_earnings_history(self, symbol, region):
        self._check(region)
        return self.earnings.get(symbol, [])


@pytest.fixture
def holdings(db):
    return HoldingRepository(db)


@pytest.fixture
def alerts(db):
    return AlertRepository(db)


def _count_rows(db):
    return db.connection.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]


class TestMaxWeightLifecycle:
    """Test an alert raised on one pass and cleared on the next."""

    def test_raise_then_clear(self, db, holdings, alerts):
        """Should raise max-weight at 8.5% and deactivate it at 7.9%."""
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        service = MatrixEngineService(db, StubMarketData())

        first = service.run_for_region("USD")

        assert first.status == "success"
        assert first.alert_count == 1
        assert first.triggered_by_region == {"USD": 1}
        alert = first.alerts[0]
        assert alert.rule_type == "max-weight"
        assert alert.severity is AlertSeverity.WARNING
        assert alert.message == "Max Portfolio Weight triggered: 8.5 > 8%"

        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=7.9)
        )
        second = service.run_for_region("USD")

        assert second.status == "success"
        assert second.alert_count == 0
        closed = alerts.get_by_id(alert.id)
        assert not closed.is_active
        assert closed.closed_at is not None

    def test_idempotent(self, db, holdings, alerts):
        """Should not create duplicates when nothing changed."""
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        service = MatrixEngineService(db, StubMarketData())

        first = service.run_for_region("USD")
        second = service.run_for_region("USD")

        assert [a.id for a in first.alerts] == [a.id for a in second.alerts]
        assert _count_rows(db) == 1

    def test_computed_weight(self, db, holdings):
        """Should derive weights from quantities and quotes when none is stored."""
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, quantity=17)
        )
        # Unclassified, but still part of the portfolio value
        holdings.upsert(Holding(symbol="MSFT", region="USD", quantity=183))
        market_data = StubMarketData(
            quotes={
                "AAPL": Quote(symbol="AAPL", region="USD", price=10.0),
                "MSFT": Quote(symbol="MSFT", region="USD", price=10.0),
            }
        )

        result = MatrixEngineService(db, market_data).run_for_region("USD")

        assert [a.rule_type for a in result.alerts] == ["max-weight"]
        assert result.skipped_holdings == ["MSFT"]


class TestCrossRegionHoldings:
    """Test one symbol held in two regional portfolios."""

    @pytest.fixture
    def service(self, db):
        return MatrixEngineService(db, StubMarketData(), regions=["USD", "CAD"])

    def _hold(self, holdings, region, weight):
        holdings.upsert(
            Holding(
                symbol="SHOP", region=region, classification="Compounder", rating=1, weight=weight
            )
        )

    def test_stable_across_runs(self, db, holdings, alerts, service):
        """Should not let the quiet region close the other region's alert."""
        self._hold(holdings, "USD", 8.5)
        self._hold(holdings, "CAD", 1.0)

        first = service.run_for_all_regions()
        second = service.run_for_all_regions()

        assert [(a.region, a.rule_type) for a in second.alerts] == [("USD", "max-weight")]
        assert [a.id for a in first.alerts] == [a.id for a in second.alerts]
        assert _count_rows(db) == 1
        assert [a.region for a in alerts.list_active("SHOP")] == ["USD"]

    def test_regions_clear_independently(self, db, holdings, alerts, service):
        """Should close only the alert of the region whose rule stopped triggering."""
        self._hold(holdings, "USD", 8.5)
        self._hold(holdings, "CAD", 9.0)
        first = service.run_for_all_regions()
        assert sorted(a.region for a in first.alerts) == ["CAD", "USD"]

        self._hold(holdings, "CAD", 1.0)
        second = service.run_for_all_regions()

        usd = next(a for a in first.alerts if a.region == "USD")
        assert [a.id for a in second.alerts] == [usd.id]
        assert _count_rows(db) == 2
        assert [a.region for a in alerts.list_active("SHOP")] == ["USD"]


class TestPriceDrivenAlerts:
    """Test alerts derived from price history."""

    def test_oversold_decline(self, db, holdings, make_bars):
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=2)
        )
        market_data = StubMarketData(bars={"AAPL": make_bars([130.0 - i for i in range(30)])})

        result = MatrixEngineService(db, market_data).run_for_region("USD")

        by_rule = {a.rule_type: a for a in result.alerts}
        assert set(by_rule) == {"price-52wk", "rsi-low"}
        assert by_rule["rsi-low"].message == "RSI (Low) triggered: 0 < 40"
        assert {a.severity for a in result.alerts} == {AlertSeverity.CRITICAL}


class TestRunOutcomes:
    """Test run status, skipping and failure isolation."""

    def test_zero_holdings(self, db):
        result = MatrixEngineService(db, StubMarketData()).run_for_region("USD")
        assert result.status == "success"
        assert result.alerts == []
        assert result.alert_count == 0

    def test_skipped_holding_alerts_untouched(self, db, holdings, alerts):
        """Should not reconcile a holding whose classification became invalid."""
        holding = Holding(
            symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5
        )
        holdings.upsert(holding)
        service = MatrixEngineService(db, StubMarketData())
        service.run_for_region("USD")

        holding.rating = None
        holdings.upsert(holding)
        result = service.run_for_region("USD")

        assert result.skipped_holdings == ["AAPL"]
        assert [a.rule_type for a in alerts.list_active("AAPL")] == ["max-weight"]

    def test_partial_failure(self, db, holdings):
        """Should keep processing other regions when one store fails."""
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        holdings.upsert(
            Holding(symbol="RY", region="CAD", classification="Compounder", rating=1, weight=9.0)
        )
        service = MatrixEngineService(
            db, StubMarketData(failing_regions={"CAD"}), regions=["USD", "CAD"]
        )

        result = service.run_for_all_regions()

        assert result.status == "partial"
        assert set(result.failed_regions) == {"CAD"}
        assert "price store down" in result.failed_regions["CAD"]
        assert [a.symbol for a in result.alerts] == ["AAPL"]

    def test_all_regions_failed(self, db, holdings):
        holdings.upsert(Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1))
        holdings.upsert(Holding(symbol="RY", region="CAD", classification="Compounder", rating=1))
        service = MatrixEngineService(
            db, StubMarketData(failing_regions={"USD", "CAD"}), regions=["USD", "CAD"]
        )

        result = service.run_for_all_regions()

        assert result.status == "error"
        assert result.alerts == []
        assert result.message == "Matrix engine run failed for every region"

    def test_persistence_failure_rolls_back(self, db, holdings, alerts):
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        service = MatrixEngineService(db, StubMarketData())

        with patch.object(
            service.alert_repo, "deactivate", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            service.run_for_region("USD")
            holdings.upsert(
                Holding(
                    symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=1.0
                )
            )
            holdings.upsert(
                Holding(
                    symbol="MSFT", region="USD", classification="Compounder", rating=1, weight=9.0
                )
            )
            result = service.run_for_region("USD")

        assert result.status == "error"
        assert "Failed to persist alerts" in result.failed_regions["USD"]
        # Neither the MSFT insert nor the AAPL deactivation was committed
        assert [a.symbol for a in alerts.list_active()] == ["AAPL"]

    def test_dry_run_persists_nothing(self, db, holdings):
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        service = MatrixEngineService(db, StubMarketData(), dry_run=True)

        result = service.run_for_region("USD")

        assert [a.rule_type for a in result.alerts] == ["max-weight"]
        assert _count_rows(db) == 0

    def test_cancelled_before_start(self, db, holdings):
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        cancel = threading.Event()
        cancel.set()

        result = MatrixEngineService(db, StubMarketData()).run_for_all_regions(cancel)

        assert result.cancelled
        assert result.alerts == []
        assert _count_rows(db) == 0

    def test_cancelled_after_first_region(self, db, holdings):
        """Should report partial when later regions were never processed."""
        holdings.upsert(
            Holding(symbol="AAPL", region="USD", classification="Compounder", rating=1, weight=8.5)
        )
        holdings.upsert(
            Holding(symbol="RY", region="CAD", classification="Compounder", rating=1, weight=9.0)
        )
        service = MatrixEngineService(db, StubMarketData(), regions=["USD", "CAD", "INTL"])
        cancel = threading.Event()
        persist = service.alert_repo.persist

        def persist_then_cancel(to_create, to_deactivate):
            created = persist(to_create, to_deactivate)
            cancel.set()
            return created

        with patch.object(service.alert_repo, "persist", side_effect=persist_then_cancel):
            result = service.run_for_all_regions(cancel)

        assert result.cancelled
        assert result.status == "partial"
        assert result.triggered_by_region == {"USD": 1}
        assert [a.symbol for a in result.alerts] == ["AAPL"]
        assert "(cancelled)" in result.message
