"""
Repository classes for the holdings, market data and alert tables.
"""

from datetime import date, datetime
from typing import Optional, Sequence

from matrix_engine.rules.types import Alert, AlertSeverity
from .connection import Database
from .models import EarningsRecord, Holding, PriceBar, Quote


class HoldingRepository:
    """CRUD operations for holdings."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, holding: Holding) -> Holding:
        """Insert a holding or update the existing one for symbol+region."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO holdings
            (symbol, region, company, classification, rating, quantity, weight, benchmark_weight)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, region) DO UPDATE SET
                company = excluded.company,
                classification = excluded.classification,
                rating = excluded.rating,
                quantity = excluded.quantity,
                weight = excluded.weight,
                benchmark_weight = excluded.benchmark_weight,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                holding.symbol.upper(),
                holding.region.upper(),
                holding.company,
                holding.classification,
                holding.rating,
                holding.quantity,
                holding.weight,
                holding.benchmark_weight,
            ),
        )
        self.db.commit()
        return self.get(holding.symbol, holding.region)

    def get(self, symbol: str, region: str) -> Optional[Holding]:
        """Get a holding by symbol and region."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM holdings WHERE symbol = ? AND region = ?",
            (symbol.upper(), region.upper()),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_holding(row)

    def list_by_region(self, region: str) -> list[Holding]:
        """List all holdings of a regional portfolio."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM holdings WHERE region = ? ORDER BY symbol",
            (region.upper(),),
        )
        return [self._row_to_holding(row) for row in cursor.fetchall()]

    def list_all(self) -> list[Holding]:
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM holdings ORDER BY region, symbol")
        return [self._row_to_holding(row) for row in cursor.fetchall()]

    def delete(self, symbol: str, region: str) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "DELETE FROM holdings WHERE symbol = ? AND region = ?",
            (symbol.upper(), region.upper()),
        )
        self.db.commit()

    def _row_to_holding(self, row) -> Holding:
        """Convert database row to Holding."""
        return Holding(
            id=row["id"],
            symbol=row["symbol"],
            region=row["region"],
            company=row["company"],
            classification=row["classification"],
            rating=row["rating"],
            quantity=row["quantity"],
            weight=row["weight"],
            benchmark_weight=row["benchmark_weight"],
        )


class PriceHistoryRepository:
    """Daily price bars per symbol and region."""

    def __init__(self, db: Database):
        self.db = db

    def bulk_upsert(self, symbol: str, region: str, bars: Sequence[PriceBar]) -> int:
        """Insert or replace bars. Returns the number of rows written."""
        cursor = self.db.connection.cursor()
        cursor.executemany(
            """
            INSERT INTO historical_prices
            (symbol, region, date, open, high, low, close, adjusted_close, volume)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, region, date) DO UPDATE SET
                open = excluded.open,
                high = excluded.high,
                low = excluded.low,
                close = excluded.close,
                adjusted_close = excluded.adjusted_close,
                volume = excluded.volume
            """,
            [
                (
                    symbol.upper(),
                    region.upper(),
                    bar.date.isoformat(),
                    bar.open,
                    bar.high,
                    bar.low,
                    bar.close,
                    bar.adjusted_close,
                    bar.volume,
                )
                for bar in bars
            ],
        )
        self.db.commit()
        return len(bars)

    def get_history(self, symbol: str, region: str) -> list[PriceBar]:
        """Price history in ascending date order."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM historical_prices
            WHERE symbol = ? AND region = ?
            ORDER BY date ASC
            """,
            (symbol.upper(), region.upper()),
        )
        return [self._row_to_bar(row) for row in cursor.fetchall()]

    def _row_to_bar(self, row) -> PriceBar:
        return PriceBar(
            date=date.fromisoformat(row["date"]),
            open=row["open"],
            high=row["high"],
            low=row["low"],
            close=row["close"],
            adjusted_close=row["adjusted_close"],
            volume=row["volume"],
        )


class QuoteRepository:
    """Latest quote per symbol and region."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, quote: Quote) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO current_prices (symbol, region, price, change_percent)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(symbol, region) DO UPDATE SET
                price = excluded.price,
                change_percent = excluded.change_percent,
                updated_at = CURRENT_TIMESTAMP
            """,
            (quote.symbol.upper(), quote.region.upper(), quote.price, quote.change_percent),
        )
        self.db.commit()

    def get(self, symbol: str, region: str) -> Optional[Quote]:
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM current_prices WHERE symbol = ? AND region = ?",
            (symbol.upper(), region.upper()),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return Quote(
            symbol=row["symbol"],
            region=row["region"],
            price=row["price"],
            change_percent=row["change_percent"],
        )


class EarningsRepository:
    """Quarterly earnings records."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, record: EarningsRecord) -> None:
        """Insert or update a quarter; missing fundamentals keep their stored values."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO earnings
            (symbol, quarter, report_date, eps_actual, eps_estimate,
             earnings_score, ebitda_margin, roic, net_debt)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, quarter) DO UPDATE SET
                report_date = excluded.report_date,
                eps_actual = excluded.eps_actual,
                eps_estimate = excluded.eps_estimate,
                earnings_score = COALESCE(excluded.earnings_score, earnings.earnings_score),
                ebitda_margin = COALESCE(excluded.ebitda_margin, earnings.ebitda_margin),
                roic = COALESCE(excluded.roic, earnings.roic),
                net_debt = COALESCE(excluded.net_debt, earnings.net_debt)
            """,
            (
                record.symbol.upper(),
                record.quarter,
                record.report_date.isoformat(),
                record.eps_actual,
                record.eps_estimate,
                record.earnings_score,
                record.ebitda_margin,
                record.roic,
                record.net_debt,
            ),
        )
        self.db.commit()

    def get_history(self, symbol: str) -> list[EarningsRecord]:
        """Records for a symbol, most recent first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM earnings WHERE symbol = ? ORDER BY report_date DESC",
            (symbol.upper(),),
        )
        return [
            EarningsRecord(
                id=row["id"],
                symbol=row["symbol"],
                quarter=row["quarter"],
                report_date=date.fromisoformat(row["report_date"]),
                eps_actual=row["eps_actual"],
                eps_estimate=row["eps_estimate"],
                earnings_score=row["earnings_score"],
                ebitda_margin=row["ebitda_margin"],
                roic=row["roic"],
                net_debt=row["net_debt"],
            )
            for row in cursor.fetchall()
        ]


class AlertRepository:
    """Alert storage; alerts are deactivated, never deleted."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: Alert) -> Alert:
        """Create a new alert."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO alerts
            (symbol, region, message, details, severity, rule_type, is_active,
             created_at, closed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.symbol,
                alert.region,
                alert.message,
                alert.details,
                alert.severity.value,
                alert.rule_type,
                1 if alert.is_active else 0,
                alert.created_at.isoformat(),
                alert.closed_at.isoformat() if alert.closed_at else None,
            ),
        )
        self.db.commit()
        alert.id = cursor.lastrowid
        return alert

    def get_by_id(self, alert_id: int) -> Optional[Alert]:
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def deactivate(self, alert_id: int, closed_at: Optional[datetime] = None) -> None:
        """Mark an alert inactive and stamp its closing time."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            UPDATE alerts
            SET is_active = 0, closed_at = ?
            WHERE id = ? AND is_active = 1
            """,
            ((closed_at or datetime.now()).isoformat(), alert_id),
        )
        self.db.commit()

    def list_active(
        self, symbol: Optional[str] = None, region: Optional[str] = None
    ) -> list[Alert]:
        """Active alerts, optionally for one symbol and/or one region."""
        query = "SELECT * FROM alerts WHERE is_active = 1"
        params = []
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        if region is not None:
            query += " AND region = ?"
            params.append(region.upper())
        query += " ORDER BY created_at, id"

        cursor = self.db.connection.cursor()
        cursor.execute(query, params)
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def list_recent(self, limit: int = 50) -> list[Alert]:
        """Most recent alerts, active or not."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM alerts ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def persist(
        self, to_create: Sequence[Alert], to_deactivate: Sequence[int]
    ) -> list[Alert]:
        """
        Write new alerts and close deactivated ones in a single transaction.

        Either every change is committed or none is.

        Returns:
            The created alerts with their IDs set
        """
        closed_at = datetime.now()
        with self.db.transaction():
            created = [self.create(alert) for alert in to_create]
            for alert_id in to_deactivate:
                self.deactivate(alert_id, closed_at)
        return created

    def _row_to_alert(self, row) -> Alert:
        """Convert database row to Alert."""
        return Alert(
            id=row["id"],
            symbol=row["symbol"],
            region=row["region"],
            message=row["message"],
            details=row["details"] or "",
            severity=AlertSeverity(row["severity"]),
            rule_type=row["rule_type"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            closed_at=(
                datetime.fromisoformat(row["closed_at"]) if row["closed_at"] else None
            ),
        )
