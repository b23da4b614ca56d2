"""
SQLite database connection and schema management.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._in_transaction = False
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def commit(self) -> None:
        """Commit unless an enclosing transaction() block owns the commit."""
        if not self._in_transaction:
            self.connection.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of writes atomically.

        Commits when the block exits normally, rolls back on any exception.
        """
        connection = self.connection
        self._in_transaction = True
        try:
            yield connection
            connection.commit()
        except BaseException:
            connection.rollback()
            raise
        finally:
            self._in_transaction = False

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS holdings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                region TEXT NOT NULL,
                company TEXT,
                classification TEXT,
                rating INTEGER,
                quantity REAL NOT NULL DEFAULT 0,
                weight REAL,
                benchmark_weight REAL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (symbol, region)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS historical_prices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                region TEXT NOT NULL,
                date TEXT NOT NULL,
                open REAL,
                high REAL,
                low REAL,
                close REAL NOT NULL,
                adjusted_close REAL,
                volume INTEGER,
                UNIQUE (symbol, region, date)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS current_prices (
                symbol TEXT NOT NULL,
                region TEXT NOT NULL,
                price REAL NOT NULL,
                change_percent REAL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (symbol, region)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS earnings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                quarter TEXT NOT NULL,
                report_date TEXT NOT NULL,
                eps_actual REAL,
                eps_estimate REAL,
                earnings_score TEXT,
                ebitda_margin REAL,
                roic REAL,
                net_debt REAL,
                UNIQUE (symbol, quarter)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                region TEXT,
                message TEXT NOT NULL,
                details TEXT,
                severity TEXT NOT NULL,
                rule_type TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP NOT NULL,
                closed_at TIMESTAMP
            )
        """)

        # Alerts tables created before region ownership lack the column
        columns = {row["name"] for row in cursor.execute("PRAGMA table_info(alerts)")}
        if "region" not in columns:
            cursor.execute("ALTER TABLE alerts ADD COLUMN region TEXT")

        # Create indexes for common queries
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_holdings_region ON holdings(region)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_prices_symbol_region
            ON historical_prices(symbol, region, date)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_active
            ON alerts(symbol, region, rule_type, is_active)
        """)

        self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
