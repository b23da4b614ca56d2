"""
Matrix engine orchestration: holdings in, reconciled alerts out.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from matrix_engine.config import REGIONS
from matrix_engine.data.fetcher import MarketDataSource
from matrix_engine.database.connection import Database
from matrix_engine.database.models import EarningsRecord, Holding, PriceBar, Quote
from matrix_engine.database.repository import AlertRepository, HoldingRepository
from matrix_engine.errors import DataUnavailableError, PersistenceError
from matrix_engine.indicators.signals import build_signal_bundle, compute_weights
from matrix_engine.rules.alerts import reconcile
from matrix_engine.rules.catalog import default_catalog
from matrix_engine.rules.engine import RuleEngine
from matrix_engine.rules.types import Alert

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Summary of one engine run."""

    status: str = "success"  # "success", "partial" or "error"
    alerts: list[Alert] = field(default_factory=list)
    triggered_by_region: dict[str, int] = field(default_factory=dict)
    skipped_holdings: list[str] = field(default_factory=list)
    failed_regions: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def alert_count(self) -> int:
        return len(self.alerts)

    @property
    def message(self) -> str:
        if self.status == "error":
            return "Matrix engine run failed for every region"
        text = f"Matrix engine run complete: {self.alert_count} active alerts"
        if self.failed_regions:
            text += f" (failed regions: {', '.join(sorted(self.failed_regions))})"
        if self.cancelled:
            text += " (cancelled)"
        return text


@dataclass
class _HoldingData:
    holding: Holding
    bars: list[PriceBar]
    quote: Optional[Quote]
    earnings: list[EarningsRecord]

    @property
    def price(self) -> Optional[float]:
        if self.quote is not None:
            return self.quote.price
        if self.bars:
            return self.bars[-1].effective_close
        return None


@dataclass
class _RegionOutcome:
    region: str
    symbols: list[str] = field(default_factory=list)
    to_create: list[Alert] = field(default_factory=list)
    to_deactivate: list[Alert] = field(default_factory=list)
    triggered_count: int = 0
    skipped: list[str] = field(default_factory=list)


class _Cancelled(Exception):
    pass


class MatrixEngineService:
    """Runs the matrix rules over every holding of one or more regions."""

    def __init__(
        self,
        db: Database,
        market_data: MarketDataSource,
        engine: Optional[RuleEngine] = None,
        regions: Iterable[str] = REGIONS,
        rsi_period: int = 14,
        dry_run: bool = False,
    ):
        """
        Initialize the service.

        Args:
            db: Database holding holdings and alerts
            market_data: Source of prices, quotes and earnings
            engine: Rule engine; defaults to the built-in catalog
            regions: Regions processed by run_for_all_regions
            rsi_period: Period of the RSI the rules read
            dry_run: Evaluate and reconcile without writing alerts
        """
        self.db = db
        self.market_data = market_data
        self.engine = engine or RuleEngine(default_catalog())
        self.regions = [r.upper() for r in regions]
        self.rsi_period = rsi_period
        self.dry_run = dry_run

        self.holding_repo = HoldingRepository(db)
        self.alert_repo = AlertRepository(db)

    def run_for_region(
        self, region: str, cancel_event: Optional[threading.Event] = None
    ) -> RunResult:
        """Evaluate and reconcile one regional portfolio."""
        return self._run([region.upper()], cancel_event)

    def run_for_all_regions(
        self, cancel_event: Optional[threading.Event] = None
    ) -> RunResult:
        """Evaluate and reconcile every configured region; failures stay per region."""
        return self._run(self.regions, cancel_event)

    def _run(
        self, regions: list[str], cancel_event: Optional[threading.Event]
    ) -> RunResult:
        result = RunResult()
        processed = 0

        for region in regions:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            try:
                outcome = self._evaluate_region(region, cancel_event)
                alerts = self._apply(outcome)
            except _Cancelled:
                logger.info(f"Run cancelled while processing {region}; nothing persisted")
                result.cancelled = True
                break
            except Exception as e:
                logger.error(f"Error processing region {region}: {e}")
                result.failed_regions[region] = str(e)
                continue

            processed += 1
            result.alerts.extend(alerts)
            result.triggered_by_region[region] = outcome.triggered_count
            result.skipped_holdings.extend(outcome.skipped)
            logger.info(
                f"{region}: {outcome.triggered_count} rules triggered, "
                f"{len(outcome.to_create)} alerts created, "
                f"{len(outcome.to_deactivate)} deactivated"
            )

        if result.failed_regions:
            result.status = "partial" if processed else "error"
        elif result.cancelled and processed < len(regions):
            result.status = "partial"
        return result

    def _evaluate_region(
        self, region: str, cancel_event: Optional[threading.Event]
    ) -> _RegionOutcome:
        """
        Evaluate every holding of a region and diff against active alerts.

        Raises:
            DataUnavailableError: If holdings or market data can't be read
            _Cancelled: If the cancel event is set between holdings
        """
        try:
            holdings = self.holding_repo.list_by_region(region)
        except Exception as e:
            raise DataUnavailableError(f"Holdings unavailable for {region}: {e}") from e

        outcome = _RegionOutcome(region=region, symbols=[h.symbol for h in holdings])
        if not holdings:
            logger.info(f"No holdings in {region}")
            return outcome

        data = []
        for holding in holdings:
            self._check_cancel(cancel_event)
            data.append(self._load_holding_data(holding))

        benchmark_bars = self._load_benchmark(region)
        weights = compute_weights(holdings, {d.holding.symbol: d.price for d in data})
        now = datetime.now()

        for item in data:
            self._check_cancel(cancel_event)
            holding = item.holding
            if not self.engine.is_evaluable(holding):
                logger.warning(
                    f"Skipping {holding.symbol} ({region}): invalid classification "
                    f"{holding.classification!r} or rating {holding.rating!r}"
                )
                outcome.skipped.append(holding.symbol)
                continue

            signals = build_signal_bundle(
                item.bars,
                quote=item.quote,
                earnings=item.earnings,
                position_weight=weights.get(holding.symbol),
                benchmark_weight=holding.benchmark_weight,
                benchmark_bars=benchmark_bars,
                rsi_period=self.rsi_period,
            )
            triggered = self.engine.evaluate_all(holding, signals)
            outcome.triggered_count += len(triggered)

            existing = self.alert_repo.list_active(holding.symbol, region)
            reconciliation = reconcile(
                holding.symbol, triggered, existing, now, region=region
            )
            outcome.to_create.extend(reconciliation.to_create)
            outcome.to_deactivate.extend(reconciliation.to_deactivate)

        return outcome

    def _load_holding_data(self, holding: Holding) -> _HoldingData:
        try:
            return _HoldingData(
                holding=holding,
                bars=self.market_data.get_price_history(holding.symbol, holding.region),
                quote=self.market_data.get_current_quote(holding.symbol, holding.region),
                earnings=self.market_data.get_earnings_history(
                    holding.symbol, holding.region
                ),
            )
        except DataUnavailableError:
            raise
        except Exception as e:
            raise DataUnavailableError(
                f"Market data unavailable for {holding.symbol}: {e}"
            ) from e

    def _load_benchmark(self, region: str) -> list[PriceBar]:
        try:
            return self.market_data.get_benchmark_history(region)
        except DataUnavailableError as e:
            logger.warning(f"No benchmark history for {region}: {e}")
            return []

    def _apply(self, outcome: _RegionOutcome) -> list[Alert]:
        """Persist a region's changes and return its active alerts."""
        if self.dry_run:
            closed = {a.id for a in outcome.to_deactivate}
            active = [
                a
                for symbol in outcome.symbols
                for a in self.alert_repo.list_active(symbol, outcome.region)
                if a.id not in closed
            ]
            return active + outcome.to_create

        try:
            self.alert_repo.persist(
                outcome.to_create, [a.id for a in outcome.to_deactivate]
            )
        except Exception as e:
            raise PersistenceError(f"Failed to persist alerts: {e}") from e

        return [
            a
            for symbol in outcome.symbols
            for a in self.alert_repo.list_active(symbol, outcome.region)
        ]

    @staticmethod
    def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled()
