"""
Main application entry point.
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from matrix_engine.app import MatrixEngineService, RunResult
from matrix_engine.config import REGIONS, AppConfig, load_config
from matrix_engine.data.fetcher import DatabaseMarketData, YahooMarketData
from matrix_engine.database.connection import Database
from matrix_engine.rules.catalog import default_catalog, load_catalog
from matrix_engine.rules.engine import RuleEngine

logger = logging.getLogger(__name__)


def build_service(config: AppConfig, db: Database, dry_run: bool = False) -> MatrixEngineService:
    """Wire the rule engine and market data source from configuration."""
    if config.engine.catalog_path:
        catalog = load_catalog(config.engine.catalog_path)
    else:
        catalog = default_catalog()
    engine = RuleEngine(catalog, at_tolerance=config.engine.at_tolerance_pct)

    if config.data_source.provider == "yahoo_finance":
        market_data = YahooMarketData(
            history_period=config.data_source.history_period,
            benchmarks=config.data_source.benchmarks,
        )
    else:
        market_data = DatabaseMarketData(db, benchmarks=config.data_source.benchmarks)

    return MatrixEngineService(
        db=db,
        market_data=market_data,
        engine=engine,
        regions=config.engine.regions,
        rsi_period=config.engine.rsi_period,
        dry_run=dry_run,
    )


def print_result(result: RunResult) -> None:
    print(result.message)
    for region, count in result.triggered_by_region.items():
        print(f"  {region}: {count} rules triggered")
    for alert in result.alerts:
        print(f"  [{alert.severity.value}] {alert.symbol}: {alert.message}")
    if result.skipped_holdings:
        print(f"Skipped holdings: {', '.join(result.skipped_holdings)}")
    for region, error in result.failed_regions.items():
        print(f"Failed {region}: {error}")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Matrix Rule Engine")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument(
        "--region", choices=REGIONS, help="Process a single region"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run", action="store_true", help="Evaluate without persisting alerts"
    )

    args = parser.parse_args()

    # Load config
    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(logging, config.advanced.log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    service = build_service(config, db, dry_run=args.dry_run)
    if args.dry_run:
        logger.info("Dry run mode - alerts will not be persisted")

    try:
        if args.region:
            result = service.run_for_region(args.region)
        else:
            result = service.run_for_all_regions()
    finally:
        db.close()

    print_result(result)
    if result.status == "error":
        sys.exit(1)


if __name__ == "__main__":
    main()
