"""
CLI commands for the matrix engine.
"""

import argparse
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from matrix_engine.config import REGIONS
from matrix_engine.data.fetcher import YahooMarketData, sync_prices
from matrix_engine.database.connection import Database
from matrix_engine.database.models import Holding
from matrix_engine.database.repository import AlertRepository, HoldingRepository
from matrix_engine.rules.catalog import RuleCatalog, default_catalog, load_catalog
from matrix_engine.rules.types import StockClassification, parse_rating


def add_holding(
    db: Database,
    symbol: str,
    region: str,
    classification: Optional[str] = None,
    rating: Optional[int] = None,
    quantity: float = 0.0,
    weight: Optional[float] = None,
    benchmark_weight: Optional[float] = None,
    company: Optional[str] = None,
) -> Holding:
    """
    Add or update a holding.

    Raises:
        ValueError: If the classification or rating is not recognized
    """
    parsed = None
    if classification is not None:
        parsed = StockClassification.parse(classification)
        if parsed is None:
            raise ValueError(f"Unknown classification: {classification}")
    if rating is not None and parse_rating(rating) is None:
        raise ValueError(f"Rating must be 1-4, got {rating}")

    repo = HoldingRepository(db)
    holding = Holding(
        symbol=symbol.upper(),
        region=region.upper(),
        classification=parsed.value if parsed else None,
        rating=rating,
        quantity=quantity,
        weight=weight,
        benchmark_weight=benchmark_weight,
        company=company,
    )
    return repo.upsert(holding)


def describe_catalog(catalog: RuleCatalog) -> list[str]:
    """One line per rule, in evaluation order."""
    lines = []
    for rule in catalog:
        regions = f" [{', '.join(sorted(rule.regions))}]" if rule.regions else ""
        lines.append(
            f"{rule.action_type.value:<17} {rule.order_number:>2}  {rule.rule_id:<18} "
            f"{rule.name} ({rule.evaluation_method.value}/{rule.evaluation_logic.value})"
            f"{regions}"
        )
    return lines


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Matrix engine CLI")
    parser.add_argument("--db", default="data/matrix_engine.db", help="Database path")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Holding commands
    holdings_parser = subparsers.add_parser("holdings", help="Holding management")
    holdings_subparsers = holdings_parser.add_subparsers(dest="action")

    add_parser = holdings_subparsers.add_parser("add", help="Add or update a holding")
    add_parser.add_argument("--symbol", required=True, help="Ticker symbol")
    add_parser.add_argument("--region", required=True, choices=REGIONS)
    add_parser.add_argument("--classification", help="Compounder, Catalyst or Cyclical")
    add_parser.add_argument("--rating", type=int, help="Conviction rating 1-4")
    add_parser.add_argument("--quantity", type=float, default=0.0, help="Shares held")
    add_parser.add_argument("--weight", type=float, help="Portfolio weight in %%")
    add_parser.add_argument(
        "--benchmark-weight", type=float, help="Benchmark weight in %%"
    )
    add_parser.add_argument("--company", help="Company name")

    list_parser = holdings_subparsers.add_parser("list", help="List holdings")
    list_parser.add_argument("--region", choices=REGIONS, help="Region filter")

    # Price commands
    prices_parser = subparsers.add_parser("prices", help="Market data")
    prices_subparsers = prices_parser.add_subparsers(dest="action")
    sync_parser = prices_subparsers.add_parser("sync", help="Sync prices from Yahoo Finance")
    sync_parser.add_argument("--region", required=True, choices=REGIONS)
    sync_parser.add_argument("--period", default="2y", help="History period")

    # Rules commands
    rules_parser = subparsers.add_parser("rules", help="Rule catalog")
    rules_subparsers = rules_parser.add_subparsers(dest="action")
    show_parser = rules_subparsers.add_parser("show", help="Show the rule catalog")
    show_parser.add_argument("--catalog", help="YAML catalog path")

    # Alert commands
    alerts_parser = subparsers.add_parser("alerts", help="Alerts")
    alerts_subparsers = alerts_parser.add_subparsers(dest="action")
    alerts_list_parser = alerts_subparsers.add_parser("list", help="List alerts")
    alerts_list_parser.add_argument("--symbol", help="Symbol filter")
    alerts_list_parser.add_argument("--region", choices=REGIONS, help="Region filter")
    alerts_list_parser.add_argument(
        "--all", action="store_true", help="Include closed alerts"
    )
    alerts_list_parser.add_argument("--limit", type=int, default=50)

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("migrate", help="Create missing tables")

    args = parser.parse_args()

    # Initialize database
    db = Database(args.db)
    db.initialize()

    # Handle commands
    if args.command == "holdings":
        if args.action == "add":
            holding = add_holding(
                db,
                symbol=args.symbol,
                region=args.region,
                classification=args.classification,
                rating=args.rating,
                quantity=args.quantity,
                weight=args.weight,
                benchmark_weight=args.benchmark_weight,
                company=args.company,
            )
            print(f"Saved holding {holding.symbol} ({holding.region}) with ID: {holding.id}")
        elif args.action == "list":
            repo = HoldingRepository(db)
            holdings = (
                repo.list_by_region(args.region) if args.region else repo.list_all()
            )
            for h in holdings:
                print(
                    f"{h.region} {h.symbol}: {h.classification or '-'} / "
                    f"{h.rating or '-'}, qty {h.quantity:g}"
                )

    elif args.command == "prices":
        if args.action == "sync":
            result = sync_prices(
                db, args.region, YahooMarketData(history_period=args.period)
            )
            print(f"Synced {len(result['synced'])} symbols")
            if result["failed"]:
                print(f"Failed: {result['failed']}")

    elif args.command == "rules":
        if args.action == "show":
            catalog = load_catalog(args.catalog) if args.catalog else default_catalog()
            for line in describe_catalog(catalog):
                print(line)

    elif args.command == "alerts":
        if args.action == "list":
            repo = AlertRepository(db)
            if args.all:
                alerts = repo.list_recent(args.limit)
            else:
                alerts = repo.list_active(
                    args.symbol.upper() if args.symbol else None, args.region
                )
            for a in alerts:
                state = "active" if a.is_active else "closed"
                print(
                    f"{a.created_at:%Y-%m-%d %H:%M} [{a.severity.value}] "
                    f"{a.symbol} ({a.region or '-'}) {a.rule_type} ({state}): {a.message}"
                )

    elif args.command == "db":
        if args.action == "migrate":
            db.initialize()
            print("Migrations applied")

    db.close()


if __name__ == "__main__":
    main()
