#!/usr/bin/env python3
"""CLI entry point for running a sync job once.

Usage:
    # Yesterday's metrics for every store
    python scripts/run_sync.py daily

    # Yesterday's metrics for one store
    python scripts/run_sync.py daily --store <store_id>

    # Backfill a date range for one store
    python scripts/run_sync.py backfill --store <store_id> --start 2024-11-01 --end 2024-11-30

    # Product totals (trailing 30 days, or all-time)
    python scripts/run_sync.py products [--all-time]

    # Landing page traffic (daily 7-day window, or weekly 30-day window)
    python scripts/run_sync.py traffic [--weekly]
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from spendboard_core.exceptions import SpendboardError
from spendboard_core.runtime import SpendboardRuntime


logger = logging.getLogger("run_sync")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Spendboard sync jobs")
    parser.add_argument(
        "job",
        choices=["daily", "backfill", "products", "traffic"],
        help="Job to run once",
    )
    parser.add_argument("--store", type=str, help="Store ID (required for backfill)")
    parser.add_argument("--start", type=str, help="Backfill start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, help="Backfill end date (YYYY-MM-DD)")
    parser.add_argument(
        "--all-time",
        action="store_true",
        help="products: resync from every order ever placed",
    )
    parser.add_argument(
        "--weekly",
        action="store_true",
        help="traffic: run the extended 30-day / top 50 pages sync",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


async def run(args: argparse.Namespace) -> dict:
    async with SpendboardRuntime() as runtime:
        if args.job == "backfill":
            report = await runtime.metrics_job.sync_store_range(args.store, args.start, args.end)
        elif args.job == "daily" and args.store:
            report = await runtime.metrics_job.sync_store_daily(args.store)
        elif args.job == "daily":
            report = await runtime.metrics_job.handle_daily_sync()
        elif args.job == "products" and args.store:
            report = await runtime.product_job.sync_store_products(
                args.store, None if args.all_time else runtime.product_job.DAILY_WINDOW_DAYS
            )
        elif args.job == "products":
            if args.all_time:
                report = await runtime.product_job.handle_monthly_full_sync()
            else:
                report = await runtime.product_job.handle_daily_product_sync()
        elif args.job == "traffic" and args.store:
            report = await runtime.traffic_job.sync_store_traffic(args.store)
        elif args.weekly:
            report = await runtime.traffic_job.handle_weekly_extended_sync()
        else:
            report = await runtime.traffic_job.handle_daily_traffic_sync()

    return report.model_dump(mode="json", by_alias=True)


def main() -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if args.job == "backfill" and not (args.store and args.start and args.end):
        parser.error("backfill requires --store, --start and --end")

    setup_logging(args.verbose)

    try:
        report = asyncio.run(run(args))
    except SpendboardError as exc:
        logger.error("%s", exc)
        return 1

    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
