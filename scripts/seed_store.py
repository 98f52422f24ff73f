#!/usr/bin/env python3
"""Register a store and its vendor credentials in the local database.

Usage:
    python scripts/seed_store.py --name "Demo Shop" \
        --shopify-url demo.myshopify.com --shopify-token shpat_xxx \
        --fb-account-id 123456 --fb-token EAAB... \
        --google-customer-id 123-456-7890 --google-refresh-token 1//xxx

Credentials left out disable that vendor's sync for the store.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from spendboard_core.schema import connect, init_database
from spendboard_core.schemas.stores import Store
from spendboard_core.stores.repository import StoreRepository


logger = logging.getLogger("seed_store")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed a Spendboard store")
    parser.add_argument("--id", default="", help="Store ID (generated when omitted)")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--shopify-url", help="Shop domain, e.g. demo.myshopify.com")
    parser.add_argument("--shopify-token", help="Admin API access token")
    parser.add_argument("--fb-account-id", help="Facebook ad account ID")
    parser.add_argument("--fb-token", help="Facebook Marketing API token")
    parser.add_argument("--google-customer-id", help="Google Ads customer ID")
    parser.add_argument("--google-refresh-token", help="Google OAuth refresh token")
    parser.add_argument(
        "--db",
        default=os.getenv("SPENDBOARD_DB_PATH", "data/spendboard.db"),
        help="SQLite database path",
    )
    return parser


def seed_store(args: argparse.Namespace) -> Store:
    conn = connect(args.db)
    try:
        init_database(conn)
        return StoreRepository(conn).create(
            Store(
                id=args.id,
                name=args.name,
                shopify_store_url=args.shopify_url,
                shopify_token=args.shopify_token,
                fb_account_id=args.fb_account_id,
                fb_ad_spend_token=args.fb_token,
                google_customer_id=args.google_customer_id,
                google_refresh_token=args.google_refresh_token,
            )
        )
    finally:
        conn.close()


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    store = seed_store(args)
    print(f"Seeded store {store.name} ({store.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
