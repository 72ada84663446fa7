"""
Price Tracker - Add Product Script

Validates an ASIN, scrapes its product page once, and stores the products
row together with its first price_history observation.

Usage:
    python scripts/add_product.py --asin B08N5WRWNW
    python scripts/add_product.py --asin b07fz8s74r --headed
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.config import RecordPolicy
from src.main import _configure_logging, create_db_engine, init_db
from src.pipeline.price_updater import record_observation
from src.scraper import ScrapedProductData
from src.scraper.errors import ScraperError
from src.scraper.extractor import ProductExtractor
from src.scraper.session import BrowserSession
from src.utils.asin import normalize_asin, validate_asin


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Start tracking an Amazon.com.br product (products + price_history rows).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/add_product.py --asin B08N5WRWNW
  python scripts/add_product.py --asin B07FZ8S74R --headed
""",
    )
    parser.add_argument(
        "--asin",
        type=str,
        required=True,
        help="10-character Amazon product ID (letters/digits, any case).",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window (debugging selectors).",
    )
    return parser.parse_args(argv)


async def add_product(asin: str, headless: bool = True) -> ScrapedProductData:
    """Scrape `asin` once and persist it. Returns the scraped data."""
    engine, session_factory = await create_db_engine()
    try:
        await init_db(engine)
        async with ProductExtractor(BrowserSession(headless=headless)) as extractor:
            data = await extractor.extract_product(asin)

        async with session_factory() as session:
            await record_observation(session, data, RecordPolicy.ALWAYS)
    finally:
        await engine.dispose()
    return data


async def main() -> None:
    args = parse_args()
    _configure_logging("WARNING")

    if not validate_asin(args.asin):
        print(f"Invalid ASIN: {args.asin!r} (expected 10 letters/digits)", file=sys.stderr)
        sys.exit(2)

    asin = normalize_asin(args.asin)
    print(f"Scraping {asin}...")

    try:
        data = await add_product(asin, headless=not args.headed)
    except ScraperError as e:
        print(f"Failed to scrape {asin}: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Failed to add product: {e}", file=sys.stderr)
        sys.exit(1)

    print("Product added successfully.")
    print(f"  asin        = {data.asin}")
    print(f"  title       = {data.title}")
    if data.available:
        print(f"  price       = R$ {data.price} ({data.price_method})")
    else:
        print(f"  available   = no ({data.unavailable_reason})")
    if data.categories:
        print(f"  categories  = {' > '.join(data.categories)}")


if __name__ == "__main__":
    asyncio.run(main())
