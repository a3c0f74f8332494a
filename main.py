#!/usr/bin/env python3
"""
MoBase Scraper - Technical attributes of catalog products by article number
===========================================================================
Looks up one or more article numbers on the MoBase product catalog and
prints the canonical record of each (material, dimensions, weight,
classification, commodity code, ...). Optionally writes a CSV file with the
German column names used by the comparison spreadsheet.

Usage:
  python main.py A2V00001234567 [A2V... ...]
  python main.py A2V00001234567 --csv vergleich.csv
  python main.py A2V00001234567 --static     # skip the browser
  python main.py --env                       # show environment capabilities
"""

import argparse
import csv
import json
import logging
import sys
from typing import List

from record import CSV_FIELDNAMES, NOT_FOUND, CanonicalRecord
from scraper_engine import EnvironmentProbe, HttpxStrategy, ProductScraper
from site_profile import MOBASE

logger = logging.getLogger(__name__)

# Fields shown in the console summary, in order
SUMMARY_FIELDS = [
    ("Titel", "title"),
    ("Werkstoff", "material"),
    ("Abmessung", "dimensions"),
    ("Gewicht", "weight"),
    ("Materialklassifizierung", "material_classification"),
    ("Bewertung", "material_classification_assessment"),
    ("Statistische Warennummer", "statistical_commodity_code"),
    ("Weitere Artikelnummer", "alternate_article_numbers"),
    ("Ursprungsland", "country_of_origin"),
    ("Verfügbarkeit", "availability"),
]


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def save_to_csv(records: List[CanonicalRecord], filename: str):
    """Save records to CSV using the legacy German column names."""
    if not records:
        logger.warning("No records to save")
        return

    incomplete = [r.identifier for r in records if not r.has_core_data()]
    if incomplete:
        logger.warning(f"\n⚠️  Little technical data for {len(incomplete)} articles:")
        for number in incomplete[:10]:
            logger.warning(f"  {number}")

    with open(filename, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDNAMES)
        writer.writeheader()
        writer.writerows(r.to_legacy_row() for r in records)

    logger.info(f"✓ Saved {len(records)} records to {filename}")


def print_record(record: CanonicalRecord):
    print("\n" + "=" * 70)
    print(f"{record.identifier}  ({record.status})")
    print("=" * 70)
    for label, name in SUMMARY_FIELDS:
        value = getattr(record, name)
        marker = "✗" if value == NOT_FOUND else "✓"
        print(f"  {marker} {label}: {value}")
    print(f"  Link: {record.product_link}")


def show_environment():
    env = EnvironmentProbe()
    print("Environment capabilities:")
    caps = env.get_capabilities()
    error = caps.pop("browser_error", None)
    for cap, val in caps.items():
        status = "✓" if val else "✗"
        print(f"  {status} {cap}: {val}")
    if error:
        print(f"  Browser launch error: {error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape technical product data from the MoBase catalog.")
    parser.add_argument("articles", nargs="*", help="Article numbers, e.g. A2V00001234567")
    parser.add_argument("--csv", metavar="FILE", help="Write results to a CSV file")
    parser.add_argument("--json", action="store_true", help="Print records as JSON")
    parser.add_argument("--static", action="store_true", help="Fetch static HTML only (no browser)")
    parser.add_argument("--env", action="store_true", help="Show environment capabilities and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    """Main entry point for the scraper."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.env:
        show_environment()
        return 0

    if not args.articles:
        print("No article numbers given.")
        print("  python main.py A2V00001234567 [more ...]")
        print("  python main.py --env   # Show environment capabilities")
        return 2

    strategies = [HttpxStrategy(MOBASE)] if args.static else None
    with ProductScraper(strategies=strategies, profile=MOBASE) as scraper:
        records = scraper.scrape_many(args.articles)

    if args.json:
        print(json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2))
    else:
        for record in records:
            print_record(record)

    if args.csv:
        save_to_csv(records, args.csv)

    return 0


if __name__ == "__main__":
    sys.exit(main())
