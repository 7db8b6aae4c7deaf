#!/usr/bin/env python3
"""
Tropicana Wholesale Catalog Sync

Logs in to the Tropicana Wholesale portal with a headless browser and syncs
its catalog into the local catalog_products table.

Credentials are read from environment variables TROPICANA_EMAIL and
TROPICANA_PASSWORD (backend/.env). The database is DATABASE_URL, or a local
SQLite file when it is not set.

Usage:
    python tropicana_sync.py --mode full --max-products 50
    python tropicana_sync.py --mode incremental
    python tropicana_sync.py --mode stock --export-csv output/catalog.csv
"""

import argparse
import logging
import os
import sys
from datetime import timedelta
from typing import List

import pandas as pd

from catalog_sync.errors import SyncAlreadyRunningError
from catalog_sync.models import CatalogRecord, SyncLogEntry, SyncStatus, SyncType
from catalog_sync.services.catalog_store import CatalogStore, catalog_store
from catalog_sync.services.database import db_pool
from catalog_sync.services.orchestrator import sync_orchestrator


MODES = {
    'full': SyncType.FULL,
    'incremental': SyncType.INCREMENTAL,
    'stock': SyncType.STOCK_CHECK,
}

CSV_COLUMNS = [
    'sku', 'name', 'brand', 'category',
    'wholesale_price', 'retail_price', 'margin_percent',
    'in_stock', 'stock_quantity', 'active', 'excluded',
    'product_url', 'images', 'last_synced_at',
]


def print_report(entry: SyncLogEntry) -> None:
    """Print the end-of-run sync report to console."""
    duration_str = str(timedelta(seconds=entry.duration_seconds or 0))

    print("\n" + "=" * 70)
    print("SYNC REPORT")
    print("=" * 70)
    print(f"\nSync Type:     {entry.sync_type.value}")
    print(f"Status:        {entry.status.value}")
    print(f"Run Duration:  {duration_str}")
    print(f"Log ID:        {entry.id}")

    print("\n--- PRODUCTS ---")
    print(f"  Processed:     {entry.products_processed:>6}")
    print(f"  Created:       {entry.products_created:>6}")
    print(f"  Updated:       {entry.products_updated:>6}")
    print(f"  Skipped:       {entry.products_skipped:>6}")
    print(f"  Errors:        {len(entry.errors):>6}")

    if entry.errors:
        print("\n--- ERRORS ---")
        for error in entry.errors[:20]:
            sku = (error.get('sku') or 'run')[:30]
            print(f"  {sku:<30} {error.get('message', '')[:80]}")
        if len(entry.errors) > 20:
            print(f"  ... and {len(entry.errors) - 20} more")

    print("\n" + "=" * 70)


def records_to_rows(records: List[CatalogRecord]) -> List[dict]:
    rows = []
    for record in records:
        row = {col: getattr(record, col) for col in CSV_COLUMNS}
        row['images'] = '|'.join(record.images)
        rows.append(row)
    return rows


def export_catalog_csv(store: CatalogStore, filepath: str) -> str:
    """
    Save the whole catalog to a CSV file.
    Returns the filepath of the created file, or "" when the catalog is empty.
    """
    rows = records_to_rows(store.list_all_records())
    if not rows:
        print("No catalog records to export")
        return ""

    df = pd.DataFrame(rows, columns=CSV_COLUMNS)

    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    df.to_csv(filepath, index=False)
    print(f"\nSaved {len(rows)} rows to: {filepath}")
    return filepath


def main(argv: List[str] = None) -> int:
    """Main entry point for the sync runner."""
    parser = argparse.ArgumentParser(
        description='Tropicana Wholesale Catalog Sync'
    )
    parser.add_argument('--mode', choices=sorted(MODES), default='full',
                        help='Sync mode (default: full)')
    parser.add_argument('--max-products', type=int, default=None,
                        help='Maximum products to crawl in full mode (for testing)')
    parser.add_argument('--export-csv', metavar='PATH', default=None,
                        help='Export the catalog to CSV after the sync')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    print("=" * 60)
    print("Tropicana Wholesale Catalog Sync")
    print("=" * 60)

    db_pool.initialize()
    try:
        kwargs = {}
        if args.mode == 'full' and args.max_products is not None:
            kwargs['max_products'] = args.max_products

        try:
            entry = sync_orchestrator.run_sync(MODES[args.mode], **kwargs)
        except SyncAlreadyRunningError as e:
            print(f"\n✗ {e}")
            return 1

        print_report(entry)

        if args.export_csv:
            export_catalog_csv(catalog_store, args.export_csv)

        return 0 if entry.status == SyncStatus.COMPLETED else 1
    finally:
        db_pool.close()


if __name__ == "__main__":
    sys.exit(main())
