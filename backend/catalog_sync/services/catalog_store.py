"""
Record store for the catalog_products and sync_log tables.

Each method runs as its own short unit of work on the shared pool. Money
columns are rounded to two places here, at the persistence boundary.
"""

import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..models import (
    CatalogRecord,
    RecordFilter,
    SyncLogEntry,
    SyncStatus,
    SyncType,
    parse_timestamp,
    to_timestamp,
    utc_now,
)
from .database import DatabasePool, db_pool
from .pricing import reprice as compute_reprice, to_money


logger = logging.getLogger(__name__)


MONEY_COLUMNS = {'wholesale_price', 'retail_price', 'margin_percent'}
JSON_COLUMNS = {'images', 'flavours', 'strengths', 'ingredients', 'allergens'}
TIMESTAMP_COLUMNS = {'last_synced_at', 'created_at', 'updated_at'}

RECORD_COLUMNS = [
    'sku', 'name', 'brand', 'category',
    'wholesale_price', 'retail_price', 'margin_percent',
    'description', 'images', 'in_stock', 'stock_quantity',
    'flavours', 'strengths', 'ingredients', 'allergens',
    'product_url', 'active', 'excluded',
    'last_synced_at', 'created_at', 'updated_at',
]

# Columns a sync or admin action may change on an existing record
UPDATABLE_COLUMNS = set(RECORD_COLUMNS) - {'sku', 'created_at', 'updated_at'}


def _to_param(column: str, value: Any) -> Any:
    """Convert a Python value to something both database drivers accept."""
    if value is None:
        return None
    if column in MONEY_COLUMNS:
        return str(to_money(value))
    if column in JSON_COLUMNS:
        return json.dumps(list(value))
    if column in TIMESTAMP_COLUMNS:
        return to_timestamp(value)
    if isinstance(value, Decimal):
        return str(value)
    return value


class CatalogStore:
    """
    Catalog and sync log persistence.

    Sync log finalization is guarded by status = 'running' so a run that
    has already completed or failed is never rewritten.
    """

    def __init__(self, pool: DatabasePool = db_pool):
        self._pool = pool

    # -------------------------------------------------------------------------
    # Catalog records
    # -------------------------------------------------------------------------

    def find_record_by_sku(self, sku: str) -> Optional[CatalogRecord]:
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM catalog_products WHERE sku = {ph}', (sku,))
            row = cursor.fetchone()
        return CatalogRecord.from_row(dict(row)) if row else None

    def insert_record(self, record: CatalogRecord) -> CatalogRecord:
        """Insert a new catalog record; id is the SKU."""
        now = utc_now()
        record.created_at = record.created_at or now
        record.updated_at = now

        ph = self._pool.placeholder
        columns = ['id'] + RECORD_COLUMNS
        params = [record.sku] + [_to_param(col, getattr(record, col)) for col in RECORD_COLUMNS]
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'INSERT INTO catalog_products ({", ".join(columns)}) '
                f'VALUES ({", ".join([ph] * len(columns))})',
                params,
            )
        logger.debug("Inserted catalog record %s", record.sku)
        return record

    def update_record(self, sku: str, fields: Dict[str, Any]) -> bool:
        """
        Update selected columns of a record.

        Returns:
            True if a record was updated, False if the SKU does not exist.
        """
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")

        ph = self._pool.placeholder
        columns = list(fields) + ['updated_at']
        params = [_to_param(col, fields[col]) for col in fields]
        params.append(to_timestamp(utc_now()))
        assignments = ', '.join(f'{col} = {ph}' for col in columns)
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'UPDATE catalog_products SET {assignments} WHERE sku = {ph}',
                params + [sku],
            )
            return cursor.rowcount > 0

    def set_active(self, sku: str, active: bool) -> bool:
        return self.update_record(sku, {'active': active})

    def set_excluded(self, sku: str, excluded: bool) -> bool:
        return self.update_record(sku, {'excluded': excluded})

    def reprice(self, sku: str,
                margin_percent: Optional[Decimal] = None,
                retail_price: Optional[Decimal] = None) -> Optional[CatalogRecord]:
        """
        Apply a manual price override from either a margin or a retail price.

        Returns:
            The updated record, or None if the SKU does not exist.
        """
        record = self.find_record_by_sku(sku)
        if record is None:
            return None
        new_retail, new_margin = compute_reprice(
            record.wholesale_price, margin=margin_percent, retail=retail_price
        )
        self.update_record(sku, {'retail_price': new_retail, 'margin_percent': new_margin})
        logger.info("Repriced %s: retail=%s margin=%s%%", sku, new_retail, new_margin)
        return self.find_record_by_sku(sku)

    def _filter_clause(self, record_filter: Optional[RecordFilter]) -> Tuple[str, list]:
        if record_filter is None:
            return '', []
        ph = self._pool.placeholder
        conditions = []
        params: list = []
        if record_filter.search:
            term = f"%{record_filter.search.lower()}%"
            conditions.append(
                f'(LOWER(name) LIKE {ph} OR LOWER(sku) LIKE {ph} OR LOWER(brand) LIKE {ph})'
            )
            params.extend([term, term, term])
        for column in ('in_stock', 'active', 'excluded'):
            value = getattr(record_filter, column)
            if value is not None:
                conditions.append(f'{column} = {ph}')
                params.append(value)
        if not conditions:
            return '', []
        return 'WHERE ' + ' AND '.join(conditions), params

    def list_records(self, record_filter: Optional[RecordFilter] = None,
                     page: int = 1, page_size: int = 50) -> List[CatalogRecord]:
        """List records for the admin catalog view, newest sync first."""
        ph = self._pool.placeholder
        where, params = self._filter_clause(record_filter)
        offset = (max(page, 1) - 1) * page_size
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'SELECT * FROM catalog_products {where} '
                f'ORDER BY last_synced_at DESC, sku ASC LIMIT {ph} OFFSET {ph}',
                params + [page_size, offset],
            )
            rows = cursor.fetchall()
        return [CatalogRecord.from_row(dict(r)) for r in rows]

    def count_records(self, record_filter: Optional[RecordFilter] = None) -> int:
        where, params = self._filter_clause(record_filter)
        with self._pool.get_cursor() as cursor:
            cursor.execute(f'SELECT COUNT(*) AS total FROM catalog_products {where}', params)
            row = cursor.fetchone()
        return int(dict(row)['total'])

    def list_stale_records(self, older_than: datetime, limit: int) -> List[CatalogRecord]:
        """Records last synced before older_than, oldest first."""
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'SELECT * FROM catalog_products '
                f'WHERE last_synced_at IS NULL OR last_synced_at < {ph} '
                f"ORDER BY COALESCE(last_synced_at, '') ASC, sku ASC LIMIT {ph}",
                (to_timestamp(older_than), limit),
            )
            rows = cursor.fetchall()
        return [CatalogRecord.from_row(dict(r)) for r in rows]

    def list_all_records(self) -> List[CatalogRecord]:
        with self._pool.get_cursor() as cursor:
            cursor.execute('SELECT * FROM catalog_products ORDER BY sku ASC')
            rows = cursor.fetchall()
        return [CatalogRecord.from_row(dict(r)) for r in rows]

    # -------------------------------------------------------------------------
    # Sync log
    # -------------------------------------------------------------------------

    def create_sync_log(self, sync_type: SyncType,
                        started_at: Optional[datetime] = None) -> SyncLogEntry:
        """Create a log row in status 'running'."""
        entry = SyncLogEntry(
            id=uuid.uuid4().hex,
            sync_type=SyncType(sync_type),
            status=SyncStatus.RUNNING,
            started_at=started_at or utc_now(),
        )
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'INSERT INTO sync_log (id, sync_type, status, errors, started_at) '
                f'VALUES ({ph}, {ph}, {ph}, {ph}, {ph})',
                (entry.id, entry.sync_type.value, entry.status.value, '[]',
                 to_timestamp(entry.started_at)),
            )
        return entry

    def update_sync_log(self, log_id: str, processed: int, updated: int,
                        created: int, skipped: int,
                        errors: List[Dict[str, Optional[str]]]) -> bool:
        """Persist a progress snapshot for a running log."""
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'UPDATE sync_log SET products_processed = {ph}, products_updated = {ph}, '
                f'products_created = {ph}, products_skipped = {ph}, errors = {ph} '
                f"WHERE id = {ph} AND status = 'running'",
                (processed, updated, created, skipped, json.dumps(errors), log_id),
            )
            return cursor.rowcount > 0

    def _finalize(self, log_id: str, status: SyncStatus, processed: int,
                  updated: int, created: int, skipped: int,
                  errors: List[Dict[str, Optional[str]]],
                  completed_at: Optional[datetime]) -> bool:
        ph = self._pool.placeholder
        completed_at = completed_at or utc_now()
        with self._pool.get_cursor() as cursor:
            cursor.execute(f'SELECT started_at FROM sync_log WHERE id = {ph}', (log_id,))
            row = cursor.fetchone()
            if row is None:
                return False
            started_at = parse_timestamp(dict(row)['started_at'])
            duration = max(int((completed_at - started_at).total_seconds()), 0)
            cursor.execute(
                f'UPDATE sync_log SET status = {ph}, products_processed = {ph}, '
                f'products_updated = {ph}, products_created = {ph}, products_skipped = {ph}, '
                f'errors = {ph}, completed_at = {ph}, duration_seconds = {ph} '
                f"WHERE id = {ph} AND status = 'running'",
                (status.value, processed, updated, created, skipped, json.dumps(errors),
                 to_timestamp(completed_at), duration, log_id),
            )
            finalized = cursor.rowcount > 0
        if not finalized:
            logger.warning("Sync log %s was already finalized, not rewriting", log_id)
        return finalized

    def complete_sync_log(self, log_id: str, processed: int, updated: int,
                          created: int, skipped: int,
                          errors: List[Dict[str, Optional[str]]],
                          completed_at: Optional[datetime] = None) -> bool:
        return self._finalize(log_id, SyncStatus.COMPLETED, processed, updated,
                              created, skipped, errors, completed_at)

    def fail_sync_log(self, log_id: str, error: str, processed: int = 0,
                      updated: int = 0, created: int = 0, skipped: int = 0,
                      completed_at: Optional[datetime] = None) -> bool:
        """Mark a run failed with a single run-level error entry."""
        return self._finalize(log_id, SyncStatus.FAILED, processed, updated, created,
                              skipped, [{'sku': None, 'message': error}], completed_at)

    def get_sync_log(self, log_id: str) -> Optional[SyncLogEntry]:
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM sync_log WHERE id = {ph}', (log_id,))
            row = cursor.fetchone()
        return SyncLogEntry.from_row(dict(row)) if row else None

    def recent_sync_logs(self, limit: int = 10) -> List[SyncLogEntry]:
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'SELECT * FROM sync_log ORDER BY started_at DESC LIMIT {ph}', (limit,)
            )
            rows = cursor.fetchall()
        return [SyncLogEntry.from_row(dict(r)) for r in rows]


# Global catalog store instance
catalog_store = CatalogStore()
