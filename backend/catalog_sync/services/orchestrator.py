"""
Sync orchestrator.

Runs full, incremental and stock-check syncs one at a time. Each run gets a
sync_log row that is finalized exactly once: completed with counters and
per-SKU errors, or failed with the error that stopped it. The browser
session is always closed and the run lock always released afterwards.
"""

import logging
import threading
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from ..config import BASE_URL, INCREMENTAL_BATCH_SIZE, PROGRESS_INTERVAL, STALE_AFTER_HOURS
from ..errors import AuthenticationError, RunError, SyncAlreadyRunningError
from ..models import (
    CatalogRecord,
    ReconcileOutcome,
    SyncLogEntry,
    SyncRun,
    SyncSettings,
    SyncType,
    utc_now,
)
from .catalog_store import CatalogStore, catalog_store
from .crawler import crawl_catalog, fetch_product
from .database import STORE_CONNECTION_ERRORS
from .reconciler import reconcile
from .settings_store import SettingsStore, settings_store
from .stock_checker import check_stock
from .supplier_session import BrowserSession, SupplierSession


logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Drives sync runs against the supplier and records them in sync_log."""

    def __init__(self, store: CatalogStore = catalog_store,
                 settings_store: SettingsStore = settings_store,
                 session_factory: Callable[[], BrowserSession] = SupplierSession,
                 base_url: str = BASE_URL,
                 progress_interval: int = PROGRESS_INTERVAL):
        self._store = store
        self._settings_store = settings_store
        self._session_factory = session_factory
        self._base_url = base_url
        self._progress_interval = progress_interval
        self._lock = threading.Lock()
        self._current_run: Optional[SyncRun] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def store(self) -> CatalogStore:
        return self._store

    def is_running(self) -> bool:
        return self._lock.locked()

    def current_progress(self) -> Optional[Dict[str, Any]]:
        """Live counters of the run in flight, or None when idle."""
        run = self._current_run
        if run is None:
            return None
        return {
            'log_id': run.log_id,
            'sync_type': run.sync_type.value,
            'started_at': run.started_at,
            'processed': run.processed,
            'created': run.created,
            'updated': run.updated,
            'skipped': run.skipped,
            'errors': len(run.errors),
            'cancelling': run.cancelled,
        }

    def cancel(self) -> bool:
        """Ask the run in flight to stop. Returns False when nothing is running."""
        run = self._current_run
        if run is None:
            return False
        logger.info("Cancellation requested for sync %s", run.log_id)
        run.cancel_event.set()
        return True

    def run_full_sync(self, max_products: Optional[int] = None) -> SyncLogEntry:
        return self._execute(SyncType.FULL, self._full_sync, max_products=max_products)

    def run_incremental_sync(self) -> SyncLogEntry:
        return self._execute(SyncType.INCREMENTAL, self._incremental_sync)

    def run_stock_check(self) -> SyncLogEntry:
        return self._execute(SyncType.STOCK_CHECK, self._stock_check)

    def run_sync(self, sync_type: SyncType, **kwargs) -> SyncLogEntry:
        """Dispatch by sync type; used by the API and the CLI."""
        runners = {
            SyncType.FULL: self.run_full_sync,
            SyncType.INCREMENTAL: self.run_incremental_sync,
            SyncType.STOCK_CHECK: self.run_stock_check,
        }
        return runners[SyncType(sync_type)](**kwargs)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def _execute(self, sync_type: SyncType,
                 body: Callable[[BrowserSession, SyncSettings, SyncRun], None],
                 max_products: Optional[int] = None) -> SyncLogEntry:
        if not self._lock.acquire(blocking=False):
            raise SyncAlreadyRunningError("A sync is already running")

        session: Optional[BrowserSession] = None
        try:
            entry = self._store.create_sync_log(sync_type)
            run = SyncRun(sync_type=sync_type, log_id=entry.id, started_at=entry.started_at)
            self._current_run = run
            logger.info("Starting %s sync (log %s)", sync_type.value, entry.id)

            try:
                settings = self._settings_store.load_settings()
                if max_products is not None:
                    settings.max_products = max_products

                session = self._session_factory()
                ok, message = session.authenticate()
                if not ok:
                    raise AuthenticationError(message or "Authentication failed")

                body(session, settings, run)
            except Exception as e:
                logger.error("%s sync failed: %s", sync_type.value, e)
                self._store.fail_sync_log(
                    run.log_id, str(e),
                    processed=run.processed, updated=run.updated,
                    created=run.created, skipped=run.skipped,
                )
            else:
                self._store.complete_sync_log(
                    run.log_id,
                    processed=run.processed, updated=run.updated,
                    created=run.created, skipped=run.skipped,
                    errors=run.errors,
                )
                self._settings_store.mark_synced(sync_type)
                logger.info(
                    "%s sync completed: %d processed, %d created, %d updated, "
                    "%d skipped, %d errors",
                    sync_type.value, run.processed, run.created, run.updated,
                    run.skipped, len(run.errors),
                )

            return self._store.get_sync_log(run.log_id)
        finally:
            if session is not None:
                session.close()
            self._current_run = None
            self._lock.release()

    def _process_item(self, run: SyncRun, sku: str,
                      work: Callable[..., Optional[ReconcileOutcome]], *args) -> None:
        """
        Run one unit of work, containing item-level failures.

        A None outcome means the item was checked and nothing changed.
        """
        run.check_cancelled()
        try:
            outcome = work(*args)
        except RunError:
            raise
        except STORE_CONNECTION_ERRORS:
            raise
        except Exception as e:
            logger.warning("Error processing %s: %s", sku, e)
            run.add_error(sku, str(e))
        else:
            if outcome is not None:
                run.record(outcome)

        run.processed += 1
        if run.processed % self._progress_interval == 0:
            self._store.update_sync_log(
                run.log_id, run.processed, run.updated, run.created, run.skipped, run.errors
            )
            logger.info("Progress: %d processed", run.processed)

    # -------------------------------------------------------------------------
    # Sync bodies
    # -------------------------------------------------------------------------

    def _full_sync(self, session: BrowserSession, settings: SyncSettings, run: SyncRun) -> None:
        candidates = crawl_catalog(session, settings, run, base_url=self._base_url)
        for candidate in candidates:
            self._process_item(run, candidate.sku, reconcile, self._store, candidate, settings)

    def _incremental_sync(self, session: BrowserSession, settings: SyncSettings,
                          run: SyncRun) -> None:
        cutoff = utc_now() - timedelta(hours=STALE_AFTER_HOURS)
        records = self._store.list_stale_records(cutoff, INCREMENTAL_BATCH_SIZE)
        logger.info("Refreshing %d stale records", len(records))
        for record in records:
            self._process_item(run, record.sku, self._refresh_record, session, settings, record)

    def _refresh_record(self, session: BrowserSession, settings: SyncSettings,
                        record: CatalogRecord) -> ReconcileOutcome:
        if record.excluded:
            return ReconcileOutcome.SKIPPED
        candidate = fetch_product(session, record.sku, base_url=self._base_url,
                                  product_url=record.product_url)
        return reconcile(self._store, candidate, settings)

    def _stock_check(self, session: BrowserSession, settings: SyncSettings, run: SyncRun) -> None:
        records = self._store.list_all_records()
        logger.info("Checking stock for %d records", len(records))
        for record in records:
            self._process_item(run, record.sku, self._check_record_stock, session, settings, record)

    def _check_record_stock(self, session: BrowserSession, settings: SyncSettings,
                            record: CatalogRecord) -> Optional[ReconcileOutcome]:
        if record.excluded:
            return ReconcileOutcome.SKIPPED

        info = check_stock(session, record.sku, base_url=self._base_url,
                           product_url=record.product_url)
        if info.quantity is not None:
            quantity = info.quantity
        elif not info.in_stock:
            quantity = 0
        elif record.in_stock:
            quantity = record.stock_quantity
        else:
            # Back in stock, count unknown
            quantity = None

        if info.in_stock == record.in_stock and quantity == record.stock_quantity:
            return None
        if not settings.update_stock:
            return ReconcileOutcome.SKIPPED

        self._store.update_record(record.sku, {'in_stock': info.in_stock, 'stock_quantity': quantity})
        return ReconcileOutcome.UPDATED


# Global orchestrator instance
sync_orchestrator = SyncOrchestrator()
