"""
Reconciliation of scraped candidates against the catalog.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..errors import ReconciliationError, SyncError
from ..models import CandidateProduct, CatalogRecord, ReconcileOutcome, SyncSettings, utc_now
from . import pricing
from .catalog_store import CatalogStore
from .database import STORE_CONNECTION_ERRORS


logger = logging.getLogger(__name__)


def _price_fields(wholesale: Decimal, retail: Decimal) -> Dict[str, Any]:
    # Margin recomputed from the rounded retail price that will be stored
    stored_retail = pricing.to_money(retail)
    return {
        'wholesale_price': wholesale,
        'retail_price': stored_retail,
        'margin_percent': pricing.margin_percent(wholesale, stored_retail),
    }


def _create(store: CatalogStore, candidate: CandidateProduct, settings: SyncSettings,
            now: datetime) -> ReconcileOutcome:
    retail = pricing.retail_price(candidate.wholesale_price, settings.target_margin_percent)
    if not pricing.is_eligible(candidate, retail, settings):
        logger.debug("Skipping ineligible product %s", candidate.sku)
        return ReconcileOutcome.SKIPPED
    prices = _price_fields(candidate.wholesale_price, retail)

    store.insert_record(CatalogRecord(
        sku=candidate.sku,
        name=candidate.name,
        brand=candidate.brand,
        category=candidate.category,
        description=candidate.description,
        images=list(candidate.images),
        in_stock=True if candidate.in_stock is None else candidate.in_stock,
        stock_quantity=candidate.stock_quantity,
        product_url=candidate.url,
        active=True,
        excluded=False,
        last_synced_at=now,
        **prices,
    ))
    return ReconcileOutcome.CREATED


def _update(store: CatalogStore, record: CatalogRecord, candidate: CandidateProduct,
            settings: SyncSettings, now: datetime) -> ReconcileOutcome:
    fields: Dict[str, Any] = {'last_synced_at': now}

    if settings.update_prices:
        retail = pricing.retail_price(candidate.wholesale_price, settings.target_margin_percent)
        fields.update(_price_fields(candidate.wholesale_price, retail))

    if settings.update_stock and candidate.in_stock is not None:
        fields['in_stock'] = candidate.in_stock
        fields['stock_quantity'] = candidate.stock_quantity

    if settings.update_descriptions:
        for column in ('name', 'description', 'brand', 'category'):
            value = getattr(candidate, column)
            if value:
                fields[column] = value
        if candidate.images:
            fields['images'] = list(candidate.images)

    if candidate.url:
        fields['product_url'] = candidate.url

    store.update_record(record.sku, fields)
    return ReconcileOutcome.UPDATED


def reconcile(store: CatalogStore, candidate: CandidateProduct, settings: SyncSettings,
              now: Optional[datetime] = None) -> ReconcileOutcome:
    """
    Create, update or skip the catalog record for one candidate.

    New SKUs are priced at the target margin and inserted if eligible.
    Excluded records are never touched. Otherwise each group of fields is
    written only when its update_* toggle is on; last_synced_at always is.

    Raises:
        ReconciliationError: If the store rejects a read or write.
    """
    now = now or utc_now()
    try:
        record = store.find_record_by_sku(candidate.sku)
        if record is None:
            return _create(store, candidate, settings, now)
        if record.excluded:
            return ReconcileOutcome.SKIPPED
        return _update(store, record, candidate, settings, now)
    except SyncError:
        raise
    except STORE_CONNECTION_ERRORS:
        raise
    except Exception as e:
        raise ReconciliationError(candidate.sku, f"Failed to reconcile {candidate.sku}: {e}") from e
