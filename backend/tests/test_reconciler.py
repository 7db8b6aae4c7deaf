"""
Tests for reconciling scraped candidates against the catalog.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from catalog_sync.errors import ReconciliationError
from catalog_sync.models import ReconcileOutcome, SyncSettings
from catalog_sync.services.reconciler import reconcile
from conftest import make_candidate, make_record


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestCreate:
    """Test first sight of a SKU."""

    def test_new_sku_created_active(self, store):
        """New SKU ABC123 from Ghost at £10 is created active at £13.00."""
        outcome = reconcile(store, make_candidate('ABC123', brand='Ghost'), SyncSettings(), now=NOW)

        assert outcome == ReconcileOutcome.CREATED
        record = store.find_record_by_sku('ABC123')
        assert record.active is True
        assert record.excluded is False
        assert record.retail_price == Decimal('13.00')
        assert record.margin_percent == Decimal('30.00')
        assert record.wholesale_price == Decimal('10.00')
        assert record.last_synced_at == NOW
        assert record.product_url.endswith('/products/ABC123')

    def test_min_margin_above_target_skips(self, store):
        """Minimum margin 35 rejects a candidate priced at 30%."""
        settings = SyncSettings(min_margin_percent=Decimal('35'))

        outcome = reconcile(store, make_candidate('ABC123'), settings, now=NOW)

        assert outcome == ReconcileOutcome.SKIPPED
        assert store.find_record_by_sku('ABC123') is None

    def test_eligibility_uses_unrounded_retail(self, store):
        """£1.11 at 30% is £1.443; rounding to £1.44 must not push it under the minimum."""
        candidate = make_candidate('R1', wholesale_price=Decimal('1.11'))

        outcome = reconcile(store, candidate, SyncSettings(), now=NOW)

        assert outcome == ReconcileOutcome.CREATED
        record = store.find_record_by_sku('R1')
        assert record.retail_price == Decimal('1.44')
        assert record.margin_percent == Decimal('29.73')

    def test_default_settings_accept_vape_vendors(self, store):
        candidate = make_candidate('EB600', brand='Elf Bar', category='Disposable Vapes')

        assert reconcile(store, candidate, SyncSettings()) == ReconcileOutcome.CREATED

    def test_unlisted_brand_skips(self, store):
        outcome = reconcile(store, make_candidate('X1', brand='Nobody Makes This'), SyncSettings())

        assert outcome == ReconcileOutcome.SKIPPED
        assert store.count_records() == 0

    def test_target_margin_drives_retail(self, store):
        settings = SyncSettings(target_margin_percent=Decimal('50'))

        reconcile(store, make_candidate('ABC123', wholesale_price=Decimal('8.00')), settings)

        record = store.find_record_by_sku('ABC123')
        assert record.retail_price == Decimal('12.00')
        assert record.margin_percent == Decimal('50.00')

    def test_stock_defaults_to_in_stock(self, store):
        reconcile(store, make_candidate('ABC123'), SyncSettings())

        assert store.find_record_by_sku('ABC123').in_stock is True


class TestUpdate:
    """Test updates to an existing record under the update_* toggles."""

    def test_excluded_record_never_touched(self, store):
        """Exclusion wins over every update toggle."""
        store.insert_record(make_record('ABC123', excluded=True))

        outcome = reconcile(store, make_candidate('ABC123', wholesale_price=Decimal('20'), name='New'),
                            SyncSettings(), now=NOW)

        assert outcome == ReconcileOutcome.SKIPPED
        record = store.find_record_by_sku('ABC123')
        assert record.wholesale_price == Decimal('10.00')
        assert record.name == 'Existing Product'
        assert record.last_synced_at != NOW

    def test_updates_prices_when_enabled(self, store):
        store.insert_record(make_record('ABC123'))

        outcome = reconcile(store, make_candidate('ABC123', wholesale_price=Decimal('20')),
                            SyncSettings(), now=NOW)

        assert outcome == ReconcileOutcome.UPDATED
        record = store.find_record_by_sku('ABC123')
        assert record.wholesale_price == Decimal('20.00')
        assert record.retail_price == Decimal('26.00')
        assert record.margin_percent == Decimal('30.00')

    def test_prices_untouched_when_disabled(self, store):
        store.insert_record(make_record('ABC123'))
        settings = SyncSettings(update_prices=False)

        outcome = reconcile(store, make_candidate('ABC123', wholesale_price=Decimal('20')),
                            settings, now=NOW)

        assert outcome == ReconcileOutcome.UPDATED
        record = store.find_record_by_sku('ABC123')
        assert record.wholesale_price == Decimal('10.00')
        assert record.retail_price == Decimal('13.00')
        assert record.last_synced_at == NOW

    def test_descriptions_untouched_when_disabled(self, store):
        store.insert_record(make_record('ABC123'))
        settings = SyncSettings(update_descriptions=False)

        reconcile(store, make_candidate('ABC123', name='Renamed', description='New copy'), settings)

        record = store.find_record_by_sku('ABC123')
        assert record.name == 'Existing Product'
        assert record.description is None

    def test_descriptions_updated_when_enabled(self, store):
        store.insert_record(make_record('ABC123'))

        reconcile(store, make_candidate('ABC123', name='Renamed', description='New copy'),
                  SyncSettings())

        record = store.find_record_by_sku('ABC123')
        assert record.name == 'Renamed'
        assert record.description == 'New copy'
        assert record.images == ['https://supplier.test/images/ABC123.jpg']

    def test_blank_fields_keep_existing_values(self, store):
        """An incremental re-fetch without a category keeps the stored one."""
        store.insert_record(make_record('ABC123', category='E-Liquids'))

        reconcile(store, make_candidate('ABC123', category='', brand=''), SyncSettings())

        record = store.find_record_by_sku('ABC123')
        assert record.category == 'E-Liquids'
        assert record.brand == 'Ghost'

    def test_stock_untouched_when_disabled(self, store):
        store.insert_record(make_record('ABC123', in_stock=True, stock_quantity=5))
        settings = SyncSettings(update_stock=False)

        reconcile(store, make_candidate('ABC123', in_stock=False, stock_quantity=0), settings)

        record = store.find_record_by_sku('ABC123')
        assert record.in_stock is True
        assert record.stock_quantity == 5

    def test_stock_updated_when_enabled(self, store):
        store.insert_record(make_record('ABC123', in_stock=True, stock_quantity=5))

        reconcile(store, make_candidate('ABC123', in_stock=False, stock_quantity=0), SyncSettings())

        record = store.find_record_by_sku('ABC123')
        assert record.in_stock is False
        assert record.stock_quantity == 0

    def test_unknown_stock_leaves_record_alone(self, store):
        store.insert_record(make_record('ABC123', in_stock=False, stock_quantity=0))

        reconcile(store, make_candidate('ABC123'), SyncSettings())

        assert store.find_record_by_sku('ABC123').in_stock is False

    def test_existing_record_skips_eligibility(self, store):
        """Eligibility gates creation only."""
        store.insert_record(make_record('ABC123', brand='Old Brand'))
        settings = SyncSettings(min_margin_percent=Decimal('90'))

        outcome = reconcile(store, make_candidate('ABC123', brand='Old Brand'), settings)

        assert outcome == ReconcileOutcome.UPDATED


class TestStoreFailures:
    """Test that store errors surface as ReconciliationError."""

    def test_write_failure_wrapped(self, store, monkeypatch):
        def broken_insert(record):
            raise RuntimeError("disk full")
        monkeypatch.setattr(store, 'insert_record', broken_insert)

        with pytest.raises(ReconciliationError) as excinfo:
            reconcile(store, make_candidate('ABC123'), SyncSettings())

        assert excinfo.value.sku == 'ABC123'
        assert 'disk full' in str(excinfo.value)

    def test_last_synced_refreshed(self, store):
        earlier = NOW - timedelta(days=3)
        store.insert_record(make_record('ABC123', last_synced_at=earlier))

        reconcile(store, make_candidate('ABC123'), SyncSettings(), now=NOW)

        assert store.find_record_by_sku('ABC123').last_synced_at == NOW
