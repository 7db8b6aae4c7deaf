"""
Tests for the catalog crawler: price parsing, dedup, caps, pagination and
per-collection failure handling.
"""
import pytest
from decimal import Decimal

from catalog_sync.config import MAX_PAGES_PER_COLLECTION, Collection
from catalog_sync.errors import ExtractionError, NavigationError, RunCancelledError
from catalog_sync.models import SyncRun, SyncSettings
from catalog_sync.services.crawler import (
    crawl_catalog,
    fetch_product,
    normalize_url,
    parse_price,
    sku_from_url,
)
from catalog_sync.services import supplier_session
from conftest import BASE, FakeBrowserSession, listing


KITS = Collection("Vape Kits", "/collections/vape-kits")
LIQUIDS = Collection("E-Liquids", "/collections/e-liquids")
PODS = Collection("Pods & Coils", "/collections/pods-coils")


def crawl(session, collections, max_products=5000, run=None):
    settings = SyncSettings(max_products=max_products)
    return crawl_catalog(session, settings, run=run, collections=collections, base_url=BASE)


class TestParsePrice:
    """Test displayed price parsing."""

    def test_strips_currency_and_separators(self):
        assert parse_price('£1,234.50') == Decimal('1234.50')

    def test_takes_first_number(self):
        assert parse_price('From £9.99 ex VAT (£11.99 inc)') == Decimal('9.99')

    def test_integer_price(self):
        assert parse_price('£12') == Decimal('12')

    @pytest.mark.parametrize('text', [None, '', 'Sold out', '£0.00'])
    def test_missing_or_zero_is_none(self, text):
        assert parse_price(text) is None


class TestUrls:
    """Test detail URL normalization and SKU derivation."""

    def test_sku_is_trailing_segment(self):
        assert sku_from_url(f'{BASE}/products/ghost-pump-cherry/') == 'ghost-pump-cherry'

    def test_normalize_strips_query_and_fragment(self):
        url = normalize_url('/products/abc?variant=123#reviews', BASE)
        assert url == f'{BASE}/products/abc'

    def test_normalize_keeps_absolute_urls(self):
        assert normalize_url(f'{BASE}/products/abc/', BASE) == f'{BASE}/products/abc'


class TestCrawlCatalog:
    """Test crawling across collections."""

    def test_builds_candidates_from_listings(self):
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'listings': [
                listing('pod-kit', name='Pod Kit', price='£19.99', brand='Ghost', image='/img/a.jpg'),
            ]},
        })

        candidates = crawl(session, [KITS])

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.sku == 'pod-kit'
        assert candidate.name == 'Pod Kit'
        assert candidate.wholesale_price == Decimal('19.99')
        assert candidate.category == 'Vape Kits'
        assert candidate.brand == 'Ghost'
        assert candidate.url == f'{BASE}/products/pod-kit'
        assert candidate.images == [f'{BASE}/img/a.jpg']

    def test_explicit_sku_wins_over_url(self):
        item = listing('pod-kit')
        item['sku'] = 'TW-1001'
        session = FakeBrowserSession({f'{BASE}{KITS.path}': {'listings': [item]}})

        candidates = crawl(session, [KITS])

        assert candidates[0].sku == 'TW-1001'

    def test_dedupes_across_collections(self):
        """A product listed in two collections is collected once."""
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'listings': [listing('shared'), listing('kit-only')]},
            f'{BASE}{LIQUIDS.path}': {'listings': [listing('shared'), listing('liquid-only')]},
        })
        run = SyncRun()

        candidates = crawl(session, [KITS, LIQUIDS], run=run)

        assert [c.sku for c in candidates] == ['shared', 'kit-only', 'liquid-only']
        assert candidates[0].category == 'Vape Kits'
        assert f'{BASE}/products/shared' in run.seen_urls

    def test_dedupes_query_string_variants(self):
        shared = listing('shared')
        variant = listing('shared')
        variant['link'] = '/products/shared?variant=42'
        session = FakeBrowserSession({f'{BASE}{KITS.path}': {'listings': [shared, variant]}})

        assert len(crawl(session, [KITS])) == 1

    def test_cap_stops_across_collections(self):
        """Crawl stops at max_products and skips remaining collections."""
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'listings': [listing('a'), listing('b')]},
            f'{BASE}{LIQUIDS.path}': {'listings': [listing('c'), listing('d')]},
            f'{BASE}{PODS.path}': {'listings': [listing('e')]},
        })

        candidates = crawl(session, [KITS, LIQUIDS, PODS], max_products=3)

        assert [c.sku for c in candidates] == ['a', 'b', 'c']
        assert f'{BASE}{PODS.path}' not in session.visited

    def test_discards_incomplete_listings(self):
        """Cards missing name, price or link are dropped silently."""
        no_name = listing('no-name', name='')
        no_price = listing('no-price', price=None)
        no_link = listing('no-link')
        no_link['link'] = None
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'listings': [no_name, no_price, no_link, listing('good')]},
        })

        candidates = crawl(session, [KITS])

        assert [c.sku for c in candidates] == ['good']

    def test_failed_collection_is_skipped(self):
        """A collection that fails to load doesn't stop the crawl."""
        session = FakeBrowserSession({
            f'{BASE}{LIQUIDS.path}': {'listings': [listing('liquid')]},
        })

        candidates = crawl(session, [KITS, LIQUIDS])

        assert [c.sku for c in candidates] == ['liquid']
        assert f'{BASE}{KITS.path}' in session.visited

    def test_rate_limited_collection_retried(self, monkeypatch):
        """A transient 429 on a collection page is retried, not skipped."""
        monkeypatch.setattr(supplier_session.time, 'sleep', lambda seconds: None)
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {
                'failures': [NavigationError('HTTP 429 loading', status=429)],
                'listings': [listing('pod-kit')],
            },
        })

        assert [c.sku for c in crawl(session, [KITS])] == ['pod-kit']
        assert session.visited == [f'{BASE}{KITS.path}'] * 2

    def test_extraction_error_skips_collection(self):
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'error': ExtractionError('script failed')},
            f'{BASE}{LIQUIDS.path}': {'listings': [listing('liquid')]},
        })

        assert [c.sku for c in crawl(session, [KITS, LIQUIDS])] == ['liquid']

    def test_follows_pagination(self):
        page1 = f'{BASE}{KITS.path}'
        page2 = f'{BASE}{KITS.path}?page=2'
        session = FakeBrowserSession({
            page1: {'listings': [listing('a')], 'next': page2},
            page2: {'listings': [listing('b')]},
        })

        candidates = crawl(session, [KITS])

        assert [c.sku for c in candidates] == ['a', 'b']
        assert session.visited == [page1, page2]

    def test_pagination_ceiling(self):
        """A next link that never ends stops at the page ceiling."""
        page = f'{BASE}{KITS.path}'
        session = FakeBrowserSession({page: {'listings': [listing('a')], 'next': page}})

        candidates = crawl(session, [KITS])

        assert len(candidates) == 1
        assert len(session.visited) == MAX_PAGES_PER_COLLECTION

    def test_records_discovered_count(self):
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'listings': [listing('a'), listing('b')]},
        })
        run = SyncRun()

        crawl(session, [KITS], run=run)

        assert run.discovered == 2

    def test_cancellation_propagates(self):
        session = FakeBrowserSession({
            f'{BASE}{KITS.path}': {'listings': [listing('a')]},
        })
        run = SyncRun()
        run.cancel_event.set()

        with pytest.raises(RunCancelledError):
            crawl(session, [KITS], run=run)


class TestFetchProduct:
    """Test single product re-fetch for incremental sync."""

    def test_fetches_by_sku(self):
        session = FakeBrowserSession({
            f'{BASE}/products/pod-kit': {'listings': [{
                'name': 'Pod Kit v2',
                'price': '£21.50',
                'image': '/img/pod.jpg',
                'description': 'Refillable pod kit',
                'brand': 'Ghost',
            }]},
        })

        candidate = fetch_product(session, 'pod-kit', base_url=BASE)

        assert candidate.sku == 'pod-kit'
        assert candidate.name == 'Pod Kit v2'
        assert candidate.wholesale_price == Decimal('21.50')
        assert candidate.description == 'Refillable pod kit'
        assert candidate.images == [f'{BASE}/img/pod.jpg']

    def test_uses_stored_product_url(self):
        url = f'{BASE}/products/renamed-kit'
        session = FakeBrowserSession({url: {'listings': [{'name': 'Kit', 'price': '£5'}]}})

        candidate = fetch_product(session, 'pod-kit', base_url=BASE, product_url=url)

        assert session.visited == [url]
        assert candidate.sku == 'pod-kit'

    def test_empty_page_raises(self):
        session = FakeBrowserSession({f'{BASE}/products/gone': {'listings': []}})

        with pytest.raises(ExtractionError):
            fetch_product(session, 'gone', base_url=BASE)
