"""
Pytest fixtures and test infrastructure for the catalog sync tests.
"""
import pytest
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from catalog_sync.errors import NavigationError
from catalog_sync.models import CandidateProduct, CatalogRecord, SyncSettings
from catalog_sync.services.catalog_store import CatalogStore
from catalog_sync.services.database import DatabasePool
from catalog_sync.services.settings_store import SettingsStore
from catalog_sync.services.supplier_session import BrowserSession


BASE = "https://supplier.test"


@pytest.fixture
def db():
    """In-memory SQLite pool with the sync schema."""
    pool = DatabasePool(':memory:')
    pool.initialize()
    yield pool
    pool.close()


@pytest.fixture
def store(db):
    return CatalogStore(db)


@pytest.fixture
def settings_store(db):
    return SettingsStore(db)


@pytest.fixture
def settings():
    return SyncSettings()


class FakeBrowserSession(BrowserSession):
    """
    In-memory BrowserSession serving canned pages keyed by URL.

    Each page is a dict with optional keys:
        listings: list of extracted card dicts
        next: URL the next-page link leads to
        html: page HTML for page_html()
        error: exception raised from extract()
        failures: exceptions raised by successive navigations before the page loads
    A URL missing from pages fails to navigate with a 404.
    """

    request_delay = 0

    def __init__(self, pages=None, auth_result=(True, "")):
        self.pages = pages or {}
        self.auth_result = auth_result
        self.visited = []
        self.close_calls = 0
        self.authenticate_calls = 0
        self.on_extract = None
        self._url = None

    def authenticate(self):
        self.authenticate_calls += 1
        return self.auth_result

    @property
    def current_url(self):
        return self._url

    def navigate(self, url):
        self.visited.append(url)
        if url not in self.pages:
            raise NavigationError(f"HTTP 404 loading {url}", status=404)
        failures = self.pages[url].get('failures')
        if failures:
            raise failures.pop(0)
        self._url = url

    def extract(self, query):
        if self.on_extract is not None:
            self.on_extract()
        page = self.pages[self._url]
        if page.get('error') is not None:
            raise page['error']
        return [dict(item) for item in page.get('listings', [])]

    def find_first(self, selectors):
        return selectors[0] if self.pages[self._url].get('next') else None

    def click(self, selector):
        self.navigate(self.pages[self._url]['next'])

    def wait_for_navigation(self):
        pass

    def page_html(self):
        return self.pages[self._url].get('html', '')

    def close(self):
        self.close_calls += 1


def listing(slug, name=None, price='£10.00', brand='', image=None):
    """A listing card as extracted from a collection page."""
    return {
        'name': name if name is not None else slug.replace('-', ' ').title(),
        'price': price,
        'link': f'/products/{slug}',
        'image': image,
        'sku': None,
        'brand': brand,
    }


def make_candidate(sku='ABC123', **overrides):
    fields = dict(
        sku=sku,
        name='Test Product',
        wholesale_price=Decimal('10.00'),
        url=f'{BASE}/products/{sku}',
        images=[f'{BASE}/images/{sku}.jpg'],
        category='Vape Kits',
        brand='Ghost',
    )
    fields.update(overrides)
    return CandidateProduct(**fields)


def make_record(sku='ABC123', **overrides):
    now = datetime.now(timezone.utc)
    fields = dict(
        sku=sku,
        name='Existing Product',
        brand='Ghost',
        category='Vape Kits',
        wholesale_price=Decimal('10.00'),
        retail_price=Decimal('13.00'),
        margin_percent=Decimal('30.00'),
        images=[],
        in_stock=True,
        stock_quantity=5,
        product_url=f'{BASE}/products/{sku}',
        last_synced_at=now - timedelta(hours=1),
    )
    fields.update(overrides)
    return CatalogRecord(**fields)
