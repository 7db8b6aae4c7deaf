"""
Catalog crawler for the supplier's listing collections.

Walks each collection page by page, turning listing cards into
CandidateProducts. Detail URLs are deduplicated across the whole run and
the crawl stops as soon as max_products candidates have been collected.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlparse, urlunparse

from ..config import BASE_URL, COLLECTIONS, MAX_PAGES_PER_COLLECTION, Collection
from ..errors import ExtractionError, RunCancelledError
from ..models import CandidateProduct, SyncRun, SyncSettings
from .supplier_session import BrowserSession, FieldQuery, ListingQuery


logger = logging.getLogger(__name__)


CARD_SELECTORS = [
    '.product-item',
    '.product-card',
    '.grid-product',
    '[data-product-id]',
]

LISTING_QUERY = ListingQuery(
    card_selectors=CARD_SELECTORS,
    fields={
        'name': FieldQuery(['.product-title', '.product-name', '.product-item__title', 'h3', 'h4', '.title']),
        'price': FieldQuery(['.price', '.product-price', '.money', '[data-price]']),
        'image': FieldQuery(['img'], ('src', 'data-src', 'data-srcset')),
        'link': FieldQuery(['a[href*="/products/"]', 'a'], ('href',)),
        'sku': FieldQuery(['[data-sku]', ':scope'], ('data-sku', 'data-product-sku')),
        'brand': FieldQuery(['.product-vendor', '.vendor', '.brand', '[data-vendor]']),
    },
)

NEXT_PAGE_SELECTORS = [
    'a[rel="next"]',
    '.pagination__next',
    '.pagination-next',
    'a[aria-label="Next"]',
    'a[aria-label="Next page"]',
    '.next a',
]

# Single product page fallbacks for incremental refresh
PRODUCT_QUERY = ListingQuery(
    card_selectors=['main', 'body'],
    fields={
        'name': FieldQuery(['h1.product-title', '.product__title', '.product-single__title', 'h1']),
        'price': FieldQuery(['.product__price', '.product-price', '.price', '.money', '[data-price]']),
        'image': FieldQuery(['.product__media img', '.product-single__photo img', 'img'],
                            ('src', 'data-src')),
        'description': FieldQuery(['.product__description', '.product-description',
                                   '.product-single__description', '.rte']),
        'brand': FieldQuery(['.product__vendor', '.product-vendor', '.vendor']),
    },
)

_PRICE_RE = re.compile(r'\d+(?:\.\d+)?')


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a displayed price like '£1,234.50 ex VAT'.

    Strips thousands separators and takes the first numeric token. Returns
    None when no positive price is present.
    """
    if not text:
        return None
    match = _PRICE_RE.search(text.replace(',', ''))
    if not match:
        return None
    try:
        price = Decimal(match.group(0))
    except InvalidOperation:
        return None
    return price if price > 0 else None


def normalize_url(href: str, base_url: str = BASE_URL) -> str:
    """Absolute detail URL without query string or fragment."""
    parts = urlparse(urljoin(base_url + '/', href))
    return urlunparse((parts.scheme, parts.netloc, parts.path.rstrip('/'), '', '', ''))


def sku_from_url(url: str) -> str:
    """The trailing path segment of a product URL."""
    path = urlparse(url).path.rstrip('/')
    return path.rsplit('/', 1)[-1]


def listing_to_candidate(item: Dict[str, Optional[str]], collection: Collection,
                         base_url: str = BASE_URL) -> Optional[CandidateProduct]:
    """Convert one extracted card. Cards missing name, price or link yield None."""
    name = (item.get('name') or '').strip()
    price = parse_price(item.get('price'))
    link = item.get('link')
    if not name or price is None or not link:
        return None

    url = normalize_url(link, base_url)
    sku = (item.get('sku') or '').strip() or sku_from_url(url)
    if not sku:
        return None

    image = item.get('image')
    images = [urljoin(base_url + '/', image.split()[0])] if image else []
    return CandidateProduct(
        sku=sku,
        name=name,
        wholesale_price=price,
        url=url,
        images=images,
        category=collection.name,
        brand=(item.get('brand') or '').strip(),
    )


def _crawl_collection(session: BrowserSession, collection: Collection, run: SyncRun,
                      limit: int, found: List[CandidateProduct], base_url: str) -> None:
    session.fetch(f"{base_url}{collection.path}")

    for page_number in range(1, MAX_PAGES_PER_COLLECTION + 1):
        run.check_cancelled()

        added = 0
        for item in session.extract(LISTING_QUERY):
            candidate = listing_to_candidate(item, collection, base_url)
            if candidate is None or candidate.url in run.seen_urls:
                continue
            run.seen_urls.add(candidate.url)
            found.append(candidate)
            added += 1
            if len(found) >= limit:
                return

        logger.debug("%s page %d: %d new products", collection.name, page_number, added)

        next_selector = session.find_first(NEXT_PAGE_SELECTORS)
        if next_selector is None:
            return
        if page_number == MAX_PAGES_PER_COLLECTION:
            logger.warning("%s: stopped at the %d page ceiling", collection.name, MAX_PAGES_PER_COLLECTION)
            return
        session.click(next_selector)
        session.wait_for_navigation()


def crawl_catalog(session: BrowserSession, settings: SyncSettings,
                  run: Optional[SyncRun] = None,
                  collections: Sequence[Collection] = COLLECTIONS,
                  base_url: str = BASE_URL) -> List[CandidateProduct]:
    """
    Crawl every listing collection into a list of candidates.

    A collection that fails is logged and skipped. Cancellation propagates.
    """
    run = run or SyncRun()
    limit = settings.max_products
    found: List[CandidateProduct] = []

    for collection in collections:
        if len(found) >= limit:
            break
        run.check_cancelled()
        before = len(found)
        try:
            _crawl_collection(session, collection, run, limit, found, base_url)
        except RunCancelledError:
            raise
        except Exception as e:
            logger.warning("Skipping collection %s: %s", collection.name, e)
            continue
        logger.info("%s: %d products", collection.name, len(found) - before)

    run.discovered = len(found)
    logger.info("Crawl found %d products across %d collections", len(found), len(collections))
    return found


def fetch_product(session: BrowserSession, sku: str, base_url: str = BASE_URL,
                  product_url: Optional[str] = None) -> CandidateProduct:
    """
    Re-fetch a single product page by SKU.

    Raises:
        ExtractionError: If the page has no usable name and price.
    """
    url = product_url or f"{base_url}/products/{sku}"
    session.fetch(url)
    items = session.extract(PRODUCT_QUERY)
    item = items[0] if items else {}

    name = (item.get('name') or '').strip()
    price = parse_price(item.get('price'))
    if not name or price is None:
        raise ExtractionError(f"No product data found at {url}")

    image = item.get('image')
    return CandidateProduct(
        sku=sku,
        name=name,
        wholesale_price=price,
        url=normalize_url(url, base_url),
        images=[urljoin(base_url + '/', image.split()[0])] if image else [],
        brand=(item.get('brand') or '').strip(),
        description=(item.get('description') or '').strip() or None,
    )
