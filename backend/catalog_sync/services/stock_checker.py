"""
Stock status scraping from supplier product pages.
"""

import logging
import re
from typing import Optional

from ..config import BASE_URL
from ..models import StockInfo
from .supplier_session import BrowserSession, html_to_text


logger = logging.getLogger(__name__)


OUT_OF_STOCK_PHRASES = (
    "out of stock",
    "sold out",
    "currently unavailable",
    "no longer available",
    "temporarily unavailable",
)

QUANTITY_PATTERNS = [
    re.compile(r'\bqty\s*[:\-]?\s*(\d+)', re.IGNORECASE),
    re.compile(r'\b(\d+)\s+(?:units?\s+)?in\s+stock\b', re.IGNORECASE),
    re.compile(r'\bstock\s*(?:level)?\s*[:\-]\s*(\d+)', re.IGNORECASE),
    re.compile(r'\bonly\s+(\d+)\s+left\b', re.IGNORECASE),
]


def parse_stock(page_text: str) -> StockInfo:
    """
    Read stock state from page text.

    Ambiguous pages count as in stock with unknown quantity.
    """
    text = page_text.lower()
    if any(phrase in text for phrase in OUT_OF_STOCK_PHRASES):
        return StockInfo(in_stock=False, quantity=0)

    for pattern in QUANTITY_PATTERNS:
        match = pattern.search(page_text)
        if match:
            quantity = int(match.group(1))
            return StockInfo(in_stock=quantity > 0, quantity=quantity)

    return StockInfo(in_stock=True)


def check_stock(session: BrowserSession, sku: str, base_url: str = BASE_URL,
                product_url: Optional[str] = None) -> StockInfo:
    """
    Load the product page and parse its stock state.

    Falls back to /products/{sku} when product_url is unknown; a SKU read
    from the listing need not match the URL slug.
    """
    session.fetch(product_url or f"{base_url}/products/{sku}")
    info = parse_stock(html_to_text(session.page_html()))
    logger.debug("Stock for %s: in_stock=%s quantity=%s", sku, info.in_stock, info.quantity)
    return info
