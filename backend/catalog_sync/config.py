"""
Configuration for the catalog sync engine.

Loads the .env file from the backend directory and exposes module-level
constants for the supplier portal, crawl limits and database location.
"""

import os
from pathlib import Path
from typing import List, NamedTuple, Optional

from dotenv import load_dotenv


# Load .env from backend directory
_backend_dir = Path(__file__).parent.parent
_env_path = _backend_dir / ".env"
load_dotenv(_env_path)


# =============================================================================
# Supplier portal
# =============================================================================

BASE_URL = os.getenv("TROPICANA_BASE_URL", "https://tropicanawholesale.co.uk").rstrip("/")
LOGIN_PATH = "/account/login"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}

# Navigation ceiling for every goto / click / wait (milliseconds)
NAVIGATION_TIMEOUT_MS = 60000

# Request pacing
REQUEST_DELAY = 0.5     # Minimum seconds between page loads (be polite to the portal)

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 2
MAX_RETRY_DELAY = 32    # Maximum delay for exponential backoff


class Collection(NamedTuple):
    """A supplier listing collection (category index page)."""
    name: str
    path: str


COLLECTIONS: List[Collection] = [
    Collection("Vape Kits", "/collections/vape-kits"),
    Collection("Disposable Vapes", "/collections/disposable-vapes"),
    Collection("E-Liquids", "/collections/e-liquids"),
    Collection("Pods & Coils", "/collections/pods-coils"),
    Collection("Accessories", "/collections/accessories"),
]


# =============================================================================
# Sync limits
# =============================================================================

MAX_PAGES_PER_COLLECTION = 50   # Guards against pagination loops on the remote site
PROGRESS_INTERVAL = 50          # Persist a progress snapshot every N items
INCREMENTAL_BATCH_SIZE = 100    # Records re-fetched per incremental sync
STALE_AFTER_HOURS = 24          # Records older than this are due for an incremental refresh


# =============================================================================
# Database
# =============================================================================

DATABASE_FILE = "catalog_sync.db"  # SQLite fallback


def get_database_url() -> Optional[str]:
    """Get the database URL from environment variables."""
    return os.getenv("DATABASE_URL")


def get_credentials() -> tuple:
    """Get supplier credentials from .env file or environment variables."""
    return os.getenv("TROPICANA_EMAIL"), os.getenv("TROPICANA_PASSWORD")


def is_headless() -> bool:
    """Browser runs headless unless SYNC_HEADLESS is set to a false value."""
    return os.getenv("SYNC_HEADLESS", "true").strip().lower() not in ("0", "false", "no")
