"""
Data classes shared by the sync engine, the stores and the API layer.
"""

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .errors import RunCancelledError


DEFAULT_CATEGORIES = [
    'Protein Powders',
    'Pre-Workout',
    'Post-Workout',
    'Creatine',
    'Amino Acids',
    'Weight Loss',
    'Weight Gainers',
    'Vitamins & Minerals',
    'Protein Bars',
    'Protein RTDs',
    'Energy & Endurance',
    'Recovery',
    'Joint Support',
    'Testosterone Boosters',
    'CBD',
    'Electrolytes',
    'Greens',
    'Probiotics & Digestion',
    'Sleep Aids',
    'Nootropics',
    # Crawled collection names, so crawled candidates pass the allow-list
    'Vape Kits',
    'Disposable Vapes',
    'E-Liquids',
    'Pods & Coils',
    'Accessories',
]

DEFAULT_BRANDS = [
    'Optimum Nutrition',
    'Applied Nutrition',
    'Per4m',
    'Grenade',
    'Neutonic',
    'NOCCO',
    'USN',
    'Barebells',
    'Lenny and Larrys',
    'Cellucor',
    'MyProtein',
    'Gorillalpha',
    'Ghost',
    'Mutant',
    'BSN',
    'Animal',
    'Muscletech',
    'Universal Nutrition',
    'PhD Nutrition',
    'Reflex Nutrition',
    # Vendors stocked in the crawled vape collections
    'Elf Bar',
    'Lost Mary',
    'SKE Crystal',
    'IVG',
    'Hayati',
    'Elux',
    'Vaporesso',
    'Voopoo',
    'Uwell',
    'Geekvape',
    'SMOK',
    'Aspire',
    'Innokin',
    'OXVA',
    'Vampire Vape',
    'Doozy Vape Co',
    'Pod Salt',
    'Nasty Juice',
    'Bar Juice 5000',
    'Riot Squad',
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as a sortable UTC ISO string for storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _bool(value: Any) -> bool:
    # SQLite hands booleans back as 0/1
    return bool(value)


def _json_list(value: Any) -> Optional[List[Any]]:
    if value is None:
        return None
    if isinstance(value, list):
        return value
    return json.loads(value)


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    STOCK_CHECK = "stock_check"


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class SyncSettings:
    """Operator-tunable sync configuration, persisted as a single row."""
    auto_sync: bool = True
    sync_interval_minutes: int = 60
    categories: Set[str] = field(default_factory=lambda: set(DEFAULT_CATEGORIES))
    brands: Set[str] = field(default_factory=lambda: set(DEFAULT_BRANDS))
    min_margin_percent: Decimal = Decimal("30")
    target_margin_percent: Decimal = Decimal("30")
    max_products: int = 5000
    update_prices: bool = True
    update_stock: bool = True
    update_descriptions: bool = True
    last_full_sync: Optional[datetime] = None
    last_incremental_sync: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncSettings":
        return cls(
            auto_sync=_bool(row['auto_sync']),
            sync_interval_minutes=int(row['sync_interval_minutes']),
            categories=set(_json_list(row['categories']) or []),
            brands=set(_json_list(row['brands']) or []),
            min_margin_percent=_decimal(row['min_margin_percent']),
            target_margin_percent=_decimal(row['target_margin_percent']),
            max_products=int(row['max_products']),
            update_prices=_bool(row['update_prices']),
            update_stock=_bool(row['update_stock']),
            update_descriptions=_bool(row['update_descriptions']),
            last_full_sync=parse_timestamp(row.get('last_full_sync')),
            last_incremental_sync=parse_timestamp(row.get('last_incremental_sync')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'auto_sync': self.auto_sync,
            'sync_interval_minutes': self.sync_interval_minutes,
            'categories': sorted(self.categories),
            'brands': sorted(self.brands),
            'min_margin_percent': self.min_margin_percent,
            'target_margin_percent': self.target_margin_percent,
            'max_products': self.max_products,
            'update_prices': self.update_prices,
            'update_stock': self.update_stock,
            'update_descriptions': self.update_descriptions,
            'last_full_sync': self.last_full_sync,
            'last_incremental_sync': self.last_incremental_sync,
        }


@dataclass
class CandidateProduct:
    """A product as scraped from the supplier, before reconciliation."""
    sku: str
    name: str
    wholesale_price: Decimal
    url: str
    images: List[str] = field(default_factory=list)
    category: str = ''
    brand: str = ''
    description: Optional[str] = None
    in_stock: Optional[bool] = None
    stock_quantity: Optional[int] = None


@dataclass
class CatalogRecord:
    """A row of the catalog_products table. id is the SKU."""
    sku: str
    name: str
    wholesale_price: Decimal
    retail_price: Decimal
    margin_percent: Decimal
    brand: str = ''
    category: str = ''
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    in_stock: bool = True
    stock_quantity: Optional[int] = None
    flavours: Optional[List[str]] = None
    strengths: Optional[List[str]] = None
    ingredients: Optional[List[str]] = None
    allergens: Optional[List[str]] = None
    product_url: Optional[str] = None
    active: bool = True
    excluded: bool = False
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CatalogRecord":
        return cls(
            sku=row['sku'],
            name=row['name'],
            brand=row['brand'] or '',
            category=row['category'] or '',
            wholesale_price=_decimal(row['wholesale_price']),
            retail_price=_decimal(row['retail_price']),
            margin_percent=_decimal(row['margin_percent']),
            description=row['description'],
            images=_json_list(row['images']) or [],
            in_stock=_bool(row['in_stock']),
            stock_quantity=row['stock_quantity'],
            flavours=_json_list(row['flavours']),
            strengths=_json_list(row['strengths']),
            ingredients=_json_list(row['ingredients']),
            allergens=_json_list(row['allergens']),
            product_url=row['product_url'],
            active=_bool(row['active']),
            excluded=_bool(row['excluded']),
            last_synced_at=parse_timestamp(row['last_synced_at']),
            created_at=parse_timestamp(row['created_at']),
            updated_at=parse_timestamp(row['updated_at']),
        )


@dataclass
class SyncLogEntry:
    """One audited sync run."""
    id: str
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    products_processed: int = 0
    products_updated: int = 0
    products_created: int = 0
    products_skipped: int = 0
    errors: List[Dict[str, Optional[str]]] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncLogEntry":
        return cls(
            id=row['id'],
            sync_type=SyncType(row['sync_type']),
            status=SyncStatus(row['status']),
            products_processed=row['products_processed'] or 0,
            products_updated=row['products_updated'] or 0,
            products_created=row['products_created'] or 0,
            products_skipped=row['products_skipped'] or 0,
            errors=_json_list(row['errors']) or [],
            started_at=parse_timestamp(row['started_at']),
            completed_at=parse_timestamp(row['completed_at']),
            duration_seconds=row['duration_seconds'],
        )


@dataclass
class StockInfo:
    in_stock: bool
    quantity: Optional[int] = None


@dataclass
class RecordFilter:
    """Admin listing filter for catalog records."""
    search: Optional[str] = None
    in_stock: Optional[bool] = None
    active: Optional[bool] = None
    excluded: Optional[bool] = None


@dataclass
class SyncRun:
    """
    Run-scoped state for one sync execution.

    Holds the counters and per-item errors that end up on the sync log,
    the set of detail URLs already seen by the crawler, and the event an
    operator sets to cancel the run.
    """
    sync_type: SyncType = SyncType.FULL
    log_id: str = ''
    started_at: datetime = field(default_factory=utc_now)
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    discovered: int = 0
    errors: List[Dict[str, Optional[str]]] = field(default_factory=list)
    seen_urls: Set[str] = field(default_factory=set)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def record(self, outcome: ReconcileOutcome) -> None:
        if outcome == ReconcileOutcome.CREATED:
            self.created += 1
        elif outcome == ReconcileOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def add_error(self, sku: Optional[str], message: str) -> None:
        self.errors.append({'sku': sku, 'message': message})

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise RunCancelledError if an operator asked to stop this run."""
        if self.cancel_event.is_set():
            raise RunCancelledError("Sync cancelled by operator")

    def elapsed_seconds(self) -> int:
        return int((utc_now() - self.started_at).total_seconds())
