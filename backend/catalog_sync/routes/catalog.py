"""
Catalog routes.

Endpoints for browsing synced products and applying the admin overrides:
activation, exclusion from future syncs, and manual repricing.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, model_validator

from ..models import CatalogRecord, RecordFilter
from ..services.catalog_store import catalog_store


router = APIRouter(prefix="/api/catalog", tags=["catalog"])


class CatalogProduct(BaseModel):
    """Catalog record as shown in the admin dashboard."""
    sku: str
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    wholesale_price: Decimal
    retail_price: Decimal
    margin_percent: Decimal
    description: Optional[str] = None
    images: List[str] = []
    in_stock: bool
    stock_quantity: Optional[int] = None
    flavours: Optional[List[str]] = None
    strengths: Optional[List[str]] = None
    ingredients: Optional[List[str]] = None
    allergens: Optional[List[str]] = None
    product_url: Optional[str] = None
    active: bool
    excluded: bool
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CatalogListResponse(BaseModel):
    """Paginated list of catalog records."""
    products: List[CatalogProduct]
    total: int
    page: int
    page_size: int


class ActiveRequest(BaseModel):
    active: bool


class ExcludedRequest(BaseModel):
    excluded: bool


class RepriceRequest(BaseModel):
    """Manual price override. Give either a margin or a retail price."""
    margin_percent: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None

    @model_validator(mode='after')
    def exactly_one(self):
        if (self.margin_percent is None) == (self.retail_price is None):
            raise ValueError("Provide exactly one of margin_percent or retail_price")
        return self


def record_to_model(record: CatalogRecord) -> CatalogProduct:
    return CatalogProduct(**vars(record))


def _get_or_404(sku: str) -> CatalogRecord:
    record = catalog_store.find_record_by_sku(sku)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Product {sku} not found")
    return record


@router.get("", response_model=CatalogListResponse)
def list_catalog(
    search: Optional[str] = Query(None, description="Search name, SKU or brand"),
    in_stock: Optional[bool] = Query(None),
    active: Optional[bool] = Query(None),
    excluded: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
):
    """
    List catalog records with optional filters.

    Returns:
        One page of records plus the total matching count
    """
    record_filter = RecordFilter(search=search, in_stock=in_stock, active=active, excluded=excluded)
    try:
        records = catalog_store.list_records(record_filter, page=page, page_size=page_size)
        total = catalog_store.count_records(record_filter)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    return CatalogListResponse(
        products=[record_to_model(r) for r in records],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{sku}", response_model=CatalogProduct)
def get_catalog_product(sku: str):
    return record_to_model(_get_or_404(sku))


@router.patch("/{sku}/active", response_model=CatalogProduct)
def set_product_active(sku: str, request: ActiveRequest):
    """Show or hide a product in the storefront."""
    _get_or_404(sku)
    catalog_store.set_active(sku, request.active)
    return record_to_model(_get_or_404(sku))


@router.patch("/{sku}/excluded", response_model=CatalogProduct)
def set_product_excluded(sku: str, request: ExcludedRequest):
    """Exclude a product from future sync updates, or include it again."""
    _get_or_404(sku)
    catalog_store.set_excluded(sku, request.excluded)
    return record_to_model(_get_or_404(sku))


@router.post("/{sku}/reprice", response_model=CatalogProduct)
def reprice_product(sku: str, request: RepriceRequest):
    """
    Override a product's retail price.

    The margin is recomputed from the stored retail price.
    """
    _get_or_404(sku)
    try:
        record = catalog_store.reprice(
            sku, margin_percent=request.margin_percent, retail_price=request.retail_price
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Product {sku} not found")
    return record_to_model(record)
