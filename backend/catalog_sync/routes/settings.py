"""
Sync settings routes.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..models import SyncSettings
from ..services.settings_store import settings_store


router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsResponse(BaseModel):
    """Current sync settings."""
    auto_sync: bool
    sync_interval_minutes: int
    categories: List[str]
    brands: List[str]
    min_margin_percent: Decimal
    target_margin_percent: Decimal
    max_products: int
    update_prices: bool
    update_stock: bool
    update_descriptions: bool
    last_full_sync: Optional[datetime] = None
    last_incremental_sync: Optional[datetime] = None


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""
    auto_sync: Optional[bool] = None
    sync_interval_minutes: Optional[int] = Field(None, ge=1)
    categories: Optional[List[str]] = None
    brands: Optional[List[str]] = None
    min_margin_percent: Optional[Decimal] = Field(None, ge=0)
    target_margin_percent: Optional[Decimal] = Field(None, ge=0)
    max_products: Optional[int] = Field(None, ge=1)
    update_prices: Optional[bool] = None
    update_stock: Optional[bool] = None
    update_descriptions: Optional[bool] = None


def settings_to_model(settings: SyncSettings) -> SettingsResponse:
    return SettingsResponse(**settings.to_dict())


@router.get("", response_model=SettingsResponse)
def get_settings():
    try:
        return settings_to_model(settings_store.get_settings())
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@router.put("", response_model=SettingsResponse)
def update_settings(update: SettingsUpdate):
    """
    Merge the given fields into the stored settings.

    Takes effect from the next sync run.
    """
    partial = update.model_dump(exclude_unset=True, exclude_none=True)
    try:
        settings = settings_store.update_settings(partial)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return settings_to_model(settings)
