"""
Persistence for the single sync settings row.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..models import SyncSettings, SyncType, to_timestamp, utc_now
from .database import DatabasePool, db_pool


logger = logging.getLogger(__name__)

SETTINGS_KEY = "default"

_SETTINGS_COLUMNS = [
    'auto_sync', 'sync_interval_minutes', 'categories', 'brands',
    'min_margin_percent', 'target_margin_percent', 'max_products',
    'update_prices', 'update_stock', 'update_descriptions',
    'last_full_sync', 'last_incremental_sync', 'updated_at',
]

_SYNC_STAMP_COLUMNS = {
    SyncType.FULL: 'last_full_sync',
    SyncType.INCREMENTAL: 'last_incremental_sync',
}


class SettingsStore:
    """Loads, saves and partially updates the sync settings row."""

    def __init__(self, pool: DatabasePool = db_pool, key: str = SETTINGS_KEY):
        self._pool = pool
        self._key = key

    def load_settings(self) -> SyncSettings:
        """Return persisted settings, creating the row with defaults on first use."""
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM sync_settings WHERE id = {ph}', (self._key,))
            row = cursor.fetchone()
        if row is not None:
            return SyncSettings.from_row(dict(row))

        logger.info("No sync settings stored, creating defaults")
        settings = SyncSettings()
        self.save_settings(settings)
        return settings

    # Alias used by the API layer
    get_settings = load_settings

    def save_settings(self, settings: SyncSettings) -> SyncSettings:
        """Upsert settings as the sole row for this key."""
        ph = self._pool.placeholder
        values = self._to_params(settings)
        columns = ', '.join(['id'] + _SETTINGS_COLUMNS)
        placeholders = ', '.join([ph] * (len(_SETTINGS_COLUMNS) + 1))
        updates = ', '.join(f'{col} = excluded.{col}' for col in _SETTINGS_COLUMNS)
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'INSERT INTO sync_settings ({columns}) VALUES ({placeholders}) '
                f'ON CONFLICT (id) DO UPDATE SET {updates}',
                [self._key] + values,
            )
        return settings

    def update_settings(self, partial: Dict[str, Any]) -> SyncSettings:
        """
        Merge a partial update into the stored settings and persist it.

        Unknown keys raise ValueError. Collections are converted to sets.
        """
        settings = self.load_settings()
        for key, value in partial.items():
            if not hasattr(settings, key) or key in _SYNC_STAMP_COLUMNS.values():
                raise ValueError(f"Unknown setting: {key}")
            if key in ('categories', 'brands'):
                value = set(value)
            elif key in ('min_margin_percent', 'target_margin_percent'):
                value = Decimal(str(value))
            setattr(settings, key, value)
        self.save_settings(settings)
        logger.info("Sync settings updated: %s", ', '.join(sorted(partial)))
        return settings

    def mark_synced(self, sync_type: SyncType, at: Optional[datetime] = None) -> None:
        """Stamp last_full_sync / last_incremental_sync after a completed run."""
        column = _SYNC_STAMP_COLUMNS.get(sync_type)
        if column is None:
            return
        # Make sure the row exists before stamping it
        self.load_settings()
        ph = self._pool.placeholder
        with self._pool.get_cursor() as cursor:
            cursor.execute(
                f'UPDATE sync_settings SET {column} = {ph} WHERE id = {ph}',
                (to_timestamp(at or utc_now()), self._key),
            )

    @staticmethod
    def _to_params(settings: SyncSettings) -> list:
        return [
            settings.auto_sync,
            int(settings.sync_interval_minutes),
            json.dumps(sorted(settings.categories)),
            json.dumps(sorted(settings.brands)),
            str(settings.min_margin_percent),
            str(settings.target_margin_percent),
            int(settings.max_products),
            settings.update_prices,
            settings.update_stock,
            settings.update_descriptions,
            to_timestamp(settings.last_full_sync),
            to_timestamp(settings.last_incremental_sync),
            to_timestamp(utc_now()),
        ]


# Global settings store instance
settings_store = SettingsStore()
