"""
Database service for catalog and sync log storage.

Connects to PostgreSQL when DATABASE_URL points at one, otherwise falls back
to a local SQLite file. Every store operation checks out the shared
connection, runs its statement and commits; there is no run-wide transaction.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Generator, Optional

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from ..config import DATABASE_FILE, get_database_url


logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS catalog_products (
        id TEXT PRIMARY KEY,
        sku TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        brand TEXT,
        category TEXT,
        wholesale_price NUMERIC(10,2) NOT NULL,
        retail_price NUMERIC(10,2) NOT NULL,
        margin_percent NUMERIC(10,2) NOT NULL,
        description TEXT,
        images TEXT,
        in_stock BOOLEAN DEFAULT TRUE,
        stock_quantity INTEGER,
        flavours TEXT,
        strengths TEXT,
        ingredients TEXT,
        allergens TEXT,
        product_url TEXT,
        active BOOLEAN DEFAULT TRUE,
        excluded BOOLEAN DEFAULT FALSE,
        last_synced_at TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_log (
        id TEXT PRIMARY KEY,
        sync_type TEXT NOT NULL,
        status TEXT NOT NULL,
        products_processed INTEGER DEFAULT 0,
        products_updated INTEGER DEFAULT 0,
        products_created INTEGER DEFAULT 0,
        products_skipped INTEGER DEFAULT 0,
        errors TEXT,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        duration_seconds INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_settings (
        id TEXT PRIMARY KEY,
        auto_sync BOOLEAN NOT NULL,
        sync_interval_minutes INTEGER NOT NULL,
        categories TEXT NOT NULL,
        brands TEXT NOT NULL,
        min_margin_percent NUMERIC(10,2) NOT NULL,
        target_margin_percent NUMERIC(10,2) NOT NULL,
        max_products INTEGER NOT NULL,
        update_prices BOOLEAN NOT NULL,
        update_stock BOOLEAN NOT NULL,
        update_descriptions BOOLEAN NOT NULL,
        last_full_sync TEXT,
        last_incremental_sync TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_catalog_products_last_synced ON catalog_products (last_synced_at)",
    "CREATE INDEX IF NOT EXISTS idx_catalog_products_brand ON catalog_products (brand)",
    "CREATE INDEX IF NOT EXISTS idx_sync_log_started_at ON sync_log (started_at)",
]


# Store failures that end a sync run instead of being recorded against one SKU
STORE_CONNECTION_ERRORS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    sqlite3.OperationalError,
)


def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return isinstance(conn, psycopg2.extensions.connection)


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def _sqlite_path(db_url: str) -> str:
    if db_url.startswith("sqlite:///"):
        return db_url[len("sqlite:///"):]
    return db_url


class DatabasePool:
    """
    Simple connection pool for the sync database.

    Uses a single connection shared by the API and the background sync
    worker; access is serialized with a re-entrant lock.
    """

    def __init__(self, db_url: Optional[str] = None):
        self._conn = None
        self._db_url: Optional[str] = db_url
        self._lock = threading.RLock()

    @property
    def is_postgres(self) -> bool:
        return self._db_url is not None and self._db_url.startswith(("postgres://", "postgresql://"))

    @property
    def placeholder(self) -> str:
        with self._lock:
            self._ensure_connection()
            return db_placeholder(self._conn)

    def initialize(self) -> None:
        """Initialize the database connection and create tables."""
        if self._db_url is None:
            self._db_url = get_database_url() or DATABASE_FILE
        self._connect()
        self.init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception:
                logger.debug("Ignoring error while closing stale connection", exc_info=True)

        if self._db_url is None:
            self._db_url = get_database_url() or DATABASE_FILE

        if self.is_postgres:
            self._conn = psycopg2.connect(self._db_url)
            self._conn.autocommit = False
            logger.info("Connected to PostgreSQL")
        else:
            path = _sqlite_path(self._db_url)
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            logger.info("Connected to SQLite: %s", path)

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._conn is None:
            self._connect()
            return

        # An in-memory SQLite database would be lost on reconnect
        if not self.is_postgres:
            return

        try:
            with self._conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("Database connection lost, reconnecting")
            self._connect()

    def init_schema(self) -> None:
        """Create the catalog, sync log and settings tables if missing."""
        with self.get_cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)

    @contextmanager
    def get_connection(self) -> Generator:
        """
        Get the database connection, committing on success.

        Example:
            with db_pool.get_connection() as conn:
                conn.cursor().execute("SELECT * FROM sync_log")
        """
        with self._lock:
            self._ensure_connection()
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    @contextmanager
    def get_cursor(
        self,
        cursor_factory=psycopg2.extras.RealDictCursor
    ) -> Generator:
        """
        Get a cursor with automatic connection management.

        Rows support dict(row) on both backends: RealDictCursor on
        PostgreSQL, sqlite3.Row on SQLite.

        Example:
            with db_pool.get_cursor() as cursor:
                cursor.execute("SELECT * FROM catalog_products")
                rows = [dict(r) for r in cursor.fetchall()]
        """
        with self.get_connection() as conn:
            if is_postgres(conn):
                cursor = conn.cursor(cursor_factory=cursor_factory)
            else:
                cursor = conn.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except Exception:
                    logger.debug("Ignoring error while closing connection", exc_info=True)
                self._conn = None


# Global database pool instance
db_pool = DatabasePool()
