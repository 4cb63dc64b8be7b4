"""
Database service for PostgreSQL connection management.

Provides a reusable connection for the API and the scheduler, schema
bootstrap for the price tables, and the small helpers that let the same
queries run against PostgreSQL in production and SQLite in tests.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generator, Optional

import psycopg2
import psycopg2.extras

from ..config import get_database_url


logger = logging.getLogger(__name__)


class DatabasePool:
    """
    Simple connection pool for PostgreSQL.

    Uses a single connection that is reused across requests.
    For production, consider using a proper connection pool like psycopg2.pool.
    """

    def __init__(self):
        self._conn: Optional[psycopg2.extensions.connection] = None
        self._db_url: Optional[str] = None

    def initialize(self) -> None:
        """Initialize the database connection and make sure tables exist."""
        self._db_url = get_database_url()
        if not self._db_url:
            raise ValueError(
                "DATABASE_URL not found in environment. "
                "Please set it in backend/.env"
            )
        self._connect()
        init_schema(self._conn)

    def _connect(self) -> None:
        """Establish database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg2.Error:
                logger.debug("Ignoring error while closing stale connection", exc_info=True)

        self._conn = psycopg2.connect(self._db_url)
        self._conn.autocommit = False

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._conn is None:
            self._connect()
            return

        try:
            with self._conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("Database connection lost, reconnecting")
            self._connect()

    @contextmanager
    def get_connection(self) -> Generator[psycopg2.extensions.connection, None, None]:
        """
        Get a database connection from the pool.

        Yields:
            A psycopg2 connection object.

        Example:
            with db_pool.get_connection() as conn:
                ingredient = get_ingredient(conn, 1)
        """
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
    ) -> Generator[psycopg2.extensions.cursor, None, None]:
        """
        Get a cursor with automatic connection management.

        Args:
            cursor_factory: The cursor factory to use. Defaults to RealDictCursor
                           for dictionary-style row access.
        """
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
            finally:
                cursor.close()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg2.Error:
                logger.debug("Ignoring error while closing connection", exc_info=True)
            self._conn = None


# Global database pool instance
db_pool = DatabasePool()


def get_db():
    """
    Dependency for FastAPI routes to get a database connection.

    Usage in routes:
        @router.get("/items")
        def get_items(conn = Depends(get_db)):
            return list_ingredients(conn)
    """
    with db_pool.get_connection() as conn:
        yield conn


# =============================================================================
# Dialect helpers
# =============================================================================

def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return hasattr(conn, 'info')


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Store timestamps as ISO-8601 UTC text so windows compare as strings."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_db_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_db_decimal(conn, value: Optional[Decimal]) -> Any:
    """psycopg2 adapts Decimal natively, sqlite3 needs text."""
    if value is None:
        return None
    return value if is_postgres(conn) else str(value)


def from_db_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def from_db_bool(value: Any) -> bool:
    return bool(value)


# =============================================================================
# Schema
# =============================================================================

_SCHEMA_POSTGRES = [
    '''
    CREATE TABLE IF NOT EXISTS ingredients (
        ingredient_id SERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        category TEXT NOT NULL,
        unit TEXT NOT NULL,
        market_price NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (market_price >= 0),
        previous_price NUMERIC(12, 2),
        price_change_percentage NUMERIC(9, 2),
        price_source TEXT NOT NULL DEFAULT 'manual',
        last_price_fetch TEXT,
        auto_update_enabled BOOLEAN NOT NULL DEFAULT FALSE,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TEXT,
        updated_at TEXT
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS ingredient_price_history (
        history_id SERIAL PRIMARY KEY,
        ingredient_id INTEGER NOT NULL REFERENCES ingredients(ingredient_id),
        ingredient_name TEXT,
        price NUMERIC(12, 2) NOT NULL,
        unit TEXT,
        source TEXT NOT NULL DEFAULT 'manual',
        market_name TEXT,
        change_percentage NUMERIC(9, 2),
        notes TEXT,
        recorded_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE INDEX IF NOT EXISTS idx_price_history_ingredient_recorded
        ON ingredient_price_history (ingredient_id, recorded_at)
    ''',
    '''
    CREATE TABLE IF NOT EXISTS price_update_settings (
        settings_id INTEGER PRIMARY KEY CHECK (settings_id = 1),
        auto_update_enabled BOOLEAN NOT NULL DEFAULT FALSE,
        update_frequency_hours INTEGER NOT NULL DEFAULT 24 CHECK (update_frequency_hours > 0),
        min_change_percentage_to_record NUMERIC(9, 2) NOT NULL DEFAULT 2.0,
        alert_threshold_percentage NUMERIC(9, 2) NOT NULL DEFAULT 15.0,
        enabled_categories TEXT NOT NULL DEFAULT '',
        last_update_run TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    ''',
]

_SCHEMA_SQLITE = '''
    CREATE TABLE IF NOT EXISTS ingredients (
        ingredient_id INTEGER PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        category TEXT NOT NULL,
        unit TEXT NOT NULL,
        market_price NUMERIC NOT NULL DEFAULT 0 CHECK (market_price >= 0),
        previous_price NUMERIC,
        price_change_percentage NUMERIC,
        price_source TEXT NOT NULL DEFAULT 'manual',
        last_price_fetch TEXT,
        auto_update_enabled INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS ingredient_price_history (
        history_id INTEGER PRIMARY KEY,
        ingredient_id INTEGER NOT NULL REFERENCES ingredients(ingredient_id),
        ingredient_name TEXT,
        price NUMERIC NOT NULL,
        unit TEXT,
        source TEXT NOT NULL DEFAULT 'manual',
        market_name TEXT,
        change_percentage NUMERIC,
        notes TEXT,
        recorded_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_price_history_ingredient_recorded
        ON ingredient_price_history (ingredient_id, recorded_at);

    CREATE TABLE IF NOT EXISTS price_update_settings (
        settings_id INTEGER PRIMARY KEY CHECK (settings_id = 1),
        auto_update_enabled INTEGER NOT NULL DEFAULT 0,
        update_frequency_hours INTEGER NOT NULL DEFAULT 24 CHECK (update_frequency_hours > 0),
        min_change_percentage_to_record NUMERIC NOT NULL DEFAULT 2.0,
        alert_threshold_percentage NUMERIC NOT NULL DEFAULT 15.0,
        enabled_categories TEXT NOT NULL DEFAULT '',
        last_update_run TEXT,
        created_at TEXT,
        updated_at TEXT
    );
'''


def init_schema(conn) -> None:
    """Create the ingredient, history and settings tables if missing."""
    cursor = conn.cursor()
    try:
        if is_postgres(conn):
            for statement in _SCHEMA_POSTGRES:
                cursor.execute(statement)
        else:
            cursor.executescript(_SCHEMA_SQLITE)
        conn.commit()
    finally:
        cursor.close()
    logger.info("Price tables ready (%s)", "PostgreSQL" if is_postgres(conn) else "SQLite")
