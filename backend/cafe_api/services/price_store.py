"""
Persistence for the ingredient catalog and the price update settings.

Functions take a DB-API connection (psycopg2 in production, sqlite3 in
tests) and always use a plain tuple cursor so rows map the same way on
both drivers.
"""

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

import psycopg2

from ..exceptions import ConfigurationMissing, DuplicateIngredient, PersistenceFailure
from ..models import Ingredient, PriceHistoryEntry, PriceSource, PriceUpdateSettings, utc_now
from .database import (
    db_placeholder,
    from_db_bool,
    from_db_decimal,
    from_db_timestamp,
    is_postgres,
    to_db_decimal,
    to_db_timestamp,
)
from .price_history import append_price_history


logger = logging.getLogger(__name__)

SETTINGS_ID = 1

_INGREDIENT_COLUMNS = (
    'ingredient_id', 'name', 'category', 'unit', 'market_price', 'previous_price',
    'price_change_percentage', 'price_source', 'last_price_fetch',
    'auto_update_enabled', 'is_active', 'created_at', 'updated_at',
)

_SETTINGS_COLUMNS = (
    'auto_update_enabled', 'update_frequency_hours', 'min_change_percentage_to_record',
    'alert_threshold_percentage', 'enabled_categories', 'last_update_run',
    'created_at', 'updated_at',
)


def _row_to_ingredient(row) -> Ingredient:
    data = dict(zip(_INGREDIENT_COLUMNS, row))
    return Ingredient(
        ingredient_id=data['ingredient_id'],
        name=data['name'],
        category=data['category'],
        unit=data['unit'],
        market_price=from_db_decimal(data['market_price']) or Decimal("0"),
        previous_price=from_db_decimal(data['previous_price']),
        price_change_percentage=from_db_decimal(data['price_change_percentage']),
        price_source=data['price_source'] or PriceSource.MANUAL,
        last_price_fetch=from_db_timestamp(data['last_price_fetch']),
        auto_update_enabled=from_db_bool(data['auto_update_enabled']),
        is_active=from_db_bool(data['is_active']),
        created_at=from_db_timestamp(data['created_at']),
        updated_at=from_db_timestamp(data['updated_at']),
    )


def _split_categories(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [c.strip().lower() for c in raw.split(',') if c.strip()]


def _join_categories(categories: Iterable[str]) -> str:
    return ','.join(c.strip().lower() for c in categories if c and c.strip())


# =============================================================================
# Ingredients
# =============================================================================

def get_ingredient(conn, ingredient_id: int) -> Optional[Ingredient]:
    """Get one ingredient by id, or None."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    try:
        cursor.execute(
            f'SELECT {", ".join(_INGREDIENT_COLUMNS)} FROM ingredients WHERE ingredient_id = {ph}',
            (ingredient_id,)
        )
        row = cursor.fetchone()
    finally:
        cursor.close()
    return _row_to_ingredient(row) if row else None


def list_ingredients(conn, active_only: bool = False) -> List[Ingredient]:
    """List catalog ingredients ordered by name."""
    cursor = conn.cursor()
    query = f'SELECT {", ".join(_INGREDIENT_COLUMNS)} FROM ingredients'
    params: tuple = ()
    if active_only:
        query += f' WHERE is_active = {db_placeholder(conn)}'
        params = (True,)
    query += ' ORDER BY name'
    try:
        cursor.execute(query, params)
        rows = cursor.fetchall()
    finally:
        cursor.close()
    return [_row_to_ingredient(row) for row in rows]


def get_ingredients_for_auto_update(conn, categories: Optional[List[str]] = None) -> List[Ingredient]:
    """
    Get eligible ingredients: active, auto-update enabled, and in one of
    ``categories`` when that list is non-empty.
    """
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    query = (
        f'SELECT {", ".join(_INGREDIENT_COLUMNS)} FROM ingredients '
        f'WHERE auto_update_enabled = {ph} AND is_active = {ph}'
    )
    params: list = [True, True]
    if categories:
        placeholders = ', '.join([ph] * len(categories))
        query += f' AND LOWER(category) IN ({placeholders})'
        params.extend(c.lower() for c in categories)
    query += ' ORDER BY name'
    try:
        cursor.execute(query, params)
        rows = cursor.fetchall()
    finally:
        cursor.close()
    return [_row_to_ingredient(row) for row in rows]


def create_ingredient(conn, name: str, category: str, unit: str,
                      market_price: Decimal = Decimal("0"),
                      auto_update_enabled: bool = False,
                      now: Optional[datetime] = None) -> Ingredient:
    """
    Insert a new ingredient and return it with its id.

    Raises:
        DuplicateIngredient: if the name is already taken.
    """
    if market_price < 0:
        raise ValueError("market_price must be >= 0")

    now_iso = to_db_timestamp(now or utc_now())
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    values = (name, category.lower(), unit.lower(), to_db_decimal(conn, market_price),
              PriceSource.MANUAL, auto_update_enabled, True, now_iso, now_iso)
    try:
        if is_postgres(conn):
            cursor.execute(
                f'''INSERT INTO ingredients
                   (name, category, unit, market_price, price_source,
                    auto_update_enabled, is_active, created_at, updated_at)
                   VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
                   RETURNING ingredient_id''',
                values
            )
            ingredient_id = cursor.fetchone()[0]
        else:
            cursor.execute(
                f'''INSERT INTO ingredients
                   (name, category, unit, market_price, price_source,
                    auto_update_enabled, is_active, created_at, updated_at)
                   VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})''',
                values
            )
            ingredient_id = cursor.lastrowid
        conn.commit()
    except (sqlite3.IntegrityError, psycopg2.IntegrityError) as e:
        conn.rollback()
        raise DuplicateIngredient(name) from e
    finally:
        cursor.close()

    return get_ingredient(conn, ingredient_id)


def update_ingredient_price(conn, ingredient: Ingredient, new_price: Decimal,
                            source: str, market_name: Optional[str] = None,
                            change_percentage: Optional[Decimal] = None,
                            now: Optional[datetime] = None,
                            notes: Optional[str] = None) -> PriceHistoryEntry:
    """
    Record a new market price for an ingredient.

    Updates the ingredient row and appends a history entry in one
    transaction. last_price_fetch only moves for fetched prices, not for
    manual edits.

    Raises:
        PersistenceFailure: if either write fails; nothing is committed.
    """
    if new_price < 0:
        raise PersistenceFailure(f"Refusing negative price {new_price}", ingredient.ingredient_id)

    now = now or utc_now()
    now_iso = to_db_timestamp(now)
    fetched = source != PriceSource.MANUAL
    ph = db_placeholder(conn)
    cursor = conn.cursor()

    try:
        cursor.execute(
            f'''UPDATE ingredients
               SET previous_price = {ph}, market_price = {ph}, price_change_percentage = {ph},
                   price_source = {ph}, last_price_fetch = COALESCE({ph}, last_price_fetch),
                   updated_at = {ph}
               WHERE ingredient_id = {ph}''',
            (to_db_decimal(conn, ingredient.market_price), to_db_decimal(conn, new_price),
             to_db_decimal(conn, change_percentage), source,
             now_iso if fetched else None, now_iso, ingredient.ingredient_id)
        )
        if cursor.rowcount == 0:
            raise PersistenceFailure(
                f"Ingredient {ingredient.ingredient_id} no longer exists",
                ingredient.ingredient_id,
            )

        entry = PriceHistoryEntry(
            ingredient_id=ingredient.ingredient_id,
            ingredient_name=ingredient.name,
            price=new_price,
            unit=ingredient.unit,
            source=source,
            market_name=market_name,
            change_percentage=change_percentage,
            notes=notes,
            recorded_at=now,
        )
        entry.history_id = append_price_history(conn, entry, commit=False)
        conn.commit()
    except PersistenceFailure:
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error("Price update failed for %s: %s", ingredient.name, e)
        raise PersistenceFailure(str(e), ingredient.ingredient_id) from e
    finally:
        cursor.close()

    ingredient.previous_price = ingredient.market_price
    ingredient.market_price = new_price
    ingredient.price_change_percentage = change_percentage
    ingredient.price_source = source
    if fetched:
        ingredient.last_price_fetch = now
    ingredient.updated_at = now
    return entry


def set_auto_update(conn, ingredient_id: int, enabled: bool,
                    now: Optional[datetime] = None) -> bool:
    """Set the per-ingredient auto-update flag. Returns False if not found."""
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    try:
        cursor.execute(
            f'UPDATE ingredients SET auto_update_enabled = {ph}, updated_at = {ph} '
            f'WHERE ingredient_id = {ph}',
            (enabled, to_db_timestamp(now or utc_now()), ingredient_id)
        )
        updated = cursor.rowcount > 0
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise PersistenceFailure(str(e), ingredient_id) from e
    finally:
        cursor.close()
    return updated


def deactivate_ingredient(conn, ingredient_id: int, now: Optional[datetime] = None) -> bool:
    """
    Soft-delete an ingredient. Its price history is kept and it drops out
    of automatic updates. Returns False if not found.
    """
    ph = db_placeholder(conn)
    cursor = conn.cursor()
    try:
        cursor.execute(
            f'UPDATE ingredients SET is_active = {ph}, updated_at = {ph} '
            f'WHERE ingredient_id = {ph}',
            (False, to_db_timestamp(now or utc_now()), ingredient_id)
        )
        updated = cursor.rowcount > 0
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise PersistenceFailure(str(e), ingredient_id) from e
    finally:
        cursor.close()
    return updated


# =============================================================================
# Price update settings (singleton)
# =============================================================================

def get_price_update_settings(conn) -> PriceUpdateSettings:
    """
    Load the settings row.

    Raises:
        ConfigurationMissing: if the row has never been saved.
    """
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    try:
        cursor.execute(
            f'SELECT {", ".join(_SETTINGS_COLUMNS)} FROM price_update_settings '
            f'WHERE settings_id = {ph}',
            (SETTINGS_ID,)
        )
        row = cursor.fetchone()
    finally:
        cursor.close()

    if not row:
        raise ConfigurationMissing("Price update settings have not been configured")

    data = dict(zip(_SETTINGS_COLUMNS, row))
    return PriceUpdateSettings(
        auto_update_enabled=from_db_bool(data['auto_update_enabled']),
        update_frequency_hours=int(data['update_frequency_hours']),
        min_change_percentage_to_record=from_db_decimal(data['min_change_percentage_to_record']),
        alert_threshold_percentage=from_db_decimal(data['alert_threshold_percentage']),
        enabled_categories=_split_categories(data['enabled_categories']),
        last_update_run=from_db_timestamp(data['last_update_run']),
        created_at=from_db_timestamp(data['created_at']),
        updated_at=from_db_timestamp(data['updated_at']),
    )


def save_price_update_settings(conn, settings: PriceUpdateSettings,
                               now: Optional[datetime] = None) -> PriceUpdateSettings:
    """Insert or replace the settings row."""
    now = now or utc_now()
    if settings.created_at is None:
        settings.created_at = now
    settings.updated_at = now

    ph = db_placeholder(conn)
    cursor = conn.cursor()
    try:
        cursor.execute(
            f'''INSERT INTO price_update_settings
               (settings_id, auto_update_enabled, update_frequency_hours,
                min_change_percentage_to_record, alert_threshold_percentage,
                enabled_categories, last_update_run, created_at, updated_at)
               VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
               ON CONFLICT (settings_id) DO UPDATE SET
                   auto_update_enabled = excluded.auto_update_enabled,
                   update_frequency_hours = excluded.update_frequency_hours,
                   min_change_percentage_to_record = excluded.min_change_percentage_to_record,
                   alert_threshold_percentage = excluded.alert_threshold_percentage,
                   enabled_categories = excluded.enabled_categories,
                   last_update_run = excluded.last_update_run,
                   updated_at = excluded.updated_at''',
            (SETTINGS_ID, settings.auto_update_enabled, settings.update_frequency_hours,
             to_db_decimal(conn, settings.min_change_percentage_to_record),
             to_db_decimal(conn, settings.alert_threshold_percentage),
             _join_categories(settings.enabled_categories),
             to_db_timestamp(settings.last_update_run),
             to_db_timestamp(settings.created_at), to_db_timestamp(settings.updated_at))
        )
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise PersistenceFailure(f"Could not save price update settings: {e}") from e
    finally:
        cursor.close()
    return settings


def get_or_create_price_update_settings(conn) -> PriceUpdateSettings:
    """Load the settings row, creating it with defaults on first use."""
    try:
        return get_price_update_settings(conn)
    except ConfigurationMissing:
        logger.info("No price update settings found, creating defaults")
        return save_price_update_settings(conn, PriceUpdateSettings())


def get_effective_price_update_settings(conn) -> PriceUpdateSettings:
    """Stored settings, or defaults when none were saved yet. Never writes."""
    try:
        return get_price_update_settings(conn)
    except ConfigurationMissing:
        return PriceUpdateSettings()
