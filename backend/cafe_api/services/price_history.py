"""
Append-only ingredient price history and trend aggregation.

Entries are written once per accepted price change and never modified.
Reads return the trailing ``days`` window in ascending ``recorded_at``
order.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from ..models import PriceHistoryEntry, PriceTrend, utc_now
from .database import (
    db_placeholder,
    from_db_decimal,
    from_db_timestamp,
    is_postgres,
    to_db_decimal,
    to_db_timestamp,
)


TWO_PLACES = Decimal("0.01")

_HISTORY_COLUMNS = (
    'history_id', 'ingredient_id', 'ingredient_name', 'price', 'unit', 'source',
    'market_name', 'change_percentage', 'notes', 'recorded_at',
)


def append_price_history(conn, entry: PriceHistoryEntry, commit: bool = True) -> int:
    """Insert a history entry and return its id."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    values = (entry.ingredient_id, entry.ingredient_name, to_db_decimal(conn, entry.price),
              entry.unit, entry.source, entry.market_name,
              to_db_decimal(conn, entry.change_percentage), entry.notes,
              to_db_timestamp(entry.recorded_at))
    try:
        if is_postgres(conn):
            cursor.execute(
                f'''INSERT INTO ingredient_price_history
                   (ingredient_id, ingredient_name, price, unit, source,
                    market_name, change_percentage, notes, recorded_at)
                   VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
                   RETURNING history_id''',
                values
            )
            history_id = cursor.fetchone()[0]
        else:
            cursor.execute(
                f'''INSERT INTO ingredient_price_history
                   (ingredient_id, ingredient_name, price, unit, source,
                    market_name, change_percentage, notes, recorded_at)
                   VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})''',
                values
            )
            history_id = cursor.lastrowid
        if commit:
            conn.commit()
    finally:
        cursor.close()
    return history_id


def get_price_history(conn, ingredient_id: int, days: int = 30,
                      now: Optional[datetime] = None) -> List[PriceHistoryEntry]:
    """
    Get history entries recorded within the last ``days`` days.

    Args:
        conn: Database connection
        ingredient_id: Ingredient to read
        days: Trailing window size
        now: Window end (defaults to the current UTC time)

    Returns:
        Entries ordered oldest first.
    """
    since = (now or utc_now()) - timedelta(days=days)
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    try:
        cursor.execute(
            f'''SELECT {", ".join(_HISTORY_COLUMNS)} FROM ingredient_price_history
               WHERE ingredient_id = {ph} AND recorded_at >= {ph}
               ORDER BY recorded_at ASC, history_id ASC''',
            (ingredient_id, to_db_timestamp(since))
        )
        rows = cursor.fetchall()
    finally:
        cursor.close()

    entries = []
    for row in rows:
        data = dict(zip(_HISTORY_COLUMNS, row))
        entries.append(PriceHistoryEntry(
            history_id=data['history_id'],
            ingredient_id=data['ingredient_id'],
            ingredient_name=data['ingredient_name'] or "",
            price=from_db_decimal(data['price']),
            unit=data['unit'] or "",
            source=data['source'],
            market_name=data['market_name'],
            change_percentage=from_db_decimal(data['change_percentage']),
            notes=data['notes'],
            recorded_at=from_db_timestamp(data['recorded_at']),
        ))
    return entries


def calculate_price_trend(ingredient_id: int, days: int,
                          entries: Sequence[PriceHistoryEntry]) -> PriceTrend:
    """
    Aggregate a window of entries (oldest first).

    Direction compares the first and last price only. With no entries the
    aggregates stay None and callers must check ``count``.
    """
    trend = PriceTrend(ingredient_id=ingredient_id, days=days, count=len(entries))
    if not entries:
        return trend

    prices = [e.price for e in entries]
    trend.min_price = min(prices)
    trend.max_price = max(prices)
    trend.average_price = (sum(prices, Decimal("0")) / len(prices)).quantize(TWO_PLACES)
    trend.first_price = prices[0]
    trend.last_price = prices[-1]

    if trend.last_price > trend.first_price:
        trend.direction = "up"
    elif trend.last_price < trend.first_price:
        trend.direction = "down"

    if trend.first_price > 0:
        trend.change_percentage = (
            (trend.last_price - trend.first_price) / trend.first_price * 100
        ).quantize(TWO_PLACES)
    else:
        trend.change_percentage = Decimal("0")
    return trend


def get_price_trend(conn, ingredient_id: int, days: int = 30,
                    now: Optional[datetime] = None) -> PriceTrend:
    """Trend over the trailing ``days`` window."""
    entries = get_price_history(conn, ingredient_id, days, now=now)
    return calculate_price_trend(ingredient_id, days, entries)
