"""
Tests for the price history ledger and trend aggregation.
"""
from datetime import timedelta
from decimal import Decimal

from cafe_api.models import PriceHistoryEntry
from cafe_api.services.price_history import (
    append_price_history,
    calculate_price_trend,
    get_price_history,
    get_price_trend,
)

from conftest import NOW, create_test_ingredient


def add_entry(conn, ingredient, price, days_ago, source='agmarknet'):
    entry = PriceHistoryEntry(
        ingredient_id=ingredient.ingredient_id,
        ingredient_name=ingredient.name,
        price=Decimal(price),
        unit=ingredient.unit,
        source=source,
        recorded_at=NOW - timedelta(days=days_ago),
    )
    entry.history_id = append_price_history(conn, entry)
    return entry


class TestGetPriceHistory:
    """Test reading the history window."""

    def test_ascending_order(self, sqlite_conn):
        ing = create_test_ingredient(sqlite_conn)
        add_entry(sqlite_conn, ing, '42', days_ago=1)
        add_entry(sqlite_conn, ing, '40', days_ago=10)
        add_entry(sqlite_conn, ing, '41', days_ago=5)

        history = get_price_history(sqlite_conn, ing.ingredient_id, 30, now=NOW)

        assert [e.price for e in history] == [Decimal('40'), Decimal('41'), Decimal('42')]
        assert history[0].recorded_at == NOW - timedelta(days=10)

    def test_window_excludes_old_entries(self, sqlite_conn):
        ing = create_test_ingredient(sqlite_conn)
        add_entry(sqlite_conn, ing, '30', days_ago=45)
        add_entry(sqlite_conn, ing, '40', days_ago=3)

        history = get_price_history(sqlite_conn, ing.ingredient_id, 30, now=NOW)

        assert len(history) == 1
        assert history[0].price == Decimal('40')

    def test_other_ingredients_excluded(self, sqlite_conn):
        tomato = create_test_ingredient(sqlite_conn, name='Tomato')
        onion = create_test_ingredient(sqlite_conn, name='Onion')
        add_entry(sqlite_conn, tomato, '40', days_ago=1)
        add_entry(sqlite_conn, onion, '30', days_ago=1)

        history = get_price_history(sqlite_conn, onion.ingredient_id, 30, now=NOW)

        assert [e.ingredient_name for e in history] == ['Onion']

    def test_fields_round_trip(self, sqlite_conn):
        ing = create_test_ingredient(sqlite_conn)
        entry = PriceHistoryEntry(
            ingredient_id=ing.ingredient_id,
            ingredient_name=ing.name,
            price=Decimal('44.50'),
            unit='kg',
            source='scraped',
            market_name='BigBasket',
            change_percentage=Decimal('-3.25'),
            notes='weekly check',
            recorded_at=NOW - timedelta(hours=2),
        )
        append_price_history(sqlite_conn, entry)

        [stored] = get_price_history(sqlite_conn, ing.ingredient_id, 1, now=NOW)

        assert stored.history_id is not None
        assert stored.price == Decimal('44.50')
        assert stored.source == 'scraped'
        assert stored.market_name == 'BigBasket'
        assert stored.change_percentage == Decimal('-3.25')
        assert stored.notes == 'weekly check'
        assert stored.recorded_at == entry.recorded_at

    def test_empty(self, sqlite_conn):
        assert get_price_history(sqlite_conn, 999, 30, now=NOW) == []


class TestPriceTrend:
    """Test trend aggregation."""

    def test_aggregates(self, sqlite_conn):
        ing = create_test_ingredient(sqlite_conn)
        add_entry(sqlite_conn, ing, '10', days_ago=20)
        add_entry(sqlite_conn, ing, '12', days_ago=10)
        add_entry(sqlite_conn, ing, '9', days_ago=1)

        trend = get_price_trend(sqlite_conn, ing.ingredient_id, 30, now=NOW)

        assert trend.count == 3
        assert trend.min_price == Decimal('9')
        assert trend.max_price == Decimal('12')
        assert trend.average_price == Decimal('10.33')
        assert trend.first_price == Decimal('10')
        assert trend.last_price == Decimal('9')
        assert trend.direction == 'down'
        assert trend.change_percentage == Decimal('-10.00')

    def test_upward_direction(self):
        entries = [
            PriceHistoryEntry(ingredient_id=1, price=Decimal(p), source='manual',
                              recorded_at=NOW - timedelta(days=d))
            for p, d in (('40', 5), ('50', 1))
        ]
        trend = calculate_price_trend(1, 7, entries)

        assert trend.direction == 'up'
        assert trend.change_percentage == Decimal('25.00')

    def test_flat_when_first_equals_last(self):
        """Direction compares endpoints only."""
        entries = [
            PriceHistoryEntry(ingredient_id=1, price=Decimal(p), source='manual',
                              recorded_at=NOW - timedelta(days=d))
            for p, d in (('40', 5), ('60', 3), ('40', 1))
        ]
        trend = calculate_price_trend(1, 7, entries)

        assert trend.direction == 'flat'
        assert trend.max_price == Decimal('60')

    def test_no_entries(self, sqlite_conn):
        """Empty window returns count 0 and no aggregates."""
        trend = get_price_trend(sqlite_conn, 1, 30, now=NOW)

        assert trend.count == 0
        assert trend.days == 30
        assert trend.min_price is None
        assert trend.average_price is None
        assert trend.direction == 'flat'
