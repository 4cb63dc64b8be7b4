"""
Pytest fixtures and test infrastructure for price synchronization tests.
"""
import pytest
import sqlite3
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cafe_api.models import PriceFetchResult, PriceUpdateSettings
from cafe_api.services.database import init_schema
from cafe_api.services.price_store import create_ingredient, save_price_update_settings


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sqlite_conn():
    """In-memory SQLite database with the production schema."""
    # TestClient runs sync routes in a worker thread
    conn = sqlite3.connect(':memory:', check_same_thread=False)
    init_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def postgres_conn():
    """Test PostgreSQL connection (requires TEST_DATABASE_URL env var)."""
    import psycopg2
    url = os.environ.get('TEST_DATABASE_URL')
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    conn = psycopg2.connect(url)
    init_schema(conn)
    yield conn
    conn.rollback()  # Don't persist test data
    conn.close()


@pytest.fixture
def clock():
    """Controllable UTC clock starting at NOW."""
    return FakeClock(NOW)


class FakeClock:
    """Callable clock for PriceSyncOrchestrator."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeSource:
    """
    In-memory price source.

    prices maps ingredient name to a price, None (no price) or an exception
    instance to raise.
    """

    def __init__(self, source_id='fake', prices=None, market_name='Test Market'):
        self.source_id = source_id
        self.prices = prices or {}
        self.market_name = market_name
        self.calls = []

    def fetch(self, name, category, unit):
        self.calls.append(name)
        value = self.prices.get(name)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return PriceFetchResult.failure(name, 'not listed', self.source_id)
        return PriceFetchResult.ok(name, Decimal(str(value)), self.source_id, self.market_name)


def create_test_ingredient(conn, name='Tomato', category='vegetables', unit='kg',
                           market_price='40.00', auto_update_enabled=True):
    """Insert an ingredient and return it."""
    return create_ingredient(conn, name, category, unit,
                             market_price=Decimal(market_price),
                             auto_update_enabled=auto_update_enabled,
                             now=NOW - timedelta(days=60))


def save_test_settings(conn, **overrides):
    """Store the settings row with auto-update enabled unless overridden."""
    values = dict(
        auto_update_enabled=True,
        update_frequency_hours=24,
        min_change_percentage_to_record=Decimal('2.0'),
        alert_threshold_percentage=Decimal('15.0'),
    )
    values.update(overrides)
    settings = PriceUpdateSettings(**values)
    return save_price_update_settings(conn, settings, now=NOW - timedelta(days=60))
