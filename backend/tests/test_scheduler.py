"""
Tests for the price update scheduler entry point.
"""
import pytest
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import price_update_scheduler
from cafe_api.models import RunStatus, RunSummary
from cafe_api.services.price_fetcher import PriceFetcher
from cafe_api.services.price_store import get_ingredient

from conftest import FakeSource, create_test_ingredient, save_test_settings


class TestRunOnce:
    """Test a single scheduled run."""

    def test_runs_orchestrator(self, sqlite_conn):
        ing = create_test_ingredient(sqlite_conn, market_price='40')
        save_test_settings(sqlite_conn)
        fetcher = PriceFetcher([FakeSource('fake', {'Tomato': '44'})])

        summary = price_update_scheduler.run_once(sqlite_conn, fetcher)

        assert summary.status == RunStatus.COMPLETED
        assert summary.updated == 1
        assert get_ingredient(sqlite_conn, ing.ingredient_id).price_source == 'fake'

    def test_disabled(self, sqlite_conn):
        source = FakeSource('fake', {'Tomato': '44'})
        create_test_ingredient(sqlite_conn)

        summary = price_update_scheduler.run_once(sqlite_conn, PriceFetcher([source]))

        assert summary.status == RunStatus.DISABLED
        assert source.calls == []


class TestWatch:
    """Test the --watch loop."""

    @patch('price_update_scheduler.run_scheduled')
    def test_sleeps_between_runs(self, mock_run):
        mock_run.return_value = RunSummary()
        sleep = MagicMock()

        runs = price_update_scheduler.watch(15, max_runs=3, sleep=sleep)

        assert runs == 3
        assert mock_run.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(15 * 60)

    @patch('price_update_scheduler.run_scheduled')
    def test_crashing_run_does_not_stop_loop(self, mock_run):
        mock_run.side_effect = [RuntimeError('connection refused'), RunSummary()]

        runs = price_update_scheduler.watch(1, max_runs=2, sleep=MagicMock())

        assert runs == 2
        assert mock_run.call_count == 2


class TestMain:
    """Test the command line entry point."""

    @pytest.fixture
    def pool(self, sqlite_conn):
        pool = MagicMock()

        @contextmanager
        def get_connection():
            yield sqlite_conn

        pool.get_connection = get_connection
        return pool

    def test_single_run(self, pool, tmp_path):
        with patch.object(price_update_scheduler, 'db_pool', pool), \
                patch.object(price_update_scheduler, 'setup_logging',
                             return_value=tmp_path / 'scheduler.log'):
            exit_code = price_update_scheduler.main([])

        assert exit_code == 0
        pool.initialize.assert_called_once()
        pool.close.assert_called_once()

    def test_database_unavailable(self, pool, tmp_path):
        pool.initialize.side_effect = ValueError('DATABASE_URL not found')
        with patch.object(price_update_scheduler, 'db_pool', pool), \
                patch.object(price_update_scheduler, 'setup_logging',
                             return_value=tmp_path / 'scheduler.log'):
            exit_code = price_update_scheduler.main([])

        assert exit_code == 1

    def test_invalid_interval(self):
        with pytest.raises(SystemExit):
            price_update_scheduler.main(['--watch', '--interval-minutes', '0'])
