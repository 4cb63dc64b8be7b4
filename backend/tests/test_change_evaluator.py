"""
Tests for price change evaluation.
"""
import pytest
from decimal import Decimal

from cafe_api.models import ChangeAction, PriceUpdateSettings
from cafe_api.services.change_evaluator import (
    classify_change,
    percent_change,
    signed_percent_change,
)


class TestPercentChange:
    """Test percentage change calculation."""

    def test_increase(self):
        """40 -> 50 is a 25% change."""
        assert percent_change(Decimal('40'), Decimal('50')) == Decimal('25')

    def test_decrease_is_absolute(self):
        """Decreases report the magnitude."""
        assert percent_change(Decimal('50'), Decimal('40')) == Decimal('20')

    def test_signed_decrease(self):
        """Signed change keeps the direction."""
        assert signed_percent_change(Decimal('50'), Decimal('40')) == Decimal('-20')

    def test_zero_old_price_is_zero_change(self):
        """No baseline price means 0% rather than an infinite jump."""
        assert percent_change(Decimal('0'), Decimal('100')) == Decimal('0')
        assert signed_percent_change(Decimal('0'), Decimal('100')) == Decimal('0')

    def test_no_change(self):
        """Same price is 0%."""
        assert percent_change(Decimal('12.50'), Decimal('12.50')) == Decimal('0')

    def test_accepts_numbers(self):
        """Plain ints and floats are converted."""
        assert percent_change(100, 110.0) == Decimal('10')


class TestClassifyChange:
    """Test the skip / record / alert decision table."""

    @pytest.fixture
    def settings(self):
        return PriceUpdateSettings(
            min_change_percentage_to_record=Decimal('2.0'),
            alert_threshold_percentage=Decimal('15.0'),
        )

    def test_below_minimum_is_skipped(self, settings):
        assert classify_change(Decimal('1.99'), settings) is ChangeAction.SKIP

    def test_zero_change_is_skipped(self, settings):
        assert classify_change(Decimal('0'), settings) is ChangeAction.SKIP

    def test_minimum_boundary_is_recorded(self, settings):
        """Exactly the minimum is recorded."""
        assert classify_change(Decimal('2.0'), settings) is ChangeAction.RECORD

    def test_between_thresholds_is_recorded(self, settings):
        assert classify_change(Decimal('10'), settings) is ChangeAction.RECORD

    def test_alert_boundary_alerts(self, settings):
        """Exactly the alert threshold records and alerts."""
        assert classify_change(Decimal('15.0'), settings) is ChangeAction.ALERT

    def test_large_change_alerts(self, settings):
        assert classify_change(Decimal('80'), settings) is ChangeAction.ALERT

    def test_zero_minimum_records_everything(self):
        """With a 0% minimum even unchanged prices are recorded."""
        settings = PriceUpdateSettings(
            min_change_percentage_to_record=Decimal('0'),
            alert_threshold_percentage=Decimal('15'),
        )
        assert classify_change(Decimal('0'), settings) is ChangeAction.RECORD

    def test_defaults(self):
        """Default thresholds are 2% and 15%."""
        settings = PriceUpdateSettings()
        assert classify_change(Decimal('1'), settings) is ChangeAction.SKIP
        assert classify_change(Decimal('5'), settings) is ChangeAction.RECORD
        assert classify_change(Decimal('20'), settings) is ChangeAction.ALERT
