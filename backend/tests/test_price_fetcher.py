"""
Tests for PriceFetcher source fallback and bulk fetching.
"""
from decimal import Decimal

from cafe_api.models import Ingredient, PriceFetchResult
from cafe_api.services.price_fetcher import NO_SOURCE_MESSAGE, PriceFetcher

from conftest import FakeSource


def make_ingredient(name, category='vegetables', unit='kg'):
    return Ingredient(ingredient_id=None, name=name, category=category, unit=unit)


class TestFetch:
    """Test single ingredient resolution."""

    def test_first_source_wins(self):
        first = FakeSource('first', {'Onion': '30'})
        second = FakeSource('second', {'Onion': '35'})
        result = PriceFetcher([first, second]).fetch('Onion', 'vegetables', 'kg')

        assert result.success is True
        assert result.price == Decimal('30')
        assert result.source == 'first'
        assert second.calls == []

    def test_falls_back_to_next_source(self):
        first = FakeSource('first', {})
        second = FakeSource('second', {'Onion': '35'})
        result = PriceFetcher([first, second]).fetch('Onion', 'vegetables', 'kg')

        assert result.success is True
        assert result.price == Decimal('35')
        assert result.source == 'second'

    def test_raising_source_does_not_stop_fallback(self):
        first = FakeSource('first', {'Onion': RuntimeError('boom')})
        second = FakeSource('second', {'Onion': '35'})
        result = PriceFetcher([first, second]).fetch('Onion', 'vegetables', 'kg')

        assert result.success is True
        assert result.source == 'second'

    def test_all_sources_fail(self):
        """Errors from every source are aggregated."""
        first = FakeSource('first', {'Onion': RuntimeError('boom')})
        second = FakeSource('second', {})
        result = PriceFetcher([first, second]).fetch('Onion', 'vegetables', 'kg')

        assert result.success is False
        assert result.ingredient_name == 'Onion'
        assert 'first: boom' in result.error_message
        assert 'second: not listed' in result.error_message

    def test_non_positive_price_is_failure(self):
        """A source claiming success with price 0 does not count."""
        class ZeroSource:
            source_id = 'zero'

            def fetch(self, name, category, unit):
                return PriceFetchResult.ok(name, Decimal('0'), 'zero')

        result = PriceFetcher([ZeroSource()]).fetch('Onion', 'vegetables', 'kg')

        assert result.success is False
        assert 'Non-positive' in result.error_message

    def test_no_sources(self):
        result = PriceFetcher([]).fetch('Onion', 'vegetables', 'kg')

        assert result.success is False
        assert result.error_message == NO_SOURCE_MESSAGE


class TestFetchBulk:
    """Test bulk fetching."""

    def test_one_result_per_ingredient(self):
        source = FakeSource('fake', {'Onion': '30', 'Tomato': '40', 'Potato': '20'})
        ingredients = [make_ingredient(n) for n in ('Onion', 'Tomato', 'Potato')]
        results = PriceFetcher([source], max_workers=2).fetch_bulk(ingredients)

        assert len(results) == 3
        by_name = {r.ingredient_name: r for r in results}
        assert by_name['Tomato'].price == Decimal('40')

    def test_failure_isolated(self):
        """One failing ingredient does not affect the others."""
        source = FakeSource('fake', {'Onion': '30', 'Tomato': RuntimeError('timeout')})
        ingredients = [make_ingredient('Onion'), make_ingredient('Tomato')]
        results = PriceFetcher([source]).fetch_bulk(ingredients)

        by_name = {r.ingredient_name: r for r in results}
        assert by_name['Onion'].success is True
        assert by_name['Tomato'].success is False

    def test_crash_in_fetch_becomes_failure(self, monkeypatch):
        """An exception escaping fetch() still yields a result."""
        fetcher = PriceFetcher([FakeSource()])

        def explode(name, category, unit):
            raise RuntimeError('worker died')

        monkeypatch.setattr(fetcher, 'fetch', explode)
        results = fetcher.fetch_bulk([make_ingredient('Onion')])

        assert len(results) == 1
        assert results[0].success is False
        assert results[0].error_message == 'worker died'

    def test_empty(self):
        assert PriceFetcher([FakeSource()]).fetch_bulk([]) == []
