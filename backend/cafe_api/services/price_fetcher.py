"""
Price resolution across an ordered list of sources.

A source is any object with ``source_id`` and
``fetch(name, category, unit) -> PriceFetchResult``. New sources are added
by appending to the list handed to PriceFetcher.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal
from typing import List, Optional, Sequence

from .. import config
from ..models import Ingredient, PriceFetchResult
from .price_sources import default_sources


logger = logging.getLogger(__name__)

NO_SOURCE_MESSAGE = "No price source available for this ingredient"


class PriceFetcher:
    """
    Resolve current market prices for ingredients.

    Sources are tried in order and the first positive price wins. Bulk
    fetches run on a bounded thread pool so external rate limits hold.
    """

    def __init__(self, sources: Optional[Sequence] = None, max_workers: Optional[int] = None):
        self.sources = list(sources) if sources is not None else default_sources()
        self.max_workers = max(1, max_workers or config.PRICE_FETCH_MAX_WORKERS)

    def fetch(self, name: str, category: str, unit: str) -> PriceFetchResult:
        """Fetch one ingredient's price, falling back through the sources."""
        errors: List[str] = []

        for source in self.sources:
            source_id = getattr(source, 'source_id', type(source).__name__)
            try:
                result = source.fetch(name, category, unit)
            except Exception as e:
                logger.error("Source %s raised for %s: %s", source_id, name, e, exc_info=True)
                errors.append(f"{source_id}: {e}")
                continue

            if result.success and result.price is not None and Decimal(result.price) > 0:
                result.ingredient_name = name
                result.source = result.source or source_id
                logger.debug("Price for %s from %s: %s", name, result.source, result.price)
                return result

            message = result.error_message
            if result.success:
                message = f"Non-positive price: {result.price}"
            errors.append(f"{source_id}: {message or 'no price'}")

        return PriceFetchResult.failure(name, "; ".join(errors) if errors else NO_SOURCE_MESSAGE)

    def fetch_bulk(self, ingredients: Sequence[Ingredient]) -> List[PriceFetchResult]:
        """
        Fetch prices for many ingredients.

        Returns one result per ingredient in completion order; callers match
        results back by ``ingredient_name``. A failure for one ingredient
        never affects the others.
        """
        if not ingredients:
            return []

        results: List[PriceFetchResult] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ingredients))) as executor:
            futures = {
                executor.submit(self.fetch, ing.name, ing.category, ing.unit): ing
                for ing in ingredients
            }
            for future in as_completed(futures):
                ingredient = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error("Price fetch crashed for %s: %s", ingredient.name, e, exc_info=True)
                    results.append(PriceFetchResult.failure(ingredient.name, str(e)))
        return results
