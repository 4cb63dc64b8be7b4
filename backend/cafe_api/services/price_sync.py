"""
Ingredient market price synchronization.

The orchestrator decides whether a scheduled run should go ahead, fetches
prices for every eligible ingredient, records the changes that matter and
raises alerts on large swings.

Scheduled run:
    1. settings gate     - missing or disabled settings end the run
    2. recency gate      - fewer than update_frequency_hours since the last run
    3. eligible set      - active ingredients with auto-update on
    4. bulk fetch
    5. reconcile         - skip / record / record + alert per ingredient
    6. bookkeeping       - last_update_run is always stamped

The recency gate is a time heuristic, not a lock: two runs racing inside
the same window can both pass it.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from ..exceptions import ConfigurationMissing, PersistenceFailure
from ..models import (
    ALERT_SEVERITY,
    Alert,
    AlertType,
    ChangeAction,
    Ingredient,
    OutcomeStatus,
    PriceFetchResult,
    PriceUpdateSettings,
    ReconcileOutcome,
    RunStatus,
    RunSummary,
    utc_now,
)
from .change_evaluator import classify_change, percent_change, signed_percent_change
from .price_fetcher import PriceFetcher
from .price_store import (
    get_effective_price_update_settings,
    get_ingredient,
    get_ingredients_for_auto_update,
    get_price_update_settings,
    save_price_update_settings,
    update_ingredient_price,
)


logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


class PriceSyncOrchestrator:
    """
    Runs price synchronization against one database connection.

    Args:
        conn: DB-API connection used for every read and write of the run
        fetcher: PriceFetcher (defaults to the configured sources)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(self, conn, fetcher: Optional[PriceFetcher] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.conn = conn
        self.fetcher = fetcher or PriceFetcher()
        self.clock = clock

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def run(self, settings: Optional[PriceUpdateSettings] = None) -> RunSummary:
        """
        Scheduled run with both gates and run bookkeeping.

        Never raises: unexpected errors are logged and reported as
        ``status == "error"``.
        """
        now = self.clock()
        logger.info("Price update run triggered at %s", now.isoformat())
        summary = RunSummary(started_at=now)

        try:
            if settings is None:
                try:
                    settings = get_price_update_settings(self.conn)
                except ConfigurationMissing:
                    logger.info("No price update settings stored. Skipping price refresh.")
                    return self._finish(summary, RunStatus.DISABLED)

            if not settings.auto_update_enabled:
                logger.info("Auto-update is disabled. Skipping price refresh.")
                return self._finish(summary, RunStatus.DISABLED)

            if settings.last_update_run is not None:
                hours_since = (now - settings.last_update_run).total_seconds() / 3600
                if hours_since < settings.update_frequency_hours:
                    logger.info("Only %.2f hours since last update (every %s). Skipping.",
                                hours_since, settings.update_frequency_hours)
                    return self._finish(summary, RunStatus.TOO_SOON)

            ingredients = get_ingredients_for_auto_update(self.conn, settings.enabled_categories)
            if not ingredients:
                logger.info("No ingredients configured for auto-update.")
                return self._finish(summary, RunStatus.NO_INGREDIENTS)

            logger.info("Starting automatic price update for %d ingredients", len(ingredients))
            self._fetch_and_reconcile(ingredients, settings, summary)

            # Stamped even when every item failed, so a dead source is not hammered
            settings.last_update_run = self.clock()
            save_price_update_settings(self.conn, settings, now=settings.last_update_run)

            logger.info("Automatic price update completed: %d updated, %d failed, %d total",
                        summary.updated, summary.failed, summary.total)
            return self._finish(summary, RunStatus.COMPLETED)

        except Exception:
            logger.exception("Error during scheduled price update")
            return self._finish(summary, RunStatus.ERROR)

    def refresh_all(self) -> RunSummary:
        """Admin-triggered refresh of every eligible ingredient, no gates."""
        summary = RunSummary(started_at=self.clock())
        settings = self._thresholds()

        ingredients = get_ingredients_for_auto_update(self.conn, settings.enabled_categories)
        if not ingredients:
            logger.info("Bulk refresh requested but no ingredients have auto-update enabled")
            return self._finish(summary, RunStatus.NO_INGREDIENTS)

        logger.info("Starting bulk price refresh for %d ingredients", len(ingredients))
        self._fetch_and_reconcile(ingredients, settings, summary)
        logger.info("Bulk price refresh completed: %d updated, %d failed, %d total",
                    summary.updated, summary.failed, summary.total)
        return self._finish(summary, RunStatus.COMPLETED)

    def refresh_ingredient(self, ingredient_id: int) -> Optional[ReconcileOutcome]:
        """
        Admin-triggered refresh of a single ingredient.

        Ignores the recency gate and the auto-update flags. Returns None if
        the ingredient does not exist.
        """
        ingredient = get_ingredient(self.conn, ingredient_id)
        if ingredient is None:
            return None

        logger.info("Fetching price for %s", ingredient.name)
        result = self.fetcher.fetch(ingredient.name, ingredient.category, ingredient.unit)
        return self.reconcile_one(ingredient, result, self._thresholds())

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(self, ingredients: Sequence[Ingredient], results: Sequence[PriceFetchResult],
                  settings: PriceUpdateSettings, summary: Optional[RunSummary] = None) -> RunSummary:
        """Apply fetch results to their ingredients, matched by name."""
        summary = summary or RunSummary(started_at=self.clock())
        summary.total = len(ingredients)
        by_name: Dict[str, Ingredient] = {ing.name: ing for ing in ingredients}

        for result in results:
            ingredient = by_name.get(result.ingredient_name)
            if ingredient is None:
                logger.warning("Fetch result for unknown ingredient %r ignored", result.ingredient_name)
                continue
            summary.record(self.reconcile_one(ingredient, result, settings))
        return summary

    def reconcile_one(self, ingredient: Ingredient, result: PriceFetchResult,
                      settings: PriceUpdateSettings) -> ReconcileOutcome:
        """Decide and persist one ingredient's fetched price."""
        outcome = ReconcileOutcome(
            ingredient_name=ingredient.name,
            ingredient_id=ingredient.ingredient_id,
            status=OutcomeStatus.FAILED,
            old_price=ingredient.market_price,
            source=result.source or None,
            market_name=result.market_name,
        )

        if not result.success:
            outcome.error = result.error_message or "Price fetch failed"
            logger.warning("Failed to fetch price for %s: %s", ingredient.name, outcome.error)
            return outcome

        old_price = ingredient.market_price
        change = percent_change(old_price, result.price)
        signed_change = signed_percent_change(old_price, result.price)
        outcome.new_price = result.price
        outcome.change_percentage = signed_change

        action = classify_change(change, settings)
        if action is ChangeAction.SKIP:
            outcome.status = OutcomeStatus.SKIPPED
            logger.info("Skipped %s: change (%.2f%%) below threshold (%s%%)",
                        ingredient.name, change, settings.min_change_percentage_to_record)
            return outcome

        try:
            update_ingredient_price(
                self.conn, ingredient, result.price, result.source, result.market_name,
                change_percentage=signed_change.quantize(TWO_PLACES),
                now=self.clock(),
            )
        except PersistenceFailure as e:
            outcome.error = f"Failed to update price: {e}"
            logger.error("Failed to update price for %s: %s", ingredient.name, e)
            return outcome

        outcome.status = OutcomeStatus.UPDATED
        logger.info("Updated %s: %s -> %s (%.2f%%)", ingredient.name, old_price, result.price, change)

        if action is ChangeAction.ALERT:
            outcome.alert = raise_price_alert(ingredient, old_price, result.price, signed_change)
        return outcome

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _fetch_and_reconcile(self, ingredients: List[Ingredient],
                             settings: PriceUpdateSettings, summary: RunSummary) -> None:
        results = self.fetcher.fetch_bulk(ingredients)
        self.reconcile(ingredients, results, settings, summary)

    def _thresholds(self) -> PriceUpdateSettings:
        return get_effective_price_update_settings(self.conn)

    def _finish(self, summary: RunSummary, status: str) -> RunSummary:
        summary.status = status
        summary.completed_at = self.clock()
        return summary


def raise_price_alert(ingredient: Ingredient, old_price: Decimal, new_price: Decimal,
                      signed_change: Decimal) -> Alert:
    """Build a major-change alert and log it at WARNING."""
    alert_type = (AlertType.PRICE_INCREASE_MAJOR if signed_change >= 0
                  else AlertType.PRICE_DECREASE_MAJOR)
    verb = "increased" if signed_change >= 0 else "dropped"
    alert = Alert(
        alert_type=alert_type,
        severity=ALERT_SEVERITY[alert_type],
        ingredient_id=ingredient.ingredient_id,
        ingredient_name=ingredient.name,
        old_price=old_price,
        new_price=new_price,
        change_percent=signed_change,
        message=f"Price {verb} {abs(signed_change):.1f}%: {old_price} -> {new_price}",
    )
    logger.warning("ALERT: Significant price change for %s: %s", ingredient.name, alert.message)
    return alert
