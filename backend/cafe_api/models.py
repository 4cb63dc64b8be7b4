"""
Domain types for ingredient price synchronization.

Plain dataclasses shared by the store, the fetcher, the orchestrator and
the routes. API request/response models live next to their routers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Price sources
# =============================================================================

class PriceSource:
    """Known values for ``price_source`` / history ``source``."""
    MANUAL = "manual"
    AGMARKNET = "agmarknet"
    SCRAPED = "scraped"
    API = "api"
    SUPPLIER = "supplier"


# =============================================================================
# Alerts
# =============================================================================

class AlertType(Enum):
    """Types of alerts raised while reconciling prices."""
    PRICE_INCREASE_MAJOR = "price_increase_major"
    PRICE_DECREASE_MAJOR = "price_decrease_major"


class AlertSeverity(Enum):
    """Severity levels for alerts."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


ALERT_SEVERITY = {
    AlertType.PRICE_INCREASE_MAJOR: AlertSeverity.WARNING,
    AlertType.PRICE_DECREASE_MAJOR: AlertSeverity.WARNING,
}


@dataclass
class Alert:
    """Individual alert record."""
    alert_type: AlertType
    severity: AlertSeverity
    ingredient_id: Optional[int] = None
    ingredient_name: Optional[str] = None
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None
    message: str = ""


class ChangeAction(Enum):
    """What to do with an observed price, see change_evaluator.classify_change."""
    SKIP = "skip"
    RECORD = "record"
    ALERT = "alert"


# =============================================================================
# Catalog & settings
# =============================================================================

@dataclass
class Ingredient:
    """Catalog ingredient with its current market price."""
    ingredient_id: Optional[int]
    name: str
    category: str
    unit: str
    market_price: Decimal = Decimal("0")
    previous_price: Optional[Decimal] = None
    price_change_percentage: Optional[Decimal] = None
    price_source: str = PriceSource.MANUAL
    last_price_fetch: Optional[datetime] = None
    auto_update_enabled: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class PriceUpdateSettings:
    """Singleton configuration gating automatic price updates."""
    auto_update_enabled: bool = False
    update_frequency_hours: int = 24
    min_change_percentage_to_record: Decimal = Decimal("2.0")
    alert_threshold_percentage: Decimal = Decimal("15.0")
    enabled_categories: List[str] = field(default_factory=list)
    last_update_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# Fetching & history
# =============================================================================

@dataclass
class PriceFetchResult:
    """Outcome of resolving one ingredient's price against the sources."""
    ingredient_name: str
    success: bool = False
    price: Decimal = Decimal("0")
    source: str = ""
    market_name: Optional[str] = None
    error_message: Optional[str] = None
    fetched_at: datetime = field(default_factory=utc_now)

    @classmethod
    def ok(cls, ingredient_name: str, price: Decimal, source: str,
           market_name: Optional[str] = None) -> 'PriceFetchResult':
        return cls(ingredient_name=ingredient_name, success=True, price=price,
                   source=source, market_name=market_name)

    @classmethod
    def failure(cls, ingredient_name: str, error_message: str,
                source: str = "") -> 'PriceFetchResult':
        return cls(ingredient_name=ingredient_name, success=False,
                   source=source, error_message=error_message)


@dataclass
class PriceHistoryEntry:
    """One accepted price observation. Never updated once written."""
    ingredient_id: int
    price: Decimal
    source: str
    recorded_at: datetime
    ingredient_name: str = ""
    unit: str = ""
    market_name: Optional[str] = None
    change_percentage: Optional[Decimal] = None
    notes: Optional[str] = None
    history_id: Optional[int] = None


@dataclass
class PriceTrend:
    """Aggregate over a trailing window of history entries."""
    ingredient_id: int
    days: int
    count: int = 0
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    average_price: Optional[Decimal] = None
    first_price: Optional[Decimal] = None
    last_price: Optional[Decimal] = None
    change_percentage: Optional[Decimal] = None
    direction: str = "flat"


# =============================================================================
# Run results
# =============================================================================

class RunStatus:
    COMPLETED = "completed"
    DISABLED = "disabled"
    TOO_SOON = "too_soon"
    NO_INGREDIENTS = "no_ingredients"
    ERROR = "error"


class OutcomeStatus:
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ReconcileOutcome:
    """What happened to one ingredient during a run."""
    ingredient_name: str
    status: str
    ingredient_id: Optional[int] = None
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    change_percentage: Optional[Decimal] = None
    source: Optional[str] = None
    market_name: Optional[str] = None
    alert: Optional[Alert] = None
    error: Optional[str] = None


MAX_REPORTED_ERRORS = 10


@dataclass
class RunSummary:
    """Aggregate result of one synchronization run."""
    updated: int = 0
    failed: int = 0
    total: int = 0
    skipped: int = 0
    status: str = RunStatus.COMPLETED
    errors: List[str] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    outcomes: List[ReconcileOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def record(self, outcome: ReconcileOutcome) -> None:
        """Fold one reconciliation outcome into the counters."""
        self.outcomes.append(outcome)
        if outcome.status == OutcomeStatus.UPDATED:
            self.updated += 1
        elif outcome.status == OutcomeStatus.FAILED:
            self.failed += 1
            if outcome.error and len(self.errors) < MAX_REPORTED_ERRORS:
                self.errors.append(f"{outcome.ingredient_name}: {outcome.error}")
        else:
            self.skipped += 1
        if outcome.alert is not None:
            self.alerts.append(outcome.alert)
