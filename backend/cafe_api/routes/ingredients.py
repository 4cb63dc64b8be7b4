"""
Ingredient catalog and market price routes.

Endpoints for listing ingredients, manual price edits, price history and
trends, on-demand price refreshes, and the per-ingredient auto-update flag.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..exceptions import DuplicateIngredient
from ..models import (
    Alert,
    ChangeAction,
    Ingredient,
    OutcomeStatus,
    PriceHistoryEntry,
    PriceSource,
    ReconcileOutcome,
    RunSummary,
)
from ..services.auth import validate_admin_role
from ..services.change_evaluator import classify_change, signed_percent_change
from ..services.database import get_db
from ..services.price_fetcher import PriceFetcher
from ..services.price_history import get_price_history, get_price_trend
from ..services.price_store import (
    create_ingredient,
    deactivate_ingredient,
    get_effective_price_update_settings,
    get_ingredient,
    list_ingredients,
    set_auto_update,
    update_ingredient_price,
)
from ..services.price_sync import TWO_PLACES, PriceSyncOrchestrator, raise_price_alert


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ingredients", tags=["ingredients"])


def get_price_fetcher() -> PriceFetcher:
    """Dependency returning the fetcher used for on-demand refreshes."""
    return PriceFetcher()


def _to_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


# =============================================================================
# Schemas
# =============================================================================

class IngredientOut(BaseModel):
    """Catalog ingredient."""
    ingredient_id: int
    name: str
    category: str
    unit: str
    market_price: float
    previous_price: Optional[float] = None
    price_change_percentage: Optional[float] = None
    price_source: str
    last_price_fetch: Optional[datetime] = None
    auto_update_enabled: bool
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_ingredient(cls, ing: Ingredient) -> 'IngredientOut':
        return cls(
            ingredient_id=ing.ingredient_id,
            name=ing.name,
            category=ing.category,
            unit=ing.unit,
            market_price=float(ing.market_price),
            previous_price=_to_float(ing.previous_price),
            price_change_percentage=_to_float(ing.price_change_percentage),
            price_source=ing.price_source,
            last_price_fetch=ing.last_price_fetch,
            auto_update_enabled=ing.auto_update_enabled,
            is_active=ing.is_active,
            created_at=ing.created_at,
            updated_at=ing.updated_at,
        )


class IngredientListResponse(BaseModel):
    ingredients: List[IngredientOut]
    total: int


class CreateIngredientRequest(BaseModel):
    """Request body for adding an ingredient."""
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    unit: str = Field(..., min_length=1)
    market_price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    auto_update_enabled: bool = False


class ManualPriceRequest(BaseModel):
    """Request body for an admin price edit."""
    market_price: Decimal = Field(..., ge=0, decimal_places=2)
    notes: Optional[str] = None


class PriceHistoryItem(BaseModel):
    """One recorded price observation."""
    history_id: Optional[int] = None
    ingredient_id: int
    ingredient_name: str
    price: float
    unit: str
    source: str
    market_name: Optional[str] = None
    change_percentage: Optional[float] = None
    notes: Optional[str] = None
    recorded_at: datetime

    @classmethod
    def from_entry(cls, entry: PriceHistoryEntry) -> 'PriceHistoryItem':
        return cls(
            history_id=entry.history_id,
            ingredient_id=entry.ingredient_id,
            ingredient_name=entry.ingredient_name,
            price=float(entry.price),
            unit=entry.unit,
            source=entry.source,
            market_name=entry.market_name,
            change_percentage=_to_float(entry.change_percentage),
            notes=entry.notes,
            recorded_at=entry.recorded_at,
        )


class PriceHistoryResponse(BaseModel):
    success: bool
    data: List[PriceHistoryItem]
    count: int


class PriceTrendOut(BaseModel):
    """Trend aggregate; price fields are null when count is 0."""
    ingredient_id: int
    days: int
    count: int
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    average_price: Optional[float] = None
    first_price: Optional[float] = None
    last_price: Optional[float] = None
    change_percentage: Optional[float] = None
    direction: str


class PriceTrendResponse(BaseModel):
    success: bool
    data: PriceTrendOut


class AlertOut(BaseModel):
    """Alert raised by a large price swing."""
    alert_type: str
    severity: str
    ingredient_id: Optional[int] = None
    ingredient_name: Optional[str] = None
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    change_percent: Optional[float] = None
    message: str

    @classmethod
    def from_alert(cls, alert: Alert) -> 'AlertOut':
        return cls(
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            ingredient_id=alert.ingredient_id,
            ingredient_name=alert.ingredient_name,
            old_price=_to_float(alert.old_price),
            new_price=_to_float(alert.new_price),
            change_percent=_to_float(alert.change_percent),
            message=alert.message,
        )


class RefreshOutcomeOut(BaseModel):
    """Result of refreshing one ingredient."""
    ingredient_id: Optional[int] = None
    ingredient_name: str
    status: str
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    change_percentage: Optional[float] = None
    source: Optional[str] = None
    market_name: Optional[str] = None
    alert: Optional[AlertOut] = None
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: ReconcileOutcome) -> 'RefreshOutcomeOut':
        return cls(
            ingredient_id=outcome.ingredient_id,
            ingredient_name=outcome.ingredient_name,
            status=outcome.status,
            old_price=_to_float(outcome.old_price),
            new_price=_to_float(outcome.new_price),
            change_percentage=_to_float(outcome.change_percentage),
            source=outcome.source,
            market_name=outcome.market_name,
            alert=AlertOut.from_alert(outcome.alert) if outcome.alert else None,
            error=outcome.error,
        )


class RefreshPriceResponse(BaseModel):
    success: bool
    message: str
    data: Optional[RefreshOutcomeOut] = None
    ingredient: Optional[IngredientOut] = None
    error: Optional[str] = None


class BulkRefreshResponse(BaseModel):
    """Run summary of a bulk refresh."""
    success: bool
    message: str
    status: str
    updated: int
    failed: int
    skipped: int
    total: int
    errors: List[str]
    alerts: List[AlertOut]

    @classmethod
    def from_summary(cls, summary: RunSummary, message: str) -> 'BulkRefreshResponse':
        return cls(
            success=True,
            message=message,
            status=summary.status,
            updated=summary.updated,
            failed=summary.failed,
            skipped=summary.skipped,
            total=summary.total,
            errors=summary.errors,
            alerts=[AlertOut.from_alert(a) for a in summary.alerts],
        )


class ToggleAutoUpdateResponse(BaseModel):
    success: bool
    message: str
    auto_update_enabled: bool


class ManualPriceResponse(IngredientOut):
    """Ingredient after a manual edit, with the alert a large swing raised."""
    alert: Optional[AlertOut] = None


class DeactivateResponse(BaseModel):
    success: bool
    message: str


# =============================================================================
# Catalog
# =============================================================================

@router.get("/", response_model=IngredientListResponse)
def list_catalog(
    active_only: bool = Query(False, description="Only return active ingredients"),
    conn=Depends(get_db),
):
    """List ingredients ordered by name."""
    ingredients = list_ingredients(conn, active_only=active_only)
    return IngredientListResponse(
        ingredients=[IngredientOut.from_ingredient(i) for i in ingredients],
        total=len(ingredients),
    )


@router.post("/", response_model=IngredientOut, status_code=201)
def add_ingredient(body: CreateIngredientRequest, request: Request, conn=Depends(get_db)):
    """Add an ingredient to the catalog (admin only)."""
    authorized, _, username, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    try:
        ingredient = create_ingredient(
            conn, body.name.strip(), body.category, body.unit,
            market_price=body.market_price,
            auto_update_enabled=body.auto_update_enabled,
        )
    except DuplicateIngredient as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error("Error creating ingredient %s: %s", body.name, e)
        raise HTTPException(status_code=500, detail=f"Create failed: {str(e)}")

    logger.info("Ingredient %s created by %s", ingredient.name, username)
    return IngredientOut.from_ingredient(ingredient)


@router.get("/{ingredient_id}", response_model=IngredientOut)
def get_catalog_item(ingredient_id: int, conn=Depends(get_db)):
    """Get one ingredient."""
    ingredient = get_ingredient(conn, ingredient_id)
    if ingredient is None:
        raise HTTPException(status_code=404, detail=f"Ingredient not found: {ingredient_id}")
    return IngredientOut.from_ingredient(ingredient)


@router.put("/{ingredient_id}/price", response_model=ManualPriceResponse)
def set_manual_price(ingredient_id: int, body: ManualPriceRequest, request: Request,
                     conn=Depends(get_db)):
    """
    Record a manually entered market price (admin only).

    Any change is recorded regardless of the minimum change threshold; an
    unchanged price writes nothing. A change at or above the alert
    threshold raises an alert.
    """
    authorized, _, username, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    ingredient = get_ingredient(conn, ingredient_id)
    if ingredient is None:
        raise HTTPException(status_code=404, detail=f"Ingredient not found: {ingredient_id}")

    if body.market_price == ingredient.market_price:
        return ManualPriceResponse.from_ingredient(ingredient)

    old_price = ingredient.market_price
    change = signed_percent_change(old_price, body.market_price)
    try:
        settings = get_effective_price_update_settings(conn)
        update_ingredient_price(
            conn, ingredient, body.market_price, PriceSource.MANUAL,
            change_percentage=change.quantize(TWO_PLACES),
            notes=body.notes or f"Manual update by {username}",
        )
    except Exception as e:
        logger.error("Error setting price for ingredient %s: %s", ingredient_id, e)
        raise HTTPException(status_code=500, detail=f"Price update failed: {str(e)}")

    response = ManualPriceResponse.from_ingredient(ingredient)
    if classify_change(abs(change), settings) is ChangeAction.ALERT:
        alert = raise_price_alert(ingredient, old_price, body.market_price, change)
        response.alert = AlertOut.from_alert(alert)
    return response


@router.delete("/{ingredient_id}", response_model=DeactivateResponse)
def remove_ingredient(ingredient_id: int, request: Request, conn=Depends(get_db)):
    """
    Deactivate an ingredient (admin only).

    The row and its price history stay; it no longer takes part in
    automatic price updates.
    """
    authorized, _, username, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    try:
        deactivated = deactivate_ingredient(conn, ingredient_id)
    except Exception as e:
        logger.error("Error deactivating ingredient %s: %s", ingredient_id, e)
        raise HTTPException(status_code=500, detail=f"Delete failed: {str(e)}")

    if not deactivated:
        raise HTTPException(status_code=404, detail=f"Ingredient not found: {ingredient_id}")

    logger.info("Ingredient %s deactivated by %s", ingredient_id, username)
    return DeactivateResponse(success=True, message="Ingredient deactivated successfully")


# =============================================================================
# History & trends
# =============================================================================

@router.get("/{ingredient_id}/price-history", response_model=PriceHistoryResponse)
def price_history(
    ingredient_id: int,
    request: Request,
    days: int = Query(30, ge=1, le=3650, description="Number of days to look back"),
    conn=Depends(get_db),
):
    """
    Get recorded prices for an ingredient (admin only).

    Returns:
        Entries from the last ``days`` days, oldest first
    """
    authorized, _, _, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    try:
        history = get_price_history(conn, ingredient_id, days)
    except Exception as e:
        logger.error("Error getting price history for ingredient %s: %s", ingredient_id, e)
        raise HTTPException(status_code=500, detail=f"Error fetching price history: {str(e)}")

    return PriceHistoryResponse(
        success=True,
        data=[PriceHistoryItem.from_entry(e) for e in history],
        count=len(history),
    )


@router.get("/{ingredient_id}/price-trends", response_model=PriceTrendResponse)
def price_trends(
    ingredient_id: int,
    days: int = Query(30, ge=1, le=3650, description="Number of days to look back"),
    conn=Depends(get_db),
):
    """Get min/max/average and direction of an ingredient's price."""
    try:
        trend = get_price_trend(conn, ingredient_id, days)
    except Exception as e:
        logger.error("Error getting price trends for ingredient %s: %s", ingredient_id, e)
        raise HTTPException(status_code=500, detail=f"Error fetching price trends: {str(e)}")

    return PriceTrendResponse(
        success=True,
        data=PriceTrendOut(
            ingredient_id=trend.ingredient_id,
            days=trend.days,
            count=trend.count,
            min_price=_to_float(trend.min_price),
            max_price=_to_float(trend.max_price),
            average_price=_to_float(trend.average_price),
            first_price=_to_float(trend.first_price),
            last_price=_to_float(trend.last_price),
            change_percentage=_to_float(trend.change_percentage),
            direction=trend.direction,
        ),
    )


# =============================================================================
# Refresh
# =============================================================================

@router.post("/bulk-refresh-prices", response_model=BulkRefreshResponse)
def bulk_refresh_prices(request: Request, conn=Depends(get_db),
                        fetcher: PriceFetcher = Depends(get_price_fetcher)):
    """
    Refresh every ingredient with auto-update enabled (admin only).

    Skips the schedule gates: an admin asking for a refresh gets one.
    """
    authorized, _, username, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    logger.info("Bulk price refresh requested by %s", username)
    try:
        summary = PriceSyncOrchestrator(conn, fetcher).refresh_all()
    except Exception as e:
        logger.exception("Error during bulk price refresh")
        raise HTTPException(status_code=500, detail=f"Bulk refresh failed: {str(e)}")

    if summary.total == 0:
        message = "No ingredients configured for auto-update"
    else:
        message = f"Bulk price refresh completed: {summary.updated} updated, {summary.failed} failed"
    return BulkRefreshResponse.from_summary(summary, message)


@router.post("/{ingredient_id}/refresh-price", response_model=RefreshPriceResponse)
def refresh_price(ingredient_id: int, request: Request, conn=Depends(get_db),
                  fetcher: PriceFetcher = Depends(get_price_fetcher)):
    """
    Fetch and reconcile the current market price of one ingredient (admin only).

    Returns:
        Outcome with old/new price; success is False when no source had a price
    """
    authorized, _, _, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    try:
        outcome = PriceSyncOrchestrator(conn, fetcher).refresh_ingredient(ingredient_id)
    except Exception as e:
        logger.exception("Error refreshing price for ingredient %s", ingredient_id)
        raise HTTPException(status_code=500, detail=f"Refresh failed: {str(e)}")

    if outcome is None:
        raise HTTPException(status_code=404, detail=f"Ingredient not found: {ingredient_id}")

    data = RefreshOutcomeOut.from_outcome(outcome)

    if outcome.status == OutcomeStatus.FAILED:
        if outcome.new_price is None:
            return RefreshPriceResponse(
                success=False,
                message="Could not fetch price from external sources",
                data=data,
                error=outcome.error,
            )
        raise HTTPException(status_code=500, detail=outcome.error or "Failed to update price")

    if outcome.status == OutcomeStatus.SKIPPED:
        message = "Price change below threshold, not recorded"
    else:
        message = "Price updated successfully"

    ingredient = get_ingredient(conn, ingredient_id)
    return RefreshPriceResponse(
        success=True,
        message=message,
        data=data,
        ingredient=IngredientOut.from_ingredient(ingredient) if ingredient else None,
    )


@router.post("/{ingredient_id}/toggle-auto-update", response_model=ToggleAutoUpdateResponse)
def toggle_auto_update(ingredient_id: int, request: Request, conn=Depends(get_db)):
    """Flip the ingredient's auto-update flag (admin only)."""
    authorized, _, _, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    ingredient = get_ingredient(conn, ingredient_id)
    if ingredient is None:
        raise HTTPException(status_code=404, detail=f"Ingredient not found: {ingredient_id}")

    enabled = not ingredient.auto_update_enabled
    try:
        updated = set_auto_update(conn, ingredient_id, enabled)
    except Exception as e:
        logger.error("Error toggling auto-update for ingredient %s: %s", ingredient_id, e)
        raise HTTPException(status_code=500, detail=f"Failed to update ingredient: {str(e)}")

    if not updated:
        raise HTTPException(status_code=500, detail="Failed to update ingredient")

    return ToggleAutoUpdateResponse(
        success=True,
        message=f"Auto-update {'enabled' if enabled else 'disabled'} for {ingredient.name}",
        auto_update_enabled=enabled,
    )
