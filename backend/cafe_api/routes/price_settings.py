"""
Price update settings routes.

The settings row gates the scheduled price update: whether it runs, how
often, and which price changes get recorded or alerted.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator

from ..models import PriceUpdateSettings
from ..services.auth import validate_admin_role
from ..services.database import get_db
from ..services.price_store import (
    get_or_create_price_update_settings,
    save_price_update_settings,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/price-settings", tags=["price-settings"])


class PriceSettingsOut(BaseModel):
    """Stored price update settings."""
    auto_update_enabled: bool
    update_frequency_hours: int
    min_change_percentage_to_record: float
    alert_threshold_percentage: float
    enabled_categories: List[str]
    last_update_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: PriceUpdateSettings) -> 'PriceSettingsOut':
        return cls(
            auto_update_enabled=settings.auto_update_enabled,
            update_frequency_hours=settings.update_frequency_hours,
            min_change_percentage_to_record=float(settings.min_change_percentage_to_record),
            alert_threshold_percentage=float(settings.alert_threshold_percentage),
            enabled_categories=list(settings.enabled_categories),
            last_update_run=settings.last_update_run,
            created_at=settings.created_at,
            updated_at=settings.updated_at,
        )


class PriceSettingsResponse(BaseModel):
    success: bool
    data: PriceSettingsOut


class UpdatePriceSettingsRequest(BaseModel):
    """Replacement values for the editable settings."""
    auto_update_enabled: bool
    update_frequency_hours: int = Field(..., gt=0)
    min_change_percentage_to_record: Decimal = Field(..., ge=0)
    alert_threshold_percentage: Decimal = Field(..., ge=0)
    enabled_categories: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def check_thresholds(self) -> 'UpdatePriceSettingsRequest':
        if self.alert_threshold_percentage < self.min_change_percentage_to_record:
            raise ValueError(
                "alert_threshold_percentage must be >= min_change_percentage_to_record"
            )
        return self


@router.get("/", response_model=PriceSettingsResponse)
def get_settings(request: Request, conn=Depends(get_db)):
    """Get the price update settings, creating defaults on first use (admin only)."""
    authorized, _, _, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    try:
        settings = get_or_create_price_update_settings(conn)
    except Exception as e:
        logger.error("Error getting price update settings: %s", e)
        raise HTTPException(status_code=500, detail=f"Error fetching settings: {str(e)}")

    return PriceSettingsResponse(success=True, data=PriceSettingsOut.from_settings(settings))


@router.put("/", response_model=PriceSettingsResponse)
def update_settings(body: UpdatePriceSettingsRequest, request: Request, conn=Depends(get_db)):
    """
    Replace the editable settings (admin only).

    last_update_run is owned by the scheduler and kept as stored.
    """
    authorized, _, username, error_response = validate_admin_role(request)
    if not authorized:
        return error_response

    try:
        settings = get_or_create_price_update_settings(conn)
        settings.auto_update_enabled = body.auto_update_enabled
        settings.update_frequency_hours = body.update_frequency_hours
        settings.min_change_percentage_to_record = body.min_change_percentage_to_record
        settings.alert_threshold_percentage = body.alert_threshold_percentage
        settings.enabled_categories = [c.strip().lower() for c in body.enabled_categories
                                       if c and c.strip()]
        save_price_update_settings(conn, settings)
    except Exception as e:
        logger.error("Error saving price update settings: %s", e)
        raise HTTPException(status_code=500, detail=f"Settings update failed: {str(e)}")

    logger.info("Price update settings changed by %s: enabled=%s every %sh",
                username, settings.auto_update_enabled, settings.update_frequency_hours)
    return PriceSettingsResponse(success=True, data=PriceSettingsOut.from_settings(settings))
