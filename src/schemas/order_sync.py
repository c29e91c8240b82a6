"""Schemas for the admin order sync and reconciliation check endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class OrderSyncRequest(BaseModel):
    """Request body for a sync run. All fields are optional."""

    square_order_id: str | None = Field(default=None, description="Sync only this Square order")
    hours: int | None = Field(default=None, ge=1, le=24 * 31, description="Lookback window in hours")
    location_id: str | None = Field(default=None, description="Square location id override")


class SyncError(BaseModel):
    """One order that failed to sync."""

    square_order_id: str
    error: str


class OrderSyncResponse(BaseModel):
    """Summary of a sync run."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = Field(default=True)
    fetched: int = Field(default=0, description="Orders returned by Square")
    created: int = Field(default=0, description="Orders created locally")
    updated: int = Field(default=0, description="Orders updated locally")
    failed: int = Field(default=0, description="Orders that failed to reconcile")
    errors: list[SyncError] = Field(default_factory=list)


class MissingOrderResponse(BaseModel):
    """A paid Square order with no local row."""

    model_config = ConfigDict(from_attributes=True)

    square_order_id: str
    order_number: str | None = None
    created_at: str | None = None
    total: str


class ReconciliationCheckResponse(BaseModel):
    """Result of the missing-order check."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = Field(default=True)
    checked: int = Field(description="Paid Square orders in the window")
    missing_count: int = Field(description="Paid orders with no local row")
    missing: list[MissingOrderResponse] = Field(default_factory=list)
    window_start: datetime
    window_end: datetime
    alert_sent: bool = Field(default=False)
