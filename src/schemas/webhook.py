"""Webhook response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class WebhookOrderResult(BaseModel):
    """Outcome for one order touched by a webhook delivery."""

    model_config = ConfigDict(from_attributes=True)

    square_order_id: str | None = Field(default=None, description="Square order id")
    action: str = Field(description="created, updated or skipped")
    order_id: str | None = Field(default=None, description="Local order id")
    order_number: str | None = Field(default=None, description="Human-readable order number")
    status: str | None = Field(default=None, description="Customer status after reconciliation")
    previous_status: str | None = Field(default=None, description="Customer status before reconciliation")
    payment_status: str | None = Field(default=None, description="Payment status after reconciliation")
    previous_payment_status: str | None = Field(default=None, description="Payment status before reconciliation")
    items_written: int | None = Field(
        default=None, description="Item rows written; null when stored items were kept"
    )


class WebhookResponse(BaseModel):
    """Acknowledgment returned to Square."""

    success: bool = Field(default=True, description="Whether the delivery was accepted")
    event_type: str = Field(description="Webhook event type")
    processed: int = Field(default=0, description="Number of orders reconciled")
    results: list[WebhookOrderResult] = Field(default_factory=list, description="Per-order outcomes")
